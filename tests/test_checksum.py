import hashlib
import io

import pytest

from lanxfer.file import (
    CHECKSUM_SIZE,
    StreamHasher,
    checksum_to_hex,
    compute_checksum,
    compute_checksum_async,
    digest,
)


@pytest.fixture
def sample_file(tmp_path):
    path = tmp_path / 'sample.bin'
    path.write_bytes(bytes(range(256)) * 1000)
    return path


def test_digest_is_sha256():
    data = b'hello lan'
    assert digest(io.BytesIO(data)) == hashlib.sha256(data).digest()
    assert len(digest(io.BytesIO(data))) == CHECKSUM_SIZE


def test_digest_accepts_chunk_iterables():
    chunks = [b'abc', b'', b'def']
    assert digest(chunks) == hashlib.sha256(b'abcdef').digest()


def test_empty_source():
    assert digest(io.BytesIO(b'')) == hashlib.sha256(b'').digest()


def test_file_checksum_is_deterministic(sample_file):
    assert compute_checksum(sample_file) == compute_checksum(sample_file)


def test_single_flipped_byte_changes_checksum(sample_file):
    original = compute_checksum(sample_file)

    data = bytearray(sample_file.read_bytes())
    data[len(data) // 2] ^= 0xFF
    sample_file.write_bytes(bytes(data))

    assert compute_checksum(sample_file) != original


async def test_async_matches_sync(sample_file):
    assert await compute_checksum_async(sample_file) == compute_checksum(sample_file)


def test_missing_file_raises(tmp_path):
    with pytest.raises(OSError):
        compute_checksum(tmp_path / 'nope')


def test_stream_hasher_matches_whole_file(sample_file):
    hasher = StreamHasher()
    data = sample_file.read_bytes()
    for i in range(0, len(data), 4096):
        hasher.update(data[i:i + 4096])

    assert hasher.bytes_hashed == len(data)
    assert hasher.matches(compute_checksum(sample_file))


def test_checksum_to_hex():
    value = bytes(range(32))
    assert checksum_to_hex(value) == value.hex()
