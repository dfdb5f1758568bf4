import pytest
from click.testing import CliRunner

from lanxfer.cli import cli
from lanxfer.errors import TransportError
from lanxfer.file import compute_checksum
from lanxfer.transfer import TransferClient


@pytest.fixture
def isolated_env(monkeypatch, free_port):
    monkeypatch.setenv('LANXFER_DISCOVERY_PORT', str(free_port()))
    monkeypatch.setenv('LANXFER_DISCOVERY_TIMEOUT', '0.3')
    monkeypatch.delenv('LANXFER_SERVER_ADDR', raising=False)


def test_checksum_command(tmp_path):
    path = tmp_path / 'f.txt'
    path.write_bytes(b'abc')

    result = CliRunner().invoke(cli, ['checksum', str(path)])

    assert result.exit_code == 0
    assert compute_checksum(path).hex() in result.output


def test_download_aborts_when_discovery_fails(isolated_env, monkeypatch):
    connects = []

    async def connect(self, address):
        connects.append(address)
        raise AssertionError("should not connect")

    monkeypatch.setattr(TransferClient, 'connect', connect)

    result = CliRunner().invoke(cli, ['download', 'anything.txt'])

    assert result.exit_code == 1
    assert 'No servers found' in result.output
    assert connects == []


def test_discover_reports_no_server(isolated_env):
    result = CliRunner().invoke(cli, ['discover'])

    assert result.exit_code == 1
    assert 'No servers found' in result.output


def test_download_of_unusable_name_exits_cleanly(isolated_env, monkeypatch):
    monkeypatch.setenv('LANXFER_SERVER_ADDR', '127.0.0.1:9')

    result = CliRunner().invoke(cli, ['download', '..'])

    assert result.exit_code == 1
    assert 'Invalid file name' in result.output
    assert isinstance(result.exception, SystemExit)


def test_port_zero_is_honoured(isolated_env, monkeypatch):
    seen = []

    class FailingNode:
        def __init__(self, config):
            seen.append(config.transfer_port)

        async def start(self):
            raise TransportError("not starting in tests")

    monkeypatch.setattr('lanxfer.cli.FileServerNode', FailingNode)

    result = CliRunner().invoke(cli, ['--port', '0', 'serve'])

    assert result.exit_code == 1
    assert seen == [0]
