import json
from pathlib import Path

from lanxfer.config import Config, load_config


def test_defaults():
    config = Config()
    assert config.transfer_port == 9000
    assert config.discovery_port == 9999
    assert config.discovery_timeout == 5.0
    assert config.discovery_token_bytes == b'DISCOVER_LANXFER'


def test_from_file(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({
        'transfer_port': 9100,
        'storage_dir': '/srv/drop',
        'discovery_timeout': 2.5,
    }))

    config = Config.from_file(path)
    assert config.transfer_port == 9100
    assert config.storage_dir == Path('/srv/drop')
    assert config.discovery_timeout == 2.5
    assert config.discovery_port == 9999


def test_missing_file_gives_defaults(tmp_path):
    assert Config.from_file(tmp_path / 'nope.json') == Config()


def test_from_env(monkeypatch):
    monkeypatch.setenv('LANXFER_TRANSFER_PORT', '9200')
    monkeypatch.setenv('LANXFER_SERVER_ADDR', '10.0.0.2:9200')
    monkeypatch.setenv('LANXFER_STORAGE_DIR', '/tmp/lanxfer')

    config = Config.from_env()
    assert config.transfer_port == 9200
    assert config.server_address == '10.0.0.2:9200'
    assert config.storage_dir == Path('/tmp/lanxfer')


def test_env_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'transfer_port': 9100, 'discovery_port': 9500}))
    monkeypatch.setenv('LANXFER_TRANSFER_PORT', '9300')

    config = load_config(path)
    assert config.transfer_port == 9300
    assert config.discovery_port == 9500


def test_save_round_trip(tmp_path):
    path = tmp_path / 'saved.json'
    original = Config(transfer_port=9400, storage_dir=tmp_path / 's', log_level='DEBUG')
    original.save(path)

    assert Config.from_file(path) == original
