"""
Configuration Management

Handles loading configuration from environment variables and config files.
The resolved Config is created once at startup and handed to the server node
and the client; no module reads ports or tokens from globals.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
import json

from dotenv import load_dotenv

DEFAULT_TRANSFER_PORT = 9000
DEFAULT_DISCOVERY_PORT = 9999
DEFAULT_DISCOVERY_TOKEN = "DISCOVER_LANXFER"


@dataclass
class Config:
    """
    LanXfer Configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (LANXFER_*)
    2. Config file (config.json)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'
    transfer_port: int = DEFAULT_TRANSFER_PORT

    # Discovery
    discovery_port: int = DEFAULT_DISCOVERY_PORT
    discovery_token: str = DEFAULT_DISCOVERY_TOKEN
    discovery_timeout: float = 5.0
    server_address: Optional[str] = None  # "host:port", skips discovery

    # Storage
    storage_dir: Path = field(default_factory=lambda: Path('./storage'))

    # Performance
    chunk_size: int = 64 * 1024  # 64KB

    # Security
    cert_validity_hours: int = 24
    organization: str = 'LanXfer'

    # Logging
    log_level: str = 'INFO'

    @property
    def discovery_token_bytes(self) -> bytes:
        return self.discovery_token.encode('ascii')

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Network
        config.host = os.getenv('LANXFER_HOST', config.host)
        config.transfer_port = int(os.getenv('LANXFER_TRANSFER_PORT', config.transfer_port))

        # Discovery
        config.discovery_port = int(os.getenv('LANXFER_DISCOVERY_PORT', config.discovery_port))
        config.discovery_token = os.getenv('LANXFER_DISCOVERY_TOKEN', config.discovery_token)
        config.discovery_timeout = float(
            os.getenv('LANXFER_DISCOVERY_TIMEOUT', config.discovery_timeout)
        )
        config.server_address = os.getenv('LANXFER_SERVER_ADDR') or None

        # Storage
        storage_dir = os.getenv('LANXFER_STORAGE_DIR')
        if storage_dir:
            config.storage_dir = Path(storage_dir)

        # Performance
        config.chunk_size = int(os.getenv('LANXFER_CHUNK_SIZE', config.chunk_size))

        # Logging
        config.log_level = os.getenv('LANXFER_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        config.host = data.get('host', config.host)
        config.transfer_port = data.get('transfer_port', config.transfer_port)

        config.discovery_port = data.get('discovery_port', config.discovery_port)
        config.discovery_token = data.get('discovery_token', config.discovery_token)
        config.discovery_timeout = data.get('discovery_timeout', config.discovery_timeout)
        config.server_address = data.get('server_address', config.server_address)

        if 'storage_dir' in data:
            config.storage_dir = Path(data['storage_dir'])

        config.chunk_size = data.get('chunk_size', config.chunk_size)

        config.cert_validity_hours = data.get('cert_validity_hours', config.cert_validity_hours)
        config.organization = data.get('organization', config.organization)

        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'transfer_port': self.transfer_port,
            'discovery_port': self.discovery_port,
            'discovery_token': self.discovery_token,
            'discovery_timeout': self.discovery_timeout,
            'server_address': self.server_address,
            'storage_dir': str(self.storage_dir),
            'chunk_size': self.chunk_size,
            'cert_validity_hours': self.cert_validity_hours,
            'organization': self.organization,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    config = Config()

    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    env_config = Config.from_env()

    # Merge (env takes precedence for non-default values)
    defaults = Config()
    for key in ['host', 'transfer_port', 'discovery_port', 'discovery_token',
                'discovery_timeout', 'server_address', 'storage_dir',
                'chunk_size', 'log_level']:
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config

