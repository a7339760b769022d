"""
Configuration package for the azdo command line tool.
Contains environment settings, the YAML configuration store and the
authentication and alias views over it.
"""

from .config import Config
from .config_loader import (
    ConfigLoader,
    ConfigOption,
    FileBackend,
    InvalidConfigFileError,
    KeyNotFoundError,
    MemoryBackend,
    StringBackend,
    options,
)
from .auth_config import AuthConfig, TokenNotFoundError, keyring_available
from .alias_config import AliasConfig

__all__ = [
    'Config',
    'ConfigLoader',
    'ConfigOption',
    'FileBackend',
    'StringBackend',
    'MemoryBackend',
    'KeyNotFoundError',
    'InvalidConfigFileError',
    'options',
    'AuthConfig',
    'TokenNotFoundError',
    'keyring_available',
    'AliasConfig',
]
