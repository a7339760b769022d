"""
Configuration loader for the azdo command line tool.
Keeps a tree of nested string maps persisted as YAML and hands out the
authentication and alias views over it.
"""

import copy
import logging
import os
from typing import Any, Dict, List, Optional

import yaml

from .config import Config

logger = logging.getLogger(__name__)

ORGANIZATIONS = "organizations"
ALIASES = "aliases"
DEFAULT_ORGANIZATION = "default_organization"
PAT = "pat"
URL = "url"
GIT_PROTOCOL = "git_protocol"

CONFIG_FILE_NAME = "config.yml"
CREDENTIALS_FILE_NAME = "credentials.yml"


class KeyNotFoundError(KeyError):
    """Raised when a key path does not exist in the configuration tree."""

    def __init__(self, key: str):
        super().__init__(key)
        self.key = key

    def __str__(self):
        return f'could not find key "{self.key}"'


class InvalidConfigFileError(Exception):
    """Raised when a configuration file cannot be parsed."""

    def __init__(self, path: str, cause: Exception = None):
        self.path = path
        self.cause = cause
        message = f"invalid config file {path}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ConfigOption:
    """A documented top-level configuration key."""

    def __init__(self, key: str, description: str, default: str = "", allowed_values: Optional[List[str]] = None):
        self.key = key
        self.description = description
        self.default = default
        self.allowed_values = allowed_values


CONFIG_OPTIONS = [
    ConfigOption(GIT_PROTOCOL, "the protocol to use for git clone and push operations", "https", ["https", "ssh"]),
    ConfigOption("editor", "the text editor program to use for authoring text"),
    ConfigOption("prompt", "toggle interactive prompting in the terminal", "enabled", ["enabled", "disabled"]),
    ConfigOption("pager", "the terminal pager program to send standard output to"),
    ConfigOption("http_unix_socket", "the path to a Unix socket through which to make an HTTP connection"),
    ConfigOption("browser", "the web browser to use for opening URLs"),
]


def options() -> List[ConfigOption]:
    return list(CONFIG_OPTIONS)


def default_config() -> Dict[str, Any]:
    """Tree written for a fresh configuration file."""
    data = {option.key: option.default for option in CONFIG_OPTIONS}
    data[ALIASES] = {"co": "pr checkout"}
    return data


class FileBackend:
    """Reads and writes a YAML document on disk with owner-only permissions."""

    def __init__(self, path: str):
        self.path = path

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidConfigFileError(self.path, e) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise InvalidConfigFileError(self.path)
        return data

    def save(self, data: Dict[str, Any]):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, mode=0o700, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        logger.debug("Wrote configuration to %s", self.path)


class StringBackend:
    """YAML held in a string; writes replace the string."""

    def __init__(self, text: str = ""):
        self.text = text

    def load(self) -> Optional[Dict[str, Any]]:
        try:
            data = yaml.safe_load(self.text) if self.text else None
        except yaml.YAMLError as e:
            raise InvalidConfigFileError("<string>", e) from e
        if data is not None and not isinstance(data, dict):
            raise InvalidConfigFileError("<string>")
        return data

    def save(self, data: Dict[str, Any]):
        self.text = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


class MemoryBackend:
    """Keeps the tree in memory; useful for tests."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data = copy.deepcopy(data) if data is not None else None
        self.writes = 0

    def load(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self.data) if self.data is not None else None

    def save(self, data: Dict[str, Any]):
        self.data = copy.deepcopy(data)
        self.writes += 1


class ConfigLoader:
    """Hierarchical key/value configuration with an optional credentials tree."""

    def __init__(self, backend=None, credentials_backend=None):
        """
        Initialize the configuration.

        Args:
            backend: Storage for the main tree; defaults to <config-dir>/config.yml
            credentials_backend: Storage for plaintext tokens; defaults to
                <config-dir>/credentials.yml
        """
        if backend is None:
            backend = FileBackend(os.path.join(Config.config_dir(), CONFIG_FILE_NAME))
        if credentials_backend is None:
            if isinstance(backend, FileBackend):
                credentials_backend = FileBackend(
                    os.path.join(os.path.dirname(backend.path), CREDENTIALS_FILE_NAME))
            else:
                credentials_backend = MemoryBackend()
        self.backend = backend
        self.credentials_backend = credentials_backend

        data = backend.load()
        self.config = data if data is not None else default_config()
        self._credentials = None
        self._credentials_dirty = False
        self._auth = None
        self._aliases = None

    @classmethod
    def from_string(cls, text: str) -> "ConfigLoader":
        return cls(StringBackend(text), MemoryBackend())

    @classmethod
    def in_memory(cls, data: Optional[Dict[str, Any]] = None) -> "ConfigLoader":
        return cls(MemoryBackend(data if data is not None else {}), MemoryBackend())

    def _walk(self, tree: Dict[str, Any], keys: List[str]) -> Any:
        node = tree
        for index, key in enumerate(keys):
            if not isinstance(node, dict) or key not in node:
                raise KeyNotFoundError(".".join(keys[: index + 1]))
            node = node[key]
        return node

    def get(self, keys: List[str]) -> Any:
        value = self._walk(self.config, keys)
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return value
        return str(value)

    def get_or_default(self, keys: List[str]) -> str:
        """
        Get a value, falling back from an organization key to the top-level
        key and then to the built-in default.
        """
        try:
            return self.get(keys)
        except KeyNotFoundError:
            pass
        if len(keys) == 3 and keys[0] == ORGANIZATIONS:
            try:
                return self.get([keys[2]])
            except KeyNotFoundError:
                pass
        for option in CONFIG_OPTIONS:
            if option.key == keys[-1]:
                return option.default
        return ""

    def set(self, keys: List[str], value: Any):
        node = self.config
        for key in keys[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[keys[-1]] = value

    def remove(self, keys: List[str]):
        parent = self._walk(self.config, keys[:-1]) if len(keys) > 1 else self.config
        if not isinstance(parent, dict) or keys[-1] not in parent:
            raise KeyNotFoundError(".".join(keys))
        del parent[keys[-1]]

    def keys(self, keys: List[str]) -> List[str]:
        node = self._walk(self.config, keys) if keys else self.config
        if not isinstance(node, dict):
            return []
        return list(node.keys())

    def write(self):
        self.backend.save(self.config)
        if self._credentials_dirty:
            self.credentials_backend.save(self._credentials or {})
            self._credentials_dirty = False

    # Plaintext credentials tree

    def credentials(self) -> Dict[str, Any]:
        if self._credentials is None:
            self._credentials = self.credentials_backend.load() or {}
        return self._credentials

    def get_credential(self, organization: str) -> str:
        entry = self.credentials().get(ORGANIZATIONS, {}).get(organization) or {}
        return str(entry.get(PAT) or "")

    def set_credential(self, organization: str, token: str):
        orgs = self.credentials().setdefault(ORGANIZATIONS, {})
        orgs.setdefault(organization, {})[PAT] = token
        self._credentials_dirty = True

    def remove_credential(self, organization: str) -> bool:
        orgs = self.credentials().get(ORGANIZATIONS, {})
        if organization not in orgs:
            return False
        del orgs[organization]
        self._credentials_dirty = True
        return True

    def authentication(self):
        from .auth_config import AuthConfig

        if self._auth is None:
            self._auth = AuthConfig(self)
        return self._auth

    def aliases(self):
        from .alias_config import AliasConfig

        if self._aliases is None:
            self._aliases = AliasConfig(self)
        return self._aliases
