from typing import Dict

from .config_loader import ALIASES, KeyNotFoundError


class AliasConfig:
    """User defined command aliases stored under the aliases key."""

    def __init__(self, cfg):
        self.cfg = cfg

    def get(self, alias: str) -> str:
        return self.cfg.get([ALIASES, alias])

    def add(self, alias: str, expansion: str):
        self.cfg.set([ALIASES, alias], expansion)

    def delete(self, alias: str):
        self.cfg.remove([ALIASES, alias])

    def all(self) -> Dict[str, str]:
        try:
            aliases = self.cfg.get([ALIASES])
        except KeyNotFoundError:
            return {}
        if not isinstance(aliases, dict):
            return {}
        return {str(name): str(expansion) for name, expansion in aliases.items()}
