import os
import platform
from dotenv import load_dotenv

# Load environment variables; values already exported by the shell win
load_dotenv(".env")


class Config:
    """Environment settings for the azdo command line tool."""

    # API versions used by the raw REST wrapper
    API_VERSION = {
        "connection_data": "7.1",
        "pipeline_permissions": "7.1-preview.1",
        "graph": "7.1-preview.1",
    }

    DEFAULT_HOSTNAME = "dev.azure.com"
    STATUS_URL = "https://status.dev.azure.com"

    @staticmethod
    def _get(name, default=""):
        return os.getenv(name, default)

    @classmethod
    def token(cls):
        """Token that overrides any stored credential."""
        return cls._get("AZDO_TOKEN").strip()

    @classmethod
    def organization(cls):
        return cls._get("AZDO_ORGANIZATION").strip()

    @classmethod
    def repo(cls):
        return cls._get("AZDO_REPO").strip()

    @classmethod
    def config_dir(cls):
        """
        Directory holding config.yml and credentials.yml.

        Precedence: AZDO_CONFIG_DIR, $XDG_CONFIG_HOME/azdo, %AppData%/AzDO CLI
        on Windows, ~/.config/azdo.
        """
        explicit = cls._get("AZDO_CONFIG_DIR")
        if explicit:
            return explicit
        xdg = cls._get("XDG_CONFIG_HOME")
        if xdg:
            return os.path.join(xdg, "azdo")
        app_data = cls._get("AppData")
        if platform.system() == "Windows" and app_data:
            return os.path.join(app_data, "AzDO CLI")
        return os.path.join(os.path.expanduser("~"), ".config", "azdo")

    @classmethod
    def editor(cls):
        for name in ("AZDO_EDITOR", "GIT_EDITOR", "VISUAL", "EDITOR"):
            value = cls._get(name)
            if value:
                return value
        return ""

    @classmethod
    def browser(cls):
        return cls._get("AZDO_BROWSER") or cls._get("BROWSER")

    @classmethod
    def pager(cls):
        """AZDO_PAGER only; PAGER is consulted after the config file."""
        return cls._get("AZDO_PAGER")

    @classmethod
    def system_pager(cls):
        return cls._get("PAGER")

    @classmethod
    def debug(cls):
        return cls._get("AZDO_DEBUG").strip().lower()

    @classmethod
    def debug_enabled(cls):
        return cls.debug() not in ("", "0", "false", "no")

    @classmethod
    def debug_api(cls):
        return cls.debug() == "api"

    @classmethod
    def force_tty(cls):
        return cls._get("AZDO_FORCE_TTY")

    @classmethod
    def prompt_disabled(cls):
        return cls._get("AZDO_PROMPT_DISABLED") not in ("", "0", "false")

    @classmethod
    def no_color(cls):
        return "NO_COLOR" in os.environ

    @classmethod
    def clicolor(cls):
        return cls._get("CLICOLOR")

    @classmethod
    def clicolor_force(cls):
        return cls._get("CLICOLOR_FORCE") not in ("", "0")

    @classmethod
    def timeout(cls):
        """Global deadline as a duration string, empty when unset."""
        return cls._get("AZDO_TIMEOUT").strip()
