from unittest.mock import MagicMock

import keyring
import pytest

from azdo.cli.context import CmdContext
from azdo.config.config_loader import ConfigLoader
from azdo.entry_points.main import run
from azdo.helpers.iostreams import IOStreams
from azdo.helpers.run_context import RunContext

ORGANIZATION = "myorg"

ENV_VARS = (
    "AZDO_TOKEN", "AZDO_ORGANIZATION", "AZDO_REPO", "AZDO_CONFIG_DIR", "AZDO_DEBUG", "AZDO_PAGER",
    "AZDO_PROMPT_DISABLED", "AZDO_TIMEOUT", "AZDO_FORCE_TTY", "AZDO_BROWSER", "AZDO_EDITOR",
    "NO_COLOR", "CLICOLOR", "CLICOLOR_FORCE", "PAGER", "XDG_CONFIG_HOME",
)


def logged_in_config(**extra) -> dict:
    data = {
        "organizations": {
            ORGANIZATION: {"url": f"https://dev.azure.com/{ORGANIZATION}", "pat": "secret-token"},
        },
        "default_organization": ORGANIZATION,
    }
    data.update(extra)
    return data


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(keyring, "get_password", lambda service, user: None)
    monkeypatch.setattr(keyring, "delete_password", MagicMock())
    monkeypatch.setattr(keyring, "set_password", MagicMock())
    monkeypatch.setattr("azdo.config.auth_config.keyring_available", lambda: False)


class Harness:
    """A CmdContext wired to in-memory streams and mocked clients."""

    def __init__(self, config: dict, prompter=None, git_client=None):
        self.ios, self.stdin, self.stdout, self.stderr = IOStreams.test()
        self.config = ConfigLoader.in_memory(config)
        self.clients = MagicMock()
        self.prompter = prompter if prompter is not None else MagicMock()
        if git_client is None:
            git_client = MagicMock()
            git_client.remote_resolutions.return_value = {}
        self.git_client = git_client
        self.ctx = CmdContext(
            ios=self.ios,
            config=self.config,
            client_factory=self.clients,
            prompter=self.prompter,
            git_client=self.git_client,
            run_context=RunContext(),
        )

    def client(self, name: str) -> MagicMock:
        """The mock handed out by ctx.client_factory().<name>(organization)."""
        return getattr(self.clients, name).return_value

    def run(self, *argv: str) -> int:
        return run(self.ctx, list(argv))

    def output(self) -> str:
        return self.stdout.getvalue()

    def errors(self) -> str:
        return self.stderr.getvalue()


@pytest.fixture
def harness():
    return Harness(logged_in_config())


@pytest.fixture
def make_harness():
    def factory(config=None, **kwargs):
        return Harness(logged_in_config() if config is None else config, **kwargs)
    return factory
