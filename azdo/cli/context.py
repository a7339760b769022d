"""
Per-invocation execution context.

Every collaborator is created on first use and memoised; tests inject
replacements through the constructor.
"""

import logging
import threading
from typing import Optional

from .errors import AzdoError, FlagError, UnsupportedPrinterError
from ..classes.client_factory import ClientFactory, ConnectionFactory
from ..classes.git_client import GitClient
from ..classes.remotes import RemoteSet
from ..classes.repository import Repository, repository_from_name
from ..config.config import Config
from ..config.config_loader import ConfigLoader, InvalidConfigFileError
from ..helpers.iostreams import IOStreams
from ..helpers.printer import JSONPrinter, ListPrinter, TablePrinter
from ..helpers.prompter import Prompter
from ..helpers.run_context import RunContext
from ..helpers.text import parse_duration

logger = logging.getLogger(__name__)

_UNSET = object()


class RepoContext:
    """Finds the repository the user is working in."""

    def __init__(self, ctx):
        self.ctx = ctx
        self.override = ""
        self._remotes = None

    def remotes(self) -> RemoteSet:
        if self._remotes is None:
            self._remotes = RemoteSet.from_git(self.ctx.git_client())
        return self._remotes

    def current_repository(self) -> Repository:
        """
        The --repo flag, then AZDO_REPO, otherwise the best scored git remote.
        """
        override = self.override or Config.repo()
        if override:
            organization = self.ctx.config().authentication().get_default_organization() \
                if override.count("/") < 2 else None
            try:
                return repository_from_name(override, organization)
            except ValueError as e:
                source = "--repo" if self.override else "AZDO_REPO"
                raise FlagError(f"invalid {source} value: {e}", cause=e) from e
        return self.remotes().default().repository


class CmdContext:
    """
    Lazily built collaborators for one CLI invocation.

    Args:
        ios: IOStreams to use instead of the process streams
        config: A ConfigLoader
        client_factory: Replacement ClientFactory, e.g. one returning mocks
        prompter: Replacement Prompter
        git_client: Replacement GitClient
        run_context: Replacement RunContext
    """

    def __init__(self, ios: Optional[IOStreams] = None, config: Optional[ConfigLoader] = None,
                 client_factory=None, connection_factory=None, prompter=None,
                 git_client=None, run_context: Optional[RunContext] = None):
        self._lock = threading.RLock()
        self._ios = ios if ios is not None else _UNSET
        self._config = config if config is not None else _UNSET
        self._client_factory = client_factory if client_factory is not None else _UNSET
        self._connection_factory = connection_factory if connection_factory is not None else _UNSET
        self._prompter = prompter if prompter is not None else _UNSET
        self._git_client = git_client if git_client is not None else _UNSET
        self._run_context = run_context if run_context is not None else _UNSET
        self._repo_context = _UNSET

    def context(self) -> RunContext:
        with self._lock:
            if self._run_context is _UNSET:
                timeout = None
                value = Config.timeout()
                if value:
                    try:
                        timeout = parse_duration(value)
                    except ValueError as e:
                        raise AzdoError(f"invalid AZDO_TIMEOUT value {value!r}: {e}") from e
                self._run_context = RunContext(timeout)
            return self._run_context

    def config(self) -> ConfigLoader:
        with self._lock:
            if self._config is _UNSET:
                self._config = ConfigLoader()
            return self._config

    def io_streams(self) -> IOStreams:
        with self._lock:
            if self._ios is _UNSET:
                ios = IOStreams.system()
                ios.set_pager(self._pager_command())
                ios.set_never_prompt(self.prompt_disabled())
                self._ios = ios
            return self._ios

    def _config_value(self, key: str) -> str:
        try:
            return self.config().get_or_default([key])
        except InvalidConfigFileError as e:
            logger.debug("Ignoring unreadable config for %s: %s", key, e)
            return ""

    def _pager_command(self) -> str:
        return Config.pager() or self._config_value("pager") or Config.system_pager()

    def prompt_disabled(self) -> bool:
        return Config.prompt_disabled() or self._config_value("prompt") == "disabled"

    def prompter(self) -> Prompter:
        with self._lock:
            if self._prompter is _UNSET:
                self._prompter = Prompter(self.io_streams(), disabled=self.prompt_disabled())
            return self._prompter

    def connection_factory(self) -> ConnectionFactory:
        with self._lock:
            if self._connection_factory is _UNSET:
                self._connection_factory = ConnectionFactory(self.config().authentication())
            return self._connection_factory

    def client_factory(self) -> ClientFactory:
        with self._lock:
            if self._client_factory is _UNSET:
                self._client_factory = ClientFactory(self.connection_factory(), self.context())
            return self._client_factory

    def git_client(self) -> GitClient:
        with self._lock:
            if self._git_client is _UNSET:
                self._git_client = GitClient()
            return self._git_client

    def repo_context(self) -> RepoContext:
        with self._lock:
            if self._repo_context is _UNSET:
                self._repo_context = RepoContext(self)
            return self._repo_context

    def printer(self, kind: str):
        """
        Args:
            kind: table, list or json

        Raises:
            UnsupportedPrinterError: Any other kind
        """
        ios = self.io_streams()
        if kind == "table":
            return TablePrinter(ios.out, ios.is_stdout_tty(), ios.terminal_width(), ios.color_scheme())
        if kind == "list":
            return ListPrinter(ios.out)
        if kind == "json":
            return JSONPrinter(ios.out, ios.color_enabled())
        raise UnsupportedPrinterError(kind)
