"""
Local git access through the git executable.
"""

import logging
import shutil
import subprocess
from typing import List, Optional

from ..cli.errors import AzdoError, ExternalCommandExitError

logger = logging.getLogger(__name__)

RESOLUTION_KEY = "azdo-resolved"


class GitNotFoundError(AzdoError):
    def __init__(self):
        super().__init__("unable to find git executable in PATH; please install Git")


class GitCommandError(AzdoError):
    def __init__(self, args: List[str], stderr: str, exit_code: int):
        super().__init__(f"failed to run git: {' '.join(args)}: {stderr.strip()}")
        self.exit_code = exit_code
        self.stderr = stderr


class GitClient:
    """Runs git subcommands in a working directory."""

    def __init__(self, repo_dir: Optional[str] = None, stdin=None, stdout=None, stderr=None):
        self.repo_dir = repo_dir
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr
        self._git_path = None

    def git_path(self) -> str:
        if self._git_path is None:
            path = shutil.which("git")
            if not path:
                raise GitNotFoundError()
            self._git_path = path
        return self._git_path

    def _command(self, args: List[str]) -> List[str]:
        command = [self.git_path()]
        if self.repo_dir:
            command += ["-C", self.repo_dir]
        return command + list(args)

    def output(self, *args: str, input: Optional[str] = None) -> str:
        """Run git and return its standard output; input is fed to its standard input."""
        command = self._command(list(args))
        logger.debug("Running %s", command)
        result = subprocess.run(command, input=input, capture_output=True, text=True)
        if result.returncode != 0:
            raise GitCommandError(list(args), result.stderr, result.returncode)
        return result.stdout

    def run(self, *args: str):
        """Run git attached to the user's streams."""
        command = self._command(list(args))
        logger.debug("Running %s", command)
        result = subprocess.run(command, stdin=self.stdin, stdout=self.stdout, stderr=self.stderr)
        if result.returncode != 0:
            raise ExternalCommandExitError(result.returncode, "git " + " ".join(args))

    def remotes(self) -> List[tuple]:
        """Fetch URLs of all remotes as (name, url) pairs."""
        try:
            text = self.output("remote", "-v")
        except GitCommandError:
            return []
        seen = {}
        for line in text.splitlines():
            parts = line.split()
            if len(parts) >= 3 and parts[2] == "(fetch)":
                seen.setdefault(parts[0], parts[1])
        return list(seen.items())

    def remote_resolutions(self) -> dict:
        """Values of remote.<name>.azdo-resolved by remote name."""
        try:
            text = self.output("config", "--get-regexp", rf"^remote\..*\.{RESOLUTION_KEY}$")
        except GitCommandError:
            return {}
        resolutions = {}
        for line in text.splitlines():
            key, _, value = line.partition(" ")
            name = key[len("remote."):-len(RESOLUTION_KEY) - 1]
            resolutions[name] = value.strip()
        return resolutions

    def set_remote_resolution(self, name: str, resolution: str):
        self.output("config", "--add", f"remote.{name}.{RESOLUTION_KEY}", resolution)

    def unset_remote_resolution(self, name: str):
        self.output("config", "--unset", f"remote.{name}.{RESOLUTION_KEY}")

    def is_local_repo(self) -> bool:
        try:
            self.output("rev-parse", "--git-dir")
        except GitCommandError:
            return False
        return True

    def set_credential_helper(self, url: str, helper: str):
        """Make helper the only global credential helper for url and match on the full path."""
        key = f"credential.{url.rstrip('/')}"
        try:
            self.output("config", "--global", "--unset-all", f"{key}.helper")
        except GitCommandError as e:
            # 5: the key was not set
            if e.exit_code != 5:
                raise
        self.output("config", "--global", "--add", f"{key}.helper", helper)
        self.output("config", "--global", "--replace-all", f"{key}.useHttpPath", "true")

    def reject_credential(self, host: str, path: str):
        """Drop credentials other helpers cached for host and path."""
        self.output("credential", "reject", input=f"protocol=https\nhost={host}\npath={path}\n\n")

    def current_branch(self) -> str:
        ref = self.output("symbolic-ref", "--quiet", "HEAD").strip()
        return ref[len("refs/heads/"):] if ref.startswith("refs/heads/") else ref

    def has_local_branch(self, branch: str) -> bool:
        try:
            self.output("rev-parse", "--verify", f"refs/heads/{branch}")
        except GitCommandError:
            return False
        return True

    def clone(self, url: str, target: str = "", extra_args: Optional[List[str]] = None):
        args = ["clone", url]
        if target:
            args.append(target)
        self.run(*(args + list(extra_args or [])))

    def add_remote(self, name: str, url: str, tracking_branches: Optional[List[str]] = None):
        args = ["remote", "add"]
        for branch in tracking_branches or []:
            args += ["-t", branch]
        self.run(*(args + [name, url]))

    def with_repo_dir(self, repo_dir: str) -> "GitClient":
        """A client operating on another working copy with the same streams."""
        client = GitClient(repo_dir, self.stdin, self.stdout, self.stderr)
        client._git_path = self._git_path
        return client
