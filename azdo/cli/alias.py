"""
Alias expansion: in-process "$N" templates and "!" shell aliases.
"""

import io
import logging
import os
import platform
import re
import shlex
import shutil
import subprocess
from typing import List

from .errors import AzdoError, ExternalCommandExitError

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\$(\d+)")
MAX_ALIAS_DEPTH = 5


class AliasExpansionError(AzdoError):
    pass


def is_shell_alias(expansion: str) -> bool:
    return expansion.startswith("!")


def expand_alias(expansion: str, args: List[str]) -> List[str]:
    """
    Substitute $1..$N with args and tokenize the result with POSIX rules.

    Arguments not consumed by a placeholder are appended in order.
    """
    used = set()

    def substitute(match):
        index = int(match.group(1))
        if 1 <= index <= len(args):
            used.add(index)
            return args[index - 1]
        return match.group(0)

    expanded = PLACEHOLDER.sub(substitute, expansion)
    if PLACEHOLDER.search(expanded):
        raise AliasExpansionError(f"not enough arguments for alias: {expansion}")

    try:
        tokens = shlex.split(expanded)
    except ValueError as e:
        raise AliasExpansionError(f"failed to parse alias expansion {expansion!r}: {e}") from e
    tokens.extend(arg for index, arg in enumerate(args, start=1) if index not in used)
    return tokens


def find_sh() -> str:
    path = shutil.which("sh")
    if path:
        return path
    if platform.system() == "Windows":
        git = shutil.which("git")
        if git:
            # <git>/cmd/git.exe -> <git>/bin/sh.exe
            candidate = os.path.join(os.path.dirname(os.path.dirname(git)), "bin", "sh.exe")
            if os.path.exists(candidate):
                return candidate
        raise AliasExpansionError(
            "unable to locate sh to execute the shell alias with. "
            "The sh.exe interpreter is typically distributed with Git for Windows.")
    raise AliasExpansionError("unable to locate sh to execute shell alias with")


def expand_shell_alias(expansion: str, args: List[str], sh: str = "sh") -> List[str]:
    """!cmd plus args -> [sh, -c, cmd, --, args...]"""
    command = [sh, "-c", expansion[1:]]
    if args:
        command.append("--")
        command.extend(args)
    return command


def _inheritable(stream):
    # in-memory streams cannot be handed to a child process
    try:
        stream.fileno()
    except (AttributeError, io.UnsupportedOperation, OSError):
        return None
    return stream


def run_shell_alias(expansion: str, args: List[str], ios):
    command = expand_shell_alias(expansion, args, find_sh())
    logger.debug("Running shell alias %s", command)
    result = subprocess.run(
        command, stdin=_inheritable(ios.in_), stdout=_inheritable(ios.out), stderr=_inheritable(ios.err_out))
    if result.returncode != 0:
        raise ExternalCommandExitError(result.returncode, expansion[1:])
