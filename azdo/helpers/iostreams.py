"""
Standard streams with TTY detection, colour, pager, progress indicator and
alternate screen buffer handling.
"""

import io
import logging
import os
import shlex
import shutil
import signal
import subprocess
import sys
import threading
from typing import Callable

from rich.color import ColorSystem
from rich.console import Console
from rich.errors import StyleSyntaxError
from rich.style import Style

from ..cli.errors import ClosedPagerPipe
from ..config.config import Config

logger = logging.getLogger(__name__)

ALTERNATE_SCREEN_ON = "\x1b[?1049h"
ALTERNATE_SCREEN_OFF = "\x1b[?1049l"
DEFAULT_WIDTH = 80


class ColorScheme:
    """Wraps text in ANSI styles when colour is enabled."""

    def __init__(self, enabled: bool):
        self.enabled = enabled

    def _render(self, style: str, text) -> str:
        text = str(text)
        if not self.enabled:
            return text
        return Style.parse(style).render(text, color_system=ColorSystem.STANDARD)

    def bold(self, text) -> str:
        return self._render("bold", text)

    def red(self, text) -> str:
        return self._render("red", text)

    def green(self, text) -> str:
        return self._render("green", text)

    def yellow(self, text) -> str:
        return self._render("yellow", text)

    def cyan(self, text) -> str:
        return self._render("cyan", text)

    def blue(self, text) -> str:
        return self._render("blue", text)

    def magenta(self, text) -> str:
        return self._render("magenta", text)

    def gray(self, text) -> str:
        return self._render("bright_black", text)

    def success_icon(self) -> str:
        return self.green("✓")

    def warning_icon(self) -> str:
        return self.yellow("!")

    def failure_icon(self) -> str:
        return self.red("X")

    def color_from_string(self, name: str) -> Callable[[str], str]:
        """Return a colouring function for a rich style name such as "red" or "bold cyan"."""
        def colorize(text):
            try:
                return self._render(name, text)
            except StyleSyntaxError:
                return str(text)
        return colorize


class _PagerWriter(io.TextIOBase):
    """Text stream feeding the pager; a broken pipe means the pager exited."""

    def __init__(self, pipe):
        self.pipe = pipe

    def write(self, text):
        try:
            return self.pipe.write(text)
        except BrokenPipeError as e:
            raise ClosedPagerPipe("pager closed") from e

    def flush(self):
        try:
            self.pipe.flush()
        except BrokenPipeError as e:
            raise ClosedPagerPipe("pager closed") from e

    def writable(self):
        return True


def _isatty(stream) -> bool:
    try:
        return bool(stream.isatty())
    except (AttributeError, ValueError):
        return False


class IOStreams:
    """The three standard streams plus terminal capabilities."""

    def __init__(self, stdin=None, stdout=None, stderr=None):
        self.in_ = stdin if stdin is not None else sys.stdin
        self.out = stdout if stdout is not None else sys.stdout
        self.err_out = stderr if stderr is not None else sys.stderr
        self._original_out = self.out

        self._stdin_tty = None
        self._stdout_tty = None
        self._stderr_tty = None
        self._color_enabled = None
        self._terminal_width = None

        self._pager_command = ""
        self._pager_process = None
        self._never_prompt = False

        self._progress_enabled = False
        self._progress = None

        self._alt_lock = threading.Lock()
        self._alt_screen_enabled = False
        self._alt_screen_active = False
        self._previous_sigint = None

    @classmethod
    def system(cls) -> "IOStreams":
        ios = cls(sys.stdin, sys.stdout, sys.stderr)
        force = Config.force_tty()
        if force and force not in ("0", "false"):
            ios.set_stdout_tty(True)
            ios.set_stderr_tty(True)
            if force.isdigit():
                ios._terminal_width = int(force)
            elif force.endswith("%") and force[:-1].isdigit():
                columns = shutil.get_terminal_size((DEFAULT_WIDTH, 24)).columns
                ios._terminal_width = columns * int(force[:-1]) // 100
        ios._progress_enabled = ios.is_stderr_tty()
        ios._alt_screen_enabled = ios.is_stdout_tty()
        return ios

    @classmethod
    def test(cls):
        """In-memory streams that are not terminals: (ios, stdin, stdout, stderr)."""
        stdin, stdout, stderr = io.StringIO(), io.StringIO(), io.StringIO()
        ios = cls(stdin, stdout, stderr)
        ios.set_stdin_tty(False)
        ios.set_stdout_tty(False)
        ios.set_stderr_tty(False)
        return ios, stdin, stdout, stderr

    # TTY detection

    def is_stdin_tty(self) -> bool:
        return self._stdin_tty if self._stdin_tty is not None else _isatty(self.in_)

    def set_stdin_tty(self, value: bool):
        self._stdin_tty = value

    def is_stdout_tty(self) -> bool:
        return self._stdout_tty if self._stdout_tty is not None else _isatty(self._original_out)

    def set_stdout_tty(self, value: bool):
        self._stdout_tty = value

    def is_stderr_tty(self) -> bool:
        return self._stderr_tty if self._stderr_tty is not None else _isatty(self.err_out)

    def set_stderr_tty(self, value: bool):
        self._stderr_tty = value

    def color_enabled(self) -> bool:
        if self._color_enabled is not None:
            return self._color_enabled
        if Config.no_color():
            return False
        if Config.clicolor_force():
            return True
        if Config.clicolor() == "0":
            return False
        return self.is_stdout_tty()

    def set_color_enabled(self, value: bool):
        self._color_enabled = value

    def color_scheme(self) -> ColorScheme:
        return ColorScheme(self.color_enabled())

    def terminal_width(self) -> int:
        if self._terminal_width:
            return self._terminal_width
        if self.is_stdout_tty():
            return shutil.get_terminal_size((DEFAULT_WIDTH, 24)).columns
        return DEFAULT_WIDTH

    def set_terminal_width(self, width: int):
        self._terminal_width = width

    # Prompting

    def set_never_prompt(self, value: bool):
        self._never_prompt = value

    def can_prompt(self) -> bool:
        if self._never_prompt:
            return False
        return self.is_stdin_tty() and self.is_stdout_tty()

    # Pager

    def set_pager(self, command: str):
        self._pager_command = command or ""

    def start_pager(self):
        if not self._pager_command or self._pager_command == "cat" or not self.is_stdout_tty():
            return
        env = dict(os.environ)
        env.pop("PAGER", None)
        env.setdefault("LESS", "FRX")
        env.setdefault("LV", "-c")
        args = shlex.split(self._pager_command)
        logger.debug("Starting pager %s", args)
        self._pager_process = subprocess.Popen(
            args, stdin=subprocess.PIPE, stdout=self._original_out, env=env, text=True)
        self.out = _PagerWriter(self._pager_process.stdin)

    def stop_pager(self):
        if self._pager_process is None:
            return
        try:
            self._pager_process.stdin.close()
        except BrokenPipeError:
            pass
        self._pager_process.wait()
        self._pager_process = None
        self.out = self._original_out

    # Progress indicator

    def set_progress_enabled(self, value: bool):
        self._progress_enabled = value

    def start_progress_indicator(self, label: str = ""):
        if not self._progress_enabled:
            return
        if self._progress is not None:
            self._progress.update(label)
            return
        console = Console(file=self.err_out, force_terminal=True)
        self._progress = console.status(label, spinner="dots")
        self._progress.start()

    def stop_progress_indicator(self):
        if self._progress is None:
            return
        self._progress.stop()
        self._progress = None

    # Alternate screen buffer

    def set_alternate_screen_buffer_enabled(self, value: bool):
        self._alt_screen_enabled = value

    def start_alternate_screen_buffer(self):
        if not self._alt_screen_enabled:
            return
        with self._alt_lock:
            if self._alt_screen_active:
                return
            self.out.write(ALTERNATE_SCREEN_ON)
            self.out.flush()
            self._alt_screen_active = True
            try:
                self._previous_sigint = signal.signal(signal.SIGINT, self._restore_on_interrupt)
            except ValueError:
                # signal handlers can only be installed from the main thread
                self._previous_sigint = None

    def stop_alternate_screen_buffer(self):
        with self._alt_lock:
            if not self._alt_screen_active:
                return
            self.out.write(ALTERNATE_SCREEN_OFF)
            self.out.flush()
            self._alt_screen_active = False
            if self._previous_sigint is not None:
                signal.signal(signal.SIGINT, self._previous_sigint)
                self._previous_sigint = None

    def _restore_on_interrupt(self, signum, frame):
        previous = self._previous_sigint
        self.stop_alternate_screen_buffer()
        if callable(previous):
            previous(signum, frame)
        else:
            raise KeyboardInterrupt

    # Files

    def read_user_file(self, path: str) -> str:
        """Read a file named by the user; "-" means standard input."""
        if path == "-":
            return self.in_.read()
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
