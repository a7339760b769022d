"""
Interactive prompts built on rich.prompt. Every prompt refuses to run when
prompting is disabled or the terminal is not interactive.
"""

import logging
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, IntPrompt, Prompt

from ..cli.errors import AzdoError, CancelError

logger = logging.getLogger(__name__)


class NoPromptError(AzdoError):
    def __init__(self, message: str = ""):
        text = "prompts are disabled or the terminal is not interactive"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)


class Prompter:
    """Asks the user for input on the streams of an IOStreams instance."""

    def __init__(self, ios, disabled: bool = False):
        self.ios = ios
        self.disabled = disabled
        self._console = None

    def _console_for_prompt(self, message: str) -> Console:
        if self.disabled or not self.ios.can_prompt():
            raise NoPromptError(message)
        if self._console is None:
            self._console = Console(file=self.ios.out)
        return self._console

    def select(self, message: str, default: Optional[str], options: List[str]) -> int:
        """Return the index of the chosen option."""
        console = self._console_for_prompt(message)
        console.print(escape(message))
        for index, option in enumerate(options, start=1):
            console.print(f"  {index}. {escape(option)}")
        kwargs = {}
        if default in options:
            kwargs["default"] = options.index(default) + 1
        answer = IntPrompt.ask(
            "Choice",
            console=console,
            choices=[str(i) for i in range(1, len(options) + 1)],
            show_choices=False,
            stream=self.ios.in_,
            **kwargs,
        )
        return answer - 1

    def multi_select(self, message: str, defaults: List[str], options: List[str]) -> List[int]:
        """Return the sorted indices of the chosen options; an empty answer picks none."""
        console = self._console_for_prompt(message)
        console.print(escape(message))
        for index, option in enumerate(options, start=1):
            console.print(f"  {index}. {escape(option)}")
        default_text = ",".join(str(options.index(d) + 1) for d in defaults if d in options)
        while True:
            answer = Prompt.ask("Choices (comma separated)", console=console, default=default_text,
                                show_default=bool(default_text), stream=self.ios.in_)
            try:
                picked = sorted({int(part) - 1 for part in answer.split(",") if part.strip()})
            except ValueError:
                console.print("[red]Please enter numbers separated by commas[/red]")
                continue
            if all(0 <= i < len(options) for i in picked):
                return picked
            console.print("[red]Please enter valid option numbers[/red]")

    def input(self, message: str, default: str = "") -> str:
        console = self._console_for_prompt(message)
        return Prompt.ask(escape(message), console=console, default=default, stream=self.ios.in_)

    def password(self, message: str) -> str:
        console = self._console_for_prompt(message)
        return Prompt.ask(escape(message), console=console, password=True, stream=self.ios.in_)

    def confirm(self, message: str, default: bool = False) -> bool:
        console = self._console_for_prompt(message)
        return Confirm.ask(escape(message), console=console, default=default, stream=self.ios.in_)

    def confirm_deletion(self, required_value: str):
        """
        Make the user type required_value back before something is deleted.

        Raises:
            CancelError: The answer did not match
        """
        message = f"Type {required_value} to confirm deletion"
        console = self._console_for_prompt(message)
        answer = Prompt.ask(escape(message), console=console, stream=self.ios.in_)
        if answer.strip() != required_value:
            raise CancelError(f"you entered {answer.strip()!r}")

    def auth_token(self) -> str:
        token = self.password("Paste your authentication token")
        if not token.strip():
            raise AzdoError("token is required")
        return token.strip()

    def input_organization_name(self) -> str:
        name = self.input("Azure DevOps organization name")
        if not name.strip():
            raise AzdoError("organization name is required")
        return name.strip()
