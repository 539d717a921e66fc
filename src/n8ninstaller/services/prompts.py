"""Interactive prompt helpers for the n8n installer."""

from typing import Dict, Optional

from rich.console import Console
from rich.prompt import Confirm, Prompt

from n8ninstaller.errors import InstallerError


class PromptService:
    """Reads answers from the terminal unless they were supplied up front.

    ``presets`` maps a prompt key to a ready answer (from the CLI or the
    config file). With ``assume_yes`` every confirmation is accepted and a
    prompt without a preset or default is an error instead of a blocking read.
    """

    def __init__(self, console: Console, presets: Optional[Dict[str, str]] = None, assume_yes: bool = False):
        self.console = console
        self.presets = {key: value for key, value in (presets or {}).items() if value is not None}
        self.assume_yes = assume_yes

    def ask(self, key: str, question: str, default: Optional[str] = None, password: bool = False) -> str:
        if key in self.presets:
            return str(self.presets[key])

        if self.assume_yes:
            if default is None:
                raise InstallerError(
                    f"No value provided for '{key}' and prompts are disabled. "
                    f"Pass it on the command line or in the config file."
                )
            return default

        answer = Prompt.ask(
            question,
            console=self.console,
            default=default,
            password=password,
            show_default=not password,
        )
        return (answer or "").strip()

    def confirm(self, question: str = "Do you want to continue?", default: bool = False) -> bool:
        if self.assume_yes:
            return True
        return Confirm.ask(question, console=self.console, default=default)
