# libero_installer/ui.py

from typing import List, Optional

from rich.console import Console, RenderableType
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.theme import Theme

theme = Theme({
    "title": "bold cyan",
    "error": "bold red",
    "warning": "yellow",
    "success": "green",
    "prompt": "yellow",
})

CANCEL_KEYS = ("q", "b")


class WizardUI:
    """
    Terminal dialogs used by the installer: modal messages, yes/no confirmation,
    single-select menus and plain or masked text input.

    Ctrl-C or Ctrl-D at any prompt counts as a cancel: menus and inputs return
    None and confirmations return False.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(theme=theme)

    def show(self, renderable: RenderableType):
        self.console.print(renderable)

    def message(self, title: str, text: str, style: str = "title"):
        """Shows a boxed message and waits for Enter."""
        self.console.print(Panel(text, title=f"[{style}]{title}[/]", border_style=style, expand=False))
        try:
            Prompt.ask("[prompt]Press Enter to continue[/]", console=self.console, default="", show_default=False)
        except (KeyboardInterrupt, EOFError):
            self.console.print()

    def error(self, title: str, text: str):
        self.message(title, text, style="error")

    def confirm(self, title: str, text: str, default: bool = False) -> bool:
        self.console.print(Panel(text, title=f"[warning]{title}[/]", border_style="warning", expand=False))
        try:
            return Confirm.ask("[prompt]Proceed?[/]", console=self.console, default=default)
        except (KeyboardInterrupt, EOFError):
            self.console.print()
            return False

    def menu(self, title: str, subtitle: str, items: List[str], selected: int = 0) -> Optional[int]:
        """
        Shows a numbered list and returns the 0-based index of the chosen item,
        or None when the user cancels ('q', 'b', Ctrl-C).
        """
        table = Table(title=title, caption=subtitle, show_header=False, title_style="title")
        table.add_column("Index", justify="right", style="cyan", no_wrap=True)
        table.add_column("Item")
        for i, item in enumerate(items):
            table.add_row(str(i + 1), item)
        self.console.print(table)

        default = str(min(max(selected, 0), len(items) - 1) + 1) if items else None
        while True:
            try:
                answer = Prompt.ask("[prompt]Select an entry ('q' to go back)[/]", console=self.console, default=default)
            except (KeyboardInterrupt, EOFError):
                self.console.print()
                return None

            answer = (answer or "").strip().lower()
            if answer in CANCEL_KEYS:
                return None
            try:
                index = int(answer) - 1
            except ValueError:
                self.console.print("Invalid input. Please enter a number.", style="error")
                continue
            if 0 <= index < len(items):
                return index
            self.console.print("Invalid selection. Please enter a valid index.", style="error")

    def prompt_input(self, title: str, prompt: str, default: str = "", secret: bool = False) -> Optional[str]:
        """Reads one line of text; `secret` hides what is typed."""
        self.console.print(f"[title]{title}[/]")
        try:
            if secret:
                return Prompt.ask(f"[prompt]{prompt}[/]", console=self.console, password=True)
            return Prompt.ask(f"[prompt]{prompt}[/]", console=self.console, default=default, show_default=bool(default))
        except (KeyboardInterrupt, EOFError):
            self.console.print()
            return None
