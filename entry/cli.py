"""
CLI Entry Adapter.

Responsibility:
- Receive user input from terminal
- Normalize to EntryRequest contract
- Render pipeline replies
- NO command resolution, NO domain logic
"""

import uuid

from rich.console import Console
from rich.text import Text

from shared.models import CommandResult, EntryRequest

_STATUS_STYLES = {
    "ok": "green",
    "unavailable": "yellow",
    "failed": "bold red",
}


class CLIAdapter:
    """Command-line entry adapter."""

    def __init__(self, session_id: str | None = None, locale: str | None = None, console: Console | None = None):
        self.session_id = session_id or uuid.uuid4().hex[:16]
        self.locale = locale
        self.console = console or Console()

    def read_input(self, raw_input: str) -> EntryRequest:
        """Normalize raw CLI input to EntryRequest."""
        return EntryRequest(
            session_id=self.session_id,
            input_text=raw_input.strip(),
            locale=self.locale,
            metadata={"source": "cli"},
        )

    def render(self, result: CommandResult) -> None:
        style = _STATUS_STYLES.get(result.status, "white")
        self.console.print(Text(result.response_text, style=style if result.status != "ok" else ""))
        self.console.print(Text(f"[{result.route}]", style=f"dim {style}"))
        self.console.print()
