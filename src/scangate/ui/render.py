"""Output rendering for the scangate CLI.

Plain, deterministic text is the default. When colour is allowed (no
``--no-color`` flag, no ``NO_COLOR`` env var, stdout is a TTY) tables and
verdicts are drawn with ``rich``.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from collections.abc import Sequence

_STATUS_STYLES = {
    "passed": "bold green",
    "succeeded": "green",
    "failed": "bold red",
    "skipped": "yellow",
    "partially_skipped": "bold yellow",
}


def _color_allowed(no_color_flag: bool) -> bool:
    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


class CLIRenderer:
    """Thin CLI output renderer; every method is safe in any environment."""

    def __init__(self, *, no_color: bool = False) -> None:
        self._color = _color_allowed(no_color)

    @property
    def color(self) -> bool:
        return self._color

    def _console(self) -> Console:
        return Console(file=sys.stdout, highlight=False)

    def heading(self, text: str) -> None:
        if self._color:
            self._console().print(escape(text), style="bold")
            return
        print(text)

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}")

    def text(self, line: str) -> None:
        print(line)

    def section(self, title: str) -> None:
        print(f"\n{title}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            print(f"  {prefix}{entry}")

    def status(self, label: str, value: str) -> None:
        """Print ``label: value`` with the value coloured by pipeline/stage status."""

        if self._color:
            style = _STATUS_STYLES.get(value, "")
            label_text = escape(label)
            self._console().print(
                f"{label_text}: [{style}]{value}[/]" if style else f"{label_text}: {escape(value)}"
            )
            return
        print(f"{label}: {value}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        if not rows:
            return
        if self._color:
            self._rich_table(headers, rows, title=title)
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            return "  ".join(
                (str(cells[i]) if i < len(cells) else "").ljust(widths[i]) for i in range(col_count)
            ).rstrip()

        if title:
            self.section(title)
        print(f"  {_pad(list(headers))}")
        print(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            print(f"  {_pad(list(row))}")

    def _rich_table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None,
    ) -> None:
        table = Table(title=title, title_justify="left", show_lines=False)
        for header in headers:
            table.add_column(header)
        for row in rows:
            table.add_row(
                *(
                    f"[{_STATUS_STYLES[cell]}]{cell}[/]" if cell in _STATUS_STYLES else escape(str(cell))
                    for cell in row
                )
            )
        self._console().print(table)


def create_renderer(*, no_color: bool = False) -> CLIRenderer:
    return CLIRenderer(no_color=no_color)


__all__ = ["CLIRenderer", "create_renderer"]
