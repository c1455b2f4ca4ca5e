# SPDX-License-Identifier: AGPL-3.0

from collections import Counter
from dataclasses import dataclass, field

from rich import get_console
from rich.console import Console
from rich.markup import escape
from rich.status import Status

from zevm.execution import Execution
from zevm.outcomes import HaltReason


def render_halt(reason: HaltReason) -> str:
    color = "green" if reason == HaltReason.STOP else "red"
    return f"[{color}]{reason.name}[/{color}]"


@dataclass(frozen=True, eq=False, order=False, slots=True)
class UI:
    """CLI output: a status line while exploring, and one entry per halted path."""

    status: Status
    console: Console = field(default_factory=get_console)

    def start_status(self):
        self.status.start()

    def update_status(self, status: str):
        self.status.update(status)

    def stop_status(self):
        self.status.stop()

    def print(self, *args, **kwargs):
        self.console.print(*args, **kwargs)

    def print_halted(self, idx: int, ex: Execution, full_state: bool = False) -> None:
        self.print(
            f"{render_halt(ex.halted)} path {idx}: pc={ex.pc}, stack={len(ex.stack)}"
        )

        # z3 terms and dumps contain brackets, which rich would read as markup
        if full_state:
            self.print(escape(ex.dump()))
        else:
            self.print(escape(f"Path:\n{ex.path}"))

    def print_summary(self, halts: Counter) -> None:
        counts = ", ".join(
            f"{reason.name}: {halts[reason]}" for reason in HaltReason if halts[reason]
        )
        self.print(f"Explored {halts.total()} paths ({counts or 'none'})")


ui: UI = UI(Status(""))
