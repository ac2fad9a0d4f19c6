import logging
from typing import List, Optional, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.text import Text
from rich.table import Table

from quotagate.domain.models.policy import AliasPolicy
from quotagate.infrastructure.resilience.policy_registry import RatePolicyRegistry

logger = logging.getLogger(__name__)


def _fmt_seconds(seconds: float) -> str:
    if seconds == float("inf"):
        return "never"
    return f"{seconds:.2f}s"


class ConsoleDisplay:
    """Renders policy tables, schedules and messages with rich."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_registry(self, registry: RatePolicyRegistry, title: str = "Rate policies") -> None:
        """Shows one row per action, with alias rows pointing at their bucket owner."""
        table = Table(title=title, box=ROUNDED)
        table.add_column("Action", style="bold")
        table.add_column("Kind")
        table.add_column("Burst", justify="right")
        table.add_column("Restore rate /s", justify="right")
        table.add_column("Bucket owner")
        table.add_column("Per unit", justify="right")

        for action, policy in registry.policies.items():
            owner = registry.bucket_owner(action)
            direct = registry.policy_for(owner)
            kind = "alias" if isinstance(policy, AliasPolicy) else "direct"
            table.add_row(
                action,
                kind,
                f"{direct.burst_capacity:g}",
                f"{direct.restore_rate:g}",
                owner,
                _fmt_seconds(direct.seconds_per_unit),
            )
        self._console.print(table)

    def display_schedule(self, action: str, admissions: List[Tuple[int, float]]) -> None:
        """Shows the virtual time at which each simulated call was admitted."""
        table = Table(title=f"Admission schedule for '{action}'", box=SIMPLE)
        table.add_column("Call", justify="right")
        table.add_column("Admitted at", justify="right")
        table.add_column("Waited", justify="right")
        previous = 0.0
        for number, at in admissions:
            table.add_row(str(number), f"{at:.2f}s", f"{at - previous:.2f}s")
            previous = at
        self._console.print(table)

    def display_error(self, error_message: str) -> None:
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self._console.print(panel)

    def display_info(self, info_message: str) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self._console.print(panel)
