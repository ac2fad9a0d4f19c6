"""Main entry point for the quotagate CLI.

Sets up the Typer application, wires the registry and dispatcher from
configuration (Composition Root), and exposes policy tooling commands.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer
from typing_extensions import Annotated

from quotagate.domain.errors import DispatchError
from quotagate.domain.models.outcome import RemoteSuccess
from quotagate.infrastructure.cli.display import ConsoleDisplay
from quotagate.infrastructure.config.defaults import ORDER_SERVICE_POLICIES
from quotagate.infrastructure.config.policy_loader import load_policy_file
from quotagate.infrastructure.config.settings import (
    get_backoff_policy, get_config, get_max_retries, get_policies_file, load_configuration,
)
from quotagate.infrastructure.monitoring.logger_setup import setup_logging
from quotagate.infrastructure.resilience.policy_registry import RatePolicyRegistry
from quotagate.infrastructure.resilience.throttled_dispatcher import ThrottledDispatcher

logger = logging.getLogger(__name__)


# --- Dependency Injection (Manual) ---

def load_policy_entries(policies_file: Optional[Path] = None) -> List[Tuple[str, Any]]:
    """Picks the policy table: explicit file, configured file, then the built-in defaults."""
    path = policies_file or get_policies_file()
    if path:
        return load_policy_file(path)
    logger.debug("No policy file configured; using the order-service defaults.")
    return list(ORDER_SERVICE_POLICIES)


def create_dependencies(policies_file: Optional[Path] = None, clock=None, sleep=None) -> Dict[str, Any]:
    """Creates and wires up the registry and dispatcher.

    Raises:
        ConfigurationError: If the policy table or settings are invalid.
    """
    load_configuration()
    setup_logging(
        log_level=get_config('logging.level', 'WARNING'),
        log_file=get_config('logging.file'),
        log_format=get_config('logging.format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
    )

    dependencies: Dict[str, Any] = {}
    clock_kwargs = {'clock': clock} if clock else {}
    dependencies['registry'] = RatePolicyRegistry(load_policy_entries(policies_file), **clock_kwargs)

    dispatcher_kwargs = dict(clock_kwargs)
    if sleep:
        dispatcher_kwargs['sleep'] = sleep
    dependencies['dispatcher'] = ThrottledDispatcher(
        dependencies['registry'],
        max_retries=get_max_retries(),
        backoff=get_backoff_policy(),
        **dispatcher_kwargs,
    )
    return dependencies


class VirtualClock:
    """Monotonic stand-in that only moves when something sleeps on it."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


# --- Typer App Definition ---
app = typer.Typer(
    name="quotagate",
    help="quotagate: inspect, validate and simulate per-action rate-limit policies.",
    add_completion=False,
)

PoliciesOption = Annotated[
    Optional[Path],
    typer.Option("--policies", "-p", help="YAML policy file. Defaults to throttle.policies_file or the built-in table.")
]


@app.command()
def show(policies: PoliciesOption = None):
    """Show the effective policy table."""
    ui = ConsoleDisplay()
    try:
        registry = create_dependencies(policies)['registry']
    except DispatchError as e:
        ui.display_error(str(e))
        raise typer.Exit(code=1)
    ui.display_registry(registry)


@app.command()
def validate(
    file: Annotated[Path, typer.Argument(help="YAML policy file to validate.")],
):
    """Validate a policy file, exiting non-zero on configuration errors."""
    ui = ConsoleDisplay()
    try:
        registry = create_dependencies(file)['registry']
    except DispatchError as e:
        ui.display_error(f"Invalid policy file: {e}")
        raise typer.Exit(code=1)
    ui.display_info(f"OK: {len(registry)} actions, {len(registry.buckets)} buckets")


@app.command()
def simulate(
    action: Annotated[str, typer.Argument(help="Action to dispatch.")],
    calls: Annotated[int, typer.Option("--calls", "-n", min=1, help="Number of calls to simulate.")] = 10,
    policies: PoliciesOption = None,
):
    """Simulate back-to-back dispatches on a virtual clock and print admission times."""
    ui = ConsoleDisplay()
    clock = VirtualClock()
    try:
        dispatcher: ThrottledDispatcher = create_dependencies(policies, clock=clock, sleep=clock.sleep)['dispatcher']
    except DispatchError as e:
        ui.display_error(str(e))
        raise typer.Exit(code=1)

    admissions: List[Tuple[int, float]] = []

    def record(number: int) -> RemoteSuccess:
        admissions.append((number, clock.now))
        return RemoteSuccess(number)

    async def run() -> None:
        for number in range(1, calls + 1):
            await dispatcher.dispatch(action, lambda n=number: record(n))

    try:
        asyncio.run(run())
    except DispatchError as e:
        ui.display_error(str(e))
        raise typer.Exit(code=1)
    ui.display_schedule(action, admissions)


def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
