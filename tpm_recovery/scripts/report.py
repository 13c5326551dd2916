#!/usr/bin/env python3
"""
Console summary of a recovery session, rendered with Rich.
"""

from typing import Dict, Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tpm_recovery.core.constants import MANAGED_SPACES, SpaceSchema
from tpm_recovery.scripts.fixer import SpaceOutcome
from tpm_recovery.scripts.tpm_cli import format_index

_OUTCOME_STYLES = {
    SpaceOutcome.UNCHANGED: "green",
    SpaceOutcome.RESTORED: "cyan",
    SpaceOutcome.RESTORED_UNWRITTEN: "yellow",
    SpaceOutcome.FAILED: "red",
}


def build_summary_table(outcomes: Dict[int, SpaceOutcome], schemas: Iterable[SpaceSchema] = MANAGED_SPACES) -> Table:
    table = Table(title="TPM spaces")
    table.add_column("Index")
    table.add_column("Space")
    table.add_column("Result")
    table.add_column("Details")

    for schema in schemas:
        outcome = outcomes.get(schema.index)
        if outcome is None:
            table.add_row(format_index(schema.index), schema.name, "[dim]not processed[/dim]", "")
            continue
        style = _OUTCOME_STYLES[outcome]
        table.add_row(
            format_index(schema.index),
            schema.name,
            f"[{style}]{outcome.value}[/{style}]",
            outcome.message(),
        )
    return table


def render_summary(
    outcomes: Dict[int, SpaceOutcome],
    console: Optional[Console] = None,
    schemas: Iterable[SpaceSchema] = MANAGED_SPACES,
) -> None:
    """Print the per-space table and an overall verdict."""
    console = console or Console(stderr=True)
    console.print(build_summary_table(outcomes, schemas))

    failed = [index for index, outcome in outcomes.items() if outcome.is_failure]
    if failed:
        console.print(
            Panel(
                f"Recovery finished, but {len(failed)} space(s) could not be restored: "
                + ", ".join(format_index(i) for i in failed),
                title="TPM recovery",
                style="red",
            )
        )
    else:
        console.print(Panel("Recovery finished. The TPM is unowned.", title="TPM recovery", style="green"))
