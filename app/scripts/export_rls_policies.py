"""
Export RLS Policies Script
Compiles the isolation rule set into Postgres row-level security statements.
Run after changing app/config/isolation_policies.py and apply the output as a migration.

    python -m app.scripts.export_rls_policies [--output policies.sql]
"""

import logging
from pathlib import Path
from typing import Optional

import typer

from app.config.isolation_policies import build_policy_registry
from app.core.policy_engine import render_policy_sql

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

cli = typer.Typer(add_completion=False, help="Print the RLS policies for the shared-schema mode.")


@cli.command()
def export(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to a file instead of stdout"),
):
    registry = build_policy_registry()
    for table, operations in registry.uncovered().items():
        names = ", ".join(op.value for op in operations)
        logger.warning(f"{table}: no policy for {names}; denied for every caller")

    sql = render_policy_sql(registry)
    if output is None:
        typer.echo(sql, nl=False)
        return
    output.write_text(sql)
    logger.info(f"Wrote policies for {len(registry.tables())} tables to {output}")


if __name__ == "__main__":
    cli()
