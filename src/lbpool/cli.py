"""Load-balancer pool CLI (lbpool).

Usage:
    lbpool create pool.yaml                          # Create and wait for ACTIVE
    lbpool read POOL_ID                              # Print current state
    lbpool update POOL_ID pool.yaml --previous s.yaml
    lbpool delete POOL_ID                            # Delete and wait until gone
    lbpool import POOL_ID                            # Adopt an existing pool

Connection settings come from the environment (see Config.from_env).
Resulting pool state is written to stdout as YAML; logs go to stderr.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import click

from .client import OctaviaClient
from .config import Config, ConfigurationError
from .main import EXIT_CONFIGURATION_ERROR, run_operation, setup_logging
from .models import PoolState
from .reconciler import PoolReconciler
from .spec_loader import SpecLoadError, dump_pool_state, load_pool_spec, load_pool_state

T = TypeVar("T")

timeout_option = click.option(
    "--timeout",
    type=click.IntRange(min=1),
    default=None,
    help="Overall timeout in seconds (defaults to the configured operation timeout).",
)


def _load_config() -> Config:
    try:
        return Config.from_env()
    except ConfigurationError as e:
        click.echo(str(e), err=True)
        sys.exit(EXIT_CONFIGURATION_ERROR)


def _execute(
    operation: str,
    action: Callable[[PoolReconciler], Awaitable[PoolState | None]],
    pool_id: str | None = None,
) -> None:
    """Run an operation against the configured endpoint and exit."""
    config = _load_config()
    with OctaviaClient(
        config.endpoint,
        config.auth_token,
        request_timeout_seconds=config.request_timeout_seconds,
    ) as client:
        result = asyncio.run(run_operation(operation, action, config, client, pool_id=pool_id))

    if result.state is not None:
        click.echo(dump_pool_state(result.state), nl=False)
    elif result.error is not None:
        click.echo(f"Error: {result.error}", err=True)
    sys.exit(result.exit_code)


def _load_or_exit(loader: Callable[[Path], T], path: Path) -> T:
    try:
        return loader(path)
    except SpecLoadError as e:
        click.echo(str(e), err=True)
        sys.exit(EXIT_CONFIGURATION_ERROR)


@click.group()
@click.version_option(version="0.1.0", prog_name="lbpool")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Reconcile load-balancer pools against the control plane."""
    setup_logging(logging.DEBUG if verbose else logging.INFO)


@cli.command()
@click.argument("spec_file", type=click.Path(path_type=Path))
@timeout_option
def create(spec_file: Path, timeout: int | None) -> None:
    """Create a pool from SPEC_FILE and wait for it to become active."""
    spec = _load_or_exit(load_pool_spec, spec_file)

    async def action(reconciler: PoolReconciler) -> PoolState:
        snapshot = await reconciler.create(spec, timeout_seconds=timeout)
        return PoolState.from_snapshot(snapshot, spec.dependency())

    _execute("create", action)


@cli.command()
@click.argument("pool_id")
def read(pool_id: str) -> None:
    """Print the current state of POOL_ID (nothing if it no longer exists)."""

    async def action(reconciler: PoolReconciler) -> PoolState | None:
        snapshot = await reconciler.read(pool_id)
        if snapshot is None:
            return None
        return PoolState.from_snapshot(snapshot)

    _execute("read", action, pool_id=pool_id)


@cli.command()
@click.argument("pool_id")
@click.argument("spec_file", type=click.Path(path_type=Path))
@click.option(
    "--previous",
    "previous_file",
    required=True,
    type=click.Path(path_type=Path),
    help="State file written by a previous create/update/import.",
)
@timeout_option
def update(pool_id: str, spec_file: Path, previous_file: Path, timeout: int | None) -> None:
    """Apply changed mutable fields of SPEC_FILE to POOL_ID."""
    desired = _load_or_exit(load_pool_spec, spec_file)
    previous = _load_or_exit(load_pool_state, previous_file)

    async def action(reconciler: PoolReconciler) -> PoolState:
        previous_spec = previous.to_spec()
        snapshot = await reconciler.update(
            pool_id, previous_spec, desired, timeout_seconds=timeout
        )
        return PoolState.from_snapshot(snapshot, previous_spec.dependency())

    _execute("update", action, pool_id=pool_id)


@cli.command()
@click.argument("pool_id")
@timeout_option
def delete(pool_id: str, timeout: int | None) -> None:
    """Delete POOL_ID and wait until it is gone."""

    async def action(reconciler: PoolReconciler) -> None:
        await reconciler.delete(pool_id, timeout_seconds=timeout)
        return None

    _execute("delete", action, pool_id=pool_id)


@cli.command(name="import")
@click.argument("pool_id")
def import_(pool_id: str) -> None:
    """Adopt existing POOL_ID and print its state."""

    async def action(reconciler: PoolReconciler) -> PoolState:
        return await reconciler.import_pool(pool_id)

    _execute("import", action, pool_id=pool_id)


if __name__ == "__main__":
    cli()
