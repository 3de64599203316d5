"""Command line interface for running and inspecting testflow."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from testflow.config import load_config
from testflow.controller import Controller
from testflow.errors import LockFieldMissingError, MalformedStepLabelError, NotFoundError
from testflow.flavors import FLAVORS, get_flavor
from testflow.lock import ExecutionLock
from testflow.progress import ProgressTracker, step_index_of
from testflow.store import get_store

app = typer.Typer(help="CLI for the testflow operator")

# Command groups
lock_app = typer.Typer(help="Commands for inspecting the execution lock")
instance_app = typer.Typer(help="Commands for inspecting workload instances")

app.add_typer(lock_app, name="lock")
app.add_typer(instance_app, name="instance")


@app.callback()
def main() -> None:
    """testflow CLI entry point."""
    pass


@app.command("run")
def run(
    namespace: Optional[str] = typer.Option(None, help="Only watch this namespace"),
    workers: Optional[int] = typer.Option(None, help="Concurrent reconcile workers"),
    lifespan: Optional[float] = typer.Option(
        None, help="Stop after this many seconds (default: run indefinitely)"
    ),
) -> None:
    """
    Run the controller for every registered workload flavor.

    Watches the configured store and reconciles Tempest, Tobiko, AnsibleTest
    and HorizonTest instances until stopped or the lifespan expires.

    Example:
        testflow run --namespace openstack --workers 4
    """
    config = load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if namespace:
        config.namespace = namespace

    store = get_store()
    controller = Controller(store, [cls() for cls in FLAVORS.values()], config)
    typer.echo(f"Starting controller (namespace: {config.namespace or 'all'})")
    asyncio.run(controller.start(lifespan=lifespan, workers=workers))


@lock_app.command("show")
def lock_show(
    namespace: str = typer.Option("default", help="Namespace of the lock record"),
) -> None:
    """Show which instance currently holds the execution lock."""
    config = load_config()
    lock = ExecutionLock(get_store(), config.lock)
    try:
        owner = asyncio.run(lock.owner(namespace))
    except LockFieldMissingError as exc:
        typer.secho(f"Malformed lock record: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if owner is None:
        typer.echo("No lock held")
        return
    typer.echo(f"{lock.name} in {namespace} held by {owner}")


@instance_app.command("show")
def instance_show(
    kind: str,
    name: str,
    namespace: str = typer.Option("default", help="Namespace of the instance"),
) -> None:
    """
    Show the conditions and the latest step artifact of an instance.

    Example:
        testflow instance show tempest smoke --namespace openstack
        # Output: Tempest openstack/smoke
        #         - Ready: Unknown (Init) Setup started
        #         Latest step: smoke-s00-api (step 0, Running)
    """
    try:
        flavor = get_flavor(kind)
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    store = get_store()

    async def _load():
        instance = await store.get_instance(flavor.model, namespace, name)
        latest = await ProgressTracker(store).latest_artifact(instance, flavor.artifact_kind)
        return instance, latest

    try:
        instance, latest = asyncio.run(_load())
    except NotFoundError:
        typer.echo("Instance not found")
        raise typer.Exit(code=1)
    except MalformedStepLabelError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"{instance.kind} {instance.namespace}/{instance.name}")
    for cond in instance.status.conditions:
        typer.echo(
            f"- {cond.type}: {cond.status.value} ({cond.reason}) {cond.message}".rstrip()
        )
    if latest is None:
        typer.echo("No step artifacts")
    else:
        typer.echo(
            f"Latest step: {latest.name} "
            f"(step {step_index_of(latest)}, {latest.phase.value})"
        )


@app.command("flavors")
def flavors() -> None:
    """List the workload kinds this operator reconciles."""
    for kind, flavor_cls in FLAVORS.items():
        typer.echo(f"{kind}\t{flavor_cls.model.plural}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
