#!/usr/bin/env python3
"""
no8sctl - Plan and apply cloud resource manifests.

Manifests are YAML files listing resources by type and name:

    resources:
      - type: aws_sagemaker_endpoint_configuration
        name: main
        config:
          production_variants:
            - model_name: my-model
              instance_type: ml.t2.medium
              initial_instance_count: 1

State is kept in a JSON file next to the manifest (``--state``).
"""

import asyncio
import json
import logging
import re
import sys
from typing import Any, Dict, List

import click
import yaml
from pydantic import BaseModel, Field, ValidationError as ModelValidationError
from pydantic import field_validator, model_validator
from tabulate import tabulate

from no8s_provider.clients import ClientFactory
from no8s_provider.config import get_config
from no8s_provider.errors import ProviderError
from no8s_provider.events import EventBus
from no8s_provider.resources.registry import get_registry, register_builtin_resources
from no8s_provider.state import StateStore
from no8s_provider.workspace import Workspace

logger = logging.getLogger(__name__)

DEFAULT_STATE_PATH = "no8s.state.json"

NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_-]*$")
TYPE_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")

# Errors caused by the manifest rather than by a service
INPUT_ERRORS = (ModelValidationError, ProviderError, ValueError, yaml.YAMLError)


class ManifestResource(BaseModel):
    """One resource in a manifest."""

    type: str = Field(
        ..., description="Resource type", examples=["aws_devicefarm_upload"]
    )
    name: str = Field(..., description="Name unique within its type", examples=["app"])
    config: Dict[str, Any] = Field(
        default_factory=dict, description="Desired attributes"
    )

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if not TYPE_PATTERN.match(v):
            raise ValueError("type must be lowercase letters, digits and underscores")
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not NAME_PATTERN.match(v):
            raise ValueError(
                "name must start with a letter or underscore and contain only "
                "letters, digits, underscores and dashes"
            )
        return v

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"


class Manifest(BaseModel):
    """A set of resources to manage together."""

    resources: List[ManifestResource] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_addresses(self) -> "Manifest":
        seen = set()
        for resource in self.resources:
            if resource.address in seen:
                raise ValueError(f"duplicate resource {resource.address}")
            seen.add(resource.address)
        return self

    def to_config(self) -> Dict[str, Dict[str, Any]]:
        """Desired attributes keyed by resource address."""
        return {r.address: r.config for r in self.resources}


def load_manifest(filename: str) -> Manifest:
    """Read a YAML (or JSON) manifest file."""
    with open(filename, "r") as f:
        if filename.endswith(".json"):
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    return Manifest.model_validate(data or {})


def build_workspace(state_path: str) -> Workspace:
    config = get_config()
    register_builtin_resources(config.resources)
    return Workspace(
        get_registry(),
        ClientFactory(config.aws),
        config=config,
        state=StateStore.load(state_path),
    )


async def run_with_events(workspace: Workspace, operation, show_events: bool):
    """
    Await ``operation()``, echoing lifecycle events as JSON lines to stderr
    while it runs when ``show_events`` is set.
    """
    if not show_events:
        return await operation()

    bus = EventBus()
    workspace.event_bus = bus
    subscriber_id, subscription = bus.subscribe()

    async def echo_events():
        async for event in subscription:
            click.echo(event.to_json(), err=True)

    consumer = asyncio.create_task(echo_events())
    try:
        return await operation()
    finally:
        bus.unsubscribe(subscriber_id)
        await consumer


def fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def plan_rows(plans) -> List[List[str]]:
    rows = []
    for address, plan in plans.items():
        changes = ""
        if plan.diff is not None:
            changes = ", ".join(c.attribute for c in plan.diff.changes)
        rows.append([address, plan.action, plan.identifier or "", changes])
    return rows


@click.group()
@click.option(
    "--log-level", default=None, help="Log level (default: $LOG_LEVEL or INFO)"
)
def cli(log_level):
    """no8sctl - declarative cloud resource management"""
    level = log_level or get_config().logging.log_level
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@cli.command()
def types():
    """List available resource types"""
    config = get_config()
    register_builtin_resources(config.resources)
    registry = get_registry()

    rows = []
    for name in registry.list_types():
        info = registry.get_info(name)
        rows.append(
            [
                info["name"],
                info["service"],
                info["version"],
                info["id_attribute"],
                "yes" if info["updatable"] else "no",
            ]
        )
    click.echo(
        tabulate(
            rows,
            headers=["Type", "Service", "Version", "Identifier", "Updatable"],
            tablefmt="grid",
        )
    )


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
def validate(filename):
    """Validate a manifest without calling any service"""
    try:
        manifest = load_manifest(filename)
        config = get_config()
        register_builtin_resources(config.resources)
        Workspace(get_registry(), {}, config=config).validate(manifest.to_config())
    except INPUT_ERRORS as e:
        fail(str(e))
    click.echo(f"{filename}: {len(manifest.resources)} resource(s) valid")


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.option("--state", "state_path", default=DEFAULT_STATE_PATH, help="State file")
def plan(filename, state_path):
    """Show what apply would do"""
    try:
        manifest = load_manifest(filename)
        workspace = build_workspace(state_path)
        plans = asyncio.run(workspace.plan(manifest.to_config()))
    except INPUT_ERRORS as e:
        fail(str(e))

    click.echo(
        tabulate(
            plan_rows(plans),
            headers=["Address", "Action", "Identifier", "Changes"],
            tablefmt="grid",
        )
    )
    pending = sum(1 for p in plans.values() if p.has_changes)
    click.echo(f"{pending} resource(s) to change")


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.option("--state", "state_path", default=DEFAULT_STATE_PATH, help="State file")
@click.option("--auto-approve", is_flag=True, help="Skip the confirmation prompt")
@click.option("--events", is_flag=True, help="Print lifecycle events to stderr")
def apply(filename, state_path, auto_approve, events):
    """Create, update or replace resources to match a manifest"""
    try:
        manifest = load_manifest(filename)
        workspace = build_workspace(state_path)
        config = manifest.to_config()
        plans = asyncio.run(workspace.plan(config))
    except INPUT_ERRORS as e:
        fail(str(e))

    if not any(p.has_changes for p in plans.values()):
        click.echo("No changes. Resources match the manifest.")
        return

    click.echo(
        tabulate(
            plan_rows(plans),
            headers=["Address", "Action", "Identifier", "Changes"],
            tablefmt="grid",
        )
    )
    if not auto_approve:
        click.confirm("Apply these changes?", abort=True)

    try:
        actions = asyncio.run(
            run_with_events(workspace, lambda: workspace.apply(config), events)
        )
    except ProviderError as e:
        logger.error(f"Apply failed: {e}")
        fail(str(e))
    finally:
        workspace.state.save(state_path)

    for address, action in actions.items():
        click.echo(f"{address}: {action}")
    click.echo("Apply complete!")


@cli.command()
@click.option("--state", "state_path", default=DEFAULT_STATE_PATH, help="State file")
@click.option("--address", "-a", default=None, help="Destroy only this resource")
@click.option("--events", is_flag=True, help="Print lifecycle events to stderr")
@click.confirmation_option(prompt="Are you sure you want to destroy these resources?")
def destroy(state_path, address, events):
    """Delete managed resources"""
    workspace = build_workspace(state_path)
    try:
        if address:
            asyncio.run(
                run_with_events(workspace, lambda: workspace.destroy(address), events)
            )
            destroyed = [address]
        else:
            destroyed = list(
                asyncio.run(run_with_events(workspace, workspace.destroy_all, events))
            )
    except KeyError as e:
        fail(str(e.args[0]))
    except ProviderError as e:
        logger.error(f"Destroy failed: {e}")
        fail(str(e))
    finally:
        workspace.state.save(state_path)

    for item in destroyed:
        click.echo(f"{item}: destroyed")


@cli.command()
@click.option("--state", "state_path", default=DEFAULT_STATE_PATH, help="State file")
@click.option("--output", "-o", type=click.Choice(["table", "json"]), default="table")
def show(state_path, output):
    """Show recorded state"""
    try:
        store = StateStore.load(state_path)
    except ValueError as e:
        fail(str(e))

    if output == "json":
        click.echo(json.dumps(store.to_dict(), indent=2, default=str))
        return

    rows = [
        [address, store.get(address).resource_type, store.get(address).identifier]
        for address in store.addresses()
    ]
    click.echo(
        tabulate(rows, headers=["Address", "Type", "Identifier"], tablefmt="grid")
    )


if __name__ == "__main__":
    cli()
