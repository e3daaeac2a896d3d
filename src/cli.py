#!/usr/bin/env python3
"""
provisionctl - idempotent infrastructure provisioning CLI.

Applies a provisioning plan (a plan file, or the built-in LMS blueprint
filled from configuration) against a provider, creating only the resources
that do not exist yet.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import click
import yaml
from tabulate import tabulate

from config import InfraConfig, get_config
from events import EventBus, EventSubscription, EventType
from lms import build_lms_plan
from models import ProvisioningPlan, StepResult, exit_code, summarize
from plan import PlanError, load_plan, plan_to_document
from providers.base import ProvisioningProvider
from providers.registry import get_registry, register_builtin_providers
from reconciler import MatchMode, Reconciler

logger = logging.getLogger(__name__)

USAGE_ERROR = 2

OUTCOME_SYMBOLS = {
    "AlreadyExists": "=",
    "Created": "+",
    "WouldCreate": "~",
    "Failed": "✗",
}


def setup_logging(level: str, verbose: bool = False) -> None:
    """Configure root logging for the CLI process."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class ProviderSetupError(Exception):
    """The provider rejected its configuration or a resource in the plan."""


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    raise SystemExit(USAGE_ERROR)


def _resolve_plan(
    plan_file: Optional[str], config_file: Optional[str]
) -> Tuple[ProvisioningPlan, Optional[InfraConfig]]:
    """Load the plan file, or build the LMS plan from configuration."""
    try:
        if plan_file:
            return load_plan(plan_file), None

        if config_file:
            infra = InfraConfig.from_file(config_file)
        else:
            infra = InfraConfig.from_env()
        return build_lms_plan(infra), infra
    except (PlanError, ValueError, OSError, yaml.YAMLError) as e:
        _fail(str(e))


def _provider_config(
    provider_name: str, infra: Optional[InfraConfig]
) -> Dict[str, Any]:
    registry = get_registry()
    provider_config = registry.get_provider_config(provider_name)
    provider_config.update(get_config().providers.get_provider_config(provider_name))
    if infra is not None and not provider_config.get("project"):
        provider_config["project"] = infra.project_id
    return provider_config


async def _print_events(subscription: EventSubscription, output: str) -> None:
    async for event in subscription:
        if output == "json":
            click.echo(event.to_json())
        elif event.event_type != EventType.STARTED:
            line = f"[{event.step}/{event.total}] {event.kind} {event.name}: "
            line += event.event_type.value
            if event.detail:
                line += f" - {event.detail}"
            click.echo(line)


async def _setup_provider(
    plan: ProvisioningPlan, provider_name: str, provider_config: Dict[str, Any]
) -> ProvisioningProvider:
    """
    Initialize the provider and check it can handle every resource in the plan.

    Raises:
        ProviderSetupError: If initialization or validation fails.
    """
    registry = get_registry()
    try:
        provider = await registry.get_provider(provider_name, provider_config)
    except ValueError as e:
        raise ProviderSetupError(str(e))

    for spec in plan:
        is_valid, error = provider.validate(spec.kind, spec.parameters, spec.scope)
        if not is_valid:
            await registry.close()
            raise ProviderSetupError(f"Invalid resource {spec.key}: {error}")
    return provider


async def _run_plan(
    plan: ProvisioningPlan,
    provider_name: str,
    provider_config: Dict[str, Any],
    match_mode: MatchMode,
    dry_run: bool,
    output: str,
) -> List[StepResult]:
    registry = get_registry()
    provider = await _setup_provider(plan, provider_name, provider_config)

    event_bus = EventBus()
    subscriber_id, subscription = event_bus.subscribe()
    printer = asyncio.create_task(_print_events(subscription, output))

    reconciler = Reconciler(provider, match_mode=match_mode, event_bus=event_bus)
    try:
        if dry_run:
            return await reconciler.check(plan)
        return await reconciler.apply(plan)
    finally:
        event_bus.unsubscribe(subscriber_id)
        await printer
        await registry.close()


def _print_results(results: List[StepResult], output: str) -> None:
    if output == "json":
        summary = {"summary": summarize(results), "exit_code": exit_code(results)}
        click.echo(json.dumps(summary))
        return

    rows = [
        [
            index,
            OUTCOME_SYMBOLS.get(result.outcome.value, "?"),
            result.spec.kind.value,
            result.spec.name,
            result.outcome.value,
            f"{result.duration_seconds:.1f}s",
        ]
        for index, result in enumerate(results, start=1)
    ]
    click.echo(
        tabulate(
            rows,
            headers=["#", "", "Kind", "Name", "Outcome", "Time"],
            tablefmt="simple",
        )
    )
    counts = summarize(results)
    click.echo(", ".join(f"{k}: {v}" for k, v in counts.items() if v))


def _execute(
    plan_file: Optional[str],
    config_file: Optional[str],
    provider: Optional[str],
    match_mode: Optional[str],
    output: str,
    dry_run: bool,
) -> int:
    settings = get_config().reconciler
    provider_name = provider or settings.provider
    try:
        mode = MatchMode(match_mode or settings.match_mode)
    except ValueError:
        _fail(f"Unknown match mode: {match_mode or settings.match_mode}")

    plan, infra = _resolve_plan(plan_file, config_file)

    register_builtin_providers()
    registry = get_registry()
    if not registry.has_provider(provider_name):
        available = ", ".join(registry.list_providers()) or "none"
        _fail(f"Unknown provider: {provider_name}. Available providers: {available}")

    try:
        results = asyncio.run(
            _run_plan(
                plan,
                provider_name,
                _provider_config(provider_name, infra),
                mode,
                dry_run,
                output,
            )
        )
    except ProviderSetupError as e:
        _fail(str(e))

    _print_results(results, output)
    return exit_code(results)


def plan_source_options(func):
    """Options shared by commands that operate on a plan."""
    func = click.option(
        "--config",
        "-c",
        "config_file",
        type=click.Path(exists=True, dir_okay=False),
        help="LMS configuration file (YAML/JSON); defaults to environment",
    )(func)
    func = click.option(
        "--file",
        "-f",
        "plan_file",
        type=click.Path(exists=True, dir_okay=False),
        help="Plan file (YAML/JSON); defaults to the built-in LMS blueprint",
    )(func)
    return func


def run_options(func):
    """Options shared by commands that contact a provider."""
    func = click.option(
        "--output",
        "-o",
        type=click.Choice(["table", "json"]),
        default="table",
    )(func)
    func = click.option(
        "--match-mode",
        type=click.Choice([m.value for m in MatchMode]),
        default=None,
        help="How resource names are matched against existing resources",
    )(func)
    func = click.option("--provider", "-p", default=None, help="Provider name")(func)
    return func


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """provisionctl - converge cloud infrastructure toward a declared plan"""
    setup_logging(get_config().reconciler.log_level, verbose)


@cli.command()
@plan_source_options
@run_options
@click.pass_context
def apply(ctx, plan_file, config_file, provider, match_mode, output):
    """Create every resource in the plan that does not exist yet"""
    ctx.exit(_execute(plan_file, config_file, provider, match_mode, output, False))


@cli.command()
@plan_source_options
@run_options
@click.pass_context
def plan(ctx, plan_file, config_file, provider, match_mode, output):
    """Show which resources exist and which would be created"""
    ctx.exit(_execute(plan_file, config_file, provider, match_mode, output, True))


@cli.command()
@plan_source_options
@click.option("--output", "-o", type=click.Choice(["yaml", "json"]), default="yaml")
def render(plan_file, config_file, output):
    """Print the ordered plan without contacting a provider"""
    resolved, _ = _resolve_plan(plan_file, config_file)
    document = plan_to_document(resolved)

    if output == "json":
        click.echo(json.dumps(document, indent=2))
    else:
        click.echo(yaml.safe_dump(document, default_flow_style=False, sort_keys=False))


@cli.command()
def providers():
    """List registered providers"""
    register_builtin_providers()
    registry = get_registry()

    rows = []
    for name in registry.list_providers():
        info = registry.get_provider_info(name) or {}
        rows.append([name, info.get("version", "")])

    click.echo(tabulate(rows, headers=["Name", "Version"], tablefmt="simple"))


if __name__ == "__main__":
    cli()
