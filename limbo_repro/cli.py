"""
Command line entry point

    limbo-repro run                 # full scenario against the configured backend
    limbo-repro step race           # one step, e.g. between manual inspections
    limbo-repro compare -b memory -b memory-atomic -r report.md
"""

import logging
from pathlib import Path
from typing import Dict, Tuple

import click
import yaml

from limbo_repro.config import (
    BACKENDS,
    ChainedConfigProvider,
    MappingConfigProvider,
    default_provider,
    load_config,
)
from limbo_repro.errors import ReproError
from limbo_repro.harness import ConditionalCopyHarness, run_scenario
from limbo_repro.outcomes import describe
from limbo_repro.report import generate_comparison_report
from limbo_repro.stores import open_store

# Pre-configured backends; remote ones take credentials from env/secrets
BACKEND_PRESETS: Dict[str, Dict[str, str]] = {
    "memory": {"backend": "memory", "memory_upload_mode": "split"},
    "memory-atomic": {"backend": "memory", "memory_upload_mode": "atomic"},
    "azure": {"backend": "azure"},
    "s3": {"backend": "s3"},
}

STEP_NAMES = ("reset", "seed", "race", "buffered", "force")


def _config(ctx, **overrides):
    provider = ctx.obj["provider"]
    if ctx.obj.get("backend"):
        overrides.setdefault("backend", ctx.obj["backend"])
    try:
        return load_config(provider, **overrides)
    except ReproError as e:
        raise click.ClickException(str(e))


def _echo_report(report):
    for record in report.records:
        outcome = describe(record.outcome) if record.outcome else "-"
        click.echo(f"  {record.step:40} {outcome:20} [{record.state.value}]")
        click.echo(f"    {record.message}")


@click.group()
@click.option(
    "--backend",
    type=click.Choice(BACKENDS),
    default=None,
    help="Store backend (overrides REPRO_BACKEND and the secrets file)",
)
@click.option(
    "--secrets-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="YAML file with local developer secrets",
)
@click.option("--verbose", "-v", is_flag=True, help="Log every store call")
@click.pass_context
def main(ctx, backend, secrets_file, verbose):
    """Reproduce the conditional upload limbo state against a blob store"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["backend"] = backend
    ctx.obj["provider"] = default_provider(secrets_file)


@main.command()
@click.option(
    "--local-id",
    default=None,
    help="LocalId for the racing copy; ids compare as strings, so '99' > '123'",
)
@click.option(
    "--overwrite-local-id",
    default=None,
    help="LocalId for the buffered overwrite; must sort after --local-id as a string",
)
@click.pass_context
def run(ctx, local_id, overwrite_local_id):
    """Reset the container and run every step in order"""
    config = _config(ctx)
    store = open_store(config)
    harness = ConditionalCopyHarness(store, config)

    click.echo(f"Running limbo scenario against {config.backend} ({config.container})")
    racing = str(local_id or config.racing_local_id)
    overwrite = str(overwrite_local_id or config.overwrite_local_id)
    if not overwrite > racing:
        click.echo(
            f"Warning: LocalId '{overwrite}' does not sort after '{racing}' as a string; "
            f"the buffered overwrite will be rejected"
        )
    try:
        report = run_scenario(harness, local_id, overwrite_local_id)
    except ReproError as e:
        raise click.ClickException(str(e))
    finally:
        store.close()

    _echo_report(report)
    click.echo("")
    click.echo(f"Limbo reproduced: {'yes' if report.limbo_reproduced else 'no'}")
    click.echo(f"Workaround escaped limbo: {'yes' if report.workaround_escaped_limbo else 'no'}")
    click.echo(f"Destination verified: {'yes' if report.verified else 'no'}")
    if not report.verified:
        ctx.exit(1)


@main.command()
@click.argument("name", type=click.Choice(STEP_NAMES))
@click.option(
    "--local-id",
    default=None,
    help="LocalId for race/buffered; ids compare as strings, so '99' > '123'",
)
@click.pass_context
def step(ctx, name, local_id):
    """
    Run a single step. Only meaningful for remote backends: the memory
    store does not outlive the process.
    """
    config = _config(ctx)
    store = open_store(config)
    harness = ConditionalCopyHarness(store, config)
    actions = {
        "reset": harness.reset,
        "seed": harness.seed_source,
        "race": lambda: harness.racing_conditioned_copy(local_id),
        "buffered": lambda: harness.conditioned_overwrite_with_buffering(local_id),
        "force": harness.force_overwrite,
    }
    try:
        actions[name]()
    except ReproError as e:
        raise click.ClickException(str(e))
    finally:
        store.close()

    record = harness.history[-1]
    click.echo(record.message)


@main.command()
@click.option(
    "--backends",
    "-b",
    multiple=True,
    default=["memory", "memory-atomic"],
    help="Backend presets to compare (can specify multiple)",
)
@click.option(
    "--backends-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML mapping of backend name to configuration values",
)
@click.option(
    "--report",
    "-r",
    type=click.Path(dir_okay=False),
    default="limbo-report.md",
    help="Output report file",
)
@click.pass_context
def compare(ctx, backends: Tuple[str, ...], backends_file, report):
    """Run the scenario on several backends and write a markdown report"""
    if backends_file:
        with open(backends_file) as f:
            targets = yaml.safe_load(f) or {}
        if not isinstance(targets, dict):
            raise click.ClickException(f"{backends_file} must map backend names to settings")
    else:
        unknown = [b for b in backends if b not in BACKEND_PRESETS]
        if unknown:
            raise click.ClickException(
                f"Unknown backend(s) {', '.join(unknown)}; "
                f"available: {', '.join(BACKEND_PRESETS)}"
            )
        targets = {name: BACKEND_PRESETS[name] for name in backends}

    reports = []
    for name, settings in targets.items():
        click.echo(f"\n{'=' * 60}")
        click.echo(f"Running limbo scenario against {name}")
        click.echo(f"{'=' * 60}")
        provider = ChainedConfigProvider([ctx.obj["provider"], MappingConfigProvider(settings or {})])
        try:
            config = load_config(provider)
            store = open_store(config)
        except ReproError as e:
            click.echo(f"  Skipping {name}: {e}")
            continue

        try:
            scenario = run_scenario(ConditionalCopyHarness(store, config))
        except ReproError as e:
            click.echo(f"  Error running {name}: {e}")
            continue
        finally:
            store.close()

        scenario.backend = name
        _echo_report(scenario)
        reports.append(scenario)

    if not reports:
        raise click.ClickException("No backend completed the scenario")

    report_path = Path(report)
    generate_comparison_report(reports, report_path)
    click.echo(f"\nReport saved to: {report_path}")


if __name__ == "__main__":
    main()
