"""Command-line interface for the Vite critical CSS generator."""

import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
from loguru import logger

from vite_critical.config_loader import load_config
from vite_critical.generator import resolve_output_root, run_batch, run_single


DEFAULT_ENVIRONMENT = "Development"


def setup_logging(config: dict, verbose: bool = False):
    """Setup logging configuration."""
    level = "DEBUG" if verbose else str(config.get("LOG_LEVEL") or "INFO").upper()
    log_file = config.get("LOG_FILE")

    logger.remove()
    logger.add(
        sys.stdout,
        level=level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | {message}",
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=level,
            rotation=config.get("LOG_ROTATION") or "1 week",
            retention=config.get("LOG_RETENTION") or "1 month",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name} | {message}",
        )


def _resolve_environment(config: Dict[str, Any], env: Optional[str]) -> str:
    environment = env or config.get("ENV")
    if not environment:
        logger.warning("No environment given, defaulting to {}", DEFAULT_ENVIRONMENT)
        environment = DEFAULT_ENVIRONMENT
    return str(environment)


def _echo_results(title: str, results: Dict[str, Any]):
    click.echo(f"\n{'='*70}")
    click.echo(title)
    click.echo(f"{'='*70}")
    click.echo(f"Status: {results.get('status', 'unknown')}")
    if results.get("mode") == "batch":
        click.echo(f"Sites processed: {results.get('sites_processed', 0)}")
        click.echo(f"Sites skipped: {results.get('sites_skipped', 0)}")
    click.echo(f"Units planned: {results.get('units_planned', 0)}")
    click.echo(f"Units generated: {results.get('units_generated', 0)}")
    click.echo(f"Units failed: {results.get('units_failed', 0)}")
    click.echo(f"Units skipped: {results.get('units_skipped', 0)}")
    click.echo(f"Started: {results.get('started_at', 'N/A')}")
    click.echo(f"Completed: {results.get('completed_at', 'N/A')}")

    artifacts = results.get("artifacts") or []
    if artifacts:
        click.echo(f"\nArtifacts ({len(artifacts)}):")
        for path in artifacts[:10]:
            click.echo(f"  - {path}")
        if len(artifacts) > 10:
            click.echo(f"  ... and {len(artifacts) - 10} more")

    if results.get("errors"):
        click.echo(f"\nErrors ({len(results['errors'])}):")
        for error in results["errors"][:5]:
            target = "/".join(str(error[key]) for key in ("site", "template", "pid") if error.get(key))
            click.echo(f"  - {target or 'run'}: {error['error']}")

    click.echo(f"{'='*70}")


@click.group()
@click.option("--config", "-c", type=click.Path(exists=True), help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool):
    """Vite critical CSS - critical and deferred stylesheets for Vite builds."""
    ctx.ensure_object(dict)

    try:
        cfg = load_config(config)
        ctx.obj["config"] = cfg
        ctx.obj["config_path"] = config

        setup_logging(cfg, verbose=verbose)
        logger.debug("Configuration loaded from {}", config or "default location")

    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--site", "-s", default=None, help="Site identifier (default: SITENAME)")
@click.option("--template", "-t", default=None, help="Template name (default: TEMPLATE)")
@click.option("--env", "-e", default=None, help="Environment used to select the base URL (default: ENV)")
@click.option("--outputpath", "-o", default=None, help="Build output root (default: VITE_OUTPUT_PATH)")
@click.pass_context
def generate(ctx, site: Optional[str], template: Optional[str], env: Optional[str], outputpath: Optional[str]):
    """Generate critical and deferred CSS for one site template."""
    config = ctx.obj["config"]

    site = site or config.get("SITENAME")
    template = template or config.get("TEMPLATE")
    if not site or not template:
        click.echo("Error: site and template are required (--site/--template or SITENAME/TEMPLATE)", err=True)
        sys.exit(1)

    environment = _resolve_environment(config, env)
    output_root = resolve_output_root(config, outputpath)
    logger.info(
        "Starting generation: site={}, template={}, env={}, output={}",
        site,
        template,
        environment,
        output_root,
    )

    try:
        results = run_single(
            config,
            site=str(site),
            template=str(template),
            environment=environment,
            output_path=str(output_root),
        )
        _echo_results("CRITICAL CSS", results)

        if results.get("status") == "failed":
            sys.exit(1)

    except Exception as e:
        logger.exception("Generation failed")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--env", "-e", default=None, help="Environment used to select base URLs (default: ENV)")
@click.option("--outputpath", "-o", default=None, help="Build output root (default: VITE_OUTPUT_PATH)")
@click.pass_context
def batch(ctx, env: Optional[str], outputpath: Optional[str]):
    """Generate per-page critical CSS for every enabled site."""
    config = ctx.obj["config"]

    environment = _resolve_environment(config, env)
    output_root = resolve_output_root(config, outputpath)
    logger.info("Starting batch: env={}, output={}", environment, output_root)

    try:
        results = run_batch(config, environment=environment, output_path=str(output_root))
        _echo_results("CRITICAL CSS BATCH", results)

        if results.get("status") == "failed":
            sys.exit(1)

    except Exception as e:
        logger.exception("Batch failed")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
