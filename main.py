#!/usr/bin/env python3
"""
model-fit: which LLMs will run well on this machine
Main entry point with CLI interface
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn

from model_fit import __version__
from model_fit.display import FitReport, fits_to_json, models_to_json, system_to_json
from model_fit.fit import analyze, analyze_all, filter_by_use_case, filter_perfect_only, rank_models_by_fit
from model_fit.hardware import HardwareDetector, SystemSpecs
from model_fit.models import USE_CASE_ALIASES, ModelDatabase

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True)]
)
logger = logging.getLogger(__name__)

USE_CASE_CHOICES = click.Choice(sorted(USE_CASE_ALIASES), case_sensitive=False)


def _fail(ctx, console: Console, message: str, error: Exception) -> None:
    console.print(f"[red]❌ {message}: {error}[/red]")
    if ctx.obj['verbose']:
        logger.exception("Detailed error information")
    sys.exit(1)


def _database(ctx) -> ModelDatabase:
    return ModelDatabase(cache_file=ctx.obj['cache_file'], models_file=ctx.obj['models_file'])


def _detect_hardware(ctx, console: Console) -> SystemSpecs:
    if ctx.obj['json']:
        return HardwareDetector().detect()
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True
    ) as progress:
        progress.add_task("Detecting hardware...", total=None)
        return HardwareDetector().detect()


@click.group(invoke_without_command=True)
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--models-file', type=click.Path(exists=True, dir_okay=False),
              help='Use this models.json instead of the bundled list')
@click.option('--cache-file', type=click.Path(dir_okay=False),
              help='Overlay file merged over the model list')
@click.option('--json', 'as_json', is_flag=True, help='Output results as JSON')
@click.pass_context
def cli(ctx, verbose: bool, models_file: Optional[str], cache_file: Optional[str], as_json: bool):
    """model-fit - find the LLMs that fit your hardware"""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    ctx.ensure_object(dict)
    ctx.obj['models_file'] = Path(models_file) if models_file else None
    ctx.obj['cache_file'] = Path(cache_file) if cache_file else None
    ctx.obj['verbose'] = verbose
    ctx.obj['json'] = as_json

    if ctx.invoked_subcommand is None:
        ctx.invoke(fit)


@cli.command()
@click.pass_context
def system(ctx):
    """Show detected hardware"""
    console = Console()
    try:
        specs = _detect_hardware(ctx, console)
    except Exception as e:
        _fail(ctx, console, "Hardware detection failed", e)

    if ctx.obj['json']:
        click.echo(system_to_json(specs))
    else:
        FitReport(console).display_system(specs)


@cli.command(name='list')
@click.pass_context
def list_models(ctx):
    """List every known model"""
    console = Console()
    try:
        db = _database(ctx)
    except Exception as e:
        _fail(ctx, console, "Error loading models", e)

    if ctx.obj['json']:
        click.echo(models_to_json(db.all_models()))
        return
    FitReport(console).display_models(db.all_models())


@cli.command()
@click.option('--perfect', is_flag=True, help='Only show models with a Perfect fit')
@click.option('--limit', '-n', type=click.IntRange(min=0), default=0, help='Limit results (0 = no limit)')
@click.option('--use-case', type=USE_CASE_CHOICES, help='Only show one category')
@click.pass_context
def fit(ctx, perfect: bool = False, limit: int = 0, use_case: Optional[str] = None):
    """Rank every model by how well it fits this machine"""
    _run_analysis(ctx, limit=limit, use_case=use_case, perfect=perfect, title="Model Fit Analysis")


@cli.command()
@click.option('--limit', '-n', type=click.IntRange(min=1), default=5, help='Number of recommendations')
@click.option('--use-case', type=USE_CASE_CHOICES, help='Only recommend one category')
@click.pass_context
def recommend(ctx, limit: int, use_case: Optional[str]):
    """Recommend the top models for this machine"""
    _run_analysis(ctx, limit=limit, use_case=use_case, perfect=False, title="Recommended Models",
                  show_system=True)


def _run_analysis(ctx, limit: int, use_case: Optional[str], perfect: bool, title: str,
                  show_system: bool = False) -> None:
    console = Console()
    try:
        specs = _detect_hardware(ctx, console)
        db = _database(ctx)
    except Exception as e:
        _fail(ctx, console, "Error analyzing models", e)

    fits = analyze_all(db.all_models(), specs)
    if use_case:
        fits = filter_by_use_case(fits, use_case)
    if perfect:
        fits = filter_perfect_only(fits)
    fits = rank_models_by_fit(fits)
    if limit:
        fits = fits[:limit]

    if ctx.obj['json']:
        click.echo(fits_to_json(specs, fits))
        return

    report = FitReport(console)
    if show_system:
        report.display_system(specs)
    report.display_fits(fits, title=title)


@cli.command()
@click.argument('query')
@click.pass_context
def search(ctx, query: str):
    """Search models by name, provider or size"""
    console = Console()
    try:
        db = _database(ctx)
    except Exception as e:
        _fail(ctx, console, "Error loading models", e)

    results = db.find_models(query)
    if ctx.obj['json']:
        click.echo(models_to_json(results))
        return
    if not results:
        console.print(f"[yellow]No models found matching '{query}'[/yellow]")
        return
    FitReport(console).display_models(results, title=f"Search Results for '{query}'")


@cli.command()
@click.argument('query')
@click.pass_context
def info(ctx, query: str):
    """Show fit details for one model"""
    console = Console()
    try:
        db = _database(ctx)
        specs = _detect_hardware(ctx, console)
    except Exception as e:
        _fail(ctx, console, "Error analyzing model", e)

    model = db.get_model(query)
    results = [model] if model else db.find_models(query)
    if not results:
        console.print(f"[yellow]No model found matching '{query}'[/yellow]")
        return
    if len(results) > 1:
        console.print("Multiple models found. Please be more specific:")
        for candidate in results:
            console.print(f"  - {candidate.name}")
        return

    result = analyze(results[0], specs)
    if ctx.obj['json']:
        click.echo(fits_to_json(specs, [result]))
    else:
        FitReport(console).display_info(result)


@cli.command()
def version():
    """Show version information"""
    console = Console()
    console.print(f"[cyan]model-fit v{__version__}[/cyan]")
    console.print(f"[dim]Python {sys.version.split()[0]}[/dim]")


if __name__ == '__main__':
    cli()
