#!/usr/bin/env python3
"""
llmfit
Main entry point with CLI interface
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from llmfit import __version__
from llmfit.export import EXPORT_FORMATS, export_fits
from llmfit.filters import DateFilter, FitFilter, FitQuery, NumericFilter
from llmfit.fit import RunMode, SortColumn, analyze
from llmfit.hardware import GpuBackend, HardwareDetector, SystemSpecs
from llmfit.models import UseCase
from llmfit.selector import ModelSelector, format_context

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, console=Console(stderr=True))]
)
logger = logging.getLogger(__name__)

SINCE_CHOICES = {
    "6mo": DateFilter.LAST_6_MONTHS,
    "1yr": DateFilter.LAST_YEAR,
    "2yr": DateFilter.LAST_2_YEARS,
}


HARDWARE_OPTIONS = [
    click.option('--memory', type=click.FloatRange(min=0), help='System RAM in GB (skips detection)'),
    click.option('--vram', type=click.FloatRange(min=0), help='Dedicated GPU memory in GB'),
    click.option('--backend', type=click.Choice([b.value for b in GpuBackend]), help='GPU backend'),
    click.option('--unified/--discrete', default=False, help='GPU shares system memory'),
    click.option('--cores', type=click.IntRange(min=1), default=8, show_default=True, help='CPU cores'),
    click.option('--use-cache/--no-cache', default=True, help='Use hardware detection cache'),
]


def hardware_options(func):
    """Options that replace hardware detection with given figures"""
    for option in reversed(HARDWARE_OPTIONS):
        func = option(func)
    return func


def resolve_specs(
    selector: ModelSelector,
    memory: Optional[float],
    vram: Optional[float],
    backend: Optional[str],
    unified: bool,
    cores: int,
    use_cache: bool,
) -> SystemSpecs:
    """Manual descriptor when --memory is given, detected hardware otherwise"""
    if memory is None:
        if vram is not None or backend is not None or unified:
            raise click.UsageError("--vram, --backend and --unified require --memory")
        return asyncio.run(selector.detect_hardware(use_cache))

    selector.specs = SystemSpecs.manual(
        ram_gb=memory,
        vram_gb=vram,
        backend=GpuBackend(backend) if backend else GpuBackend.NONE,
        unified=unified,
        cpu_cores=cores,
    )
    return selector.specs


def fail(ctx, console: Console, message: str) -> None:
    console.print(f"[red]❌ {message}[/red]")
    if ctx.obj['verbose']:
        logger.exception("Detailed error information")
    sys.exit(1)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--models-file', type=click.Path(exists=True, dir_okay=False), help='Path to a model catalog JSON file')
@click.option('--config', 'config_file', type=click.Path(dir_okay=False), help='Path to config.json')
@click.pass_context
def cli(ctx, verbose: bool, models_file: Optional[str], config_file: Optional[str]):
    """llmfit - find the language models that fit your hardware"""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    ctx.ensure_object(dict)
    ctx.obj['models_file'] = Path(models_file) if models_file else None
    ctx.obj['config_file'] = Path(config_file) if config_file else None
    ctx.obj['verbose'] = verbose


def make_selector(ctx) -> ModelSelector:
    return ModelSelector(ctx.obj['models_file'], ctx.obj['config_file'])


@cli.command()
@hardware_options
@click.pass_context
def system(ctx, memory, vram, backend, unified, cores, use_cache):
    """Display detected hardware"""
    console = Console()
    try:
        selector = make_selector(ctx)
        resolve_specs(selector, memory, vram, backend, unified, cores, use_cache)
        selector.display_hardware_info()
    except click.UsageError:
        raise
    except Exception as e:
        fail(ctx, console, f"Hardware detection failed: {e}")


@cli.command()
@click.argument('name', required=False)
@click.option('--use-case', type=click.Choice([u.value for u in UseCase]), help='Only this use case')
@click.pass_context
def models(ctx, name: Optional[str], use_case: Optional[str]):
    """List catalog models, or show one model's variants"""
    console = Console()
    try:
        selector = make_selector(ctx)
        database = selector.database

        if name:
            model = database.get_model(name)
            if not model:
                console.print(f"[red]❌ Model '{name}' not found[/red]")
                sys.exit(1)

            variants_table = Table(title=f"{model.name} - quantization variants")
            variants_table.add_column("Quantization", style="cyan")
            variants_table.add_column("Bytes/param", style="yellow", justify="right")
            variants_table.add_column("Weights", style="green", justify="right")
            for variant in model.quant_variants:
                variants_table.add_row(
                    variant.label,
                    f"{variant.bytes_per_parameter:g}",
                    f"{model.params_b * variant.bytes_per_parameter:.1f} GB",
                )
            console.print(variants_table)
            return

        catalog = database.get_all_models()
        if use_case:
            catalog = database.get_models_by_use_case(UseCase(use_case))

        table = Table(title=f"Available Models ({len(catalog)} total)")
        table.add_column("Model", style="cyan")
        table.add_column("Provider", style="white")
        table.add_column("Params", style="yellow", justify="right")
        table.add_column("Use Case", style="green")
        table.add_column("Context", style="blue", justify="right")
        table.add_column("Released", style="dim")

        for model in catalog:
            params = model.parameter_count
            if model.is_moe and model.active_params_b is not None:
                params += f" ({model.active_params_b:g}B active)"
            table.add_row(
                model.name,
                model.provider,
                params,
                model.use_case.label,
                format_context(model.context_length),
                model.release_date or "",
            )

        console.print(table)

    except Exception as e:
        fail(ctx, console, f"Error loading models: {e}")


@cli.command()
@hardware_options
@click.option('--sort', 'sort_column', type=click.Choice([c.value for c in SortColumn]),
              default=SortColumn.SCORE.value, show_default=True, help='Secondary sort column')
@click.option('--installed-first', is_flag=True, help='Hoist installed models within each fit level')
@click.option('--fit', 'fit_filter', type=click.Choice([f.value for f in FitFilter]),
              default=FitFilter.ALL.value, show_default=True, help='Fit level filter')
@click.option('--min-score', type=float, help='Minimum score')
@click.option('--min-tps', type=float, help='Minimum estimated tokens/second')
@click.option('--min-params', type=float, help='Minimum parameters (billions)')
@click.option('--max-mem', type=float, help='Maximum memory utilization (%)')
@click.option('--min-ctx', type=float, help='Minimum context length (thousands of tokens)')
@click.option('--since', type=click.Choice(list(SINCE_CHOICES)), help='Released within')
@click.option('--mode', type=click.Choice([m.value for m in RunMode]), help='Run mode')
@click.option('--use-case', type=click.Choice([u.value for u in UseCase]), help='Use case')
@click.option('--quant', help='Selected quantization label, e.g. Q4_K_M')
@click.option('--provider', 'providers', multiple=True, help='Model provider (repeatable)')
@click.option('--search', default="", help='Space-separated terms, all must match')
@click.option('--installed-only', is_flag=True, help='Only installed models')
@click.option('--check-installed/--no-check-installed', default=True, help='Query Ollama for installed models')
@click.option('--context-limit', type=click.IntRange(min=1), help='Reference context length for scoring')
@click.option('--top-n', type=click.IntRange(min=1), default=20, show_default=True, help='Rows to display')
@click.option('--json', 'as_json', is_flag=True, help='Print JSON instead of a table')
@click.option('--export', 'export_format', type=click.Choice(EXPORT_FORMATS), help='Save results')
@click.option('--output', type=click.Path(dir_okay=False), help='Export file path')
@click.pass_context
def fit(ctx, memory, vram, backend, unified, cores, use_cache, sort_column, installed_first,
        fit_filter, min_score, min_tps, min_params, max_mem, min_ctx, since, mode, use_case,
        quant, providers: Tuple[str, ...], search, installed_only, check_installed,
        context_limit, top_n, as_json, export_format, output):
    """Rank catalog models by how well they fit this machine"""
    console = Console(stderr=as_json)
    try:
        selector = make_selector(ctx)
        resolve_specs(selector, memory, vram, backend, unified, cores, use_cache)
        if check_installed:
            selector.installed = asyncio.run(selector.provider.installed_models())

        selector.sort_column = SortColumn(sort_column)
        selector.installed_first = installed_first
        fits = selector.analyze(context_limit)

        query = FitQuery(
            search=search,
            fit=FitFilter(fit_filter),
            min_score=NumericFilter(min_score),
            min_tps=NumericFilter(min_tps),
            min_params_b=NumericFilter(min_params),
            max_mem_pct=NumericFilter(max_mem, at_most=True),
            min_context_k=NumericFilter(min_ctx),
            released=SINCE_CHOICES[since] if since else DateFilter.ANY,
            run_mode=RunMode(mode) if mode else None,
            use_case=UseCase(use_case) if use_case else None,
            quant=quant,
            providers=set(providers) if providers else None,
            installed_only=installed_only,
        )
        visible = query.apply(fits)

        if as_json:
            click.echo(export_fits(visible[:top_n], "json"))
        else:
            selector.display_hardware_info()
            selector.display_fits(visible, limit=top_n)

        if export_format:
            saved = selector.save_results(visible, export_format, Path(output) if output else None)
            console.print(f"✅ Results saved to [bold green]{saved}[/bold green]")

    except click.UsageError:
        raise
    except Exception as e:
        fail(ctx, console, f"Error ranking models: {e}")


@cli.command()
@click.argument('name')
@hardware_options
@click.option('--context-limit', type=click.IntRange(min=1), help='Reference context length for scoring')
@click.pass_context
def info(ctx, name, memory, vram, backend, unified, cores, use_cache, context_limit):
    """Show how one model fits this machine"""
    console = Console()
    try:
        selector = make_selector(ctx)
        model = selector.database.get_model(name)
        if not model:
            console.print(f"[red]❌ Model '{name}' not found[/red]")
            sys.exit(1)
        specs = resolve_specs(selector, memory, vram, backend, unified, cores, use_cache)
        selector.display_detail(analyze(model, specs, context_limit, selector.policy))
    except click.UsageError:
        raise
    except Exception as e:
        fail(ctx, console, f"Error analyzing model: {e}")


@cli.command()
@hardware_options
@click.option('--context-limit', type=click.IntRange(min=1), help='Reference context length for scoring')
@click.pass_context
def interactive(ctx, memory, vram, backend, unified, cores, use_cache, context_limit):
    """Browse ranked models interactively"""
    console = Console()
    try:
        selector = make_selector(ctx)
        if memory is not None or vram is not None or backend is not None or unified:
            resolve_specs(selector, memory, vram, backend, unified, cores, use_cache)
        asyncio.run(selector.run_interactive(context_limit))
    except click.UsageError:
        raise
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user.[/yellow]")
        sys.exit(0)
    except Exception as e:
        fail(ctx, console, f"Error: {e}")


@cli.command()
def clear_cache():
    """Clear hardware detection cache"""
    console = Console()
    try:
        if HardwareDetector().clear_cache():
            console.print("[green]✅ Hardware cache cleared[/green]")
        else:
            console.print("[yellow]⚠️ No cache file found[/yellow]")
    except OSError as e:
        console.print(f"[red]❌ Error clearing cache: {e}[/red]")
        sys.exit(1)


@cli.command()
def version():
    """Show version information"""
    console = Console()
    console.print(f"[cyan]llmfit v{__version__}[/cyan]")
    console.print(f"[dim]Python {sys.version.split()[0]}[/dim]")


if __name__ == '__main__':
    cli()
