"""
Model fit explorer with rich CLI
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .config import FitPolicy, load_user_config, policy_from_config, save_user_config
from .export import EXPORT_FORMATS, export_fits
from .filters import FitQuery
from .fit import FitLevel, ModelFit, SortColumn, analyze_all, rank
from .hardware import HardwareDetector, SystemSpecs
from .models import ModelDatabase
from .providers import OllamaProvider, mark_installed

logger = logging.getLogger(__name__)

FIT_STYLES = {
    FitLevel.PERFECT: "bold green",
    FitLevel.GOOD: "yellow",
    FitLevel.MARGINAL: "dark_orange",
    FitLevel.TOO_TIGHT: "red",
}


def format_context(tokens: int) -> str:
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:g}M"
    if tokens >= 1000:
        return f"{tokens // 1000}k"
    return str(tokens)


def format_utilization(pct: float) -> str:
    if pct == float("inf"):
        return "∞"
    return f"{pct:.0f}%"


class ModelSelector:
    """Ties hardware, catalog and engine together for display"""

    def __init__(
        self,
        models_file: Optional[Path] = None,
        config_file: Optional[Path] = None,
        console: Optional[Console] = None,
    ):
        self.console = console or Console()
        self.hardware_detector = HardwareDetector()
        self.database = ModelDatabase(models_file)
        self.config_file = config_file
        self.user_config = load_user_config(config_file)
        self.policy: FitPolicy = policy_from_config(self.user_config)
        self.provider = OllamaProvider()
        self.specs: Optional[SystemSpecs] = None
        self.installed: set = set()
        self.fits: List[ModelFit] = []
        self.sort_column = self._saved_sort_column()
        self.installed_first = bool(self.user_config.get("installed_first", False))

    def _saved_sort_column(self) -> SortColumn:
        value = self.user_config.get("sort_column", SortColumn.SCORE.value)
        try:
            return SortColumn(value)
        except ValueError:
            logger.warning(f"Ignoring unknown sort column in config: {value}")
            return SortColumn.SCORE

    async def detect_hardware(self, use_cache: bool = True) -> SystemSpecs:
        """Detect hardware with progress indicator"""
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.console,
            transient=True
        ) as progress:
            task = progress.add_task("Detecting hardware...", total=None)
            await self.hardware_detector.detect_system_info(use_cache)
            self.specs = self.hardware_detector.get_specs()
            progress.update(task, description="Hardware detection complete")
        return self.specs

    async def refresh_installed(self) -> int:
        """Re-reads the installed set and re-ranks"""
        self.installed = await self.provider.installed_models()
        count = mark_installed(self.fits, self.installed)
        self.rerank()
        return count

    def analyze(self, context_limit: Optional[int] = None) -> List[ModelFit]:
        """Replaces the fit collection with a fresh analysis"""
        if self.specs is None:
            raise RuntimeError("No hardware descriptor. Detect or supply hardware first.")
        fits = analyze_all(self.database.get_all_models(), self.specs, context_limit, self.policy)
        mark_installed(fits, self.installed)
        self.fits = rank(fits, self.installed_first, self.sort_column)
        logger.info(f"Analyzed {len(self.fits)} models")
        return self.fits

    def rerank(self) -> List[ModelFit]:
        self.fits = rank(self.fits, self.installed_first, self.sort_column)
        return self.fits

    def display_hardware_info(self) -> None:
        """Display hardware information in a formatted panel"""
        if not self.specs:
            self.console.print("No hardware information available", style="red")
            return
        specs = self.specs

        system_table = Table(title="System Information", show_header=False)
        system_table.add_column("Property", style="cyan")
        system_table.add_column("Value", style="white")

        system_table.add_row("CPU", f"{specs.cpu_name} ({specs.cpu_cores} cores)")
        system_table.add_row("Total RAM", f"{specs.total_ram_gb:.1f} GB")
        system_table.add_row("GPU", specs.gpu_name or "None")
        system_table.add_row("Backend", specs.gpu_backend.label)
        if specs.gpu_vram_gb is not None:
            vram = f"{specs.gpu_vram_gb:.1f} GB"
            if specs.unified_memory:
                vram += " (unified)"
            system_table.add_row("VRAM", vram)
        elif specs.unified_memory:
            system_table.add_row("VRAM", "Unified with system RAM")
        if self.provider.is_available():
            system_table.add_row("Ollama", f"{len(self.installed)} installed tags")

        self.console.print(Panel(system_table, title="Hardware", border_style="blue"))

    def display_fits(self, fits: Sequence[ModelFit], limit: Optional[int] = None) -> None:
        """Display ranked fits in a formatted table"""
        if not fits:
            self.console.print(Panel(
                "[red]No models match the current filters.[/red]",
                title="No Models",
                border_style="red"
            ))
            return

        shown = list(fits)[:limit] if limit else list(fits)
        marker = "" if not self.installed_first else ", installed first"
        table = Table(title=f"Model Fit - sorted by {self.sort_column.label}{marker}")
        table.add_column("#", style="bold cyan", justify="right")
        table.add_column("Model", style="bold white", min_width=20)
        table.add_column("Params", style="yellow", justify="right")
        table.add_column("Quant", style="green")
        table.add_column("Mode", style="blue")
        table.add_column("Mem", justify="right")
        table.add_column("tok/s", style="magenta", justify="right")
        table.add_column("Ctx", justify="right")
        table.add_column("Score", style="bold", justify="right")
        table.add_column("Fit")

        for i, fit in enumerate(shown, 1):
            name = fit.model.name
            if fit.installed:
                name += " ✓"
            table.add_row(
                str(i),
                name,
                fit.model.parameter_count,
                fit.best_quant,
                fit.run_mode.label,
                f"{fit.memory_required_gb:.1f}/{fit.memory_available_gb:.1f} GB "
                f"({format_utilization(fit.utilization_pct)})",
                f"{fit.estimated_tps:.1f}",
                format_context(fit.model.context_length),
                f"{fit.score:.0f}",
                f"[{FIT_STYLES[fit.fit_level]}]{fit.fit_emoji} {fit.fit_level.label}[/]",
            )

        self.console.print(table)
        if limit and len(fits) > limit:
            self.console.print(f"[dim]{len(fits) - limit} more not shown[/dim]")

    def display_detail(self, fit: ModelFit) -> None:
        """Display one fit with its score breakdown and notes"""
        model = fit.model
        info_table = Table(title=model.name, show_header=False)
        info_table.add_column("Property", style="cyan")
        info_table.add_column("Value", style="white")

        info_table.add_row("Provider", model.provider)
        info_table.add_row("Parameters", model.parameter_count)
        if model.is_moe and model.active_params_b is not None:
            info_table.add_row("Active Parameters", f"{model.active_params_b:g}B (mixture of experts)")
        info_table.add_row("Use Case", model.use_case.label)
        info_table.add_row("Context Length", f"{model.context_length:,} tokens")
        info_table.add_row("Released", model.release_date or "Unknown")
        info_table.add_row("Installed", "Yes" if fit.installed else "No")
        info_table.add_row("Best Quantization", fit.best_quant)
        info_table.add_row("Run Mode", fit.run_mode.label)
        info_table.add_row(
            "Memory",
            f"{fit.memory_required_gb:.1f} GB of {fit.memory_available_gb:.1f} GB "
            f"({format_utilization(fit.utilization_pct)})"
        )
        info_table.add_row("Estimated Speed", f"{fit.estimated_tps:.1f} tok/s")
        info_table.add_row(
            "Fit", f"[{FIT_STYLES[fit.fit_level]}]{fit.fit_emoji} {fit.fit_level.label}[/]"
        )

        scores_table = Table(title="Score Breakdown")
        scores_table.add_column("Component", style="cyan")
        scores_table.add_column("Score", style="yellow", justify="right")
        scores_table.add_column("Weight", style="dim", justify="right")
        components = fit.score_components
        for label, value, weight in (
            ("Fit", components.fit, self.policy.weight_fit),
            ("Speed", components.speed, self.policy.weight_speed),
            ("Quality", components.quality, self.policy.weight_quality),
            ("Context", components.context, self.policy.weight_context),
        ):
            scores_table.add_row(label, f"{value:.1f}", f"{weight:.2f}")
        scores_table.add_row("Total", f"[bold]{fit.score:.1f}[/bold]", "")

        self.console.print(Panel(info_table, border_style="blue"))
        self.console.print(Panel(scores_table, border_style="yellow"))
        if fit.notes:
            self.console.print(Panel(
                "\n".join(f"• {note}" for note in fit.notes),
                title="Notes",
                border_style="cyan"
            ))

    def save_results(self, fits: Sequence[ModelFit], export_format: str, path: Optional[Path] = None) -> Path:
        """Write fits to a file, returning its path"""
        if path is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            path = Path(f"llmfit_{timestamp}.{export_format}")
        path.write_text(export_fits(fits, export_format))
        logger.info(f"Saved {len(fits)} fits to {path}")
        return path

    def _save_preferences(self) -> None:
        self.user_config["sort_column"] = self.sort_column.value
        self.user_config["installed_first"] = self.installed_first
        save_user_config(self.user_config, self.config_file)

    async def run_interactive(self, context_limit: Optional[int] = None) -> None:
        """Browse, filter and inspect fits"""
        self.console.print(Panel(
            "[bold cyan]llmfit[/bold cyan]\n"
            "Which models will run well on this machine",
            title="Welcome",
            border_style="blue"
        ))

        if self.specs is None:
            await self.detect_hardware()
        self.installed = await self.provider.installed_models()
        self.analyze(context_limit)
        self.display_hardware_info()

        query = FitQuery()
        while True:
            visible = query.apply(self.fits)
            self.display_fits(visible, limit=25)
            self.console.print(
                "[dim][s] sort  [i] installed first  [f] fit filter  [/] search  "
                "[number] details  [e] export  [q] quit[/dim]"
            )
            choice = Prompt.ask("Action", default="q").strip()

            if choice == "q":
                break
            elif choice == "s":
                self.sort_column = self.sort_column.next()
                self.rerank()
                self._save_preferences()
            elif choice == "i":
                self.installed_first = not self.installed_first
                self.rerank()
                self._save_preferences()
            elif choice == "f":
                query.fit = query.fit.next()
                self.console.print(f"Fit filter: [cyan]{query.fit.value}[/cyan]")
            elif choice == "/":
                query.search = Prompt.ask("Search", default="")
            elif choice == "e":
                export_format = Prompt.ask("Format", choices=list(EXPORT_FORMATS), default="json")
                saved = self.save_results(visible, export_format)
                self.console.print(f"Saved to [bold green]{saved}[/bold green]")
            elif choice.isdigit() and 1 <= int(choice) <= len(visible):
                self.display_detail(visible[int(choice) - 1])
                if not Confirm.ask("Back to list?", default=True):
                    break
            else:
                self.console.print("[red]Unknown action.[/red]")
