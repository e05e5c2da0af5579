"""
Rich tables and JSON output for system specs, model lists and fit results
"""

import json
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .fit import FitLevel, ModelFit
from .hardware import GPUInfo, SystemSpecs
from .models import ModelRecord

FIT_STYLES = {
    FitLevel.PERFECT: "green",
    FitLevel.GOOD: "yellow",
    FitLevel.MARGINAL: "dark_orange",
    FitLevel.TOO_TIGHT: "red",
}


def _round(value: Optional[float], digits: int) -> Optional[float]:
    return round(value, digits) if value is not None else None


def _context_label(context_length: int) -> str:
    return f"{context_length // 1000}k"


def describe_gpu(gpu: GPUInfo) -> str:
    """One-line summary of a GPU for the system panel"""
    backend = gpu.backend.label
    if gpu.unified_memory:
        return f"{gpu.name} (unified memory, {gpu.vram_gb or 0.0:.2f} GB shared, {backend})"
    if gpu.vram_gb:
        if gpu.count > 1:
            return f"{gpu.name} x{gpu.count} ({gpu.vram_gb:.2f} GB VRAM total, {backend})"
        return f"{gpu.name} ({gpu.vram_gb:.2f} GB VRAM, {backend})"
    return f"{gpu.name} (VRAM unknown, {backend})"


def system_to_dict(system: SystemSpecs) -> Dict[str, Any]:
    return {
        "os": system.os,
        "arch": system.arch,
        "total_ram_gb": round(system.total_ram_gb, 2),
        "available_ram_gb": round(system.available_ram_gb, 2),
        "cpu_cores": system.cpu_cores,
        "cpu_name": system.cpu_name,
        "has_gpu": system.has_gpu,
        "gpu_vram_gb": _round(system.gpu_vram_gb, 2),
        "gpu_name": system.gpu_name,
        "gpu_count": system.gpu_count,
        "unified_memory": system.unified_memory,
        "backend": system.backend.label,
        "wsl": system.is_wsl,
        "gpus": [
            {
                "name": gpu.name,
                "vram_gb": _round(gpu.vram_gb, 2),
                "backend": gpu.backend.label,
                "count": gpu.count,
                "unified_memory": gpu.unified_memory,
            }
            for gpu in system.gpus
        ],
    }


def fit_to_dict(fit: ModelFit) -> Dict[str, Any]:
    model = fit.model
    return {
        "name": model.name,
        "provider": model.provider,
        "parameter_count": model.parameter_count,
        "params_b": round(model.params_b(), 2),
        "context_length": model.context_length,
        "use_case": model.use_case,
        "category": fit.use_case.label,
        "is_moe": model.is_moe,
        "fit_level": fit.fit_level.label,
        "run_mode": fit.run_mode.label,
        "score": fit.score,
        "score_components": {
            "quality": round(fit.score_components.quality, 1),
            "speed": round(fit.score_components.speed, 1),
            "fit": round(fit.score_components.fit, 1),
            "context": round(fit.score_components.context, 1),
        },
        "estimated_tps": round(fit.estimated_tps, 1),
        "best_quant": fit.best_quant,
        "memory_required_gb": round(fit.memory_required_gb, 2),
        "memory_available_gb": round(fit.memory_available_gb, 2),
        "utilization_pct": _round(fit.utilization_pct, 1),
        "moe_offloaded_gb": _round(fit.moe_offloaded_gb, 2),
        "notes": list(fit.notes),
    }


def system_to_json(system: SystemSpecs) -> str:
    return json.dumps({"system": system_to_dict(system)}, indent=2, ensure_ascii=False)


def models_to_json(models: Sequence[ModelRecord]) -> str:
    return json.dumps({"models": [m.to_dict() for m in models]}, indent=2, ensure_ascii=False)


def fits_to_json(system: SystemSpecs, fits: Sequence[ModelFit]) -> str:
    return json.dumps(
        {"system": system_to_dict(system), "models": [fit_to_dict(f) for f in fits]},
        indent=2,
        ensure_ascii=False,
    )


class FitReport:
    """Renders hardware and fit analysis to a rich console"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def display_system(self, system: SystemSpecs) -> None:
        """Display hardware information in a formatted panel"""
        table = Table(show_header=False)
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="white")

        table.add_row("Operating System", f"{system.os} ({system.arch})")
        if system.is_wsl:
            table.add_row("Environment", "WSL")
        table.add_row("CPU", f"{system.cpu_name} ({system.cpu_cores} cores)")
        table.add_row("Total RAM", f"{system.total_ram_gb:.2f} GB")
        table.add_row("Available RAM", f"{system.available_ram_gb:.2f} GB")
        table.add_row("Backend", system.backend.label)

        if not system.gpus:
            table.add_row("GPU", "Not detected")
        for index, gpu in enumerate(system.gpus, 1):
            label = f"GPU {index}" if len(system.gpus) > 1 else "GPU"
            table.add_row(label, describe_gpu(gpu))

        self.console.print(Panel(table, title="System Specifications", border_style="blue"))

    def display_models(self, models: Sequence[ModelRecord], title: str = "Available Models") -> None:
        """Model list without fit analysis"""
        table = Table(title=f"{title} ({len(models)} total)")
        table.add_column("Model", style="cyan")
        table.add_column("Provider", style="white")
        table.add_column("Size", style="yellow", justify="right")
        table.add_column("Quant", style="green")
        table.add_column("Context", style="blue", justify="right")
        table.add_column("MoE", style="magenta", justify="center")

        for model in models:
            table.add_row(
                model.name,
                model.provider,
                model.parameter_count,
                model.quantization,
                _context_label(model.context_length),
                "✅" if model.is_moe else "",
            )
        self.console.print(table)

    def display_fits(self, fits: Sequence[ModelFit], title: str = "Model Fit Analysis") -> None:
        """Display ranked fit results in a formatted table"""
        if not fits:
            self.console.print(Panel(
                "[red]No compatible models found for your system.[/red]",
                title="No Suitable Models",
                border_style="red",
            ))
            return

        table = Table(title=f"{title} ({len(fits)} models)")
        table.add_column("Status", min_width=12)
        table.add_column("Model", style="bold white", min_width=20)
        table.add_column("Provider", style="dim")
        table.add_column("Size", justify="right")
        table.add_column("Score", style="magenta", justify="right")
        table.add_column("tok/s", justify="right")
        table.add_column("Quant", style="green")
        table.add_column("Mode", style="cyan")
        table.add_column("Mem %", justify="right")
        table.add_column("Context", style="blue", justify="right")

        for fit in fits:
            utilization = f"{fit.utilization_pct:.1f}%" if fit.utilization_pct is not None else "-"
            table.add_row(
                f"{fit.fit_level.emoji} {fit.fit_level.label}",
                fit.model.name,
                fit.model.provider,
                fit.model.parameter_count,
                f"{fit.score:.0f}",
                f"{fit.estimated_tps:.1f}",
                fit.best_quant,
                fit.run_mode.label,
                utilization,
                _context_label(fit.model.context_length),
                style=FIT_STYLES[fit.fit_level] if fit.fit_level == FitLevel.TOO_TIGHT else None,
            )
        self.console.print(table)

    def display_info(self, fit: ModelFit) -> None:
        """Detailed view of one model and its fit on this machine"""
        model = fit.model
        components = fit.score_components

        info = Table(show_header=False)
        info.add_column("Property", style="cyan")
        info.add_column("Value", style="white")
        info.add_row("Provider", model.provider)
        info.add_row("Parameters", model.parameter_count or f"{model.params_b():.1f}B")
        info.add_row("Quantization", model.quantization)
        info.add_row("Best Quant", fit.best_quant)
        info.add_row("Context Length", f"{model.context_length:,} tokens")
        info.add_row("Use Case", model.use_case)
        info.add_row("Category", fit.use_case.label)
        info.add_row("Overall Score", f"{fit.score:.1f} / 100")
        info.add_row(
            "Breakdown",
            f"Quality {components.quality:.0f}  Speed {components.speed:.0f}  "
            f"Fit {components.fit:.0f}  Context {components.context:.0f}",
        )
        info.add_row("Estimated Speed", f"{fit.estimated_tps:.1f} tok/s")

        if model.min_vram_gb is not None:
            info.add_row("Min VRAM", f"{model.min_vram_gb:.1f} GB")
        info.add_row("Min RAM", f"{model.min_ram_gb:.1f} GB (CPU inference)")
        info.add_row("Recommended RAM", f"{model.recommended_ram_gb:.1f} GB")

        for label, value in self._moe_rows(fit):
            info.add_row(label, value)

        utilization = f"{fit.utilization_pct:.1f}%" if fit.utilization_pct is not None else "-"
        info.add_row("Status", f"{fit.fit_level.emoji} {fit.fit_level.label}")
        info.add_row("Run Mode", fit.run_mode.label)
        info.add_row(
            "Memory Utilization",
            f"{utilization} ({fit.memory_required_gb:.1f} / {fit.memory_available_gb:.1f} GB)",
        )

        self.console.print(Panel(info, title=model.name, border_style=FIT_STYLES[fit.fit_level]))
        if fit.notes:
            self.console.print(Panel("\n".join(f"• {note}" for note in fit.notes), title="Notes", border_style="dim"))

    def _moe_rows(self, fit: ModelFit) -> List[tuple]:
        model = fit.model
        if not model.is_moe:
            return []
        rows = []
        if model.num_experts and model.active_experts:
            rows.append(("Experts", f"{model.active_experts} active / {model.num_experts} total per token"))
        active_vram = model.moe_active_vram_gb()
        if active_vram is not None and model.min_vram_gb is not None:
            rows.append(("Active VRAM", f"{active_vram:.1f} GB (vs {model.min_vram_gb:.1f} GB full model)"))
        if fit.moe_offloaded_gb is not None:
            rows.append(("Offloaded", f"{fit.moe_offloaded_gb:.1f} GB inactive experts in RAM"))
        return rows
