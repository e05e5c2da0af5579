"""
Fit analysis: run mode, fit level, speed estimate and scoring for one model
on one machine, plus ranking and filtering of the results
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .hardware import GPUBackend, SystemSpecs
from .models import ModelRecord, UseCase, classify_use_case
from .quant import quant_quality_penalty, quant_speed_multiplier

logger = logging.getLogger(__name__)

HEADROOM_FACTOR = 1.2
LOW_CORE_COUNT = 4
MANY_CORES = 8
MANY_CORES_BONUS = 1.1
MIN_TPS = 0.1
MIN_PARAMS_B = 0.1


class FitLevel(Enum):
    """How comfortably the memory requirement is met"""
    PERFECT = "Perfect"
    GOOD = "Good"
    MARGINAL = "Marginal"
    TOO_TIGHT = "Too Tight"

    @property
    def label(self) -> str:
        return self.value

    @property
    def emoji(self) -> str:
        return FIT_EMOJI[self]


FIT_EMOJI = {
    FitLevel.PERFECT: "🟢",
    FitLevel.GOOD: "🟡",
    FitLevel.MARGINAL: "🟠",
    FitLevel.TOO_TIGHT: "🔴",
}


class RunMode(Enum):
    """Where the weights live during inference"""
    GPU = "GPU"
    MOE_OFFLOAD = "MoE"
    CPU_OFFLOAD = "CPU+GPU"
    CPU_ONLY = "CPU"

    @property
    def label(self) -> str:
        return self.value


# Tokens/sec of a 1B model at baseline quantization
BACKEND_SPEED: Dict[GPUBackend, float] = {
    GPUBackend.CUDA: 220.0,
    GPUBackend.METAL: 160.0,
    GPUBackend.ROCM: 180.0,
    GPUBackend.VULKAN: 150.0,
    GPUBackend.SYCL: 100.0,
    GPUBackend.CPU_ARM: 90.0,
    GPUBackend.CPU_X86: 70.0,
}

RUN_MODE_SPEED_FACTOR: Dict[RunMode, float] = {
    RunMode.GPU: 1.0,
    RunMode.MOE_OFFLOAD: 0.8,
    RunMode.CPU_OFFLOAD: 0.5,
    RunMode.CPU_ONLY: 0.3,
}

# (upper bound in billions, base quality); first bound the size is below wins
QUALITY_BY_SIZE: List[Tuple[float, float]] = [
    (1, 30), (3, 45), (7, 60), (10, 75), (20, 82), (40, 89),
]
QUALITY_LARGEST = 95.0

# Name substring -> quality bonus, first match wins
FAMILY_BONUS: List[Tuple[Tuple[str, ...], float]] = [
    (("qwen",), 2.0),
    (("deepseek",), 3.0),
    (("llama",), 2.0),
    (("mistral", "mixtral"), 1.0),
    (("gemma",), 1.0),
    (("starcoder",), 1.0),
]

CODING_NAME_HINTS = ("code", "starcoder", "wizard")
TASK_BONUS = 6.0
REASONING_SIZE_BONUS = 5.0
REASONING_MIN_PARAMS_B = 13

SPEED_TARGET_TPS = {UseCase.REASONING: 25.0, UseCase.EMBEDDING: 200.0}
DEFAULT_SPEED_TARGET_TPS = 40.0

CONTEXT_TARGET = {UseCase.CODING: 8192, UseCase.REASONING: 8192, UseCase.EMBEDDING: 512}
DEFAULT_CONTEXT_TARGET = 4096

# quality, speed, fit, context
SCORE_WEIGHTS: Dict[UseCase, Tuple[float, float, float, float]] = {
    UseCase.GENERAL: (0.45, 0.30, 0.15, 0.10),
    UseCase.CODING: (0.50, 0.20, 0.15, 0.15),
    UseCase.REASONING: (0.55, 0.15, 0.15, 0.15),
    UseCase.CHAT: (0.40, 0.35, 0.15, 0.10),
    UseCase.MULTIMODAL: (0.50, 0.20, 0.15, 0.15),
    UseCase.EMBEDDING: (0.30, 0.40, 0.20, 0.10),
}


@dataclass(frozen=True)
class ScoreComponents:
    """Per-dimension scores, each in [0, 100]"""
    quality: float
    speed: float
    fit: float
    context: float


@dataclass(frozen=True)
class ModelFit:
    """Analysis result for one model on the current system"""
    model: ModelRecord
    system: SystemSpecs
    fit_level: FitLevel
    run_mode: RunMode
    memory_required_gb: float
    memory_available_gb: float
    utilization_pct: Optional[float]
    best_quant: str
    estimated_tps: float
    use_case: UseCase
    score_components: ScoreComponents
    score: float
    notes: Tuple[str, ...] = field(default_factory=tuple)
    moe_offloaded_gb: Optional[float] = None


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def analyze(model: ModelRecord, system: SystemSpecs) -> ModelFit:
    """Decide run mode, fit level, best quantization and score for one model"""
    notes: List[str] = []
    run_mode, required, available = _select_run_mode(model, system, notes)

    fit_level = score_fit_level(required, available, model.recommended_ram_gb, run_mode)
    utilization = required / available * 100 if available > 0 else None

    if run_mode == RunMode.CPU_ONLY:
        notes.append("No GPU -- inference will be slow")
    if run_mode in (RunMode.CPU_OFFLOAD, RunMode.CPU_ONLY) and system.cpu_cores < LOW_CORE_COUNT:
        notes.append("Low CPU core count may bottleneck inference")

    moe_offloaded = model.moe_offloaded_ram_gb() if run_mode == RunMode.MOE_OFFLOAD else None

    best_quant, _ = model.best_quant_for_budget(available, model.context_length)
    if best_quant != model.quantization:
        notes.append(f"Best quantization for hardware: {best_quant} (model default: {model.quantization})")

    use_case = classify_use_case(model)
    tps = estimate_tps(model, best_quant, system, run_mode)
    components = ScoreComponents(
        quality=quality_score(model, best_quant, use_case),
        speed=speed_score(tps, use_case),
        fit=fit_score(required, available),
        context=context_score(model, use_case),
    )
    notes.append(f"Estimated speed: {tps:.1f} tok/s")

    return ModelFit(
        model=model,
        system=system,
        fit_level=fit_level,
        run_mode=run_mode,
        memory_required_gb=required,
        memory_available_gb=available,
        utilization_pct=utilization,
        best_quant=best_quant,
        estimated_tps=tps,
        use_case=use_case,
        score_components=components,
        score=weighted_score(components, use_case),
        notes=tuple(notes),
        moe_offloaded_gb=moe_offloaded,
    )


def analyze_all(models: Iterable[ModelRecord], system: SystemSpecs) -> List[ModelFit]:
    return [analyze(model, system) for model in models]


def _select_run_mode(model: ModelRecord, system: SystemSpecs, notes: List[str]) -> Tuple[RunMode, float, float]:
    """Returns (run mode, required GB, available GB)"""
    vram = system.gpu_vram_gb
    min_vram = model.min_vram_or_ram_gb

    if not system.has_gpu:
        return _cpu_only(model, system, notes)

    if vram is None:
        notes.append("GPU detected but VRAM unknown")
        return _cpu_only(model, system, notes)

    if system.unified_memory:
        notes.append("Unified memory: GPU and CPU share the same pool")
        if model.is_moe and model.num_experts:
            notes.append(
                f"MoE: {model.active_experts or 0}/{model.num_experts} experts active "
                "(all share unified memory pool)"
            )
        return RunMode.GPU, min_vram, vram

    if min_vram <= vram:
        notes.append("GPU: model loaded into VRAM")
        if model.is_moe and model.num_experts:
            notes.append(f"MoE: all {model.num_experts} experts loaded in VRAM (optimal)")
        return RunMode.GPU, min_vram, vram

    if model.is_moe:
        return _moe_offload(model, system, vram, min_vram, notes)

    if model.min_ram_gb <= system.available_ram_gb:
        notes.append("GPU: insufficient VRAM, spilling to system RAM")
        notes.append("Performance will be significantly reduced")
        return RunMode.CPU_OFFLOAD, model.min_ram_gb, system.available_ram_gb

    notes.append("Insufficient VRAM and system RAM")
    notes.append(f"Need {min_vram:.1f} GB VRAM or {model.min_ram_gb:.1f} GB system RAM")
    return RunMode.GPU, min_vram, vram


def _cpu_only(model: ModelRecord, system: SystemSpecs, notes: List[str]) -> Tuple[RunMode, float, float]:
    notes.append("CPU-only: model loaded into system RAM")
    if model.is_moe:
        notes.append("MoE architecture, but expert offloading requires a GPU")
    return RunMode.CPU_ONLY, model.min_ram_gb, system.available_ram_gb


def _moe_offload(
    model: ModelRecord,
    system: SystemSpecs,
    vram: float,
    min_vram: float,
    notes: List[str],
) -> Tuple[RunMode, float, float]:
    """Keep active experts in VRAM and the rest in system RAM when both fit"""
    active_vram = model.moe_active_vram_gb()
    if active_vram is not None:
        offloaded = model.moe_offloaded_ram_gb() or 0.0
        if active_vram <= vram and offloaded <= system.available_ram_gb:
            notes.append(
                f"MoE: {model.active_experts or 0}/{model.num_experts or 0} experts active "
                f"in VRAM ({active_vram:.1f} GB)"
            )
            notes.append(f"Inactive experts offloaded to system RAM ({offloaded:.1f} GB)")
            return RunMode.MOE_OFFLOAD, active_vram, vram

    if model.min_ram_gb <= system.available_ram_gb:
        notes.append("MoE: insufficient VRAM for expert offloading")
        notes.append("Spilling entire model to system RAM")
        notes.append("Performance will be significantly reduced")
        return RunMode.CPU_OFFLOAD, model.min_ram_gb, system.available_ram_gb

    # Required stays the full min VRAM, not the active figure; the result is always Too Tight
    notes.append("Insufficient VRAM and system RAM")
    offload_need = active_vram if active_vram is not None else min_vram
    notes.append(f"Need {min_vram:.1f} GB VRAM (full) or {offload_need:.1f} GB (MoE offload) + RAM")
    return RunMode.GPU, min_vram, vram


def score_fit_level(required: float, available: float, recommended: float, run_mode: RunMode) -> FitLevel:
    if required > available:
        return FitLevel.TOO_TIGHT

    if run_mode == RunMode.GPU:
        if recommended <= available:
            return FitLevel.PERFECT
        if available >= required * HEADROOM_FACTOR:
            return FitLevel.GOOD
        return FitLevel.MARGINAL

    if run_mode in (RunMode.MOE_OFFLOAD, RunMode.CPU_OFFLOAD):
        if available >= required * HEADROOM_FACTOR:
            return FitLevel.GOOD
        return FitLevel.MARGINAL

    # CPU-only never rises above Marginal
    return FitLevel.MARGINAL


def estimate_tps(model: ModelRecord, quant: str, system: SystemSpecs, run_mode: RunMode) -> float:
    """Heuristic tokens/sec; not a measurement"""
    params = max(model.params_b(), MIN_PARAMS_B)
    core_bonus = MANY_CORES_BONUS if system.cpu_cores >= MANY_CORES else 1.0

    if run_mode == RunMode.CPU_ONLY:
        k = BACKEND_SPEED[system.cpu_backend]
        tps = k / params * quant_speed_multiplier(quant) * core_bonus
    else:
        k = BACKEND_SPEED.get(system.backend, BACKEND_SPEED[GPUBackend.CPU_X86])
        tps = k / params * quant_speed_multiplier(quant) * core_bonus * RUN_MODE_SPEED_FACTOR[run_mode]
    return max(tps, MIN_TPS)


def quality_score(model: ModelRecord, quant: str, use_case: UseCase) -> float:
    params = model.params_b()
    base = QUALITY_LARGEST
    for upper_bound, value in QUALITY_BY_SIZE:
        if params < upper_bound:
            base = value
            break

    name = model.name.lower()
    family_bonus = 0.0
    for needles, bonus in FAMILY_BONUS:
        if any(needle in name for needle in needles):
            family_bonus = bonus
            break

    task_bonus = 0.0
    if use_case == UseCase.CODING and any(hint in name for hint in CODING_NAME_HINTS):
        task_bonus = TASK_BONUS
    elif use_case == UseCase.REASONING and params >= REASONING_MIN_PARAMS_B:
        task_bonus = REASONING_SIZE_BONUS
    elif use_case == UseCase.MULTIMODAL and ("vision" in name or "vision" in model.use_case.lower()):
        task_bonus = TASK_BONUS

    return _clamp(base + family_bonus + quant_quality_penalty(quant) + task_bonus)


def speed_score(tps: float, use_case: UseCase) -> float:
    target = SPEED_TARGET_TPS.get(use_case, DEFAULT_SPEED_TARGET_TPS)
    return _clamp(tps / target * 100)


def fit_score(required: float, available: float) -> float:
    """Rewards using a healthy share of memory without crowding it"""
    if available <= 0 or required > available:
        return 0.0
    ratio = required / available
    if ratio <= 0.5:
        return 60 + ratio / 0.5 * 40
    if ratio <= 0.8:
        return 100.0
    if ratio <= 0.9:
        return 70.0
    return 50.0


def context_score(model: ModelRecord, use_case: UseCase) -> float:
    target = CONTEXT_TARGET.get(use_case, DEFAULT_CONTEXT_TARGET)
    if model.context_length >= target:
        return 100.0
    if model.context_length >= target // 2:
        return 70.0
    return 30.0


def weighted_score(components: ScoreComponents, use_case: UseCase) -> float:
    wq, ws, wf, wc = SCORE_WEIGHTS.get(use_case, SCORE_WEIGHTS[UseCase.GENERAL])
    raw = (
        components.quality * wq
        + components.speed * ws
        + components.fit * wf
        + components.context * wc
    )
    return round(raw, 1)


def rank_models_by_fit(fits: Iterable[ModelFit]) -> List[ModelFit]:
    """Highest score first, with every Too Tight entry after the rest"""
    return sorted(fits, key=lambda f: (f.fit_level == FitLevel.TOO_TIGHT, -f.score))


def filter_perfect_only(fits: Iterable[ModelFit]) -> List[ModelFit]:
    return [f for f in fits if f.fit_level == FitLevel.PERFECT]


def filter_by_use_case(fits: List[ModelFit], label: str) -> List[ModelFit]:
    """Keep fits of the given category; unknown labels leave the list as is"""
    use_case = UseCase.from_label(label)
    if use_case is None:
        logger.debug(f"Unknown use case {label!r}, not filtering")
        return fits
    return [f for f in fits if f.use_case == use_case]
