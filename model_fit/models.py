"""
Model records, use-case classification and the model database
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from platformdirs import user_config_dir

from .quant import quant_bpp, quant_hierarchy

logger = logging.getLogger(__name__)

APP_NAME = "model-fit"
CACHE_ENV_VAR = "MODEL_FIT_CACHE"
BUNDLED_MODELS_FILE = Path(__file__).parent / "models.json"

# Fallback size when the parameter count cannot be read
DEFAULT_PARAMS_B = 7.0
KV_CACHE_GB_PER_B_TOKEN = 0.000008
RUNTIME_OVERHEAD_GB = 0.5
MIN_CONTEXT_FOR_RETRY = 1024

GIB = 1024 ** 3
MOE_VRAM_BUFFER = 1.1
MOE_MIN_ACTIVE_VRAM_GB = 0.5
# Approximate share of weights (attention, embeddings) every token touches in
# an MoE model. Placeholder until per-architecture figures are available.
MOE_SHARED_FRACTION = 0.05

# Dataset fields coerced on load; a value that cannot be converted rejects the entry
STR_FIELDS = ("name", "provider", "parameter_count", "quantization", "use_case")
FLOAT_FIELDS = ("min_ram_gb", "recommended_ram_gb", "min_vram_gb")
INT_FIELDS = ("parameters_raw", "context_length", "num_experts", "active_experts", "active_parameters")
TRUE_STRINGS = ("true", "yes", "1")
FALSE_STRINGS = ("false", "no", "0", "")


class UseCase(Enum):
    """Model category used for scoring weights and filtering"""
    GENERAL = "general"
    CODING = "coding"
    REASONING = "reasoning"
    CHAT = "chat"
    MULTIMODAL = "multimodal"
    EMBEDDING = "embedding"

    @property
    def label(self) -> str:
        return self.value.title()

    @classmethod
    def from_label(cls, label: str) -> Optional["UseCase"]:
        """Map a user-supplied label to a use case, None when unrecognized"""
        return USE_CASE_ALIASES.get((label or "").strip().lower())


USE_CASE_ALIASES: Dict[str, UseCase] = {
    "general": UseCase.GENERAL,
    "coding": UseCase.CODING,
    "code": UseCase.CODING,
    "reasoning": UseCase.REASONING,
    "reason": UseCase.REASONING,
    "chat": UseCase.CHAT,
    "multimodal": UseCase.MULTIMODAL,
    "vision": UseCase.MULTIMODAL,
    "embedding": UseCase.EMBEDDING,
    "embed": UseCase.EMBEDDING,
}

# (field, substring, use case) checked in order; first match wins.
# field is "name" or "use_case", both compared lower-cased.
USE_CASE_RULES: List[Tuple[str, str, UseCase]] = [
    ("use_case", "embedding", UseCase.EMBEDDING),
    ("name", "embed", UseCase.EMBEDDING),
    ("name", "bge", UseCase.EMBEDDING),
    ("name", "code", UseCase.CODING),
    ("use_case", "code", UseCase.CODING),
    ("use_case", "vision", UseCase.MULTIMODAL),
    ("use_case", "multimodal", UseCase.MULTIMODAL),
    ("use_case", "reason", UseCase.REASONING),
    ("use_case", "chain-of-thought", UseCase.REASONING),
    ("name", "deepseek-r1", UseCase.REASONING),
    ("use_case", "chat", UseCase.CHAT),
    ("use_case", "instruction", UseCase.CHAT),
]


def estimate_active_parameters(total_params: int, num_experts: int, active_experts: int) -> int:
    """Approximate per-token parameters of an MoE model from its expert counts"""
    shared = int(total_params * MOE_SHARED_FRACTION)
    per_expert = (total_params - shared) // max(num_experts, 1)
    return shared + active_experts * per_expert


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


def _coerce_field(key: str, value: Any) -> Any:
    """Convert a dataset value to the field's type; raises ValueError/TypeError"""
    if key in STR_FIELDS:
        return str(value)
    if key in FLOAT_FIELDS:
        return float(value)
    if key in INT_FIELDS:
        return value if isinstance(value, int) else int(float(value))
    if key == "is_moe":
        return _coerce_bool(value)
    return value


@dataclass(frozen=True)
class ModelRecord:
    """One candidate model and its published requirements"""
    name: str
    provider: str = ""
    parameter_count: str = ""
    parameters_raw: Optional[int] = None
    min_ram_gb: float = 0.0
    recommended_ram_gb: float = 0.0
    min_vram_gb: Optional[float] = None
    quantization: str = "Q4_K_M"
    context_length: int = 4096
    use_case: str = ""
    is_moe: bool = False
    num_experts: Optional[int] = None
    active_experts: Optional[int] = None
    active_parameters: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelRecord":
        """Build a record from a dataset entry, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        values = {
            key: _coerce_field(key, value)
            for key, value in data.items()
            if key in known and value is not None
        }
        if "name" not in values:
            raise KeyError("name")

        if (
            values.get("is_moe")
            and "active_parameters" not in values
            and values.get("parameters_raw")
            and values.get("num_experts")
            and values.get("active_experts")
        ):
            values["active_parameters"] = estimate_active_parameters(
                int(values["parameters_raw"]),
                int(values["num_experts"]),
                int(values["active_experts"]),
            )

        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    @property
    def min_vram_or_ram_gb(self) -> float:
        """Minimum VRAM, or minimum RAM when the dataset gives no VRAM figure"""
        return self.min_vram_gb if self.min_vram_gb is not None else self.min_ram_gb

    def params_b(self) -> float:
        """Parameter count in billions"""
        if self.parameters_raw is not None:
            return self.parameters_raw / 1e9

        text = (self.parameter_count or "").strip().upper()
        scale = {"B": 1.0, "M": 0.001}.get(text[-1:])
        if scale is None:
            return DEFAULT_PARAMS_B
        try:
            return float(text[:-1].strip()) * scale
        except ValueError:
            return DEFAULT_PARAMS_B

    def estimate_memory_gb(self, quant: str, context_length: int) -> float:
        """Weights plus KV cache plus fixed runtime overhead, in GB"""
        params = self.params_b()
        weights = params * quant_bpp(quant)
        kv_cache = KV_CACHE_GB_PER_B_TOKEN * params * context_length
        return weights + kv_cache + RUNTIME_OVERHEAD_GB

    def best_quant_for_budget(self, budget_gb: float, context_length: int) -> Tuple[str, float]:
        """
        Highest-fidelity quantization whose estimate fits the budget.

        Retries at half the context length, then falls back to the model's
        own quantization so a result is always returned.
        """
        for quant in quant_hierarchy():
            memory = self.estimate_memory_gb(quant, context_length)
            if memory <= budget_gb:
                return quant, memory

        half_context = context_length // 2
        if half_context >= MIN_CONTEXT_FOR_RETRY:
            for quant in quant_hierarchy():
                memory = self.estimate_memory_gb(quant, half_context)
                if memory <= budget_gb:
                    return quant, memory

        return self.quantization, self.estimate_memory_gb(self.quantization, context_length)

    def moe_active_vram_gb(self) -> Optional[float]:
        """VRAM needed for the active experts, None for dense models"""
        if not self.is_moe or self.active_parameters is None:
            return None
        size_gb = self.active_parameters * quant_bpp(self.quantization) / GIB
        return max(size_gb * MOE_VRAM_BUFFER, MOE_MIN_ACTIVE_VRAM_GB)

    def moe_offloaded_ram_gb(self) -> Optional[float]:
        """System RAM needed for inactive experts, None for dense models"""
        if not self.is_moe or self.active_parameters is None or self.parameters_raw is None:
            return None
        inactive = self.parameters_raw - self.active_parameters
        if inactive <= 0:
            return 0.0
        return inactive * quant_bpp(self.quantization) / GIB


def classify_use_case(model: ModelRecord) -> UseCase:
    """Infer the use-case category from the model name and description"""
    haystacks = {
        "name": model.name.lower(),
        "use_case": (model.use_case or "").lower(),
    }
    for field_name, needle, use_case in USE_CASE_RULES:
        if needle in haystacks[field_name]:
            return use_case
    return UseCase.GENERAL


def default_cache_path() -> Path:
    """Per-user overlay file, overridable through MODEL_FIT_CACHE"""
    override = os.environ.get(CACHE_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path(user_config_dir(APP_NAME)) / "models.json"


def merge_models(base: Iterable[ModelRecord], overlay: Iterable[ModelRecord]) -> List[ModelRecord]:
    """Overlay entries replace base entries by name; new names are appended"""
    base = list(base)
    overlay = list(overlay)
    by_name = {model.name: model for model in overlay}
    merged = [by_name.pop(model.name, model) for model in base]
    seen = {model.name for model in merged}
    for model in overlay:
        if model.name not in seen:
            merged.append(model)
            seen.add(model.name)
    return merged


def _records_from_json(data: Any, source: Path) -> List[ModelRecord]:
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array of models in {source}")

    records = []
    for entry in data:
        if not isinstance(entry, dict):
            logger.warning(f"Skipping non-object entry in {source}")
            continue
        try:
            records.append(ModelRecord.from_dict(entry))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping invalid model entry in {source}: {e}")
    return records


class ModelDatabase:
    """Bundled model list merged with the user's overlay file"""

    def __init__(self, cache_file: Optional[Path] = None, models_file: Optional[Path] = None):
        self.models_file = models_file or BUNDLED_MODELS_FILE
        self.cache_file = cache_file or default_cache_path()
        self.models: List[ModelRecord] = []
        self._load_models()

    def _load_models(self) -> None:
        """Load bundled models, then apply the overlay if it is readable"""
        try:
            with open(self.models_file, "r", encoding="utf-8") as f:
                bundled = _records_from_json(json.load(f), self.models_file)
        except FileNotFoundError:
            logger.error(f"Models file not found: {self.models_file}")
            raise
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in models file: {e}")
            raise

        overlay = self._load_overlay()
        self.models = merge_models(bundled, overlay)
        logger.debug(f"Loaded {len(self.models)} models ({len(overlay)} from {self.cache_file})")

    def _load_overlay(self) -> List[ModelRecord]:
        if not self.cache_file.exists():
            logger.debug(f"No model overlay at {self.cache_file}")
            return []
        try:
            with open(self.cache_file, "r", encoding="utf-8") as f:
                return _records_from_json(json.load(f), self.cache_file)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read model overlay {self.cache_file}: {e} (using bundled list)")
            return []

    def all_models(self) -> List[ModelRecord]:
        return list(self.models)

    def get_model(self, name: str) -> Optional[ModelRecord]:
        """Get model by exact name"""
        for model in self.models:
            if model.name == name:
                return model
        return None

    def find_models(self, query: str) -> List[ModelRecord]:
        """Case-insensitive match on name, provider or parameter count"""
        needle = query.lower()
        return [
            model for model in self.models
            if needle in model.name.lower()
            or needle in model.provider.lower()
            or needle in model.parameter_count.lower()
        ]

    def write_overlay(self, records: Iterable[ModelRecord]) -> None:
        """Replace the overlay file with the given records"""
        self.cache_file.parent.mkdir(parents=True, exist_ok=True)
        payload = [record.to_dict() for record in records]
        with open(self.cache_file, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        self._load_models()
        logger.info(f"Wrote {len(payload)} models to {self.cache_file}")

    def add_to_overlay(self, record: ModelRecord) -> None:
        """Add or replace one record in the overlay file"""
        self.write_overlay(merge_models(self._load_overlay(), [record]))
