"""
Quantization catalog: memory, speed and quality figures per scheme
"""

from dataclasses import dataclass
from typing import Dict, List


@dataclass(frozen=True)
class QuantSpec:
    """Static figures for one quantization scheme"""
    bytes_per_param: float
    speed_multiplier: float
    quality_penalty: float


# Mid-tier figures used for schemes not listed below
DEFAULT_QUANT_SPEC = QuantSpec(bytes_per_param=0.58, speed_multiplier=1.15, quality_penalty=-5.0)

QUANT_SPECS: Dict[str, QuantSpec] = {
    "F32": QuantSpec(4.0, 1.0, 0.0),
    "F16": QuantSpec(2.0, 0.6, 0.0),
    "BF16": QuantSpec(2.0, 0.6, 0.0),
    "Q8_0": QuantSpec(1.05, 0.8, 0.0),
    "Q6_K": QuantSpec(0.80, 0.95, -1.0),
    "Q5_K_M": QuantSpec(0.68, 1.0, -2.0),
    "Q4_K_M": QuantSpec(0.58, 1.15, -5.0),
    "Q4_0": QuantSpec(0.58, 1.15, -5.0),
    "Q3_K_M": QuantSpec(0.48, 1.25, -8.0),
    "Q2_K": QuantSpec(0.37, 1.35, -12.0),
}

# Best quality first, most compressed last
QUANT_HIERARCHY = ("Q8_0", "Q6_K", "Q5_K_M", "Q4_K_M", "Q3_K_M", "Q2_K")


def quant_spec(quant: str) -> QuantSpec:
    """Look up a scheme, falling back to the mid-tier default"""
    return QUANT_SPECS.get(quant, DEFAULT_QUANT_SPEC)


def quant_bpp(quant: str) -> float:
    return quant_spec(quant).bytes_per_param


def quant_speed_multiplier(quant: str) -> float:
    return quant_spec(quant).speed_multiplier


def quant_quality_penalty(quant: str) -> float:
    return quant_spec(quant).quality_penalty


def quant_hierarchy() -> List[str]:
    """Quantizations ordered from best fidelity to most compressed"""
    return list(QUANT_HIERARCHY)
