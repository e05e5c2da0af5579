"""
Tests for the quantization catalog
"""

import pytest

from model_fit.quant import (
    DEFAULT_QUANT_SPEC, QuantSpec, quant_bpp, quant_hierarchy, quant_quality_penalty,
    quant_spec, quant_speed_multiplier
)


class TestQuantCatalog:
    """Test catalog lookups"""

    @pytest.mark.parametrize("quant, expected", [
        ("F32", (4.0, 1.0, 0.0)),
        ("F16", (2.0, 0.6, 0.0)),
        ("BF16", (2.0, 0.6, 0.0)),
        ("Q8_0", (1.05, 0.8, 0.0)),
        ("Q6_K", (0.80, 0.95, -1.0)),
        ("Q5_K_M", (0.68, 1.0, -2.0)),
        ("Q4_K_M", (0.58, 1.15, -5.0)),
        ("Q4_0", (0.58, 1.15, -5.0)),
        ("Q3_K_M", (0.48, 1.25, -8.0)),
        ("Q2_K", (0.37, 1.35, -12.0)),
    ])
    def test_known_schemes(self, quant, expected):
        bpp, speed, penalty = expected
        assert quant_bpp(quant) == bpp
        assert quant_speed_multiplier(quant) == speed
        assert quant_quality_penalty(quant) == penalty

    def test_unknown_scheme_uses_mid_tier_default(self):
        assert quant_spec("IQ1_S") == DEFAULT_QUANT_SPEC
        assert DEFAULT_QUANT_SPEC == QuantSpec(0.58, 1.15, -5.0)

    def test_names_are_case_sensitive(self):
        assert quant_spec("q8_0") == DEFAULT_QUANT_SPEC

    def test_hierarchy_runs_best_to_most_compressed(self):
        hierarchy = quant_hierarchy()
        assert hierarchy[0] == "Q8_0"
        assert hierarchy[-1] == "Q2_K"
        sizes = [quant_bpp(q) for q in hierarchy]
        assert sizes == sorted(sizes, reverse=True)

    def test_hierarchy_is_a_copy(self):
        quant_hierarchy().clear()
        assert len(quant_hierarchy()) == 6
