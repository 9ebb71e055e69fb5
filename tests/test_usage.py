"""
Fabric and material usage tests.

Tests:
1-2.  Curtain widths, cut length, running metres with waste
3-5.  Pattern repeat, returns/side hems, seam allowances
6-7.  Railroading (rotated fabric)
8.    Same inputs give the same breakdown
9-11. Area usage for blinds
"""

import pytest

from treatment_engine.calculators.usage import AreaUsageCalculator, FabricUsageCalculator
from treatment_engine.errors import RailroadingNotSupported, SchemaViolation
from treatment_engine.schemas import FabricContract, MaterialContract, TemplateContract


def _sample_template(**overrides):
    data = {
        "id": "tpl-1", "name": "Pencil Pleat", "treatment_category": "curtains",
        "pricing_type": "per_running_meter",
        "header_allowance_cm": 8, "bottom_hem_cm": 15, "side_hem_cm": 0,
        "seam_hem_cm": 0, "waste_percent": 5, "fullness_ratio": 2.5,
        "machine_price_per_metre": 10,
    }
    data.update(overrides)
    return TemplateContract(**data)


def _sample_fabric(**overrides):
    data = {
        "id": "fab-1", "name": "Linen", "fabric_width_cm": 137,
        "pricing_method": "per_running_meter", "price_per_meter": 20,
    }
    data.update(overrides)
    return FabricContract(**data)


def _sample_roller_template(**overrides):
    data = {
        "id": "tpl-roller", "name": "Roller", "treatment_category": "roller_blinds",
        "pricing_type": "per_sqm", "header_allowance_cm": 0, "bottom_hem_cm": 10,
        "side_hem_cm": 0, "seam_hem_cm": 0, "waste_percent": 0, "fullness_ratio": 1,
        "machine_price_per_sqm": 30,
    }
    data.update(overrides)
    return TemplateContract(**data)


# ============================================================
# Linear usage
# ============================================================

def test_curtain_pair_usage():
    """200 cm rail, 250 cm drop, 2.5 fullness on 137 cm fabric."""
    usage = FabricUsageCalculator().calculate(200, 250, _sample_template(), _sample_fabric(), 2.5)
    assert usage["widths_required"] == 4
    assert usage["cut_length_cm"] == 273
    assert usage["linear_meters"] == pytest.approx(10.92)
    assert usage["linear_meters_with_waste"] == pytest.approx(11.466)
    assert usage["seams"] == 3


def test_steps_show_the_working():
    usage = FabricUsageCalculator().calculate(200, 250, _sample_template(), _sample_fabric(), 2.5)
    labels = [step.label for step in usage["steps"]]
    assert "Widths required" in labels
    assert "Fabric with waste" in labels
    widths_step = next(s for s in usage["steps"] if s.label == "Widths required")
    assert widths_step.result == 4


def test_pattern_repeat_rounds_cut_length_up():
    usage = FabricUsageCalculator().calculate(
        200, 250, _sample_template(), _sample_fabric(pattern_repeat_cm=64), 2.5)
    assert usage["cut_length_cm"] == 320
    assert usage["linear_meters"] == pytest.approx(12.8)


def test_returns_add_to_total_width():
    usage = FabricUsageCalculator().calculate(
        200, 250, _sample_template(), _sample_fabric(), 2.5, returns_cm=50)
    assert usage["total_width_cm"] == 550
    assert usage["widths_required"] == 5


def test_seam_allowance_per_join():
    usage = FabricUsageCalculator().calculate(
        200, 250, _sample_template(seam_hem_cm=2), _sample_fabric(), 2.5)
    assert usage["linear_cm"] == 4 * 273 + 3 * 2
    assert usage["linear_meters"] == pytest.approx(10.98)


def test_railroaded_fabric_runs_sideways():
    fabric = _sample_fabric(fabric_width_cm=300, railroading_allowed=True)
    usage = FabricUsageCalculator().calculate(200, 250, _sample_template(), fabric, 2.5, rotated=True)
    assert usage["rotated"] is True
    assert usage["widths_required"] == 1
    assert usage["linear_meters"] == pytest.approx(5.0)
    assert usage["linear_meters_with_waste"] == pytest.approx(5.25)


def test_railroading_requires_permission():
    with pytest.raises(RailroadingNotSupported):
        FabricUsageCalculator().calculate(200, 250, _sample_template(), _sample_fabric(), 2.5, rotated=True)


def test_same_inputs_same_result():
    calculator = FabricUsageCalculator()
    first = calculator.calculate(200, 250, _sample_template(), _sample_fabric(), 2.5, returns_cm=10)
    second = calculator.calculate(200, 250, _sample_template(), _sample_fabric(), 2.5, returns_cm=10)
    assert first == second


def test_linear_usage_rejects_bad_input():
    with pytest.raises(SchemaViolation):
        FabricUsageCalculator().calculate(0, 250, _sample_template(), _sample_fabric(), 2.5)
    with pytest.raises(SchemaViolation):
        FabricUsageCalculator().calculate(200, 250, _sample_template(), None, 2.5)


# ============================================================
# Area usage
# ============================================================

def test_roller_blind_area():
    usage = AreaUsageCalculator().calculate(120, 160, _sample_roller_template())
    assert usage["effective_width_cm"] == 120
    assert usage["effective_drop_cm"] == 170
    assert usage["sqm"] == pytest.approx(2.04)
    assert usage["widths_required"] == 0


def test_area_side_hems_and_waste():
    usage = AreaUsageCalculator().calculate(
        120, 160, _sample_roller_template(side_hem_cm=2, waste_percent=10))
    assert usage["sqm"] == pytest.approx(2.108)
    assert usage["sqm_with_waste"] == pytest.approx(2.3188)


def test_area_widths_from_roll_width():
    material = MaterialContract(id="mat-1", name="Blackout", width_cm=240,
                                pricing_method="per_sqm", price_per_sqm=18)
    usage = AreaUsageCalculator().calculate(300, 160, _sample_roller_template(), product=material)
    assert usage["widths_required"] == 2
    with pytest.raises(RailroadingNotSupported):
        AreaUsageCalculator().calculate(300, 160, _sample_roller_template(), product=material, rotated=True)
