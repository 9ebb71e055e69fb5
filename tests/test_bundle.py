"""
Track and rod accessory derivation tests.

Tests:
1-3.  Default track rules: runners, end caps, brackets, jointers, overlap
4-5.  Bracket prices by mount type and doubling
6-7.  Missing prices are skipped, never free
8-12. Custom rules: conditions, bad bounds and mount types, ordering, prices
13.   Default rod rules
"""

import pytest

from treatment_engine.calculators.bundle import (
    AccessoryKind, AccessoryPriceTable, BundleCalculator, condition_matches,
)
from treatment_engine.errors import SchemaViolation
from treatment_engine.schemas import BundleRule, MountType


def _sample_track_metadata():
    return {"accessories": {
        "runner": 0.35, "endCap": 1.80, "ceilingBracket": 2.20,
        "wallSingleBracket": 2.60, "wallDoubleBracket": 4.10, "jointer": 1.50,
    }}


def _accessory(result, key):
    return next(a for a in result["accessories"] if a["key"] == key)


# ============================================================
# Track defaults
# ============================================================

def test_runner_count_doubles_for_double_track():
    calculator = BundleCalculator()
    single = calculator.calculate("track", 10, metadata=_sample_track_metadata())
    double = calculator.calculate("track", 10, is_double=True, metadata=_sample_track_metadata())
    assert single["quantities"]["runners"] == 60
    assert double["quantities"]["runners"] == 120


def test_ten_foot_ceiling_track():
    result = BundleCalculator().calculate("track", 10, mount_type="ceiling",
                                          metadata=_sample_track_metadata())
    q = result["quantities"]
    assert q["runners"] == 60
    assert q["end_caps"] == 2
    assert q["brackets"] == 5
    assert q["jointers"] == 2
    assert q["overlap"] == 0
    keys = [a["key"] for a in result["accessories"]]
    assert keys == ["runners", "end_caps", "brackets", "jointers"]
    assert _accessory(result, "brackets")["unit_price"] == 2.20
    assert result["subtotal"] == pytest.approx(38.6)


def test_breakdown_lines():
    result = BundleCalculator().calculate("track", 10, metadata=_sample_track_metadata())
    assert "Runners: 60 × 0.35 = 21.00" in result["breakdown"]


# ============================================================
# Bracket prices
# ============================================================

def test_wall_bracket_price_depends_on_doubling():
    calculator = BundleCalculator()
    single = calculator.calculate("track", 10, mount_type=MountType.WALL, metadata=_sample_track_metadata())
    double = calculator.calculate("track", 10, mount_type="wall", is_double=True,
                                  metadata=_sample_track_metadata())
    assert _accessory(single, "brackets")["unit_price"] == 2.60
    assert _accessory(double, "brackets")["unit_price"] == 4.10


def test_price_table_prefers_the_most_specific_key():
    table = AccessoryPriceTable.from_metadata(_sample_track_metadata())
    assert table.price_for(AccessoryKind.BRACKET, MountType.WALL, True) == 4.10
    assert table.price_for(AccessoryKind.BRACKET, MountType.CEILING, True) == 2.20
    assert table.price_for(AccessoryKind.MAGNET, MountType.CEILING, False) is None
    with pytest.raises(SchemaViolation):
        AccessoryPriceTable.from_metadata({"accessories": {"runner": "cheap"}})


# ============================================================
# Missing prices
# ============================================================

def test_unpriced_accessories_are_skipped():
    result = BundleCalculator().calculate("track", 10, metadata={})
    assert result["accessories"] == []
    assert result["subtotal"] == 0
    assert result["quantities"]["runners"] == 60
    skipped = {s["key"]: s["reason"] for s in result["skipped"]}
    assert skipped["runners"] == "no price"


def test_zero_price_is_skipped():
    metadata = _sample_track_metadata()
    metadata["accessories"]["jointer"] = 0
    result = BundleCalculator().calculate("track", 10, metadata=metadata)
    assert "jointers" not in [a["key"] for a in result["accessories"]]
    assert {"key": "jointers", "reason": "no price"} in result["skipped"]


# ============================================================
# Custom rules
# ============================================================

def test_rule_conditions():
    rules = [
        BundleRule(parent_item_key="track", child_item_key="brackets",
                   quantity_formula="ceil(widthFt / 2)", condition={"mountType": "WALL"}, unit_price=3),
        BundleRule(parent_item_key="track", child_item_key="support",
                   quantity_formula="1", condition={"minWidthFt": 12}, unit_price=9),
    ]
    ceiling = BundleCalculator().calculate("track", 10, rules=rules)
    assert ceiling["accessories"] == []
    assert [s["reason"] for s in ceiling["skipped"]] == ["condition not met", "condition not met"]

    wall = BundleCalculator().calculate("track", 14, mount_type="wall", rules=rules)
    assert [a["key"] for a in wall["accessories"]] == ["brackets", "support"]
    assert _accessory(wall, "brackets")["quantity"] == 7


def test_condition_matching():
    context = {"widthFt": 10, "isDouble": False, "mountType": "ceiling"}
    assert condition_matches(None, context)
    assert condition_matches({"mount_type": "Ceiling", "is_double": False}, context)
    assert not condition_matches({"maxWidthFt": 8}, context)
    assert condition_matches({"min_width_ft": "9.5"}, context)


def test_non_numeric_width_bounds_are_schema_violations():
    context = {"widthFt": 10, "isDouble": False, "mountType": "ceiling"}
    for bad in ("wide", None, True, [12], "nan"):
        with pytest.raises(SchemaViolation):
            condition_matches({"minWidthFt": bad}, context)
    rules = [BundleRule(parent_item_key="track", child_item_key="support",
                        quantity_formula="1", condition={"maxWidthFt": "wide"}, unit_price=9)]
    with pytest.raises(SchemaViolation):
        BundleCalculator().calculate("track", 10, rules=rules)


def test_unknown_mount_type_is_a_schema_violation():
    with pytest.raises(SchemaViolation):
        BundleCalculator().calculate("track", 10, mount_type="floor")


def test_rules_run_in_order_index():
    rules = [
        BundleRule(parent_item_key="rod", child_item_key="b", quantity_formula="1", order_index=2, unit_price=1),
        BundleRule(parent_item_key="rod", child_item_key="a", quantity_formula="1", order_index=1, unit_price=1),
    ]
    result = BundleCalculator().calculate("rod", 6, rules=rules)
    assert [a["key"] for a in result["accessories"]] == ["a", "b"]


def test_price_override_beats_metadata():
    result = BundleCalculator().calculate("track", 10, metadata=_sample_track_metadata(),
                                          price_overrides={"runners": 0.5})
    assert _accessory(result, "runners")["unit_price"] == 0.5
    assert _accessory(result, "runners")["total"] == 30


# ============================================================
# Rods
# ============================================================

def test_rod_defaults():
    metadata = {"accessories": {"round_ball_finial": 9, "single_bracket": 6,
                                "double_bracket": 10.5, "rings": 0.9}}
    single = BundleCalculator().calculate("rod", 10, metadata=metadata)
    assert single["quantities"] == {"finials": 2, "brackets": 4, "rings": 30}
    assert _accessory(single, "brackets")["unit_price"] == 6

    double = BundleCalculator().calculate("rod", 10, is_double=True, metadata=metadata)
    assert double["quantities"]["rings"] == 60
    assert _accessory(double, "brackets")["unit_price"] == 10.5


def test_unknown_kind_without_rules():
    with pytest.raises(SchemaViolation):
        BundleCalculator().calculate("pelmet", 10)
