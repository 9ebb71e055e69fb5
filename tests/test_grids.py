"""
Pricing grid tests.

Tests:
1-6.   Each stored encoding normalizes to the same lookup
7-9.   Tier boundaries and the narrowest-tier rule
10-11. Unit inference (mm vs cm)
12-14. Misses and malformed grids
15-18. GridResolver: direct id, price groups, priority, referenced ids
"""

import pytest

from treatment_engine.errors import GridLookupMiss, SchemaViolation
from treatment_engine.grids import (
    GridResolver, detect_format, normalize_grid, referenced_grid_ids, Tier, _narrowest,
)


def _sample_grid_b():
    return {
        "widthColumns": [100, 150, 200],
        "dropRows": [
            {"drop": 200, "prices": [10, 20, 30]},
            {"drop": 250, "prices": [40, 50, 60]},
        ],
    }


def _sample_grid_c(separator="_"):
    prices = {}
    for drop, row in ((200, [10, 20, 30]), (250, [40, 50, 60])):
        for width, price in zip([100, 150, 200], row):
            prices[f"{width}{separator}{drop}"] = price
    return {"widthColumns": [100, 150, 200], "dropRows": [200, 250], "prices": prices}


# ============================================================
# Encodings
# ============================================================

def test_nested_drop_rows_lookup():
    grid = normalize_grid("g", _sample_grid_b())
    assert grid.source_format == "B"
    assert grid.unit == "cm"
    assert grid.lookup(160, 220) == 50


def test_flat_price_map_lookup():
    for separator in ("_", "-"):
        grid = normalize_grid("g", _sample_grid_c(separator))
        assert grid.source_format == "C"
        assert grid.lookup(160, 220) == 50


def test_widths_heights_matrix_lookup():
    grid = normalize_grid("g", {
        "widths": [100, 150, 200], "heights": [200, 250],
        "prices": [[10, 20, 30], [40, 50, 60]],
    })
    assert grid.source_format == "D"
    assert grid.lookup(160, 220) == 50


def test_range_labels_are_inclusive_tiers():
    grid = normalize_grid("g", {
        "widthRanges": ["50-100", "101-150"],
        "dropRanges": ["0-150", "151-200"],
        "prices": [[1, 2], [3, 4]],
    })
    assert grid.source_format == "A"
    assert grid.lookup(120, 160) == 4
    assert grid.lookup(100, 150) == 1
    with pytest.raises(GridLookupMiss):
        grid.lookup(100.5, 100)


def test_range_labels_with_flat_price_map():
    grid = normalize_grid("g", {
        "widthRanges": ["0-100", "101-200"],
        "dropRanges": ["0-200", "201-300"],
        "prices": {
            "0-100_0-200": 10, "101-200_0-200": 20,
            "0-100_201-300": 30, "101-200_201-300": 40,
        },
    })
    assert grid.source_format == "C"
    assert grid.lookup(150, 250) == 40
    assert grid.lookup(100, 200) == 10
    with pytest.raises(GridLookupMiss):
        grid.lookup(250, 250)


def test_unsorted_axes_carry_prices_along():
    grid = normalize_grid("g", {
        "widthColumns": [200, 100, 150],
        "dropRows": [
            {"drop": 250, "prices": [60, 40, 50]},
            {"drop": 200, "prices": [30, 10, 20]},
        ],
    })
    assert grid.lookup(160, 220) == 50
    assert grid.lookup(100, 10) == 10


# ============================================================
# Tier boundaries
# ============================================================

def test_width_columns_are_lower_bounds():
    grid = normalize_grid("g", _sample_grid_b())
    assert grid.lookup(100, 220) == 40
    assert grid.lookup(149.9, 220) == 40
    assert grid.lookup(150, 220) == 50
    # last column extends by the previous step
    assert grid.lookup(250, 220) == 60
    with pytest.raises(GridLookupMiss):
        grid.lookup(251, 220)
    with pytest.raises(GridLookupMiss):
        grid.lookup(50, 220)


def test_drop_rows_are_upper_bounds():
    grid = normalize_grid("g", _sample_grid_b())
    assert grid.lookup(100, 10) == 10
    assert grid.lookup(100, 200) == 10
    assert grid.lookup(100, 200.1) == 40


def test_narrowest_tier_wins():
    tiers = (Tier(0, 300), Tier(100, 150), Tier(120, 200))
    assert _narrowest(tiers, 130) == 1
    assert _narrowest(tiers, 250) == 0
    assert _narrowest(tiers, 400) is None


# ============================================================
# Units
# ============================================================

def test_large_axis_values_are_read_as_mm():
    grid = normalize_grid("g", {
        "widths": [600, 1200], "heights": [1500, 2000],
        "prices": [[1, 2], [3, 4]],
    })
    assert grid.unit == "mm"
    # 70 cm = 700 mm, 160 cm = 1600 mm
    assert grid.lookup(70, 160) == 3


def test_explicit_unit_is_kept():
    grid = normalize_grid("g", {
        "unit": "cm", "widths": [600, 1200], "heights": [1500, 2000],
        "prices": [[1, 2], [3, 4]],
    })
    assert grid.unit == "cm"
    assert grid.lookup(700, 1600) == 3
    with pytest.raises(SchemaViolation):
        normalize_grid("g", {**_sample_grid_b(), "unit": "in"})


# ============================================================
# Misses and malformed grids
# ============================================================

def test_outside_every_tier_is_a_miss_not_zero():
    grid = normalize_grid("g", _sample_grid_b())
    with pytest.raises(GridLookupMiss) as exc:
        grid.lookup(500, 500)
    assert exc.value.details["grid_id"] == "g"


def test_empty_cell_is_a_miss():
    data = _sample_grid_c()
    del data["prices"]["150_250"]
    grid = normalize_grid("g", data)
    assert grid.lookup(100, 220) == 40
    with pytest.raises(GridLookupMiss):
        grid.lookup(160, 220)


def test_malformed_grids_are_schema_violations():
    with pytest.raises(SchemaViolation):
        detect_format({"rows": []})
    with pytest.raises(SchemaViolation):
        normalize_grid("g", {"widths": [100, 150], "heights": [200], "prices": [[1, 2, 3]]})
    with pytest.raises(SchemaViolation):
        normalize_grid("g", {"widths": [100, 150], "heights": [200, 250], "prices": [[1, 2]]})
    with pytest.raises(SchemaViolation):
        normalize_grid("g", {"widthRanges": ["150-100"], "dropRanges": ["0-100"], "prices": [[1]]})


# ============================================================
# Resolution
# ============================================================

def _sample_resolver():
    other = {"widths": [0], "heights": [1000], "prices": [[99]]}
    rules = [
        {"price_group": "A", "grid_id": "g2", "treatment_category": None, "priority": 0},
        {"price_group": "A", "grid_id": "g1", "treatment_category": "roller_blinds", "priority": 10},
    ]
    return GridResolver({"g1": _sample_grid_b(), "g2": other}, rules)


def test_direct_grid_id_beats_price_group():
    resolver = _sample_resolver()
    assert resolver.resolve("g2", "A", "roller_blinds").grid_id == "g2"


def test_price_group_uses_highest_priority_matching_rule():
    resolver = _sample_resolver()
    assert resolver.resolve(None, " a ", "roller_blinds").grid_id == "g1"
    assert resolver.resolve(None, "A", "venetian_blinds").grid_id == "g2"
    assert resolver.price(160, 220, price_group="A", treatment_category="roller_blinds") == 50


def test_unresolvable_grids_raise():
    resolver = _sample_resolver()
    with pytest.raises(SchemaViolation):
        resolver.resolve(None, "Z")
    with pytest.raises(SchemaViolation):
        resolver.resolve("missing")
    with pytest.raises(SchemaViolation):
        resolver.resolve()


def test_referenced_grid_ids_collects_every_source():
    ids = referenced_grid_ids(
        {"pricing_grid_id": "g1"}, None, {"pricing_grid_id": None},
        price_group_rules=[{"price_group": "A", "grid_id": "g2"}],
    )
    assert ids == {"g1", "g2"}
