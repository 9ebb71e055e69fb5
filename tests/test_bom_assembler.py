"""
BOM assembly tests.

Tests:
1-4.   Quantity formulas, wastage, omitted lines, price modes, missing data
5-6.   Labor routing and bad formulas
7-8.   Unselected references, track accessories
9-12.  Formula context: curtains, fullness precedence, hardware options, panels
13-17. calc_bom_and_price: defaults, skipped rules, invalid state, grid-priced products
"""

import pytest

from treatment_engine.bom_assembler import (
    BomAssembler, calc_bom_and_price, hardware_options_from_state, is_labor_role,
    panel_count_from_state,
)
from treatment_engine.catalog import CatalogSnapshot
from treatment_engine.errors import FormulaEvaluationError, SchemaViolation
from treatment_engine.grids import GridResolver
from treatment_engine.schemas import (
    AssemblyLine, FabricContract, InventoryItemContract, MaterialContract, MountType,
    TemplateContract,
)


def _sample_inventory():
    items = [
        InventoryItemContract(id="rail", name="Aluminium Rail", unit="m", cost_price=5.0, selling_price=8.0),
        InventoryItemContract(id="fit", name="Fitting", cost_price=20.0, selling_price=30.0),
        InventoryItemContract(id="bare", name="Unpriced Cord"),
        InventoryItemContract(
            id="trk", name="Track", unit="ft", cost_price=3.9, selling_price=6.5, bundle_kind="track",
            metadata={"accessories": {"runner": 0.35, "endCap": 1.8, "ceilingBracket": 2.2, "jointer": 1.5}},
        ),
    ]
    return {item.id: item for item in items}


def _sample_hardware_template():
    return TemplateContract(
        id="tpl-rail", name="Rail Only", treatment_category="hardware",
        pricing_type="per_running_meter", header_allowance_cm=0, bottom_hem_cm=0,
        side_hem_cm=0, seam_hem_cm=0, waste_percent=0, fullness_ratio=1,
        machine_price_per_metre=0,
    )


def _sample_snapshot(lines, pricing_rules=None):
    return CatalogSnapshot(
        template=_sample_hardware_template(),
        assembly_lines=lines,
        inventory=_sample_inventory(),
        grid_resolver=GridResolver({}),
        pricing_rules=pricing_rules or [],
    )


# ============================================================
# assemble()
# ============================================================

def test_wastage_multiplies_quantity():
    lines = [AssemblyLine(inventory_item_id="rail", qty_formula="rail_width_mm / 1000", wastage_pct=10)]
    result = BomAssembler().assemble(lines, _sample_inventory(), {"rail_width_mm": 2000})
    line = result["bom"][0]
    assert line.quantity == pytest.approx(2.2)
    assert line.total == pytest.approx(11.0)
    assert result["materials_cost"] == pytest.approx(11.0)


def test_zero_and_negative_quantities_are_omitted():
    lines = [
        AssemblyLine(inventory_item_id="rail", qty_formula="0"),
        AssemblyLine(inventory_item_id="rail", qty_formula="1 - 2"),
        AssemblyLine(inventory_item_id="fit", qty_formula="1"),
    ]
    result = BomAssembler().assemble(lines, _sample_inventory(), {})
    assert [line.item_id for line in result["bom"]] == ["fit"]


def test_price_mode_picks_cost_or_selling_price():
    lines = [
        AssemblyLine(inventory_item_id="fit", qty_formula="1", price_mode="cost"),
        AssemblyLine(inventory_item_id="fit", qty_formula="1", price_mode="sell"),
    ]
    result = BomAssembler().assemble(lines, _sample_inventory(), {})
    assert [line.unit_price for line in result["bom"]] == [20.0, 30.0]


def test_missing_price_or_item_is_a_schema_violation():
    with pytest.raises(SchemaViolation):
        BomAssembler().assemble([AssemblyLine(inventory_item_id="bare", qty_formula="1")],
                                _sample_inventory(), {})
    with pytest.raises(SchemaViolation):
        BomAssembler().assemble([AssemblyLine(inventory_item_id="ghost", qty_formula="1")],
                                _sample_inventory(), {})
    with pytest.raises(SchemaViolation):
        BomAssembler().assemble([AssemblyLine(inventory_item_id="$lining", qty_formula="1")],
                                _sample_inventory(), {})


def test_labor_roles_go_to_labor_cost():
    assert is_labor_role("Labour")
    assert is_labor_role(" install ")
    assert not is_labor_role("material")
    lines = [
        AssemblyLine(inventory_item_id="fit", qty_formula="1", role="install"),
        AssemblyLine(inventory_item_id="fit", qty_formula="2", role="labor"),
        AssemblyLine(inventory_item_id="rail", qty_formula="1", role="material"),
    ]
    result = BomAssembler().assemble(lines, _sample_inventory(), {})
    assert result["labor_cost"] == 60
    assert result["materials_cost"] == 5


def test_unknown_identifier_in_line_formula():
    with pytest.raises(FormulaEvaluationError):
        BomAssembler().assemble([AssemblyLine(inventory_item_id="rail", qty_formula="widths_required")],
                                _sample_inventory(), {"rail_width_mm": 2000})


def test_unselected_reference_is_reported():
    lines = [
        AssemblyLine(inventory_item_id="$fabric", qty_formula="fabric_linear_meters"),
        AssemblyLine(inventory_item_id="fit", qty_formula="1"),
    ]
    result = BomAssembler().assemble(lines, _sample_inventory(), {})
    assert result["unselected_refs"] == ["$fabric"]
    assert len(result["bom"]) == 1


def test_track_expands_accessories():
    lines = [AssemblyLine(inventory_item_id="$hardware", qty_formula="width_ft", price_mode="sell")]
    result = BomAssembler().assemble(
        lines, _sample_inventory(), {"width_ft": 10, "drop_cm": 250},
        refs={"$hardware": "trk"}, hardware_options={"mount_type": "ceiling"},
    )
    ids = [line.item_id for line in result["bom"]]
    assert ids == ["trk", "trk:runners", "trk:end_caps", "trk:brackets", "trk:jointers"]
    accessories = [line for line in result["bom"] if line.role == "accessory"]
    assert sum(line.total for line in accessories) == pytest.approx(38.6)
    assert result["materials_cost"] == pytest.approx(65.0 + 38.6)


# ============================================================
# build_context()
# ============================================================

def test_context_for_curtains():
    template = TemplateContract(
        id="tpl-1", name="Pencil Pleat", treatment_category="curtains",
        pricing_type="per_running_meter", header_allowance_cm=8, bottom_hem_cm=15,
        side_hem_cm=0, seam_hem_cm=0, waste_percent=5, fullness_ratio=2.5,
        machine_price_per_metre=10,
    )
    fabric = FabricContract(id="fab-1", name="Linen", fabric_width_cm=137,
                            pricing_method="per_running_meter", price_per_meter=20)
    context = BomAssembler().build_context(
        {"rail_width_mm": 2000, "drop_mm": 2500, "selected_fabric": "fab-1"}, template, fabric)
    assert context["widths_required"] == 4
    assert context["fabric_linear_meters"] == pytest.approx(11.466)
    assert context["rail_width_m"] == 2.0
    assert context["width_ft"] == pytest.approx(6.5617, abs=1e-4)
    assert context["panel_count"] == 2
    assert context["fullness"] == 2.5
    assert "selected_fabric" not in context


def test_fullness_prefers_measured_then_heading_then_template():
    template = TemplateContract(
        id="tpl-1", name="Pencil Pleat", treatment_category="curtains",
        pricing_type="per_running_meter", header_allowance_cm=8, bottom_hem_cm=15,
        side_hem_cm=0, seam_hem_cm=0, waste_percent=5, fullness_ratio=2.5,
        machine_price_per_metre=10,
        heading_prices={"wave": {"machine_price_per_metre": 15, "fullness_ratio": 2.2}},
    )
    fabric = FabricContract(id="fab-1", name="Linen", fabric_width_cm=137,
                            pricing_method="per_running_meter", price_per_meter=20)
    state = {"rail_width_mm": 1800, "drop_mm": 2500}
    assembler = BomAssembler()

    wave = assembler.build_context({**state, "heading_id": "wave"}, template, fabric)
    assert wave["fullness"] == 2.2
    assert wave["widths_required"] == 3
    assert assembler.build_context(state, template, fabric)["widths_required"] == 4

    assert assembler.build_context({**state, "heading_id": "wave", "fullness": 3}, template, fabric)["fullness"] == 3
    assert assembler.build_context({**state, "heading_id": "ripple"}, template, fabric)["fullness"] == 2.5

    for bad in ("2.5", 0, 6, True):
        with pytest.raises(SchemaViolation):
            assembler.build_context({**state, "fullness": bad}, template, fabric)


def test_hardware_options_check_mount_type():
    assert hardware_options_from_state({}) == {}
    options = hardware_options_from_state({"selected_hardware": {"id": "trk", "mount_type": "Wall"}})
    assert options["mount_type"] == MountType.WALL
    with pytest.raises(SchemaViolation):
        hardware_options_from_state({"selected_hardware": {"id": "trk", "mount_type": "floor"}})


def test_panel_count_from_state():
    assert panel_count_from_state({}) == 2
    assert panel_count_from_state({"panel_setup": "single"}) == 1
    assert panel_count_from_state({"panel_count": 3}) == 3
    with pytest.raises(SchemaViolation):
        panel_count_from_state({"panel_setup": "triple"})
    with pytest.raises(SchemaViolation):
        panel_count_from_state({"panel_count": 0})


# ============================================================
# calc_bom_and_price()
# ============================================================

def test_missing_measurements_get_defaults():
    lines = [AssemblyLine(inventory_item_id="rail", qty_formula="rail_width_mm / 1000", wastage_pct=10)]
    result = calc_bom_and_price(_sample_snapshot(lines), {})
    breakdown = result["price_breakdown"]
    assert breakdown["defaults_applied"] == ["rail_width_mm", "drop_mm"]
    assert result["bom"][0].quantity == pytest.approx(1.1)
    assert result["price_total"] == pytest.approx(5.5)


def test_malformed_rules_are_skipped_and_counted():
    lines = [AssemblyLine(inventory_item_id="rail", qty_formula="rail_width_mm / 1000", wastage_pct=10)]
    rules = [
        {"id": "r1", "rule_type": "markup_percentage", "value": 10},
        {"id": "bad", "rule_type": "bogus"},
    ]
    result = calc_bom_and_price(_sample_snapshot(lines, rules), {"rail_width_mm": 2000, "drop_mm": 1500})
    breakdown = result["price_breakdown"]
    assert breakdown["skipped_rule_count"] == 1
    assert breakdown["skipped_rules"][0]["id"] == "bad"
    assert breakdown["markup"] == pytest.approx(1.1)
    assert result["price_total"] == pytest.approx(12.1)


def test_present_but_invalid_measurement_is_not_defaulted():
    lines = [AssemblyLine(inventory_item_id="fit", qty_formula="1")]
    for bad in (-5, 0, "abc", True):
        with pytest.raises(SchemaViolation):
            calc_bom_and_price(_sample_snapshot(lines), {"rail_width_mm": bad, "drop_mm": 2000})


def test_numeric_strings_are_accepted():
    lines = [AssemblyLine(inventory_item_id="rail", qty_formula="rail_width_mm / 1000")]
    result = calc_bom_and_price(_sample_snapshot(lines), {"rail_width_mm": "1500", "drop_mm": 2000})
    assert result["bom"][0].quantity == 1.5
    assert result["price_breakdown"]["defaults_applied"] == []


def test_grid_priced_material_is_priced_once():
    lines = [
        AssemblyLine(inventory_item_id="$material", qty_formula="1", role="material"),
        AssemblyLine(inventory_item_id="fit", qty_formula="1"),
    ]
    snapshot = _sample_snapshot(lines)
    snapshot.inventory["mat-grid"] = InventoryItemContract(id="mat-grid", name="Blackout Roller")
    snapshot.grid_resolver = GridResolver({
        "g": {"widths": [100, 200], "heights": [200, 300], "prices": [[40, 50], [60, 70]]},
    })
    snapshot.material = MaterialContract(id="mat-grid", name="Blackout Roller",
                                         pricing_method="pricing_grid", pricing_grid_id="g")
    snapshot.material_item_id = "mat-grid"

    result = calc_bom_and_price(snapshot, {"rail_width_mm": 1500, "drop_mm": 2500})
    rows = [line for line in result["bom"] if line.item_id == "mat-grid"]
    assert len(rows) == 1
    assert rows[0].total == 60
    assert result["price_total"] == pytest.approx(90)
