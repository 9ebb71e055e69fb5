"""
BOM Assembler — expands a template's assembly lines into priced BOM rows.

Input: ordered assembly lines, pre-loaded inventory, formula context
Output: BOMLine list + materials / labor cost split

Per line:
    base_qty = evaluate(qty_formula, context)      # omitted if <= 0
    qty      = base_qty × (1 + wastage_pct / 100)
    total    = qty × unit price (cost or selling price, per price_mode)
Roles labour / labor / install go to labor cost, everything else to materials.
Track and rod items expand their accessories through the bundle calculator.

calc_bom_and_price() is the outer request boundary: the one place where
"not yet entered" measurements get defaults and a malformed pricing rule is
skipped (and reported) instead of failing the calculation.
"""

import logging

from .calculators.bundle import BundleCalculator
from .calculators.usage import FabricUsageCalculator, AreaUsageCalculator
from .catalog import FABRIC_REF, MATERIAL_REF, HARDWARE_REF, CatalogSnapshot
from .classifier import classify
from .config import settings
from .errors import SchemaViolation
from .formula import evaluate_quantity
from .pricing_rules import PricingRuleApplicator, parse_rules
from .schemas import BOMLine, MountType, PanelConfiguration, PriceMode
from .units import mm_to_cm, cm_to_m, mm_to_ft
from .validation import UserInputWithDefaults

logger = logging.getLogger(__name__)

LABOR_ROLES = {"labour", "labor", "install"}

# optional state measurements, all mm
EXTRA_STATE_MEASUREMENTS = ("return_left_mm", "return_right_mm", "overlap_mm", "pooling_mm")


def is_labor_role(role: str) -> bool:
    return (role or "").strip().lower() in LABOR_ROLES


def panel_count_from_state(state: dict) -> int:
    if isinstance(state.get("panel_count"), (int, float)) and not isinstance(state.get("panel_count"), bool):
        if state["panel_count"] < 1:
            raise SchemaViolation("panel_count must be at least 1", field="panel_count")
        return int(state["panel_count"])
    setup = state.get("panel_setup") or PanelConfiguration.PAIR.value
    try:
        config = PanelConfiguration(str(setup).lower())
    except ValueError:
        raise SchemaViolation(f"Unknown panel_setup {setup!r}", field="panel_setup")
    return 1 if config == PanelConfiguration.SINGLE else 2


def hardware_options_from_state(state: dict) -> dict:
    """Mount and doubling choices from selected_hardware, mount type checked."""
    selected = state.get("selected_hardware")
    if not isinstance(selected, dict):
        return {}
    options = dict(selected)
    mount_type = options.get("mount_type")
    if mount_type is not None:
        try:
            options["mount_type"] = MountType(str(mount_type).lower())
        except ValueError:
            raise SchemaViolation(f"Unknown mount_type {mount_type!r}", field="mount_type")
    return options


class BomAssembler:
    """Turns assembly lines into priced BOM rows."""

    def __init__(self):
        self.fabric_usage = FabricUsageCalculator()
        self.area_usage = AreaUsageCalculator()
        self.bundle_calculator = BundleCalculator()

    def build_context(self, state: dict, template, fabric=None, material=None) -> dict:
        """Formula context: numeric state, unit conversions, template and fabric values."""
        context = {
            key: value for key, value in state.items()
            if isinstance(value, (int, float))
        }
        width_mm = float(state["rail_width_mm"])
        drop_mm = float(state["drop_mm"])
        width_cm, drop_cm = mm_to_cm(width_mm), mm_to_cm(drop_mm)
        panel_count = panel_count_from_state(state)
        fullness = self._fullness(state, template)

        context.update({
            "rail_width_mm": width_mm,
            "drop_mm": drop_mm,
            "rail_width_cm": width_cm,
            "drop_cm": drop_cm,
            "rail_width_m": cm_to_m(width_cm),
            "drop_m": cm_to_m(drop_cm),
            "width_ft": mm_to_ft(width_mm),
            "widthFt": mm_to_ft(width_mm),
            "panel_count": panel_count,
            "fullness": fullness,
            "header_allowance_cm": template.header_allowance_cm,
            "bottom_hem_cm": template.bottom_hem_cm,
            "side_hem_cm": template.side_hem_cm,
            "seam_hem_cm": template.seam_hem_cm,
            "waste_percent": template.waste_percent,
        })

        profile = classify(template.treatment_category)
        rotated = bool(state.get("fabric_rotated", False))
        extras = {}
        for key in EXTRA_STATE_MEASUREMENTS:
            value = state.get(key) or 0
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise SchemaViolation(f"{key} must be a non-negative number", field=key)
            extras[key] = mm_to_cm(value)

        if fabric is not None:
            context["fabric_width_cm"] = fabric.fabric_width_cm
            context["pattern_repeat_cm"] = fabric.pattern_repeat_cm
        if profile.is_linear and fabric is not None:
            usage = self.fabric_usage.calculate(
                width_cm, drop_cm, template, fabric, fullness,
                returns_cm=extras["return_left_mm"] + extras["return_right_mm"],
                overlap_cm=extras["overlap_mm"], pooling_cm=extras["pooling_mm"],
                panel_count=panel_count, rotated=rotated,
            )
            context.update({
                "widths_required": usage["widths_required"],
                "cut_length_cm": usage["cut_length_cm"],
                "fabric_linear_meters": usage["linear_meters_with_waste"],
                "linear_meters": usage["linear_meters"],
            })
        elif not profile.is_linear:
            usage = self.area_usage.calculate(width_cm, drop_cm, template,
                                              product=material or fabric, rotated=rotated)
            context.update({"sqm": usage["sqm"], "sqm_with_waste": usage["sqm_with_waste"]})
        return context

    def _fullness(self, state: dict, template) -> float:
        """Measured fullness, then the selected heading's, then the template's."""
        measured = state.get("fullness")
        if measured is not None:
            if (isinstance(measured, bool) or not isinstance(measured, (int, float))
                    or not 1 <= measured <= 5):
                raise SchemaViolation("fullness must be a number between 1 and 5", field="fullness")
            return float(measured)
        heading_id = state.get("heading_id")
        heading = template.heading_prices.get(str(heading_id)) if heading_id else None
        return (heading.fullness_ratio if heading else None) or template.fullness_ratio

    def assemble(self, lines: list, inventory: dict, context: dict,
                 refs: dict = None, bundle_rules: dict = None,
                 hardware_options: dict = None, grid_priced_refs: set = None) -> dict:
        refs = refs or {}
        grid_priced_refs = grid_priced_refs or set()
        bundle_rules = bundle_rules or {}
        bom = []
        materials_cost = 0.0
        labor_cost = 0.0
        unselected = []

        for line in lines:
            item_id = line.inventory_item_id
            if item_id.startswith("$"):
                if item_id not in (FABRIC_REF, MATERIAL_REF, HARDWARE_REF):
                    raise SchemaViolation(f"Unknown item reference '{item_id}'", item=item_id)
                if not refs.get(item_id):
                    # selection not made yet
                    unselected.append(item_id)
                    continue
                if item_id in grid_priced_refs:
                    # priced once, by its grid row
                    logger.debug(f"{item_id} is grid priced; assembly line skipped")
                    continue
                item_id = refs[item_id]
            item = inventory.get(item_id)
            if item is None:
                raise SchemaViolation(f"Inventory item '{item_id}' is not in the catalog", item=item_id)

            base_qty = evaluate_quantity(line.qty_formula, context, whole_units=False)
            if base_qty <= 0:
                continue
            quantity = base_qty * (1 + line.wastage_pct / 100.0)
            unit_price = self._unit_price(item, line.price_mode)
            total = round(quantity * unit_price, 2)

            if is_labor_role(line.role):
                labor_cost += total
            else:
                materials_cost += total
            bom.append(BOMLine(
                item_id=item.id, item_name=item.name, role=line.role,
                quantity=round(quantity, 2), unit_price=round(unit_price, 2),
                total=total, unit=item.unit,
            ))

            if item.bundle_kind:
                accessory_rows = self._expand_bundle(item, context, bundle_rules, hardware_options or {})
                for row in accessory_rows:
                    materials_cost += row.total
                bom.extend(accessory_rows)

        return {
            "bom": bom,
            "materials_cost": round(materials_cost, 2),
            "labor_cost": round(labor_cost, 2),
            "unselected_refs": unselected,
        }

    def _unit_price(self, item, price_mode: PriceMode) -> float:
        price = item.cost_price if price_mode == PriceMode.COST else item.selling_price
        if price is None:
            field = "cost_price" if price_mode == PriceMode.COST else "selling_price"
            raise SchemaViolation(f"Inventory item '{item.id}' has no {field}", item=item.id, field=field)
        return price

    def _expand_bundle(self, item, context: dict, bundle_rules: dict, hardware_options: dict) -> list:
        rules = bundle_rules.get(item.id) or bundle_rules.get(item.bundle_kind)
        result = self.bundle_calculator.calculate(
            item.bundle_kind,
            context["width_ft"],
            height=context["drop_cm"],
            is_double=bool(hardware_options.get("is_double", False)),
            mount_type=hardware_options.get("mount_type") or MountType.CEILING,
            metadata=item.metadata,
            rules=rules,
        )
        return [
            BOMLine(
                item_id=f"{item.id}:{acc['key']}",
                item_name=acc["name"],
                role="accessory",
                quantity=acc["quantity"],
                unit_price=acc["unit_price"],
                total=acc["total"],
                unit="ea",
            )
            for acc in result["accessories"]
        ]

    def grid_lines(self, snapshot: CatalogSnapshot, width_cm: float, drop_cm: float) -> list:
        """Made-to-measure prices: the template grid and any grid-priced product."""
        lines = []
        template = snapshot.template
        if template.pricing_type.value == "pricing_grid":
            grid = snapshot.grid_resolver.resolve(template.pricing_grid_id)
            price = grid.lookup(width_cm, drop_cm)
            lines.append(BOMLine(item_id=grid.grid_id, item_name=f"{template.name} (made to measure)",
                                 role="manufacturing", quantity=1, unit_price=round(price, 2),
                                 total=round(price, 2)))
        for product, item_id in ((snapshot.fabric, snapshot.fabric_item_id),
                                 (snapshot.material, snapshot.material_item_id)):
            if product is None or product.pricing_method.value != "pricing_grid":
                continue
            grid = snapshot.grid_resolver.resolve(product.pricing_grid_id, product.price_group,
                                                  template.treatment_category)
            price = grid.lookup(width_cm, drop_cm) * (1 + product.pricing_grid_markup / 100.0)
            lines.append(BOMLine(item_id=item_id, item_name=product.name, role="material",
                                 quantity=1, unit_price=round(price, 2), total=round(price, 2)))
        return lines


def grid_priced_refs(snapshot: CatalogSnapshot) -> set:
    """Product references whose price comes from a grid row, not the inventory."""
    refs = set()
    for ref, product in ((FABRIC_REF, snapshot.fabric), (MATERIAL_REF, snapshot.material)):
        if product is not None and product.pricing_method.value == "pricing_grid":
            refs.add(ref)
    return refs


def calc_bom_and_price(snapshot: CatalogSnapshot, state: dict) -> dict:
    """
    The calc_bom_and_price RPC.

    Returns {"bom": [...], "price_breakdown": {...}, "price_total": float}.
    """
    state, defaults_applied = UserInputWithDefaults.apply(state)
    template = snapshot.template
    assembler = BomAssembler()

    context = assembler.build_context(state, template, snapshot.fabric, snapshot.material)
    hardware_options = hardware_options_from_state(state)
    refs = {
        FABRIC_REF: snapshot.fabric_item_id,
        MATERIAL_REF: snapshot.material_item_id,
        HARDWARE_REF: snapshot.hardware_item_id,
    }
    assembled = assembler.assemble(snapshot.assembly_lines, snapshot.inventory, context,
                                   refs=refs, bundle_rules=snapshot.bundle_rules,
                                   hardware_options=hardware_options,
                                   grid_priced_refs=grid_priced_refs(snapshot))

    bom = list(assembled["bom"])
    materials_cost = assembled["materials_cost"]
    for line in assembler.grid_lines(snapshot, context["rail_width_cm"], context["drop_cm"]):
        bom.append(line)
        materials_cost += line.total

    rules, skipped = parse_rules(snapshot.pricing_rules, skip_malformed=True)
    priced = PricingRuleApplicator().apply(
        materials_cost, assembled["labor_cost"], rules,
        width_mm=state["rail_width_mm"], drop_mm=state["drop_mm"],
        panel_count=context["panel_count"],
    )

    price_breakdown = {
        **priced,
        "currency": settings.CURRENCY,
        "treatment_category": template.treatment_category,
        "template_id": template.id,
        "window_type": snapshot.window_type,
        "defaults_applied": defaults_applied,
        "unselected_refs": assembled["unselected_refs"],
        "skipped_rules": skipped,
        "skipped_rule_count": len(skipped),
    }
    return {"bom": bom, "price_breakdown": price_breakdown, "price_total": priced["total"]}
