"""
Price Aggregator.

Combines every cost stream of one treatment into a CalculationResultContract.
Pure math over validated contracts: no I/O, grids arrive pre-loaded in a
GridResolver.

Input: TemplateContract + MeasurementsContract + fabric/material + options
       (+ heading id, + hardware selection)
Output: CalculationResultContract with an ordered FormulaBreakdown

Order of work:
  1. classify the category and check the selected products
  2. normalize mm measurements to cm
  3. usage (running metres or m², waste already applied to quantities)
  4. fabric, material, manufacturing and hardware costs
  5. options, flat methods first, then percentage methods that need pass 1
"""

import logging

from .calculators.bundle import BundleCalculator
from .calculators.usage import FabricUsageCalculator, AreaUsageCalculator
from .classifier import classify, check_products
from .config import settings
from .errors import SchemaViolation
from .grids import GridResolver
from .schemas import (
    CalculationResultContract, CostLine, FormulaBreakdown, FormulaStep,
    FabricPricingMethod, MaterialPricingMethod, OptionPricingMethod,
    PERCENTAGE_METHODS, PricingType,
)
from .units import normalize_measurements, cm_to_m, mm_to_ft

logger = logging.getLogger(__name__)


class PriceAggregator:
    """Builds the full price of one treatment."""

    def __init__(self, grid_resolver: GridResolver = None):
        self.grid_resolver = grid_resolver or GridResolver({})
        self.fabric_usage = FabricUsageCalculator()
        self.area_usage = AreaUsageCalculator()
        self.bundle_calculator = BundleCalculator()

    def calculate(self, template, measurements, fabric=None, material=None,
                  options=None, heading_id: str = None,
                  hardware=None) -> CalculationResultContract:
        profile = classify(template.treatment_category)
        check_products(profile, fabric is not None, material is not None)
        steps = []

        # --- Dimensions ---
        dims = normalize_measurements({
            "rail_width_mm": measurements.rail_width_mm,
            "drop_mm": measurements.drop_mm,
            "return_left_mm": measurements.return_left_mm,
            "return_right_mm": measurements.return_right_mm,
            "overlap_mm": measurements.overlap_mm,
            "pooling_mm": measurements.pooling_mm,
        })
        width_cm = dims["rail_width_cm"]
        drop_cm = dims["drop_cm"]
        returns_cm = dims["return_left_cm"] + dims["return_right_cm"]
        panel_count = measurements.panel_count

        heading = self._heading(template, heading_id)
        fullness = (measurements.fullness
                    or (heading.fullness_ratio if heading else None)
                    or template.fullness_ratio)

        # --- Usage ---
        usage = self._usage(profile, template, fabric, material, width_cm, drop_cm,
                            fullness, returns_cm, dims, panel_count,
                            measurements.fabric_rotated)
        steps.extend(usage.get("steps", []))
        drops = usage.get("widths_required") or panel_count

        # --- Fabric / material ---
        fabric_cost, fabric_waste = 0.0, 0.0
        if fabric is not None:
            fabric_cost, fabric_waste = self._fabric_cost(
                fabric, usage, width_cm, drop_cm, template, profile, steps)
        material_cost, material_waste = 0.0, 0.0
        if material is not None:
            material_cost, material_waste = self._material_cost(
                material, usage, width_cm, drop_cm, template, profile, steps)

        # --- Manufacturing ---
        manufacturing_cost = self._manufacturing_cost(
            template, heading, usage, width_cm, drop_cm, drops, panel_count, steps)

        # --- Hardware ---
        hardware_cost, hardware_lines = 0.0, []
        if hardware is not None:
            hardware_cost, hardware_lines = self._hardware_cost(
                hardware, measurements.rail_width_mm, drop_cm, steps)

        # --- Options: flat first, then percentages ---
        measures = {
            "linear_meters": usage.get("linear_meters_with_waste"),
            "sqm": usage.get("sqm_with_waste") or cm_to_m(width_cm) * cm_to_m(drop_cm),
            "drops": drops,
            "panels": panel_count,
            "rail_width_m": cm_to_m(width_cm),
        }
        option_lines = []
        flat = [o for o in (options or []) if o.pricing_method not in PERCENTAGE_METHODS]
        percent = [o for o in (options or []) if o.pricing_method in PERCENTAGE_METHODS]
        for option in flat:
            option_lines.append(self._flat_option(option, profile, measures, width_cm, drop_cm, steps))

        base_cost = fabric_cost + material_cost + manufacturing_cost
        first_pass_total = base_cost + hardware_cost + sum(line.amount for line in option_lines)
        percentage_bases = {
            OptionPricingMethod.PERCENTAGE: ("base", base_cost),
            OptionPricingMethod.PERCENTAGE_OF_BASE: ("base", base_cost),
            OptionPricingMethod.PERCENTAGE_OF_FABRIC: ("fabric", fabric_cost),
            OptionPricingMethod.PERCENTAGE_OF_TOTAL: ("total", first_pass_total),
        }
        for option in percent:
            basis, amount = percentage_bases[option.pricing_method]
            cost = round(amount * option.price / 100.0, 2)
            calc = f"{option.price:g}% of {basis} {amount:.2f}"
            steps.append(FormulaStep(label=f"Option: {option.name}", formula=calc, result=cost,
                                     values={"basis": basis, "basis_amount": round(amount, 2)}))
            option_lines.append(CostLine(id=option.id, name=option.name,
                                         pricing_method=option.pricing_method.value,
                                         amount=cost, calculation=calc))

        options_cost = round(sum(line.amount for line in option_lines), 2)

        # --- Totals ---
        subtotal = round(
            fabric_cost + material_cost + manufacturing_cost + hardware_cost + options_cost, 2)
        waste_amount = round(fabric_waste + material_waste, 2)
        steps.append(FormulaStep(
            label="Subtotal",
            formula=(f"{fabric_cost:.2f} fabric + {material_cost:.2f} material + "
                     f"{manufacturing_cost:.2f} manufacturing + {hardware_cost:.2f} hardware + "
                     f"{options_cost:.2f} options"),
            result=subtotal,
        ))
        steps.append(FormulaStep(
            label="Waste included",
            formula=f"{template.waste_percent:g}% waste already in quantities",
            result=waste_amount,
        ))

        return CalculationResultContract(
            treatment_category=profile.category,
            family=profile.family.value,
            currency=settings.CURRENCY,
            dimensions={
                "rail_width_mm": measurements.rail_width_mm,
                "drop_mm": measurements.drop_mm,
                "width_cm": width_cm,
                "drop_cm": drop_cm,
                "returns_cm": returns_cm,
                "pooling_cm": dims["pooling_cm"],
                "fullness": fullness,
                "width_ft": round(mm_to_ft(measurements.rail_width_mm), 4),
            },
            measure={k: v for k, v in usage.items()
                     if isinstance(v, (int, float)) and not isinstance(v, bool)},
            fabric_cost=fabric_cost,
            material_cost=material_cost,
            manufacturing_cost=manufacturing_cost,
            hardware_cost=hardware_cost,
            options_cost=options_cost,
            option_lines=option_lines,
            hardware_lines=hardware_lines,
            subtotal=subtotal,
            waste_amount=waste_amount,
            total=subtotal,
            breakdown=FormulaBreakdown(steps=steps),
        )

    # --- Helpers ---

    def _heading(self, template, heading_id):
        if not heading_id:
            return None
        return template.heading_prices.get(str(heading_id))

    def _usage(self, profile, template, fabric, material, width_cm, drop_cm,
               fullness, returns_cm, dims, panel_count, rotated) -> dict:
        if profile.is_linear:
            if fabric is None:
                # hardware-only: the rail itself is the measure
                return {"family": "linear", "linear_meters": cm_to_m(width_cm),
                        "linear_meters_with_waste": cm_to_m(width_cm), "steps": []}
            return self.fabric_usage.calculate(
                width_cm, drop_cm, template, fabric, fullness,
                returns_cm=returns_cm, overlap_cm=dims["overlap_cm"],
                pooling_cm=dims["pooling_cm"], panel_count=panel_count, rotated=rotated,
            )
        return self.area_usage.calculate(width_cm, drop_cm, template,
                                         product=material or fabric, rotated=rotated)

    def _grid_price(self, product, width_cm, drop_cm, category, label, steps) -> float:
        grid = self.grid_resolver.resolve(product.pricing_grid_id, product.price_group, category)
        cell = grid.cell_for(width_cm, drop_cm)
        price = cell["price"]
        markup = getattr(product, "pricing_grid_markup", 0) or 0
        total = price * (1 + markup / 100.0)
        steps.append(FormulaStep(
            label=f"{label} grid price",
            formula=(f"grid {grid.grid_id} width {cell['width_tier']} × drop {cell['drop_tier']}"
                     f" = {price:.2f}" + (f" + {markup:g}% markup" if markup else "")),
            values=cell, result=round(total, 2),
        ))
        return total

    def _fabric_cost(self, fabric, usage, width_cm, drop_cm, template, profile, steps):
        """Returns (cost, waste share of cost)."""
        method = fabric.pricing_method
        waste_factor = 1 + template.waste_percent / 100.0

        if method == FabricPricingMethod.PER_RUNNING_METER:
            meters = usage.get("linear_meters_with_waste")
            if meters is None:
                # area family: drops of the roll, each one effective drop long
                widths = usage.get("widths_required") or 0
                meters = widths * cm_to_m(usage["effective_drop_cm"]) * waste_factor
            cost = meters * fabric.price_per_meter
            formula = f"{meters:g} m × {fabric.price_per_meter:.2f}"
        elif method == FabricPricingMethod.PER_SQM:
            sqm = usage.get("sqm_with_waste")
            if sqm is None:
                sqm = usage["linear_meters_with_waste"] * cm_to_m(fabric.fabric_width_cm)
            cost = sqm * fabric.price_per_sqm
            formula = f"{sqm:g} m² × {fabric.price_per_sqm:.2f}"
        elif method == FabricPricingMethod.PRICING_GRID:
            cost = self._grid_price(fabric, width_cm, drop_cm, profile.category, "Fabric", steps)
            return round(cost, 2), 0.0
        else:
            cost = fabric.fixed_price
            formula = "fixed price"

        cost = round(cost, 2)
        steps.append(FormulaStep(label="Fabric cost", formula=formula, result=cost))
        if method == FabricPricingMethod.FIXED:
            return cost, 0.0
        return cost, cost - cost / waste_factor

    def _material_cost(self, material, usage, width_cm, drop_cm, template, profile, steps):
        method = material.pricing_method
        if method == MaterialPricingMethod.PER_SQM:
            sqm = usage.get("sqm_with_waste")
            if sqm is None:
                raise SchemaViolation("per_sqm material needs an area treatment",
                                      material_id=material.id)
            cost = round(sqm * material.price_per_sqm, 2)
            steps.append(FormulaStep(label="Material cost",
                                     formula=f"{sqm:g} m² × {material.price_per_sqm:.2f}", result=cost))
            waste_factor = 1 + template.waste_percent / 100.0
            return cost, cost - cost / waste_factor
        if method == MaterialPricingMethod.PRICING_GRID:
            cost = self._grid_price(material, width_cm, drop_cm, profile.category, "Material", steps)
            return round(cost, 2), 0.0
        cost = round(material.fixed_price, 2)
        steps.append(FormulaStep(label="Material cost", formula="fixed price", result=cost))
        return cost, 0.0

    def _manufacturing_cost(self, template, heading, usage, width_cm, drop_cm,
                            drops, panel_count, steps) -> float:
        def price(field):
            override = getattr(heading, field, None) if heading else None
            return override if override is not None else getattr(template, field)

        pricing_type = template.pricing_type
        if pricing_type == PricingType.PER_RUNNING_METER:
            meters = usage.get("linear_meters") or cm_to_m(width_cm)
            rate = price("machine_price_per_metre")
            cost, formula = meters * rate, f"{meters:g} m × {rate:.2f}"
        elif pricing_type == PricingType.PER_SQM:
            sqm = usage.get("sqm") or cm_to_m(width_cm) * cm_to_m(drop_cm)
            rate = price("machine_price_per_sqm")
            cost, formula = sqm * rate, f"{sqm:g} m² × {rate:.2f}"
        elif pricing_type == PricingType.PER_DROP:
            rate = price("machine_price_per_drop")
            cost, formula = drops * rate, f"{drops} drops × {rate:.2f}"
        elif pricing_type == PricingType.PRICING_GRID:
            grid = self.grid_resolver.resolve(template.pricing_grid_id)
            cost = grid.lookup(width_cm, drop_cm)
            formula = f"grid {grid.grid_id} at {width_cm:g} × {drop_cm:g} cm"
        else:
            cost, formula = price("fixed_price"), "fixed price"

        per_panel = price("machine_price_per_panel")
        if per_panel:
            cost += per_panel * panel_count
            formula += f" + {panel_count} panels × {per_panel:.2f}"
        if template.base_price:
            cost += template.base_price
            formula += f" + base {template.base_price:.2f}"

        cost = round(cost, 2)
        steps.append(FormulaStep(label="Manufacturing", formula=formula, result=cost,
                                 values={"pricing_type": pricing_type.value,
                                         "heading_override": heading is not None}))
        return cost

    def _hardware_cost(self, hardware, rail_width_mm, drop_cm, steps):
        width_ft = mm_to_ft(rail_width_mm)
        rail = round(width_ft * hardware.price_per_ft, 2)
        steps.append(FormulaStep(label=f"Hardware: {hardware.item.name}",
                                 formula=f"{width_ft:.2f} ft × {hardware.price_per_ft:.2f}",
                                 result=rail, unit=""))
        bundle = self.bundle_calculator.calculate(
            hardware.kind, width_ft, height=drop_cm, is_double=hardware.is_double,
            mount_type=hardware.mount_type, metadata=hardware.item.metadata,
            rules=hardware.bundle_rules, price_overrides=hardware.price_overrides,
        )
        for line in bundle["accessories"]:
            steps.append(FormulaStep(label=f"Accessory: {line['name']}",
                                     formula=line["breakdown"], result=line["total"]))
        return round(rail + bundle["subtotal"], 2), bundle["accessories"]

    def _flat_option(self, option, profile, measures, width_cm, drop_cm, steps) -> CostLine:
        method = option.pricing_method
        if method == OptionPricingMethod.FIXED:
            cost, calc = option.price, "fixed"
        elif method == OptionPricingMethod.PER_UNIT:
            cost, calc = option.price * option.quantity, f"{option.quantity:g} × {option.price:.2f}"
        elif method == OptionPricingMethod.PER_METER:
            if not profile.is_linear:
                raise SchemaViolation(
                    f"Option '{option.name}' is priced per metre but "
                    f"{profile.category} is not a linear treatment",
                    option_id=option.id,
                )
            meters = measures["linear_meters"]
            cost, calc = meters * option.price, f"{meters:g} m × {option.price:.2f}"
        elif method == OptionPricingMethod.PER_SQM:
            cost, calc = measures["sqm"] * option.price, f"{measures['sqm']:g} m² × {option.price:.2f}"
        elif method == OptionPricingMethod.PER_DROP:
            cost, calc = measures["drops"] * option.price, f"{measures['drops']} drops × {option.price:.2f}"
        elif method == OptionPricingMethod.PER_PANEL:
            cost, calc = measures["panels"] * option.price, f"{measures['panels']} panels × {option.price:.2f}"
        elif method == OptionPricingMethod.PER_WIDTH:
            cost = measures["rail_width_m"] * option.price
            calc = f"{measures['rail_width_m']:g} m rail × {option.price:.2f}"
        else:
            grid = self.grid_resolver.resolve(option.pricing_grid_id)
            cost = grid.lookup(width_cm, drop_cm)
            calc = f"grid {grid.grid_id}"

        cost = round(cost, 2)
        steps.append(FormulaStep(label=f"Option: {option.name}", formula=calc, result=cost))
        return CostLine(id=option.id, name=option.name, pricing_method=method.value,
                        amount=cost, calculation=calc)
