"""
Fabric / material usage.

Input: normalized width and drop (cm), the manufacturing template, the
selected fabric or material, and the measurement extras.
Output: usage dict (widths, cut length, metres or m², waste) plus steps.

Linear (curtains, romans):
    total_width  = (width + overlap) × fullness + returns + side hems
    widths       = ceil(total_width / fabric_width)
    cut_length   = drop + header + bottom hem + pooling, rounded up to the repeat
    linear_cm    = widths × cut_length + seams × seam hem
Railroaded: the fabric runs sideways, so pieces = ceil(cut_length / fabric_width)
and each piece is the full total width long.

Area (blinds, shutters):
    sqm = (width + 2 × side hem) × (drop + header + bottom hem) / 10000
"""

import logging
import math

from .base import BaseCalculator
from ..errors import RailroadingNotSupported, SchemaViolation
from ..units import cm_to_m

logger = logging.getLogger(__name__)


def _require_rotation(product, rotated: bool):
    if not rotated:
        return
    if product is None or not getattr(product, "railroading_allowed", False):
        name = getattr(product, "name", "selected product")
        raise RailroadingNotSupported(
            f"'{name}' cannot be railroaded (rotated)",
            product_id=getattr(product, "id", None),
        )


class FabricUsageCalculator(BaseCalculator):
    """Running-metre usage for linear treatments."""

    def calculate(self, width_cm: float, drop_cm: float, template, fabric,
                  fullness: float, returns_cm: float = 0.0, overlap_cm: float = 0.0,
                  pooling_cm: float = 0.0, panel_count: int = 2,
                  rotated: bool = False) -> dict:
        if fabric is None:
            raise SchemaViolation("Fabric usage needs a fabric")
        if width_cm <= 0 or drop_cm <= 0:
            raise SchemaViolation("Width and drop must be greater than 0",
                                  width_cm=width_cm, drop_cm=drop_cm)
        _require_rotation(fabric, rotated)

        steps = []
        fabric_width = fabric.fabric_width_cm

        gathered = self.record(
            steps, "Gathered width", f"({width_cm:g} + {overlap_cm:g}) × {fullness:g}",
            (width_cm + overlap_cm) * fullness, "cm",
            width_cm=width_cm, overlap_cm=overlap_cm, fullness=fullness,
        )
        side_hems = template.side_hem_cm * 2 * panel_count
        total_width = self.record(
            steps, "Total width",
            f"{gathered:g} + {returns_cm:g} returns + {side_hems:g} side hems",
            gathered + returns_cm + side_hems, "cm",
            returns_cm=returns_cm, side_hems_cm=side_hems,
        )

        raw_drop = drop_cm + template.header_allowance_cm + template.bottom_hem_cm + pooling_cm
        self.record(
            steps, "Total drop",
            f"{drop_cm:g} + {template.header_allowance_cm:g} header + "
            f"{template.bottom_hem_cm:g} hem + {pooling_cm:g} pooling",
            raw_drop, "cm",
        )
        repeat = fabric.pattern_repeat_cm

        if not rotated:
            cut_length = self.round_up_to_repeat(raw_drop, repeat)
            if repeat:
                self.record(steps, "Cut length (pattern repeat)",
                            f"ceil({raw_drop:g} / {repeat:g}) × {repeat:g}", cut_length, "cm")
            widths = self.record(
                steps, "Widths required", f"ceil({total_width:g} / {fabric_width:g})",
                math.ceil(total_width / fabric_width), "widths",
            )
            piece_length = cut_length
        else:
            piece_length = self.round_up_to_repeat(total_width, repeat)
            if repeat:
                self.record(steps, "Piece length (pattern repeat)",
                            f"ceil({total_width:g} / {repeat:g}) × {repeat:g}", piece_length, "cm")
            cut_length = raw_drop
            widths = self.record(
                steps, "Pieces required (railroaded)", f"ceil({raw_drop:g} / {fabric_width:g})",
                math.ceil(raw_drop / fabric_width), "pieces",
            )

        seams = max(0, widths - 1)
        seam_allowance = seams * template.seam_hem_cm
        linear_cm = self.record(
            steps, "Fabric length",
            f"{widths} × {piece_length:g} + {seams} seams × {template.seam_hem_cm:g}",
            widths * piece_length + seam_allowance, "cm",
        )
        linear_m = cm_to_m(linear_cm)
        with_waste = self.record(
            steps, "Fabric with waste", f"{linear_m:g} × (1 + {template.waste_percent:g}%)",
            self.apply_waste(linear_m, template.waste_percent), "m",
        )

        return {
            "family": "linear",
            "rotated": rotated,
            "widths_required": widths,
            "seams": seams,
            "total_width_cm": total_width,
            "total_drop_cm": raw_drop,
            "cut_length_cm": piece_length if rotated else cut_length,
            "linear_cm": linear_cm,
            "linear_meters": linear_m,
            "linear_meters_with_waste": with_waste,
            "waste_percent": template.waste_percent,
            "steps": steps,
        }


class AreaUsageCalculator(BaseCalculator):
    """Square-metre usage for blinds and shutters."""

    def calculate(self, width_cm: float, drop_cm: float, template, product=None,
                  rotated: bool = False) -> dict:
        if width_cm <= 0 or drop_cm <= 0:
            raise SchemaViolation("Width and drop must be greater than 0",
                                  width_cm=width_cm, drop_cm=drop_cm)
        _require_rotation(product, rotated)

        steps = []
        eff_width = self.record(
            steps, "Effective width", f"{width_cm:g} + 2 × {template.side_hem_cm:g}",
            width_cm + 2 * template.side_hem_cm, "cm",
        )
        eff_drop = self.record(
            steps, "Effective drop",
            f"{drop_cm:g} + {template.header_allowance_cm:g} + {template.bottom_hem_cm:g}",
            drop_cm + template.header_allowance_cm + template.bottom_hem_cm, "cm",
        )
        sqm = self.record(
            steps, "Area", f"{eff_width:g} × {eff_drop:g} / 10000",
            eff_width * eff_drop / 10000.0, "m²",
        )
        with_waste = self.record(
            steps, "Area with waste", f"{sqm:g} × (1 + {template.waste_percent:g}%)",
            self.apply_waste(sqm, template.waste_percent), "m²",
        )

        widths = 0
        product_width = getattr(product, "width_cm", None) or getattr(product, "fabric_width_cm", None)
        if product_width:
            # rotated: the roll width covers the drop instead of the width
            across = eff_drop if rotated else eff_width
            widths = self.record(
                steps, "Widths required", f"ceil({across:g} / {product_width:g})",
                math.ceil(across / product_width), "widths",
            )

        return {
            "family": "area",
            "rotated": rotated,
            "widths_required": widths,
            "effective_width_cm": eff_width,
            "effective_drop_cm": eff_drop,
            "sqm": sqm,
            "sqm_with_waste": with_waste,
            "waste_percent": template.waste_percent,
            "steps": steps,
        }
