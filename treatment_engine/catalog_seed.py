"""
Demo catalog for one organisation ("demo").

Seeded by GET /api/catalog/seed (and on startup when SEED_ON_STARTUP is set).
Prices are illustrative GBP list prices.
"""

import logging

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

DEMO_ORG = "demo"

DEFAULT_WINDOW_TYPES = [
    {"id": "wt-standard", "name": "Standard Window", "key": "standard"},
    {"id": "wt-bay", "name": "Bay Window", "key": "bay"},
    {"id": "wt-french", "name": "French Door", "key": "french_door"},
]

DEFAULT_GRIDS = {
    # widthColumns + dropRows with nested prices, cm
    "grid-roller-make": {
        "name": "Roller blind make-up",
        "grid_data": {
            "unit": "cm",
            "widthColumns": [60, 90, 120, 150, 180, 210],
            "dropRows": [
                {"drop": 120, "prices": [38, 42, 47, 52, 58, 64]},
                {"drop": 160, "prices": [42, 47, 53, 59, 66, 73]},
                {"drop": 200, "prices": [46, 52, 59, 66, 74, 82]},
                {"drop": 250, "prices": [51, 58, 66, 74, 83, 92]},
            ],
        },
    },
    # flat axes + "width_drop" price map, mm (inferred)
    "grid-band-a": {
        "name": "Price band A",
        "grid_data": {
            "widthColumns": [600, 1200, 1800, 2400],
            "dropRows": [1500, 2000, 2500],
            "prices": {
                "600_1500": 29, "1200_1500": 44, "1800_1500": 61, "2400_1500": 79,
                "600_2000": 34, "1200_2000": 52, "1800_2000": 72, "2400_2000": 93,
                "600_2500": 39, "1200_2500": 60, "1800_2500": 83, "2400_2500": 107,
            },
        },
    },
    # range labels, cm
    "grid-band-b": {
        "name": "Price band B",
        "grid_data": {
            "widthRanges": ["50-100", "101-150", "151-200", "201-240"],
            "dropRanges": ["50-150", "151-200", "201-250"],
            "prices": [
                [41, 57, 76, 95],
                [49, 68, 90, 112],
                [57, 79, 104, 130],
            ],
        },
    },
}

DEFAULT_PRICE_GROUP_RULES = [
    {"price_group": "A", "grid_id": "grid-band-a", "treatment_category": None, "priority": 0},
    {"price_group": "B", "grid_id": "grid-band-b", "treatment_category": "roller_blinds", "priority": 10},
]

DEFAULT_INVENTORY = [
    {
        "id": "fab-linen-natural", "name": "Linen Natural", "category": "fabric",
        "unit": "m", "cost_price": 14.00, "selling_price": 24.50,
        "product_data": {
            "fabric_width_cm": 137, "pricing_method": "per_running_meter",
            "price_per_meter": 24.50, "pattern_repeat_cm": 0, "railroading_allowed": False,
        },
    },
    {
        "id": "fab-velvet-damask", "name": "Velvet Damask", "category": "fabric",
        "unit": "m", "cost_price": 31.00, "selling_price": 52.00,
        "product_data": {
            "fabric_width_cm": 140, "pricing_method": "per_running_meter",
            "price_per_meter": 52.00, "pattern_repeat_cm": 64, "railroading_allowed": False,
        },
    },
    {
        "id": "fab-voile-wide", "name": "Wide Width Voile", "category": "fabric",
        "unit": "m", "cost_price": 9.00, "selling_price": 16.00,
        "product_data": {
            "fabric_width_cm": 300, "pricing_method": "per_running_meter",
            "price_per_meter": 16.00, "railroading_allowed": True,
        },
    },
    {
        "id": "mat-blackout-a", "name": "Blackout Roller Fabric (Band A)", "category": "material",
        "unit": "ea", "cost_price": None, "selling_price": None,
        "product_data": {"width_cm": 240, "pricing_method": "pricing_grid", "price_group": "A"},
    },
    {
        "id": "mat-sunscreen-b", "name": "Sunscreen 5% (Band B)", "category": "material",
        "unit": "ea", "cost_price": None, "selling_price": None,
        "product_data": {"width_cm": 240, "pricing_method": "pricing_grid", "price_group": "B",
                         "pricing_grid_markup": 10},
    },
    {
        "id": "trk-classic-white", "name": "Classic Track - White", "category": "hardware",
        "unit": "ft", "cost_price": 3.90, "selling_price": 6.50, "bundle_kind": "track",
        "extra_data": {"accessories": {
            "runner": 0.35, "endCap": 1.80, "ceilingBracket": 2.20,
            "wallSingleBracket": 2.60, "wallDoubleBracket": 4.10,
            "jointer": 1.50, "overlap": 3.00,
        }},
    },
    {
        "id": "rod-brass-28", "name": "Brass Rod 28mm", "category": "hardware",
        "unit": "ft", "cost_price": 7.20, "selling_price": 12.00, "bundle_kind": "rod",
        "extra_data": {"accessories": {
            "end_cap": 3.50, "round_ball_finial": 9.00, "single_bracket": 6.00,
            "double_bracket": 10.50, "rings": 0.90,
        }},
    },
    {"id": "lin-blackout", "name": "Blackout Lining", "category": "component",
     "unit": "m", "cost_price": 5.50, "selling_price": 9.00},
    {"id": "hdg-tape-pleat", "name": "Pencil Pleat Tape", "category": "component",
     "unit": "m", "cost_price": 1.10, "selling_price": 2.00},
    {"id": "lab-sewing", "name": "Sewing per width", "category": "labour",
     "unit": "width", "cost_price": 18.00, "selling_price": 28.00},
    {"id": "lab-install", "name": "Installation visit", "category": "labour",
     "unit": "ea", "cost_price": 35.00, "selling_price": 55.00},
]

DEFAULT_TEMPLATES = [
    {
        "id": "tpl-curtain-pleat", "name": "Pencil Pleat Curtains", "treatment_category": "curtains",
        "data": {
            "pricing_type": "per_running_meter",
            "header_allowance_cm": 8, "bottom_hem_cm": 15, "side_hem_cm": 4,
            "seam_hem_cm": 1.5, "waste_percent": 5, "fullness_ratio": 2.5,
            "machine_price_per_metre": 12.00,
            "heading_prices": {
                "wave": {"machine_price_per_metre": 15.00, "fullness_ratio": 2.2},
                "eyelet": {"machine_price_per_metre": 13.50, "fullness_ratio": 2.0},
            },
        },
        "lines": [
            {"inventory_item_id": "$fabric", "qty_formula": "fabric_linear_meters",
             "role": "fabric", "price_mode": "sell"},
            {"inventory_item_id": "lin-blackout", "qty_formula": "fabric_linear_meters",
             "wastage_pct": 0, "role": "lining", "price_mode": "sell"},
            {"inventory_item_id": "hdg-tape-pleat", "qty_formula": "rail_width_m * fullness",
             "wastage_pct": 10, "role": "heading", "price_mode": "sell"},
            {"inventory_item_id": "$hardware", "qty_formula": "width_ft",
             "role": "hardware", "price_mode": "sell"},
            {"inventory_item_id": "lab-sewing", "qty_formula": "widths_required",
             "role": "labour", "price_mode": "sell"},
            {"inventory_item_id": "lab-install", "qty_formula": "1",
             "role": "install", "price_mode": "sell"},
        ],
    },
    {
        "id": "tpl-roller-blind", "name": "Roller Blind", "treatment_category": "roller_blinds",
        "data": {
            "pricing_type": "pricing_grid", "pricing_grid_id": "grid-roller-make",
            "header_allowance_cm": 0, "bottom_hem_cm": 10, "side_hem_cm": 0,
            "seam_hem_cm": 0, "waste_percent": 0, "fullness_ratio": 1,
        },
        "lines": [
            {"inventory_item_id": "lab-install", "qty_formula": "1",
             "role": "install", "price_mode": "sell"},
        ],
    },
]

DEFAULT_PRICING_RULES = [
    {"id": "rule-markup", "template_id": None, "name": "Trade markup",
     "rule_type": "markup_percentage", "payload": {"value": 20}, "order_index": 0},
    {"id": "rule-delivery", "template_id": None, "name": "Delivery",
     "rule_type": "fixed_fee", "payload": {"value": 25}, "order_index": 1},
    {"id": "rule-curtain-panels", "template_id": "tpl-curtain-pleat", "name": "Hand finishing",
     "rule_type": "per_panel", "payload": {"value": 8}, "order_index": 2},
    {"id": "rule-oversize", "template_id": None, "name": "Oversize surcharge",
     "rule_type": "ladder", "order_index": 3,
     "payload": {"tiers": [
         {"min_width_mm": 0, "max_width_mm": 2400, "price": 0},
         {"min_width_mm": 2401, "max_width_mm": 4000, "price": 35},
         {"min_width_mm": 4001, "price": 70},
     ]}},
]

DEFAULT_BUNDLE_RULES = [
    # rods on wide windows need a centre support; everything else uses the built-in rod rules
    {"parent_item_key": "rod-brass-28", "child_item_key": "finials", "name": "Finials",
     "quantity_formula": "isDouble ? 4 : 2", "order_index": 0},
    {"parent_item_key": "rod-brass-28", "child_item_key": "brackets", "name": "Brackets",
     "quantity_formula": "ceil(widthFt / 4) + 1", "order_index": 1},
    {"parent_item_key": "rod-brass-28", "child_item_key": "rings", "name": "Rings",
     "quantity_formula": "ceil(widthFt * 3) * (isDouble ? 2 : 1)", "order_index": 2},
    {"parent_item_key": "rod-brass-28", "child_item_key": "centre_support", "name": "Centre Support",
     "quantity_formula": "1", "condition": {"minWidthFt": 10}, "order_index": 3, "unit_price": 14.00},
]


def seed_catalog(db: Session, org_id: str = DEMO_ORG) -> dict:
    """Insert the demo catalog rows that don't exist yet."""
    counts = {"window_types": 0, "grids": 0, "inventory": 0, "templates": 0,
              "pricing_rules": 0, "price_group_rules": 0, "bundle_rules": 0}

    for wt in DEFAULT_WINDOW_TYPES:
        if not db.query(models.WindowType).filter(models.WindowType.id == wt["id"]).first():
            db.add(models.WindowType(org_id=org_id, **wt))
            counts["window_types"] += 1

    for grid_id, grid in DEFAULT_GRIDS.items():
        if not db.query(models.PricingGrid).filter(models.PricingGrid.id == grid_id).first():
            db.add(models.PricingGrid(id=grid_id, org_id=org_id, **grid))
            counts["grids"] += 1

    for item in DEFAULT_INVENTORY:
        if not db.query(models.InventoryItem).filter(models.InventoryItem.id == item["id"]).first():
            db.add(models.InventoryItem(org_id=org_id, **item))
            counts["inventory"] += 1

    for tpl in DEFAULT_TEMPLATES:
        if db.query(models.TreatmentTemplate).filter(models.TreatmentTemplate.id == tpl["id"]).first():
            continue
        record = models.TreatmentTemplate(
            id=tpl["id"], org_id=org_id, name=tpl["name"],
            treatment_category=tpl["treatment_category"], data=tpl["data"],
        )
        for index, line in enumerate(tpl["lines"]):
            record.assembly_lines.append(models.AssemblyLineRecord(order_index=index, **line))
        db.add(record)
        counts["templates"] += 1

    for rule in DEFAULT_PRICING_RULES:
        if not db.query(models.PricingRuleRecord).filter(models.PricingRuleRecord.id == rule["id"]).first():
            db.add(models.PricingRuleRecord(org_id=org_id, **rule))
            counts["pricing_rules"] += 1

    if not db.query(models.PriceGroupRule).filter(models.PriceGroupRule.org_id == org_id).first():
        for rule in DEFAULT_PRICE_GROUP_RULES:
            db.add(models.PriceGroupRule(org_id=org_id, **rule))
            counts["price_group_rules"] += 1

    if not db.query(models.BundleRuleRecord).filter(models.BundleRuleRecord.org_id == org_id).first():
        for rule in DEFAULT_BUNDLE_RULES:
            db.add(models.BundleRuleRecord(org_id=org_id, **rule))
            counts["bundle_rules"] += 1

    db.commit()
    logger.info(f"Catalog seeded for org {org_id}: {counts}")
    return counts
