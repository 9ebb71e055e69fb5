"""
Catalog reads for calc_bom_and_price.

Everything a calculation needs is fetched up front, one batched query per
table (IN lists, never one query per item). After load() returns, the
calculation runs fully in memory with no further I/O.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session, selectinload

from . import models
from .grids import GridResolver, referenced_grid_ids
from .schemas import (
    AssemblyLine, BundleRule, FabricContract, InventoryItemContract,
    MaterialContract, TemplateContract,
)
from .validation import StrictContract

logger = logging.getLogger(__name__)

FABRIC_REF = "$fabric"
MATERIAL_REF = "$material"
HARDWARE_REF = "$hardware"


class CatalogNotFound(LookupError):
    pass


def selected_id(selection) -> Optional[str]:
    """State selections are either an id or an object with an "id"."""
    if selection is None or selection == "":
        return None
    if isinstance(selection, dict):
        value = selection.get("id")
        return str(value) if value is not None else None
    return str(selection)


@dataclass
class CatalogSnapshot:
    template: TemplateContract
    assembly_lines: list
    inventory: dict
    grid_resolver: GridResolver
    pricing_rules: list
    bundle_rules: dict = field(default_factory=dict)
    fabric: Optional[FabricContract] = None
    fabric_item_id: Optional[str] = None
    material: Optional[MaterialContract] = None
    material_item_id: Optional[str] = None
    hardware_item_id: Optional[str] = None
    window_type: Optional[dict] = None


class CatalogRepository:
    def __init__(self, db: Session):
        self.db = db

    def load(self, org_id: str, template_id: str, state: dict,
             window_type_id: Optional[str] = None) -> CatalogSnapshot:
        record = (
            self.db.query(models.TreatmentTemplate)
            .options(selectinload(models.TreatmentTemplate.assembly_lines))
            .filter(models.TreatmentTemplate.org_id == org_id,
                    models.TreatmentTemplate.id == template_id,
                    models.TreatmentTemplate.active.is_(True))
            .first()
        )
        if not record:
            raise CatalogNotFound(f"Template '{template_id}' not found for org '{org_id}'")
        template = StrictContract.parse(TemplateContract, record.contract_data(),
                                        f"Template '{template_id}'")
        lines = sorted(
            StrictContract.parse_many(AssemblyLine, [line.contract_data() for line in record.assembly_lines],
                                      f"Assembly line of '{template_id}'"),
            key=lambda line: line.order_index,
        )

        window_type = None
        if window_type_id:
            wt = (self.db.query(models.WindowType)
                  .filter(models.WindowType.org_id == org_id, models.WindowType.id == window_type_id)
                  .first())
            if not wt:
                raise CatalogNotFound(f"Window type '{window_type_id}' not found for org '{org_id}'")
            window_type = {"id": wt.id, "name": wt.name, "key": wt.key}

        fabric_id = selected_id(state.get("selected_fabric"))
        material_id = selected_id(state.get("selected_material"))
        hardware_id = selected_id(state.get("selected_hardware"))

        # --- inventory: one IN query ---
        item_ids = {line.inventory_item_id for line in lines if not line.inventory_item_id.startswith("$")}
        item_ids |= {i for i in (fabric_id, material_id, hardware_id) if i}
        rows = []
        if item_ids:
            rows = (self.db.query(models.InventoryItem)
                    .filter(models.InventoryItem.org_id == org_id,
                            models.InventoryItem.id.in_(item_ids))
                    .all())
        by_id = {row.id: row for row in rows}
        missing = sorted(item_ids - set(by_id))
        if missing:
            raise CatalogNotFound(f"Inventory items not found: {missing}")
        inventory = {
            row.id: StrictContract.parse(InventoryItemContract, row.contract_data(),
                                         f"Inventory item '{row.id}'")
            for row in rows
        }
        fabric = material = None
        if fabric_id:
            fabric = StrictContract.parse(FabricContract, by_id[fabric_id].product_contract_data(),
                                          f"Fabric '{fabric_id}'")
        if material_id:
            material = StrictContract.parse(MaterialContract, by_id[material_id].product_contract_data(),
                                            f"Material '{material_id}'")

        # --- grids: price-group rules, then every distinct grid id in one query ---
        group_rules = [r.contract_data() for r in
                       self.db.query(models.PriceGroupRule)
                       .filter(models.PriceGroupRule.org_id == org_id).all()]
        groups = {p.price_group.strip().lower() for p in (fabric, material) if p and p.price_group}
        group_rules = [r for r in group_rules if r["price_group"].strip().lower() in groups]
        grid_ids = referenced_grid_ids(
            {"pricing_grid_id": template.pricing_grid_id},
            fabric.model_dump() if fabric else None,
            material.model_dump() if material else None,
            price_group_rules=group_rules,
        )
        grids = {}
        if grid_ids:
            grids = {g.id: g.grid_data for g in
                     self.db.query(models.PricingGrid)
                     .filter(models.PricingGrid.org_id == org_id,
                             models.PricingGrid.id.in_(grid_ids)).all()}

        # --- pricing rules for this template (and org-wide ones) ---
        rule_rows = (self.db.query(models.PricingRuleRecord)
                     .filter(models.PricingRuleRecord.org_id == org_id,
                             models.PricingRuleRecord.active.is_(True),
                             (models.PricingRuleRecord.template_id == template_id)
                             | (models.PricingRuleRecord.template_id.is_(None)))
                     .order_by(models.PricingRuleRecord.order_index)
                     .all())

        # --- bundle rules for every bundle parent, keyed by item id or kind ---
        parent_keys = set()
        for item in inventory.values():
            if item.bundle_kind:
                parent_keys |= {item.id, item.bundle_kind}
        bundle_rules = {}
        if parent_keys:
            for row in (self.db.query(models.BundleRuleRecord)
                        .filter(models.BundleRuleRecord.org_id == org_id,
                                models.BundleRuleRecord.parent_item_key.in_(parent_keys))
                        .all()):
                rule = StrictContract.parse(BundleRule, row.contract_data(), f"Bundle rule {row.id}")
                bundle_rules.setdefault(rule.parent_item_key, []).append(rule)

        logger.info(
            f"Catalog loaded for template {template_id}: {len(lines)} lines, "
            f"{len(inventory)} items, {len(grids)} grids, {len(rule_rows)} pricing rules"
        )
        return CatalogSnapshot(
            template=template,
            assembly_lines=lines,
            inventory=inventory,
            grid_resolver=GridResolver(grids, group_rules),
            pricing_rules=[row.raw_rule() for row in rule_rows],
            bundle_rules=bundle_rules,
            fabric=fabric,
            fabric_item_id=fabric_id,
            material=material,
            material_item_id=material_id,
            hardware_item_id=hardware_id,
            window_type=window_type,
        )
