from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, JSON, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from .database import Base


# Read-only catalog for the calculation endpoints. Every row is scoped by org_id.
# Contract payloads are stored as JSON and validated on read (StrictContract).


class WindowType(Base):
    __tablename__ = "window_types"

    id = Column(String, primary_key=True)
    org_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    key = Column(String)  # standard, bay, french_door, ...
    created_at = Column(DateTime, default=datetime.utcnow)


class TreatmentTemplate(Base):
    __tablename__ = "treatment_templates"

    id = Column(String, primary_key=True)
    org_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    treatment_category = Column(String, nullable=False)
    data = Column(JSON, nullable=False)  # TemplateContract fields
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    assembly_lines = relationship(
        "AssemblyLineRecord",
        back_populates="template",
        order_by="AssemblyLineRecord.order_index",
        cascade="all, delete-orphan",
    )

    def contract_data(self) -> dict:
        return {
            **(self.data or {}),
            "id": self.id,
            "name": self.name,
            "treatment_category": self.treatment_category,
        }


class AssemblyLineRecord(Base):
    __tablename__ = "assembly_lines"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(String, ForeignKey("treatment_templates.id"), nullable=False)
    inventory_item_id = Column(String, nullable=False)  # or "$fabric" / "$hardware"
    qty_formula = Column(String, nullable=False)
    wastage_pct = Column(Float, default=0.0)
    role = Column(String, default="material")
    price_mode = Column(String, default="cost")
    order_index = Column(Integer, default=0)

    template = relationship("TreatmentTemplate", back_populates="assembly_lines")

    def contract_data(self) -> dict:
        return {
            "inventory_item_id": self.inventory_item_id,
            "qty_formula": self.qty_formula,
            "wastage_pct": self.wastage_pct or 0.0,
            "role": self.role or "material",
            "price_mode": self.price_mode or "cost",
            "order_index": self.order_index or 0,
        }


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(String, primary_key=True)
    org_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    category = Column(String)        # fabric, material, hardware, component, labour
    unit = Column(String, default="ea")
    cost_price = Column(Float)
    selling_price = Column(Float)
    bundle_kind = Column(String)     # track / rod
    extra_data = Column(JSON, default=dict)    # accessory prices etc.
    product_data = Column(JSON)      # FabricContract / MaterialContract fields
    created_at = Column(DateTime, default=datetime.utcnow)

    def contract_data(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "unit": self.unit or "ea",
            "cost_price": self.cost_price,
            "selling_price": self.selling_price,
            "bundle_kind": self.bundle_kind,
            "metadata": self.extra_data or {},
        }

    def product_contract_data(self) -> dict:
        return {**(self.product_data or {}), "id": self.id, "name": self.name}


class PricingGrid(Base):
    __tablename__ = "pricing_grids"

    id = Column(String, primary_key=True)
    org_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    grid_data = Column(JSON, nullable=False)  # any supported encoding
    created_at = Column(DateTime, default=datetime.utcnow)


class PriceGroupRule(Base):
    __tablename__ = "price_group_rules"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, index=True, nullable=False)
    price_group = Column(String, nullable=False)
    grid_id = Column(String, nullable=False)
    treatment_category = Column(String)
    priority = Column(Integer, default=0)

    def contract_data(self) -> dict:
        return {
            "price_group": self.price_group,
            "grid_id": self.grid_id,
            "treatment_category": self.treatment_category,
            "priority": self.priority or 0,
        }


class PricingRuleRecord(Base):
    __tablename__ = "pricing_rules"

    id = Column(String, primary_key=True)
    org_id = Column(String, index=True, nullable=False)
    template_id = Column(String)     # None = applies to every template
    name = Column(String)
    rule_type = Column(String)
    payload = Column(JSON, default=dict)  # value / tiers
    order_index = Column(Integer, default=0)
    active = Column(Boolean, default=True)

    def raw_rule(self) -> dict:
        # payload is merged as-is; parse_rule validates it
        header = {"id": self.id, "name": self.name, "rule_type": self.rule_type}
        if self.payload is None or isinstance(self.payload, dict):
            return {**(self.payload or {}), **header}
        return {**header, "payload": self.payload}


class BundleRuleRecord(Base):
    __tablename__ = "bundle_rules"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, index=True, nullable=False)
    parent_item_key = Column(String, index=True, nullable=False)  # inventory id or bundle kind
    child_item_key = Column(String, nullable=False)
    name = Column(String)
    quantity_formula = Column(String, nullable=False)
    condition = Column(JSON)
    order_index = Column(Integer, default=0)
    unit_price = Column(Float)

    def contract_data(self) -> dict:
        return {
            "id": str(self.id),
            "parent_item_key": self.parent_item_key,
            "child_item_key": self.child_item_key,
            "name": self.name,
            "quantity_formula": self.quantity_formula,
            "condition": self.condition,
            "order_index": self.order_index or 0,
            "unit_price": self.unit_price,
        }
