from pydantic import BaseModel, Field, computed_field, model_validator
from typing import Optional, List, Dict, Any
import enum


# --- Enums ---

class PricingType(str, enum.Enum):
    PER_RUNNING_METER = "per_running_meter"
    PER_SQM = "per_sqm"
    PER_DROP = "per_drop"
    PRICING_GRID = "pricing_grid"
    FIXED = "fixed"


class FabricPricingMethod(str, enum.Enum):
    PER_RUNNING_METER = "per_running_meter"
    PER_SQM = "per_sqm"
    PRICING_GRID = "pricing_grid"
    FIXED = "fixed"


class MaterialPricingMethod(str, enum.Enum):
    PER_SQM = "per_sqm"
    PRICING_GRID = "pricing_grid"
    FIXED = "fixed"


class OptionPricingMethod(str, enum.Enum):
    FIXED = "fixed"
    PER_UNIT = "per_unit"
    PER_METER = "per_meter"
    PER_SQM = "per_sqm"
    PER_DROP = "per_drop"
    PER_PANEL = "per_panel"
    PER_WIDTH = "per_width"
    PRICING_GRID = "pricing_grid"
    PERCENTAGE = "percentage"                 # alias of percentage_of_base
    PERCENTAGE_OF_BASE = "percentage_of_base"
    PERCENTAGE_OF_FABRIC = "percentage_of_fabric"
    PERCENTAGE_OF_TOTAL = "percentage_of_total"


PERCENTAGE_METHODS = {
    OptionPricingMethod.PERCENTAGE,
    OptionPricingMethod.PERCENTAGE_OF_BASE,
    OptionPricingMethod.PERCENTAGE_OF_FABRIC,
    OptionPricingMethod.PERCENTAGE_OF_TOTAL,
}


class PanelConfiguration(str, enum.Enum):
    SINGLE = "single"
    PAIR = "pair"
    DOUBLE = "double"   # same as pair


class MountType(str, enum.Enum):
    CEILING = "ceiling"
    WALL = "wall"


class PriceMode(str, enum.Enum):
    COST = "cost"
    SELL = "sell"


# --- Input contracts ---

class MeasurementsContract(BaseModel):
    rail_width_mm: float = Field(gt=0)
    drop_mm: float = Field(gt=0)
    fullness: Optional[float] = Field(default=None, ge=1, le=5)
    return_left_mm: float = Field(default=0, ge=0)
    return_right_mm: float = Field(default=0, ge=0)
    overlap_mm: float = Field(default=0, ge=0)
    pooling_mm: float = Field(default=0, ge=0)
    fabric_rotated: bool = False
    panel_configuration: PanelConfiguration = PanelConfiguration.PAIR
    stack_side: Optional[str] = None
    control_side: Optional[str] = None

    class Config:
        frozen = True

    @property
    def panel_count(self) -> int:
        return 1 if self.panel_configuration == PanelConfiguration.SINGLE else 2


class HeadingPrice(BaseModel):
    """Heading-specific override of template manufacturing prices."""
    machine_price_per_metre: Optional[float] = Field(default=None, ge=0)
    machine_price_per_sqm: Optional[float] = Field(default=None, ge=0)
    machine_price_per_drop: Optional[float] = Field(default=None, ge=0)
    machine_price_per_panel: Optional[float] = Field(default=None, ge=0)
    fixed_price: Optional[float] = Field(default=None, ge=0)
    fullness_ratio: Optional[float] = Field(default=None, ge=1, le=5)

    class Config:
        frozen = True


class TemplateContract(BaseModel):
    """Manufacturing template. Every manufacturing value is required."""
    id: str
    name: str
    treatment_category: str
    pricing_type: PricingType
    header_allowance_cm: float = Field(ge=0)
    bottom_hem_cm: float = Field(ge=0)
    side_hem_cm: float = Field(ge=0)
    seam_hem_cm: float = Field(ge=0)
    waste_percent: float = Field(ge=0, le=100)
    fullness_ratio: float = Field(ge=1, le=5)
    machine_price_per_metre: Optional[float] = Field(default=None, ge=0)
    machine_price_per_sqm: Optional[float] = Field(default=None, ge=0)
    machine_price_per_drop: Optional[float] = Field(default=None, ge=0)
    machine_price_per_panel: Optional[float] = Field(default=None, ge=0)
    fixed_price: Optional[float] = Field(default=None, ge=0)
    base_price: float = Field(default=0, ge=0)
    pricing_grid_id: Optional[str] = None
    heading_prices: Dict[str, HeadingPrice] = {}

    class Config:
        frozen = True

    @model_validator(mode="after")
    def check_pricing_inputs(self):
        required = {
            PricingType.PER_RUNNING_METER: "machine_price_per_metre",
            PricingType.PER_SQM: "machine_price_per_sqm",
            PricingType.PER_DROP: "machine_price_per_drop",
            PricingType.PRICING_GRID: "pricing_grid_id",
            PricingType.FIXED: "fixed_price",
        }[self.pricing_type]
        if getattr(self, required) is None:
            raise ValueError(f"pricing_type '{self.pricing_type.value}' requires {required}")
        return self


class FabricContract(BaseModel):
    id: str
    name: str
    fabric_width_cm: float = Field(gt=0)
    pricing_method: FabricPricingMethod
    price_per_meter: Optional[float] = Field(default=None, ge=0)
    price_per_sqm: Optional[float] = Field(default=None, ge=0)
    fixed_price: Optional[float] = Field(default=None, ge=0)
    pricing_grid_id: Optional[str] = None
    price_group: Optional[str] = None
    pricing_grid_markup: float = Field(default=0, ge=0)
    pattern_repeat_cm: float = Field(default=0, ge=0)
    railroading_allowed: bool = False

    class Config:
        frozen = True

    @model_validator(mode="after")
    def check_price_source(self):
        _check_price_source(self, {
            FabricPricingMethod.PER_RUNNING_METER: "price_per_meter",
            FabricPricingMethod.PER_SQM: "price_per_sqm",
            FabricPricingMethod.FIXED: "fixed_price",
        })
        return self


class MaterialContract(BaseModel):
    id: str
    name: str
    width_cm: Optional[float] = Field(default=None, gt=0)
    pricing_method: MaterialPricingMethod
    price_per_sqm: Optional[float] = Field(default=None, ge=0)
    fixed_price: Optional[float] = Field(default=None, ge=0)
    pricing_grid_id: Optional[str] = None
    price_group: Optional[str] = None
    pricing_grid_markup: float = Field(default=0, ge=0)
    pattern_repeat_cm: float = Field(default=0, ge=0)
    railroading_allowed: bool = False

    class Config:
        frozen = True

    @model_validator(mode="after")
    def check_price_source(self):
        _check_price_source(self, {
            MaterialPricingMethod.PER_SQM: "price_per_sqm",
            MaterialPricingMethod.FIXED: "fixed_price",
        })
        return self


def _check_price_source(product, fields_by_method: dict):
    method = product.pricing_method
    if method.value == "pricing_grid":
        if product.pricing_grid_id is None and not product.price_group:
            raise ValueError("pricing_grid method requires pricing_grid_id or price_group")
        return
    field = fields_by_method[method]
    if getattr(product, field) is None:
        raise ValueError(f"pricing_method '{method.value}' requires {field}")


class SelectedOptionContract(BaseModel):
    id: str
    name: str
    pricing_method: OptionPricingMethod
    price: float = Field(default=0, ge=0)
    quantity: float = Field(default=1, ge=0)
    pricing_grid_id: Optional[str] = None

    class Config:
        frozen = True

    @model_validator(mode="after")
    def check_grid(self):
        if self.pricing_method == OptionPricingMethod.PRICING_GRID and self.pricing_grid_id is None:
            raise ValueError("pricing_grid option requires pricing_grid_id")
        return self


class PricingGridContract(BaseModel):
    id: str
    name: str = ""
    grid_data: Dict[str, Any]

    class Config:
        frozen = True


class BundleRule(BaseModel):
    id: Optional[str] = None
    parent_item_key: str
    child_item_key: str
    name: Optional[str] = None
    quantity_formula: str
    condition: Optional[Dict[str, Any]] = None
    order_index: int = 0
    unit_price: Optional[float] = Field(default=None, ge=0)

    class Config:
        frozen = True


class AssemblyLine(BaseModel):
    inventory_item_id: str
    qty_formula: str
    wastage_pct: float = Field(default=0, ge=0)
    role: str = "material"
    price_mode: PriceMode = PriceMode.COST
    order_index: int = 0

    class Config:
        frozen = True


class InventoryItemContract(BaseModel):
    id: str
    name: str
    unit: str = "ea"
    cost_price: Optional[float] = Field(default=None, ge=0)
    selling_price: Optional[float] = Field(default=None, ge=0)
    bundle_kind: Optional[str] = None        # "track" / "rod" expand accessories
    metadata: Dict[str, Any] = {}

    class Config:
        frozen = True


class HardwareSelection(BaseModel):
    """A track or rod on the treatment, priced per foot of rail plus accessories."""
    item: InventoryItemContract
    kind: str = "track"
    price_per_ft: float = Field(ge=0)
    mount_type: MountType = MountType.CEILING
    is_double: bool = False
    bundle_rules: Optional[List[BundleRule]] = None
    price_overrides: Dict[str, float] = {}


# --- Output contracts ---

class BOMLine(BaseModel):
    item_id: str
    item_name: str
    role: str
    quantity: float
    unit_price: float
    total: float
    unit: str = "ea"

    class Config:
        frozen = True


class FormulaStep(BaseModel):
    label: str
    formula: str
    values: Dict[str, Any] = {}
    result: float
    unit: str = ""

    class Config:
        frozen = True

    def describe(self) -> str:
        unit = f" {self.unit}" if self.unit else ""
        return f"{self.label}: {self.formula} = {self.result:g}{unit}"


class FormulaBreakdown(BaseModel):
    steps: List[FormulaStep] = []

    class Config:
        frozen = True

    @computed_field
    @property
    def formula_string(self) -> str:
        return "\n".join(step.describe() for step in self.steps)


class CostLine(BaseModel):
    id: str
    name: str
    pricing_method: str
    amount: float
    calculation: str = ""

    class Config:
        frozen = True


class CalculationResultContract(BaseModel):
    treatment_category: str
    family: str
    currency: str
    dimensions: Dict[str, float]
    measure: Dict[str, float]
    fabric_cost: float
    material_cost: float
    manufacturing_cost: float
    hardware_cost: float
    options_cost: float
    option_lines: List[CostLine] = []
    hardware_lines: List[Dict[str, Any]] = []
    subtotal: float
    waste_amount: float
    total: float
    breakdown: FormulaBreakdown

    class Config:
        frozen = True


# --- API request / response ---

class CalculateRequest(BaseModel):
    template: Dict[str, Any]
    measurements: Dict[str, Any]
    fabric: Optional[Dict[str, Any]] = None
    material: Optional[Dict[str, Any]] = None
    options: List[Dict[str, Any]] = []
    heading_id: Optional[str] = None
    hardware: Optional[Dict[str, Any]] = None
    grids: List[Dict[str, Any]] = []
    price_group_rules: List[Dict[str, Any]] = []


class BomRequest(BaseModel):
    org_id: str
    template_id: str
    window_type_id: Optional[str] = None
    state: Dict[str, Any] = {}


class BomResponse(BaseModel):
    bom: List[BOMLine]
    price_breakdown: Dict[str, Any]
    price_total: float


class BundleRequest(BaseModel):
    kind: str = "track"
    width_ft: float = Field(gt=0)
    height: float = 0
    is_double: bool = False
    mount_type: MountType = MountType.CEILING
    metadata: Dict[str, Any] = {}
    rules: Optional[List[BundleRule]] = None
    price_overrides: Dict[str, float] = {}
