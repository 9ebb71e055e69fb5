"""
Treatment classifier — maps a treatment category to its calculation family.

Registry pattern: TREATMENT_PROFILES is the single authoritative list.
An unknown category raises UnsupportedTreatmentError; there is no fallback path.
"""

import enum
from dataclasses import dataclass

from .errors import UnsupportedTreatmentError, SchemaViolation


class CalculationFamily(str, enum.Enum):
    LINEAR = "linear"   # charged per running metre (curtains, romans)
    AREA = "area"       # charged per square metre (most blinds)


class ProductRequirement(str, enum.Enum):
    FABRIC = "fabric"
    MATERIAL = "material"
    BOTH = "both"        # fabric and/or material, at least one
    NONE = "none"


@dataclass(frozen=True)
class TreatmentProfile:
    category: str
    family: CalculationFamily
    grid_priced: bool
    requirement: ProductRequirement
    label: str = ""

    @property
    def is_linear(self) -> bool:
        return self.family == CalculationFamily.LINEAR

    @property
    def needs_fabric(self) -> bool:
        return self.requirement == ProductRequirement.FABRIC

    @property
    def needs_material(self) -> bool:
        return self.requirement == ProductRequirement.MATERIAL


_L, _A = CalculationFamily.LINEAR, CalculationFamily.AREA
_F, _M, _B, _N = (ProductRequirement.FABRIC, ProductRequirement.MATERIAL,
                  ProductRequirement.BOTH, ProductRequirement.NONE)

TREATMENT_PROFILES: dict[str, TreatmentProfile] = {
    "curtains": TreatmentProfile("curtains", _L, False, _F, "Curtains"),
    "roman_blinds": TreatmentProfile("roman_blinds", _L, False, _F, "Roman Blinds"),
    "roller_blinds": TreatmentProfile("roller_blinds", _A, True, _M, "Roller Blinds"),
    "venetian_blinds": TreatmentProfile("venetian_blinds", _A, True, _M, "Venetian Blinds"),
    "cellular_blinds": TreatmentProfile("cellular_blinds", _A, True, _M, "Cellular Blinds"),
    "zebra_blinds": TreatmentProfile("zebra_blinds", _A, True, _M, "Zebra Blinds"),
    "vertical_blinds": TreatmentProfile("vertical_blinds", _A, True, _B, "Vertical Blinds"),
    "panel_glide": TreatmentProfile("panel_glide", _A, True, _B, "Panel Glide"),
    "shutters": TreatmentProfile("shutters", _A, True, _M, "Shutters"),
    "plantation_shutters": TreatmentProfile("plantation_shutters", _A, True, _M, "Plantation Shutters"),
    "hardware": TreatmentProfile("hardware", _L, False, _N, "Tracks & Rods"),
}

# Common spellings seen in stored templates
CATEGORY_ALIASES = {
    "curtain": "curtains",
    "roman_blind": "roman_blinds",
    "roller_blind": "roller_blinds",
    "venetian_blind": "venetian_blinds",
    "cellular_blind": "cellular_blinds",
    "honeycomb_blinds": "cellular_blinds",
    "zebra_blind": "zebra_blinds",
    "vertical_blind": "vertical_blinds",
    "panel_glides": "panel_glide",
    "shutter": "shutters",
    "plantation_shutter": "plantation_shutters",
    "track": "hardware",
    "tracks": "hardware",
    "rod": "hardware",
    "rods": "hardware",
}


def classify(category: str) -> TreatmentProfile:
    """Returns the TreatmentProfile for a category, or raises UnsupportedTreatmentError."""
    if not category or not isinstance(category, str):
        raise UnsupportedTreatmentError(
            "Treatment category is missing", category=category
        )
    key = category.strip().lower().replace("-", "_").replace(" ", "_")
    key = CATEGORY_ALIASES.get(key, key)
    if key not in TREATMENT_PROFILES:
        raise UnsupportedTreatmentError(
            f"Unsupported treatment category: {category}. "
            f"Available: {list(TREATMENT_PROFILES.keys())}",
            category=category,
        )
    return TREATMENT_PROFILES[key]


def has_profile(category: str) -> bool:
    try:
        classify(category)
    except UnsupportedTreatmentError:
        return False
    return True


def list_categories() -> list[str]:
    return list(TREATMENT_PROFILES.keys())


def check_products(profile: TreatmentProfile, has_fabric: bool, has_material: bool) -> None:
    """Raise SchemaViolation when the selected products don't fit the category."""
    req = profile.requirement
    if req == ProductRequirement.FABRIC:
        if not has_fabric:
            raise SchemaViolation(f"{profile.category} requires a fabric", category=profile.category)
        if has_material:
            raise SchemaViolation(f"{profile.category} takes a fabric, not a material",
                                  category=profile.category)
    elif req == ProductRequirement.MATERIAL:
        if not has_material:
            raise SchemaViolation(f"{profile.category} requires a material", category=profile.category)
        if has_fabric:
            raise SchemaViolation(f"{profile.category} takes a material, not a fabric",
                                  category=profile.category)
    elif req == ProductRequirement.BOTH:
        if not (has_fabric or has_material):
            raise SchemaViolation(
                f"{profile.category} requires a fabric or a material", category=profile.category
            )
    elif has_fabric or has_material:
        raise SchemaViolation(
            f"{profile.category} takes no fabric or material", category=profile.category
        )
