"""
Unit normalizer.

The working unit is centimetres. A measurement field's name suffix IS its
unit: `rail_width_mm`, `header_hem_cm`, `fabric_width_m`, `width_ft`.
A numeric field without one of these suffixes cannot be converted.
"""

from .errors import UnitMismatchError, SchemaViolation

MM_PER_CM = 10.0
CM_PER_M = 100.0
CM_PER_FT = 30.48

# suffix -> factor to centimetres
UNIT_SUFFIXES = {
    "_mm": 1.0 / MM_PER_CM,
    "_cm": 1.0,
    "_m": CM_PER_M,
    "_ft": CM_PER_FT,
}


def mm_to_cm(value: float) -> float:
    return value / MM_PER_CM


def cm_to_mm(value: float) -> float:
    return value * MM_PER_CM


def cm_to_m(value: float) -> float:
    return value / CM_PER_M


def m_to_cm(value: float) -> float:
    return value * CM_PER_M


def cm_to_ft(value: float) -> float:
    return value / CM_PER_FT


def mm_to_ft(value: float) -> float:
    return cm_to_ft(mm_to_cm(value))


def unit_suffix(field_name: str) -> str:
    """Return the unit suffix of a field name, or raise UnitMismatchError."""
    # "_mm" must be checked before "_m"
    for suffix in sorted(UNIT_SUFFIXES, key=len, reverse=True):
        if field_name.endswith(suffix):
            return suffix
    raise UnitMismatchError(
        f"Field '{field_name}' has no unit suffix "
        f"(expected one of {', '.join(UNIT_SUFFIXES)})",
        field=field_name,
    )


def base_name(field_name: str) -> str:
    """`rail_width_mm` -> `rail_width`."""
    return field_name[: -len(unit_suffix(field_name))]


def to_cm(field_name: str, value) -> float:
    """Convert a suffixed measurement to centimetres."""
    suffix = unit_suffix(field_name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SchemaViolation(
            f"Measurement '{field_name}' must be numeric, got {value!r}",
            field=field_name,
        )
    return float(value) * UNIT_SUFFIXES[suffix]


def normalize_measurements(values: dict) -> dict:
    """
    Convert every suffixed measurement in `values` to a `<name>_cm` key.

    Keys without a unit suffix are rejected, so pass only measurement fields.
    Returns a new dict; the input is not modified.
    """
    normalized = {}
    for key, value in values.items():
        if value is None:
            continue
        normalized[f"{base_name(key)}_cm"] = to_cm(key, value)
    return normalized
