"""
The two validation modes.

StrictContract — catalog contracts (templates, fabrics, materials, grids,
bundle rules, assembly lines). Missing values are SchemaViolations.

UserInputWithDefaults — the free-form `state` map at the calc_bom_and_price
boundary. Only DEFAULTED_FIELDS may be filled in, and only when absent;
a present but invalid value is still a SchemaViolation.
"""

import logging
import math

from pydantic import BaseModel, ValidationError

from .config import settings
from .errors import SchemaViolation

logger = logging.getLogger(__name__)


def _field_errors(error: ValidationError) -> list[dict]:
    return [
        {"field": ".".join(str(p) for p in e["loc"]) or "(root)", "problem": e["msg"]}
        for e in error.errors()
    ]


class StrictContract:
    """Validates catalog data into pydantic contracts. Never substitutes defaults."""

    @staticmethod
    def parse(model: type[BaseModel], data, what: str = ""):
        label = what or model.__name__
        if isinstance(data, model):
            return data
        if data is None:
            raise SchemaViolation(f"{label} is required")
        try:
            return model.model_validate(data)
        except ValidationError as e:
            errors = _field_errors(e)
            fields = ", ".join(err["field"] for err in errors)
            raise SchemaViolation(f"{label} is invalid: {fields}", errors=errors)

    @staticmethod
    def parse_many(model: type[BaseModel], items, what: str = "") -> list:
        return [StrictContract.parse(model, item, what) for item in (items or [])]


class UserInputWithDefaults:
    """Fills "not yet entered" measurements at the outer request boundary only."""

    @staticmethod
    def defaulted_fields() -> dict:
        return {
            "rail_width_mm": settings.DEFAULT_RAIL_WIDTH_MM,
            "drop_mm": settings.DEFAULT_DROP_MM,
        }

    @staticmethod
    def apply(state: dict) -> tuple[dict, list[str]]:
        """
        Returns (state copy with defaults filled, names of defaulted fields).
        """
        result = dict(state or {})
        applied = []
        for field, default in UserInputWithDefaults.defaulted_fields().items():
            value = result.get(field)
            if value is None or value == "":
                result[field] = default
                applied.append(field)
                continue
            result[field] = UserInputWithDefaults._positive_number(field, value)
        if applied:
            logger.info(f"Measurement defaults applied: {applied}")
        return result, applied

    @staticmethod
    def _positive_number(field: str, value) -> float:
        if isinstance(value, bool):
            raise SchemaViolation(f"{field} must be a number", field=field)
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise SchemaViolation(f"{field} must be a number, got {value!r}", field=field)
        if not math.isfinite(number) or number <= 0:
            raise SchemaViolation(f"{field} must be greater than 0, got {value!r}", field=field)
        return number
