"""
Calculation error taxonomy.

Every error aborts the whole calculation. There is no partial price.
Routers turn these into 422 responses using `code` and `details`.
"""


class CalculationError(Exception):
    """Base class for all engine failures."""

    code = "calculation_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "details": self.details}


class SchemaViolation(CalculationError):
    """A required contract field is absent or invalid. Never defaulted."""
    code = "schema_violation"


class UnitMismatchError(CalculationError):
    """A measurement field does not carry a recognised unit suffix."""
    code = "unit_mismatch"


class UnsupportedTreatmentError(CalculationError):
    code = "unsupported_treatment"


class GridLookupMiss(CalculationError):
    """Requested (width, drop) lies outside every tier of the grid."""
    code = "grid_lookup_miss"


class RailroadingNotSupported(CalculationError):
    code = "railroading_not_supported"


class FormulaEvaluationError(CalculationError):
    """Disallowed token, unknown identifier, or arithmetic failure."""
    code = "formula_error"


class InvalidPricingRule(CalculationError):
    code = "invalid_pricing_rule"
