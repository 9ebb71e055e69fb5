"""
Abstract base class for the usage and bundle calculators.

Every calculator is a pure function of its inputs: no I/O, no state kept
between calls. Each computed value is recorded as a FormulaStep so the
price breakdown can show its working.
"""

import logging
import math
from abc import ABC, abstractmethod

from ..schemas import FormulaStep

logger = logging.getLogger(__name__)


class BaseCalculator(ABC):
    """All treatment calculators inherit from this."""

    @abstractmethod
    def calculate(self, *args, **kwargs) -> dict:
        pass

    # --- Helper methods for all calculators ---

    def record(self, steps: list, label: str, formula: str, result: float,
               unit: str = "", **values) -> float:
        """Append a breakdown step and hand the result back."""
        steps.append(FormulaStep(label=label, formula=formula, values=values,
                                 result=result, unit=unit))
        return result

    def round_up_to_repeat(self, length: float, repeat: float) -> float:
        """Round a cut length up to the next whole pattern repeat."""
        if not repeat or repeat <= 0:
            return length
        return math.ceil(length / repeat) * repeat

    def apply_waste(self, quantity: float, waste_percent: float) -> float:
        """Waste multiplies the quantity itself, never only the price."""
        return quantity * (1 + waste_percent / 100.0)

    def make_accessory_item(self, key: str, name: str, quantity: float,
                            unit_price: float, formula: str = "") -> dict:
        """Build one derived accessory line."""
        return {
            "key": key,
            "name": name,
            "quantity": quantity,
            "unit_price": round(unit_price, 2),
            "total": round(quantity * unit_price, 2),
            "formula": formula,
            "breakdown": f"{name}: {quantity:g} × {unit_price:.2f} = {quantity * unit_price:.2f}",
        }
