"""
Bundle calculator — derives track/rod accessories from the parent item.

Input: parent context (width in feet, height, doubling, mount type), the
parent's inventory metadata, and an ordered rule set (custom rules for the
parent, or the built-in track/rod default).
Output: accessory lines, every evaluated quantity, skipped rules, subtotal.

A rule that would emit a line without a price is skipped and reported.
It never becomes a free line.
"""

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from .base import BaseCalculator
from ..errors import SchemaViolation
from ..formula import evaluate_quantity
from ..schemas import BundleRule, MountType

logger = logging.getLogger(__name__)


class AccessoryKind(str, enum.Enum):
    RUNNER = "runner"
    END_CAP = "end_cap"
    BRACKET = "bracket"
    JOINTER = "jointer"
    OVERLAP = "overlap"
    MAGNET = "magnet"
    WAND = "wand"
    FINIAL = "finial"
    RING = "ring"


# metadata["accessories"] key -> (kind, mount type, doubled); None = any
METADATA_PRICE_KEYS = {
    # tracks
    "runner": (AccessoryKind.RUNNER, None, None),
    "endCap": (AccessoryKind.END_CAP, None, None),
    "ceilingBracket": (AccessoryKind.BRACKET, MountType.CEILING, None),
    "wallSingleBracket": (AccessoryKind.BRACKET, MountType.WALL, False),
    "wallDoubleBracket": (AccessoryKind.BRACKET, MountType.WALL, True),
    "jointer": (AccessoryKind.JOINTER, None, None),
    "overlap": (AccessoryKind.OVERLAP, None, None),
    "magnet": (AccessoryKind.MAGNET, None, None),
    "wand": (AccessoryKind.WAND, None, None),
    # rods
    "end_cap": (AccessoryKind.END_CAP, None, None),
    "round_ball_finial": (AccessoryKind.FINIAL, None, None),
    "single_bracket": (AccessoryKind.BRACKET, None, False),
    "double_bracket": (AccessoryKind.BRACKET, None, True),
    "rings": (AccessoryKind.RING, None, None),
}

# rule child_item_key -> kind
CHILD_KEY_KINDS = {
    "runners": AccessoryKind.RUNNER,
    "runner": AccessoryKind.RUNNER,
    "end_caps": AccessoryKind.END_CAP,
    "end_cap": AccessoryKind.END_CAP,
    "brackets": AccessoryKind.BRACKET,
    "bracket": AccessoryKind.BRACKET,
    "jointers": AccessoryKind.JOINTER,
    "jointer": AccessoryKind.JOINTER,
    "overlap": AccessoryKind.OVERLAP,
    "overlaps": AccessoryKind.OVERLAP,
    "magnets": AccessoryKind.MAGNET,
    "wands": AccessoryKind.WAND,
    "finials": AccessoryKind.FINIAL,
    "finial": AccessoryKind.FINIAL,
    "rings": AccessoryKind.RING,
    "ring": AccessoryKind.RING,
}


def _rule(parent, child, name, formula, order):
    return BundleRule(parent_item_key=parent, child_item_key=child, name=name,
                      quantity_formula=formula, order_index=order)


DEFAULT_TRACK_RULES = [
    _rule("track", "runners", "Runners", "widthFt * 6 * (isDouble ? 2 : 1)", 0),
    _rule("track", "end_caps", "End Caps", "isDouble ? 4 : 2", 1),
    _rule("track", "brackets", "Brackets", "ceil(widthFt / 2)", 2),
    _rule("track", "jointers", "Jointers", "max(ceil(widthFt / 4) - 1, 0) * (isDouble ? 2 : 1)", 3),
    _rule("track", "overlap", "Overlap", "0", 4),
]

DEFAULT_ROD_RULES = [
    _rule("rod", "finials", "Finials", "isDouble ? 4 : 2", 0),
    _rule("rod", "brackets", "Brackets", "ceil(widthFt / 4) + 1", 1),
    _rule("rod", "rings", "Rings", "ceil(widthFt * 3) * (isDouble ? 2 : 1)", 2),
]

DEFAULT_RULES = {
    "track": DEFAULT_TRACK_RULES,
    "rod": DEFAULT_ROD_RULES,
}


@dataclass(frozen=True)
class AccessoryPriceTable:
    """{(kind, mount type, doubled) -> price}, built once per parent item."""
    prices: dict = field(default_factory=dict)

    @classmethod
    def from_metadata(cls, metadata: Optional[dict]) -> "AccessoryPriceTable":
        accessories = (metadata or {}).get("accessories") or {}
        prices = {}
        for key, value in accessories.items():
            if key not in METADATA_PRICE_KEYS or value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise SchemaViolation(f"Accessory price '{key}' must be numeric", key=key)
            prices[METADATA_PRICE_KEYS[key]] = float(value)
        return cls(prices)

    def price_for(self, kind: AccessoryKind, mount_type: MountType, is_double: bool) -> Optional[float]:
        # most specific first
        for candidate in (
            (kind, mount_type, is_double),
            (kind, mount_type, None),
            (kind, None, is_double),
            (kind, None, None),
        ):
            if candidate in self.prices:
                return self.prices[candidate]
        return None


CONDITION_KEYS = {
    "mount_type": "mountType",
    "is_double": "isDouble",
    "width_ft": "widthFt",
}


def _bound(key: str, value) -> float:
    """Numeric width bound from a stored condition."""
    number = None
    if isinstance(value, (int, float, str)) and not isinstance(value, bool):
        try:
            number = float(value)
        except ValueError:
            pass
    if number is None or not math.isfinite(number):
        raise SchemaViolation(f"Bundle condition {key} must be a number, got {value!r}", field=key)
    return number


def condition_matches(condition: Optional[dict], context: dict) -> bool:
    """Every key in the condition must agree with the context."""
    if not condition:
        return True
    for key, expected in condition.items():
        if key in ("minWidthFt", "min_width_ft"):
            if context["widthFt"] < _bound(key, expected):
                return False
            continue
        if key in ("maxWidthFt", "max_width_ft"):
            if context["widthFt"] > _bound(key, expected):
                return False
            continue
        actual = context.get(CONDITION_KEYS.get(key, key))
        if isinstance(expected, str) and isinstance(actual, str):
            if expected.strip().lower() != actual.strip().lower():
                return False
        elif actual != expected:
            return False
    return True


class BundleCalculator(BaseCalculator):
    """Accessory derivation for one track or rod."""

    def calculate(self, kind: str, width_ft: float, height: float = 0.0,
                  is_double: bool = False, mount_type=MountType.CEILING,
                  metadata: Optional[dict] = None, rules: Optional[list] = None,
                  price_overrides: Optional[dict] = None) -> dict:
        try:
            mount = MountType(mount_type)
        except ValueError:
            raise SchemaViolation(f"Unknown mount_type {mount_type!r}", field="mount_type")
        if rules is None:
            if kind not in DEFAULT_RULES:
                raise SchemaViolation(
                    f"No default bundle rules for '{kind}' (available: {list(DEFAULT_RULES)})",
                    kind=kind,
                )
            rules = DEFAULT_RULES[kind]
        price_table = AccessoryPriceTable.from_metadata(metadata)
        overrides = price_overrides or {}

        context = {
            "widthFt": width_ft,
            "height": height,
            "isDouble": is_double,
            "mountType": mount.value,
            "isCeiling": mount == MountType.CEILING,
            "isWall": mount == MountType.WALL,
        }

        accessories = []
        quantities = {}
        skipped = []
        for rule in sorted(rules, key=lambda r: r.order_index):
            key = rule.child_item_key
            if not condition_matches(rule.condition, context):
                skipped.append({"key": key, "reason": "condition not met"})
                continue

            quantity = evaluate_quantity(rule.quantity_formula, context, whole_units=True)
            quantities[key] = quantity
            if quantity <= 0:
                continue

            unit_price = self._resolve_price(rule, price_table, overrides, mount, is_double)
            if unit_price is None or unit_price <= 0:
                logger.warning(f"Bundle rule '{key}' for {kind} has no price; line skipped")
                skipped.append({"key": key, "reason": "no price"})
                continue

            accessories.append(self.make_accessory_item(
                key, rule.name or key.replace("_", " ").title(), quantity,
                unit_price, rule.quantity_formula,
            ))

        subtotal = round(sum(a["total"] for a in accessories), 2)
        return {
            "kind": kind,
            "width_ft": width_ft,
            "is_double": is_double,
            "mount_type": mount.value,
            "accessories": accessories,
            "quantities": quantities,
            "skipped": skipped,
            "subtotal": subtotal,
            "breakdown": [a["breakdown"] for a in accessories],
        }

    def _resolve_price(self, rule: BundleRule, table: AccessoryPriceTable,
                       overrides: dict, mount: MountType, is_double: bool) -> Optional[float]:
        """Override, then the rule's own price, then the parent's metadata."""
        if rule.child_item_key in overrides:
            return overrides[rule.child_item_key]
        if rule.unit_price is not None:
            return rule.unit_price
        kind = CHILD_KEY_KINDS.get(rule.child_item_key)
        if kind is None:
            return None
        return table.price_for(kind, mount, is_double)
