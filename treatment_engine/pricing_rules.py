"""
Pricing rule applicator.

Layers catalog pricing rules on top of a BOM's materials + labor:

    markup_percentage   % of (materials + labor)
    fixed_fee           flat amount
    per_panel           amount × panel count
    ladder              price of the first tier whose inclusive width/drop
                        range (mm) contains the dimensions

total = materials + labor + fees + markup. Markup is always computed on
materials + labor only, never on fees.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .errors import InvalidPricingRule

logger = logging.getLogger(__name__)

RULE_TYPES = ("markup_percentage", "fixed_fee", "per_panel", "ladder")


@dataclass(frozen=True)
class LadderTier:
    price: float
    min_width: Optional[float] = None
    max_width: Optional[float] = None
    min_drop: Optional[float] = None
    max_drop: Optional[float] = None

    def contains(self, width_mm: float, drop_mm: float) -> bool:
        if self.min_width is not None and width_mm < self.min_width:
            return False
        if self.max_width is not None and width_mm > self.max_width:
            return False
        if self.min_drop is not None and drop_mm < self.min_drop:
            return False
        if self.max_drop is not None and drop_mm > self.max_drop:
            return False
        return True

    def label(self) -> str:
        parts = []
        if self.min_width is not None or self.max_width is not None:
            parts.append(f"width {self.min_width or 0:g}–{self.max_width if self.max_width is not None else '∞'}")
        if self.min_drop is not None or self.max_drop is not None:
            parts.append(f"drop {self.min_drop or 0:g}–{self.max_drop if self.max_drop is not None else '∞'}")
        return ", ".join(parts) or "any size"


@dataclass(frozen=True)
class PricingRule:
    id: str
    rule_type: str
    name: str = ""
    value: float = 0.0
    tiers: tuple = field(default_factory=tuple)


def _number(raw: dict, key: str, rule_id: str, required: bool = True) -> Optional[float]:
    value = raw.get(key)
    if value is None:
        if required:
            raise InvalidPricingRule(f"Pricing rule '{rule_id}' is missing '{key}'", rule_id=rule_id)
        return None
    if isinstance(value, bool):
        raise InvalidPricingRule(f"Pricing rule '{rule_id}': '{key}' is not a number", rule_id=rule_id)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidPricingRule(
            f"Pricing rule '{rule_id}': '{key}' is not a number ({value!r})", rule_id=rule_id
        )
    if number < 0:
        raise InvalidPricingRule(f"Pricing rule '{rule_id}': '{key}' is negative", rule_id=rule_id)
    return number


def _first_present(raw: dict, *keys):
    for key in keys:
        if raw.get(key) is not None:
            return key
    return keys[0]


def parse_tier(raw: dict, rule_id: str) -> LadderTier:
    if not isinstance(raw, dict):
        raise InvalidPricingRule(f"Pricing rule '{rule_id}': tier is not an object", rule_id=rule_id)
    tier = LadderTier(
        price=_number(raw, _first_present(raw, "price", "amount", "fee"), rule_id),
        min_width=_number(raw, _first_present(raw, "min_width_mm", "min_width"), rule_id, required=False),
        max_width=_number(raw, _first_present(raw, "max_width_mm", "max_width"), rule_id, required=False),
        min_drop=_number(raw, _first_present(raw, "min_drop_mm", "min_drop"), rule_id, required=False),
        max_drop=_number(raw, _first_present(raw, "max_drop_mm", "max_drop"), rule_id, required=False),
    )
    for low, high in ((tier.min_width, tier.max_width), (tier.min_drop, tier.max_drop)):
        if low is not None and high is not None and high < low:
            raise InvalidPricingRule(f"Pricing rule '{rule_id}': tier range is inverted", rule_id=rule_id)
    return tier


def parse_rule(raw: dict) -> PricingRule:
    """Validate one stored pricing rule. Raises InvalidPricingRule."""
    if not isinstance(raw, dict):
        raise InvalidPricingRule(f"Pricing rule is not an object: {raw!r}")
    rule_id = str(raw.get("id", "?"))
    if "payload" in raw and not isinstance(raw["payload"], dict):
        raise InvalidPricingRule(
            f"Pricing rule '{rule_id}' payload is not an object: {raw['payload']!r}",
            rule_id=rule_id,
        )
    rule_type = raw.get("rule_type")
    if rule_type not in RULE_TYPES:
        raise InvalidPricingRule(
            f"Pricing rule '{rule_id}' has unknown rule_type {rule_type!r} "
            f"(expected one of {', '.join(RULE_TYPES)})",
            rule_id=rule_id,
        )
    name = str(raw.get("name") or rule_type)

    if rule_type == "ladder":
        tiers = raw.get("tiers")
        if not isinstance(tiers, list) or not tiers:
            raise InvalidPricingRule(f"Ladder rule '{rule_id}' has no tiers", rule_id=rule_id)
        return PricingRule(rule_id, rule_type, name,
                           tiers=tuple(parse_tier(t, rule_id) for t in tiers))

    key = _first_present(raw, "value", "percentage", "amount")
    return PricingRule(rule_id, rule_type, name, value=_number(raw, key, rule_id))


def parse_rules(raw_rules: list, skip_malformed: bool = False) -> tuple[list, list]:
    """
    Parse a rule list. Returns (rules, skipped).

    skip_malformed=True logs and skips bad rules instead of raising; each
    skip is reported back as {"id", "reason"}.
    """
    rules, skipped = [], []
    for raw in raw_rules or []:
        try:
            rules.append(parse_rule(raw))
        except InvalidPricingRule as e:
            if not skip_malformed:
                raise
            rule_id = e.details.get("rule_id") or (raw.get("id") if isinstance(raw, dict) else None)
            logger.warning(f"Skipping malformed pricing rule {rule_id}: {e.message}")
            skipped.append({"id": rule_id, "reason": e.message})
    return rules, skipped


class PricingRuleApplicator:
    """Applies parsed rules, in order, over a materials + labor subtotal."""

    def apply(self, materials_cost: float, labor_cost: float, rules: list,
              width_mm: float, drop_mm: float, panel_count: int = 1) -> dict:
        base = materials_cost + labor_cost
        markup = 0.0
        fees = 0.0
        lines = []

        for rule in rules:
            if rule.rule_type == "markup_percentage":
                amount = base * rule.value / 100.0
                markup += amount
                lines.append(self._line(rule, amount, f"{base:.2f} × {rule.value:g}%"))
            elif rule.rule_type == "fixed_fee":
                fees += rule.value
                lines.append(self._line(rule, rule.value, "flat fee"))
            elif rule.rule_type == "per_panel":
                amount = rule.value * panel_count
                fees += amount
                lines.append(self._line(rule, amount, f"{rule.value:.2f} × {panel_count} panels"))
            elif rule.rule_type == "ladder":
                tier = self._match_tier(rule, width_mm, drop_mm)
                if tier is None:
                    lines.append(self._line(rule, 0.0, "no tier matched"))
                    continue
                fees += tier.price
                lines.append(self._line(rule, tier.price, tier.label()))

        return {
            "materials_cost": round(materials_cost, 2),
            "labor_cost": round(labor_cost, 2),
            "markup": round(markup, 2),
            "fees": round(fees, 2),
            "rule_lines": lines,
            "total": round(base + fees + markup, 2),
        }

    def _match_tier(self, rule: PricingRule, width_mm: float, drop_mm: float) -> Optional[LadderTier]:
        """First matching tier wins; later tiers are not evaluated."""
        for tier in rule.tiers:
            if tier.contains(width_mm, drop_mm):
                return tier
        return None

    def _line(self, rule: PricingRule, amount: float, calculation: str) -> dict:
        return {
            "id": rule.id,
            "name": rule.name,
            "rule_type": rule.rule_type,
            "amount": round(amount, 2),
            "calculation": calculation,
        }
