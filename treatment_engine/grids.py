"""
Pricing grids: wire-format normalization and (width, drop) lookup.

Stored grids arrive in one of several historical encodings:

  A  {"widthRanges": [...], "dropRanges": [...], "prices": [[...], ...]}
  B  {"widthColumns": [...], "dropRows": [{"drop": d, "prices": [...]}, ...]}
  C  {"widthColumns": [...], "dropRows": [d, ...], "prices": {"w_d": p, ...}}
     or {"widthRanges": [...], "dropRanges": [...], "prices": {"w_d": p, ...}}
  D  {"widths": [...], "heights": [...], "prices": [[...], ...]}

Each is normalized once, at load, into a CanonicalGrid. Lookups never branch
on the encoding again.

Tier semantics:
  - a range label like "100-150" is an explicit inclusive tier
  - numeric width columns are tier lower bounds: [w_i, w_i+1); the last
    tier extends by the previous step
  - numeric drop rows are tier upper bounds: (d_i-1, d_i]; the first tier
    starts at 0
A (width, drop) pair outside every tier is a GridLookupMiss, never zero.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .config import settings
from .errors import GridLookupMiss, SchemaViolation

logger = logging.getLogger(__name__)

RANGE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*-\s*(\d+(?:\.\d+)?)\s*$")
NUMBER_CLEAN_RE = re.compile(r"[^0-9.\-]")


@dataclass(frozen=True)
class Tier:
    low: float
    high: float
    low_inclusive: bool = True
    high_inclusive: bool = True

    def contains(self, value: float) -> bool:
        above = value >= self.low if self.low_inclusive else value > self.low
        below = value <= self.high if self.high_inclusive else value < self.high
        return above and below

    @property
    def span(self) -> float:
        return self.high - self.low

    def label(self) -> str:
        left = "[" if self.low_inclusive else "("
        right = "]" if self.high_inclusive else ")"
        return f"{left}{self.low:g}, {self.high:g}{right}"


@dataclass(frozen=True)
class CanonicalGrid:
    """One lookup table. prices[drop_index][width_index]; None marks an empty cell."""
    grid_id: str
    unit: str
    width_tiers: tuple
    drop_tiers: tuple
    prices: tuple
    source_format: str = ""

    def lookup(self, width_cm: float, drop_cm: float) -> float:
        """Price for a (width, drop) pair given in centimetres."""
        factor = 10.0 if self.unit == "mm" else 1.0
        width = width_cm * factor
        drop = drop_cm * factor

        width_index = _narrowest(self.width_tiers, width)
        drop_index = _narrowest(self.drop_tiers, drop)
        if width_index is None or drop_index is None:
            axis = "width" if width_index is None else "drop"
            raise GridLookupMiss(
                f"Grid '{self.grid_id}' has no {axis} tier for "
                f"width={width:g}{self.unit}, drop={drop:g}{self.unit}",
                grid_id=self.grid_id, width=width, drop=drop, unit=self.unit,
            )

        price = self.prices[drop_index][width_index]
        if price is None:
            raise GridLookupMiss(
                f"Grid '{self.grid_id}' has an empty cell at "
                f"width {self.width_tiers[width_index].label()}, "
                f"drop {self.drop_tiers[drop_index].label()}",
                grid_id=self.grid_id, width=width, drop=drop, unit=self.unit,
            )
        return price

    def cell_for(self, width_cm: float, drop_cm: float) -> dict:
        """Lookup plus the tiers that matched, for breakdown output."""
        price = self.lookup(width_cm, drop_cm)
        factor = 10.0 if self.unit == "mm" else 1.0
        width_tier = self.width_tiers[_narrowest(self.width_tiers, width_cm * factor)]
        drop_tier = self.drop_tiers[_narrowest(self.drop_tiers, drop_cm * factor)]
        return {
            "grid_id": self.grid_id,
            "price": price,
            "width_tier": width_tier.label(),
            "drop_tier": drop_tier.label(),
            "unit": self.unit,
        }


def _narrowest(tiers, value: float) -> Optional[int]:
    """Index of the narrowest tier containing value (first wins on a tie)."""
    best = None
    for index, tier in enumerate(tiers):
        if tier.contains(value):
            if best is None or tier.span < tiers[best].span:
                best = index
    return best


# --- Value parsing ---

def _to_number(value, grid_id: str, what: str) -> float:
    if isinstance(value, bool):
        raise SchemaViolation(f"Grid '{grid_id}': {what} is not numeric", grid_id=grid_id)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = NUMBER_CLEAN_RE.sub("", value)
        try:
            return float(cleaned)
        except ValueError:
            pass
    raise SchemaViolation(
        f"Grid '{grid_id}': {what} {value!r} is not numeric", grid_id=grid_id
    )


def _to_price(value, grid_id: str) -> Optional[float]:
    if value is None or value == "":
        return None
    return _to_number(value, grid_id, "price")


def _is_range(value) -> bool:
    return isinstance(value, str) and RANGE_RE.match(value) is not None


def _axis_values(raw: list, grid_id: str, axis: str) -> list:
    """Sortable key for each axis entry: (low, high) for ranges, number otherwise."""
    if not isinstance(raw, list) or not raw:
        raise SchemaViolation(f"Grid '{grid_id}': {axis} axis is empty", grid_id=grid_id)
    values = []
    for entry in raw:
        if _is_range(entry):
            low, high = (float(x) for x in RANGE_RE.match(entry).groups())
            if high < low:
                raise SchemaViolation(
                    f"Grid '{grid_id}': {axis} range {entry!r} is inverted", grid_id=grid_id
                )
            values.append((low, high))
        else:
            values.append(_to_number(entry, grid_id, f"{axis} value"))
    return values


def _build_tiers(values: list, lower_bounds: bool) -> list:
    """
    Turn sorted axis values into tiers.

    lower_bounds=True for widths, False for drops (see module docstring).
    Explicit ranges are used as-is.
    """
    if all(isinstance(v, tuple) for v in values):
        return [Tier(low, high) for low, high in values]
    if any(isinstance(v, tuple) for v in values):
        raise ValueError("mixed range labels and plain values")

    tiers = []
    if lower_bounds and len(values) > 1:
        for index, value in enumerate(values):
            if index + 1 < len(values):
                tiers.append(Tier(value, values[index + 1], True, False))
            else:
                step = value - values[index - 1]
                tiers.append(Tier(value, value + step, True, True))
        return tiers

    previous = 0.0
    for value in values:
        tiers.append(Tier(previous, value, previous == 0.0, True))
        previous = value
    return tiers


def _sort_key(value):
    return value[0] if isinstance(value, tuple) else value


def _infer_unit(data: dict, width_values: list, drop_values: list) -> str:
    unit = data.get("unit")
    if unit in ("cm", "mm"):
        return unit
    if unit is not None:
        raise SchemaViolation(f"Unsupported grid unit {unit!r}", unit=unit)
    flat = []
    for value in width_values + drop_values:
        flat.extend(value if isinstance(value, tuple) else (value,))
    return "mm" if max(flat) >= settings.GRID_MM_THRESHOLD else "cm"


def detect_format(data: dict) -> str:
    if not isinstance(data, dict):
        raise SchemaViolation("Pricing grid data must be an object")
    prices = data.get("prices")
    if "widthRanges" in data and "dropRanges" in data:
        if isinstance(prices, list):
            return "A"
        if isinstance(prices, dict):
            return "C"
    if "widthColumns" in data and isinstance(data.get("dropRows"), list) and data["dropRows"]:
        if isinstance(data["dropRows"][0], dict):
            return "B"
        if isinstance(prices, dict):
            return "C"
    if "widths" in data and "heights" in data and isinstance(prices, list):
        return "D"
    raise SchemaViolation(
        "Unrecognised pricing grid encoding",
        keys=sorted(data.keys()),
    )


def _matrix_rows(data: dict, fmt: str, widths_raw: list, drops_raw: list, grid_id: str) -> list:
    """Price rows aligned with the unsorted drop/width axis order."""
    if fmt in ("A", "D"):
        rows = data["prices"]
        if len(rows) != len(drops_raw):
            raise SchemaViolation(
                f"Grid '{grid_id}': {len(rows)} price rows for {len(drops_raw)} drops",
                grid_id=grid_id,
            )
        return [[_to_price(p, grid_id) for p in row] for row in rows]

    if fmt == "B":
        return [[_to_price(p, grid_id) for p in row.get("prices", [])] for row in data["dropRows"]]

    # C: flat dict keyed by width/drop labels
    table = data["prices"]
    rows = []
    for drop in drops_raw:
        row = []
        for width in widths_raw:
            w, d = _label(width), _label(drop)
            value = None
            for key in (f"{w}_{d}", f"{w}-{d}", f"{d}_{w}"):
                if key in table:
                    value = table[key]
                    break
            row.append(_to_price(value, grid_id))
        rows.append(row)
    return rows


def _label(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def normalize_grid(grid_id: str, data: dict) -> CanonicalGrid:
    """Normalize any supported encoding to a CanonicalGrid."""
    fmt = detect_format(data)
    if fmt == "A":
        raw_widths, raw_drops = data["widthRanges"], data["dropRanges"]
    elif fmt == "B":
        raw_widths = data["widthColumns"]
        raw_drops = []
        for row in data["dropRows"]:
            if "drop" not in row:
                raise SchemaViolation(f"Grid '{grid_id}': drop row without 'drop'", grid_id=grid_id)
            raw_drops.append(row["drop"])
    elif fmt == "C" and "widthRanges" in data:
        raw_widths, raw_drops = data["widthRanges"], data["dropRanges"]
    elif fmt == "C":
        raw_widths, raw_drops = data["widthColumns"], data["dropRows"]
    else:
        raw_widths, raw_drops = data["widths"], data["heights"]

    width_values = _axis_values(raw_widths, grid_id, "width")
    drop_values = _axis_values(raw_drops, grid_id, "drop")
    rows = _matrix_rows(data, fmt, raw_widths, raw_drops, grid_id)
    for index, row in enumerate(rows):
        if len(row) != len(width_values):
            raise SchemaViolation(
                f"Grid '{grid_id}': drop row {index} has {len(row)} prices, "
                f"expected {len(width_values)}",
                grid_id=grid_id,
            )

    # sort both axes, carrying the price matrix along
    width_order = sorted(range(len(width_values)), key=lambda i: _sort_key(width_values[i]))
    drop_order = sorted(range(len(drop_values)), key=lambda i: _sort_key(drop_values[i]))
    sorted_widths = [width_values[i] for i in width_order]
    sorted_drops = [drop_values[i] for i in drop_order]
    prices = tuple(
        tuple(rows[d][w] for w in width_order) for d in drop_order
    )

    try:
        width_tiers = _build_tiers(sorted_widths, lower_bounds=True)
        drop_tiers = _build_tiers(sorted_drops, lower_bounds=False)
    except ValueError as e:
        raise SchemaViolation(f"Grid '{grid_id}': {e}", grid_id=grid_id)

    return CanonicalGrid(
        grid_id=str(grid_id),
        unit=_infer_unit(data, width_values, drop_values),
        width_tiers=tuple(width_tiers),
        drop_tiers=tuple(drop_tiers),
        prices=prices,
        source_format=fmt,
    )


# --- Resolution ---

class GridResolver:
    """
    Resolves which grid prices an item, then looks the price up.

    A direct grid id always wins. Otherwise the item's price group is matched
    against price-group rules ({"price_group", "grid_id", "treatment_category",
    "priority"}); the highest priority matching rule wins.

    All grids must be supplied up front (one batched read); the resolver
    never fetches.
    """

    def __init__(self, grids: dict, price_group_rules: Optional[list] = None):
        self.grids = {}
        for grid_id, grid in grids.items():
            key = str(grid_id)
            self.grids[key] = grid if isinstance(grid, CanonicalGrid) else normalize_grid(key, grid)
        self.price_group_rules = list(price_group_rules or [])

    def resolve(self, grid_id=None, price_group: Optional[str] = None,
                treatment_category: Optional[str] = None) -> CanonicalGrid:
        if grid_id is not None:
            logger.info(f"Grid resolved directly: {grid_id}")
            return self._get(grid_id)

        if price_group:
            rule = self._match_price_group(price_group, treatment_category)
            if rule is not None:
                logger.info(f"Grid resolved via price group '{price_group}': {rule['grid_id']}")
                return self._get(rule["grid_id"])
            raise SchemaViolation(
                f"No pricing grid rule for price group '{price_group}'",
                price_group=price_group, treatment_category=treatment_category,
            )

        raise SchemaViolation("Item has neither a pricing grid nor a price group")

    def price(self, width_cm: float, drop_cm: float, grid_id=None,
              price_group: Optional[str] = None,
              treatment_category: Optional[str] = None) -> float:
        return self.resolve(grid_id, price_group, treatment_category).lookup(width_cm, drop_cm)

    def _get(self, grid_id) -> CanonicalGrid:
        grid = self.grids.get(str(grid_id))
        if grid is None:
            raise SchemaViolation(f"Pricing grid '{grid_id}' was not loaded", grid_id=str(grid_id))
        return grid

    def _match_price_group(self, price_group: str, treatment_category: Optional[str]):
        wanted = price_group.strip().lower()
        matches = []
        for index, rule in enumerate(self.price_group_rules):
            if str(rule.get("price_group", "")).strip().lower() != wanted:
                continue
            category = rule.get("treatment_category")
            if category and treatment_category and category != treatment_category:
                continue
            matches.append((-(rule.get("priority") or 0), index, rule))
        if not matches:
            return None
        return min(matches)[2]


def referenced_grid_ids(*items, price_group_rules: Optional[list] = None) -> set:
    """Every distinct grid id a calculation might need, for one batched fetch."""
    ids = set()
    for item in items:
        if not item:
            continue
        for key in ("pricing_grid_id", "grid_id"):
            if item.get(key) is not None:
                ids.add(str(item[key]))
    for rule in price_group_rules or []:
        if rule.get("grid_id") is not None:
            ids.add(str(rule["grid_id"]))
    return ids
