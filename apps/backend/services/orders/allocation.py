"""
Allocation Engine
=================

Splits a basket's total cash amount and total points across its lines.

Rules:
- Cash is split evenly: total_amount / line_count on every line. No remainder
  correction is applied to cash; the per-line share keeps full Decimal
  precision so the lines still sum to total_amount at the cent.
- Whole points: floor(points / n) per line, the first (points mod n) lines
  get one extra point.
- Fractional points: floor to the cent per line, leftover cents handed out
  one at a time to the earliest lines.

Both points paths sum exactly to points_used. Pure: no DB, no HTTP.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP
from typing import Any, List

from .errors import InvalidAllocationInput
from .models import D, Points

CENT = D("0.01")


@dataclass(frozen=True)
class Allocation:
    cash_per_line: List[Decimal]
    points_per_line: List[Points]

    @property
    def line_count(self) -> int:
        return len(self.cash_per_line)


def _as_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidAllocationInput(f"{name} must be numeric")
    try:
        d = value if isinstance(value, Decimal) else D(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAllocationInput(f"{name} must be numeric")
    if not d.is_finite():
        raise InvalidAllocationInput(f"{name} must be finite")
    return d


def _is_whole(points: Any, as_dec: Decimal) -> bool:
    if isinstance(points, int):
        return True
    return as_dec == as_dec.to_integral_value()


def split_whole_points(points_used: int, line_count: int) -> List[int]:
    base = points_used // line_count
    remainder = points_used - base * line_count
    return [base + (1 if i < remainder else 0) for i in range(line_count)]


def split_fractional_points(points_used: Decimal, line_count: int) -> List[Decimal]:
    base = (points_used / line_count).quantize(CENT, rounding=ROUND_FLOOR)
    leftover_cents = int(((points_used - base * line_count) * 100).to_integral_value(rounding=ROUND_HALF_UP))
    out: List[Decimal] = []
    for _ in range(line_count):
        if leftover_cents > 0:
            out.append(base + CENT)
            leftover_cents -= 1
        else:
            out.append(base)
    return out


def allocate(total_amount: Any, points_used: Any, line_count: Any) -> Allocation:
    """
    Split total_amount and points_used across line_count basket lines.

    Raises InvalidAllocationInput when line_count < 1 or either amount is
    negative or not a number.
    """
    if isinstance(line_count, bool) or not isinstance(line_count, int) or line_count < 1:
        raise InvalidAllocationInput("line_count must be an integer >= 1")

    total = _as_decimal(total_amount, "total_amount")
    points = _as_decimal(points_used, "points_used")

    if total < 0:
        raise InvalidAllocationInput("total_amount must be >= 0")
    if points < 0:
        raise InvalidAllocationInput("points_used must be >= 0")

    per_line_cash = total / line_count
    cash = [per_line_cash for _ in range(line_count)]

    if _is_whole(points_used, points):
        pts: List[Points] = list(split_whole_points(int(points), line_count))
    else:
        pts = list(split_fractional_points(points, line_count))

    return Allocation(cash_per_line=cash, points_per_line=pts)
