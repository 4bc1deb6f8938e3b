"""Unit tests for the allocation engine."""

from __future__ import annotations

from decimal import Decimal

import pytest

from apps.backend.services.orders.allocation import allocate, split_fractional_points, split_whole_points
from apps.backend.services.orders.errors import InvalidAllocationInput
from apps.backend.services.orders.models import _q2


def test_two_lines_split_cash_evenly_and_points_front_loaded():
    result = allocate(Decimal("100.00"), 333, 2)

    assert result.points_per_line == [167, 166]
    assert result.cash_per_line == [Decimal("50.00"), Decimal("50.00")]


def test_ten_points_over_three_lines():
    assert allocate(Decimal("0"), 10, 3).points_per_line == [4, 3, 3]


@pytest.mark.parametrize("points", [0, 1, 2, 7, 10, 99, 100, 333, 1001, 123457])
@pytest.mark.parametrize("lines", [1, 2, 3, 4, 7, 13])
def test_whole_points_sum_exactly(points, lines):
    per_line = allocate(Decimal("10"), points, lines).points_per_line

    assert sum(per_line) == points
    assert all(isinstance(p, int) for p in per_line)


@pytest.mark.parametrize("points,lines", [(10, 3), (333, 2), (17, 5), (5, 8)])
def test_remainder_goes_to_the_first_lines(points, lines):
    per_line = split_whole_points(points, lines)
    base, remainder = divmod(points, lines)

    assert per_line[:remainder] == [base + 1] * remainder
    assert per_line[remainder:] == [base] * (lines - remainder)


def test_fewer_points_than_lines():
    assert split_whole_points(2, 5) == [1, 1, 0, 0, 0]


@pytest.mark.parametrize(
    "points,lines",
    [
        (Decimal("10.01"), 3),
        (Decimal("0.05"), 4),
        (Decimal("99.99"), 7),
        (Decimal("1234.56"), 9),
        (Decimal("0.5"), 2),
    ],
)
def test_fractional_points_sum_to_the_cent(points, lines):
    per_line = allocate(Decimal("50"), points, lines).points_per_line

    assert sum(per_line) == points
    assert max(per_line) - min(per_line) <= Decimal("0.01")


def test_fractional_leftover_cents_front_loaded():
    assert split_fractional_points(Decimal("10.01"), 3) == [Decimal("3.34"), Decimal("3.34"), Decimal("3.33")]


def test_integral_decimal_points_use_whole_split():
    per_line = allocate(Decimal("10"), Decimal("10.00"), 3).points_per_line

    assert per_line == [4, 3, 3]


def test_cash_is_not_remainder_corrected_but_sums_to_the_cent():
    result = allocate(Decimal("100.00"), 0, 3)

    assert len(set(result.cash_per_line)) == 1
    assert result.cash_per_line[0] != _q2(result.cash_per_line[0])
    assert _q2(sum(result.cash_per_line)) == Decimal("100.00")


def test_zero_amounts_are_allowed():
    result = allocate(0, 0, 4)

    assert result.points_per_line == [0, 0, 0, 0]
    assert sum(result.cash_per_line) == 0
    assert result.line_count == 4


@pytest.mark.parametrize(
    "total,points,lines",
    [
        (Decimal("10"), 10, 0),
        (Decimal("10"), 10, -2),
        (Decimal("-0.01"), 10, 2),
        (Decimal("10"), -1, 2),
        ("abc", 10, 2),
        (Decimal("10"), "lots", 2),
        (Decimal("NaN"), 10, 2),
        (Decimal("10"), 10, 2.5),
        (Decimal("10"), True, 2),
    ],
)
def test_invalid_inputs_raise(total, points, lines):
    with pytest.raises(InvalidAllocationInput):
        allocate(total, points, lines)
