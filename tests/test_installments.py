from datetime import date
from decimal import Decimal

import pytest

from mercado.core.errors import InvalidInstallmentPlan
from mercado.services.settlement import add_months, split_installments


def test_hundred_in_three():
    rows = split_installments(Decimal("100.00"), 3, date(2025, 1, 10))
    assert [r["amount"] for r in rows] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert [r["due_date"] for r in rows] == [date(2025, 1, 10), date(2025, 2, 10), date(2025, 3, 10)]
    assert all(r["status"] == "pending" for r in rows)


@pytest.mark.parametrize("final", ["0.05", "1.00", "10.01", "99.99", "1234.57", "7.77"])
@pytest.mark.parametrize("count", [1, 2, 3, 5, 7, 12])
def test_sum_is_exact_and_last_absorbs_remainder(final, count):
    final = Decimal(final)
    rows = split_installments(final, count, date(2025, 1, 1))
    amounts = [r["amount"] for r in rows]
    assert len(amounts) == count
    assert sum(amounts) == final
    assert len(set(amounts[:-1])) <= 1
    assert amounts[-1] >= amounts[0]


def test_sub_cent_installments_put_everything_on_the_last():
    rows = split_installments(Decimal("0.05"), 7, date(2025, 1, 1))
    assert [r["amount"] for r in rows] == [Decimal("0.00")] * 6 + [Decimal("0.05")]


@pytest.mark.parametrize("count", [0, -1, 13])
def test_count_out_of_range(count):
    with pytest.raises(InvalidInstallmentPlan):
        split_installments(Decimal("100.00"), count, date(2025, 1, 1))


def test_zero_amount_rejected():
    with pytest.raises(InvalidInstallmentPlan):
        split_installments(Decimal("0"), 2, date(2025, 1, 1))


def test_due_date_clamps_to_month_end():
    assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2025, 11, 30), 3) == date(2026, 2, 28)
