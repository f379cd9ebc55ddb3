from decimal import Decimal

import pytest

from mercado.core.errors import InvalidTender, TenderImbalance
from mercado.services.tenders import MULTIPLE, TenderSplitter


def test_single_exact_tender_settles():
    t = TenderSplitter(total="20.00")
    t.add_tender("cash", "20.00")
    assert t.can_settle()
    assert t.remaining_balance() == Decimal("0.00")
    assert t.payment_label() == "cash"


def test_split_tenders_use_multiple_label():
    t = TenderSplitter(total="37.50")
    t.add_tender("cash", "20.00")
    t.add_tender("pix", "17.50")
    assert t.can_settle()
    assert t.payment_label() == MULTIPLE


@pytest.mark.parametrize("paid", ["10.004", "9.996", "10.01", "9.99"])
def test_within_tolerance_settles(paid):
    t = TenderSplitter(total="10.00")
    t.add_tender("debit", paid)
    assert t.can_settle()


@pytest.mark.parametrize("paid", ["10.02", "9.98", "5.00"])
def test_outside_tolerance_does_not_settle(paid):
    t = TenderSplitter(total="10.00")
    t.add_tender("credit", paid)
    assert not t.can_settle()
    with pytest.raises(TenderImbalance):
        t.ensure_balanced()


def test_no_tenders_never_settles():
    assert not TenderSplitter(total="0").can_settle()


@pytest.mark.parametrize("method,amount", [("cheque", "1.00"), ("cash", "0"), ("pix", "-3")])
def test_invalid_tender_rejected(method, amount):
    t = TenderSplitter(total="10.00")
    with pytest.raises(InvalidTender):
        t.add_tender(method, amount)
    assert t.tenders == []


def test_remove_tender_restores_balance():
    t = TenderSplitter(total="10.00")
    t.add_tender("cash", "4.00")
    t.add_tender("pix", "6.00")
    t.remove_tender(0)
    assert t.remaining_balance() == Decimal("4.00")
    with pytest.raises(InvalidTender):
        t.remove_tender(5)


def test_change_only_counts_cash_part():
    t = TenderSplitter(total="37.50")
    t.add_tender("cash", "20.00")
    t.add_tender("pix", "17.50")
    assert t.change_for("50.00") == Decimal("30.00")
    assert t.change_for(None) == Decimal("0.00")
    with pytest.raises(TenderImbalance):
        t.change_for("10.00")


def test_change_without_cash_is_zero():
    t = TenderSplitter(total="10.00")
    t.add_tender("debit", "10.00")
    assert t.change_for("50.00") == Decimal("0.00")
