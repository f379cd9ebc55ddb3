from datetime import date
from decimal import Decimal

import pytest

from mercado.core.errors import (
    CheckoutBusy,
    EmptyCart,
    InvalidInstallmentPlan,
    PersistenceFailure,
    SessionExpired,
    StockExceeded,
    StoreNotConfigured,
    TenderImbalance,
)
from mercado.core.identity import CurrentUser
from mercado.models.product import Product
from mercado.models.sale import Installment, Sale, SaleItem, SalePayment
from mercado.models.stock import StockMovement
from mercado.services.catalog import CatalogLookup
from mercado.services.settlement import Checkout, CheckoutState, SettlementService


def _stock(db, product_id):
    db.expire_all()
    return db.get(Product, product_id).stock_quantity


def _checkout(store, seeded, *keys):
    catalog = CatalogLookup(store, seeded.store_id)
    co = Checkout()
    for k in keys:
        co.add_product(catalog.get(seeded.products[k]))
    return co, catalog


def _user(seeded):
    return CurrentUser(id=seeded.user_id, store_id=seeded.store_id)


def test_single_cash_sale(db, store, seeded):
    co, catalog = _checkout(store, seeded, "arroz", "arroz")
    co.add_tender("cash", "20.00")
    result = co.finalize(store, _user(seeded), cash_received="20.00", catalog=catalog)

    sale = db.get(Sale, result.sale_id)
    assert sale.final_amount == Decimal("20.00")
    assert sale.payment_method == "cash"
    assert sale.status == "completed"
    assert sale.sale_number == 1
    assert result.change == Decimal("0.00")
    assert _stock(db, seeded.products["arroz"]) == 3
    assert db.query(SalePayment).count() == 0

    moves = db.query(StockMovement).all()
    assert [(m.product_id, m.quantity, m.type) for m in moves] == [(seeded.products["arroz"], -2, "exit")]
    assert co.state == CheckoutState.COMPLETED
    assert co.cart.is_empty()


def test_split_tender_sale(db, store, seeded):
    co, catalog = _checkout(store, seeded, "arroz", "arroz", "cafe")
    assert co.cart.total() == Decimal("37.50")
    co.add_tender("cash", "20.00")
    co.add_tender("pix", "17.50")
    assert co.can_settle()
    result = co.finalize(store, _user(seeded), cash_received="50.00")

    sale = db.get(Sale, result.sale_id)
    assert sale.payment_method == "multiple"
    payments = db.query(SalePayment).filter_by(sale_id=sale.id).all()
    assert len(payments) == 2
    assert sum(p.amount for p in payments) == Decimal("37.50")
    assert result.change == Decimal("30.00")
    items = db.query(SaleItem).filter_by(sale_id=sale.id).order_by(SaleItem.id).all()
    assert [(i.product_name, i.quantity) for i in items] == [("Arroz 5kg", 2), ("Café 500g", 1)]


def test_discount_persisted_and_sale_numbers_increase(db, store, seeded):
    co, _ = _checkout(store, seeded, "feijao", "feijao")
    co.set_discount("5.00")
    co.add_tender("debit", "10.00")
    first = co.finalize(store, _user(seeded))
    sale = db.get(Sale, first.sale_id)
    assert (sale.total_amount, sale.discount, sale.final_amount) == (
        Decimal("15.00"),
        Decimal("5.00"),
        Decimal("10.00"),
    )

    co.add_product(CatalogLookup(store, seeded.store_id).get(seeded.products["feijao"]))
    co.add_tender("pix", "7.50")
    second = co.finalize(store, _user(seeded))
    assert second.sale_number == first.sale_number + 1


def test_empty_cart_cannot_settle(store, seeded):
    co = Checkout()
    with pytest.raises(EmptyCart):
        co.finalize(store, _user(seeded))
    with pytest.raises(EmptyCart):
        co.add_tender("cash", "1.00")


def test_unbalanced_tenders_block_finalize(db, store, seeded):
    co, _ = _checkout(store, seeded, "arroz")
    co.add_tender("cash", "5.00")
    with pytest.raises(TenderImbalance):
        co.finalize(store, _user(seeded))
    assert db.query(Sale).count() == 0
    assert co.state == CheckoutState.AWAITING_TENDER


def test_missing_session_and_store(db, store, seeded):
    co, _ = _checkout(store, seeded, "arroz")
    co.add_tender("cash", "10.00")
    with pytest.raises(SessionExpired):
        co.finalize(store, None)
    with pytest.raises(StoreNotConfigured):
        co.finalize(store, CurrentUser(id=seeded.orphan_id, store_id=None))
    assert db.query(Sale).count() == 0
    assert not co.cart.is_empty()


def test_stock_race_rolls_back_everything_and_retry_reuses_key(db, store, seeded):
    pid = seeded.products["arroz"]
    co, catalog = _checkout(store, seeded, "arroz", "arroz", "arroz")
    co.add_tender("cash", "30.00")

    # otra terminal vendió en el medio
    db.get(Product, pid).stock_quantity = 1
    db.commit()

    with pytest.raises(StockExceeded):
        co.finalize(store, _user(seeded), catalog=catalog)
    assert co.state == CheckoutState.FAILED
    key = co.idempotency_key
    assert key
    assert db.query(Sale).count() == 0
    assert db.query(SaleItem).count() == 0
    assert db.query(StockMovement).count() == 0
    assert _stock(db, pid) == 1
    assert len(co.cart.lines) == 1
    assert co.cart.lines[0].stock_snapshot == 1

    db.get(Product, pid).stock_quantity = 10
    db.commit()
    result = co.finalize(store, _user(seeded))
    assert db.get(Sale, result.sale_id).idempotency_key == key
    assert _stock(db, pid) == 7


def test_persist_with_same_key_does_not_duplicate(db, store, seeded):
    co, _ = _checkout(store, seeded, "feijao")
    co.begin()
    co.add_tender("pix", "7.50")
    svc = SettlementService(store, seeded.store_id, seeded.user_id)
    a = svc.persist(co.cart, co.tenders, co.sale_kind, "key-123")
    b = svc.persist(co.cart, co.tenders, co.sale_kind, "key-123")
    assert a.id == b.id
    assert db.query(Sale).count() == 1
    assert _stock(db, seeded.products["feijao"]) == 9


def test_deadline_exceeded_is_retryable_failure(db, store, seeded):
    co, _ = _checkout(store, seeded, "feijao")
    co.add_tender("pix", "7.50")
    ticks = iter([0.0, 100.0, 200.0, 300.0])
    svc = SettlementService(store, seeded.store_id, seeded.user_id, timeout=15, clock=lambda: next(ticks))
    with pytest.raises(PersistenceFailure) as exc:
        svc.persist(co.cart, co.tenders, co.sale_kind, "slow-key")
    assert exc.value.retryable
    assert db.query(Sale).count() == 0
    assert _stock(db, seeded.products["feijao"]) == 10


def test_installment_sale_then_plan(db, store, seeded):
    co, _ = _checkout(store, seeded, "leite")
    co.set_sale_kind("installment")
    co.add_tender("credit", "100.00")
    result = co.finalize(store, _user(seeded))
    assert result.needs_installments
    sale = db.get(Sale, result.sale_id)
    assert sale.sale_type == "installment"
    assert sale.status == "pending"

    svc = SettlementService(store, seeded.store_id, seeded.user_id)
    rows = svc.configure_installments(sale.id, 3, date(2025, 3, 31))
    assert [r["amount"] for r in rows] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    persisted = db.query(Installment).filter_by(sale_id=sale.id).order_by(Installment.installment_number).all()
    assert [i.due_date for i in persisted] == [date(2025, 3, 31), date(2025, 4, 30), date(2025, 5, 31)]

    with pytest.raises(InvalidInstallmentPlan):
        svc.configure_installments(sale.id, 2, date(2025, 3, 31))


def test_installments_rejected_for_cash_sale(store, seeded):
    co, _ = _checkout(store, seeded, "arroz")
    co.add_tender("cash", "10.00")
    result = co.finalize(store, _user(seeded))
    with pytest.raises(InvalidInstallmentPlan):
        SettlementService(store, seeded.store_id, seeded.user_id).configure_installments(
            result.sale_id, 2, date(2025, 1, 1)
        )


def test_editing_after_completion_starts_new_sale(store, seeded):
    co, catalog = _checkout(store, seeded, "arroz")
    co.add_tender("cash", "10.00")
    co.finalize(store, _user(seeded))
    first_key = co.idempotency_key
    co.add_product(catalog.get(seeded.products["feijao"]))
    assert co.state == CheckoutState.IDLE
    co.begin()
    assert co.idempotency_key and co.idempotency_key != first_key


def test_receipt_failure_after_commit_leaves_checkout_usable(db, store, seeded, monkeypatch):
    import mercado.services.settlement as settlement

    def broken_snapshot(*a, **kw):
        raise PersistenceFailure("leitura falhou")

    monkeypatch.setattr(settlement, "snapshot_from_sale", broken_snapshot)
    co, catalog = _checkout(store, seeded, "arroz")
    co.add_tender("cash", "10.00")
    with pytest.raises(PersistenceFailure) as exc:
        co.finalize(store, _user(seeded))
    assert exc.value.context["sale_id"] == db.query(Sale).one().id
    assert co.state == CheckoutState.COMPLETED
    assert co.cart.is_empty()

    co.clear()
    co.add_product(catalog.get(seeded.products["feijao"]))
    assert co.state == CheckoutState.IDLE


def test_cart_edits_are_rejected_while_finalize_runs(db, store, seeded, monkeypatch):
    co, catalog = _checkout(store, seeded, "arroz")
    co.add_tender("cash", "10.00")
    feijao = catalog.get(seeded.products["feijao"])
    real_persist = SettlementService.persist
    blocked = []

    def persist_with_concurrent_edit(self, *args, **kwargs):
        for edit in (
            lambda: co.add_product(feijao),
            lambda: co.set_discount("5.00"),
            lambda: co.set_quantity(seeded.products["arroz"], 2),
            lambda: co.add_tender("pix", "1.00"),
            co.clear,
        ):
            with pytest.raises(CheckoutBusy):
                edit()
            blocked.append(True)
        return real_persist(self, *args, **kwargs)

    monkeypatch.setattr(SettlementService, "persist", persist_with_concurrent_edit)
    result = co.finalize(store, _user(seeded))
    assert len(blocked) == 5
    sale = db.get(Sale, result.sale_id)
    assert sale.final_amount == Decimal("10.00")
    assert db.query(SaleItem).filter_by(sale_id=sale.id).count() == 1


def test_second_finalize_while_settling_is_busy(store, seeded, monkeypatch):
    co, _ = _checkout(store, seeded, "arroz")
    co.add_tender("cash", "10.00")
    real_persist = SettlementService.persist

    def persist_with_double_submit(self, *args, **kwargs):
        with pytest.raises(CheckoutBusy):
            co.finalize(store, _user(seeded))
        return real_persist(self, *args, **kwargs)

    monkeypatch.setattr(SettlementService, "persist", persist_with_double_submit)
    assert co.finalize(store, _user(seeded)).sale_number == 1
