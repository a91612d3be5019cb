from __future__ import annotations

from decimal import Decimal

import pytest

from stockdb.apps.audit import models as audit_models
from stockdb.apps.catalog import models as catalog_models
from stockdb.apps.inventory import models as inventory_models
from stockdb.apps.inventory import services as inventory_services


class RecordingAuditRecorder:
    def __init__(self):
        self.calls = []

    def record(self, *, acting_user_id, action, description, details):
        self.calls.append(
            {
                "acting_user_id": acting_user_id,
                "action": action,
                "description": description,
                "details": details,
            }
        )


def _create_product(db, *, quantity=10, name="Kingston A400", supplier_id=None) -> catalog_models.Product:
    product = catalog_models.Product(
        name=name,
        price=Decimal("189.90"),
        quantity=quantity,
        opening_quantity=quantity,
        supplier_id=supplier_id,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def _movements(db, product_id):
    return (
        db.query(inventory_models.StockMovement)
        .filter(inventory_models.StockMovement.product_id == product_id)
        .all()
    )


def test_stock_in_increments_quantity_and_appends_ledger(db_session):
    product = _create_product(db_session, quantity=10)
    recorder = RecordingAuditRecorder()

    result = inventory_services.apply_movement(
        db_session,
        product_id=product.id,
        direction="in",
        quantity=5,
        unit_cost="12.50",
        acting_user_id="storekeeper-1",
        recorder=recorder,
    )

    assert result.product.quantity == 15
    movements = _movements(db_session, product.id)
    assert len(movements) == 1
    movement = movements[0]
    assert movement.direction == inventory_models.StockMovementDirectionEnum.IN
    assert movement.quantity == 5
    assert movement.unit_cost == Decimal("12.50")
    assert movement.reason is None
    assert movement.quantity_before == 10
    assert movement.quantity_after == 15
    assert movement.acting_user_id == "storekeeper-1"
    assert movement.occurred_at is not None

    assert [call["action"] for call in recorder.calls] == ["stock_in"]
    details = recorder.calls[0]["details"]
    assert details["old_quantity"] == 10
    assert details["new_quantity"] == 15
    assert details["unit_cost"] == "12.50"


def test_stock_out_beyond_available_is_rejected_without_changes(db_session):
    product = _create_product(db_session, quantity=3)
    recorder = RecordingAuditRecorder()

    with pytest.raises(inventory_services.InsufficientStock) as excinfo:
        inventory_services.apply_movement(
            db_session,
            product_id=product.id,
            direction="out",
            quantity=5,
            reason="Venda",
            recorder=recorder,
        )

    assert excinfo.value.requested == 5
    assert excinfo.value.available == 3
    assert excinfo.value.to_dict()["code"] == "insufficient_stock"
    db_session.refresh(product)
    assert product.quantity == 3
    assert _movements(db_session, product.id) == []
    assert [call["action"] for call in recorder.calls] == ["stock_out_failed"]
    assert recorder.calls[0]["details"]["error"]["available"] == 3


def test_zero_quantity_is_invalid_and_changes_nothing(db_session):
    product = _create_product(db_session, quantity=4)

    with pytest.raises(inventory_services.InvalidMovement) as excinfo:
        inventory_services.apply_movement(
            db_session,
            product_id=product.id,
            direction="out",
            quantity=0,
            reason="Venda",
            recorder=RecordingAuditRecorder(),
        )

    assert excinfo.value.field == "quantity"
    db_session.refresh(product)
    assert product.quantity == 4
    assert _movements(db_session, product.id) == []


@pytest.mark.parametrize("quantity", [-1, True, 2.0, "3", None])
def test_non_positive_integer_quantities_are_invalid(db_session, quantity):
    product = _create_product(db_session, quantity=4)

    with pytest.raises(inventory_services.InvalidMovement):
        inventory_services.record_stock_in(
            db_session,
            product_id=product.id,
            quantity=quantity,
            unit_cost=Decimal("1.00"),
            recorder=RecordingAuditRecorder(),
        )


def test_exact_stock_out_drains_to_zero(db_session):
    product = _create_product(db_session, quantity=7)

    result = inventory_services.record_stock_out(
        db_session,
        product_id=product.id,
        quantity=7,
        reason="Perda",
        recorder=RecordingAuditRecorder(),
    )

    assert result.product.quantity == 0
    assert result.movement.reason == inventory_models.StockOutReasonEnum.LOSS
    assert result.movement.signed_quantity == -7


def test_unknown_product_is_reported_and_audited(db_session):
    recorder = RecordingAuditRecorder()

    with pytest.raises(inventory_services.ProductNotFound) as excinfo:
        inventory_services.record_stock_in(
            db_session,
            product_id=999,
            quantity=1,
            unit_cost="5.00",
            recorder=recorder,
        )

    assert excinfo.value.product_id == 999
    assert recorder.calls[0]["action"] == "stock_in_failed"
    assert recorder.calls[0]["details"]["error"]["code"] == "product_not_found"
    assert db_session.query(inventory_models.StockMovement).count() == 0


@pytest.mark.parametrize(
    "unit_cost",
    [None, 0, "-1.00", "abc", "NaN", "0.001", True],
)
def test_stock_in_requires_a_positive_unit_cost(db_session, unit_cost):
    product = _create_product(db_session, quantity=1)

    with pytest.raises(inventory_services.InvalidMovement) as excinfo:
        inventory_services.record_stock_in(
            db_session,
            product_id=product.id,
            quantity=1,
            unit_cost=unit_cost,
            recorder=RecordingAuditRecorder(),
        )

    assert excinfo.value.field == "unit_cost"
    db_session.refresh(product)
    assert product.quantity == 1


def test_unit_cost_is_rounded_to_cents(db_session):
    product = _create_product(db_session, quantity=0)

    result = inventory_services.record_stock_in(
        db_session,
        product_id=product.id,
        quantity=2,
        unit_cost="3.335",
        recorder=RecordingAuditRecorder(),
    )

    assert result.movement.unit_cost == Decimal("3.34")


def test_stock_out_requires_an_allowed_reason(db_session):
    product = _create_product(db_session, quantity=5)

    with pytest.raises(inventory_services.InvalidMovement) as missing:
        inventory_services.record_stock_out(
            db_session,
            product_id=product.id,
            quantity=1,
            reason=None,
            recorder=RecordingAuditRecorder(),
        )
    with pytest.raises(inventory_services.InvalidMovement) as unknown:
        inventory_services.record_stock_out(
            db_session,
            product_id=product.id,
            quantity=1,
            reason="Roubo",
            recorder=RecordingAuditRecorder(),
        )

    assert missing.value.field == "reason"
    assert unknown.value.field == "reason"
    assert "Venda" in unknown.value.message
    db_session.refresh(product)
    assert product.quantity == 5


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Venda", inventory_models.StockOutReasonEnum.SALE),
        ("sale", inventory_models.StockOutReasonEnum.SALE),
        ("AJUSTE", inventory_models.StockOutReasonEnum.ADJUSTMENT),
        ("loss", inventory_models.StockOutReasonEnum.LOSS),
        (" Outro ", inventory_models.StockOutReasonEnum.OTHER),
        (inventory_models.StockOutReasonEnum.OTHER, inventory_models.StockOutReasonEnum.OTHER),
    ],
)
def test_reason_accepts_stored_values_and_names(raw, expected):
    assert inventory_services.coerce_reason(raw) == expected


def test_cross_direction_attributes_are_rejected(db_session):
    product = _create_product(db_session, quantity=5)

    with pytest.raises(inventory_services.InvalidMovement) as reason_on_in:
        inventory_services.apply_movement(
            db_session,
            product_id=product.id,
            direction="in",
            quantity=1,
            unit_cost="2.00",
            reason="Venda",
            recorder=RecordingAuditRecorder(),
        )
    with pytest.raises(inventory_services.InvalidMovement) as cost_on_out:
        inventory_services.apply_movement(
            db_session,
            product_id=product.id,
            direction="out",
            quantity=1,
            unit_cost="2.00",
            reason="Venda",
            recorder=RecordingAuditRecorder(),
        )

    assert reason_on_in.value.field == "reason"
    assert cost_on_out.value.field == "unit_cost"


def test_direction_aliases_and_unknown_direction(db_session):
    product = _create_product(db_session, quantity=5)
    recorder = RecordingAuditRecorder()

    inventory_services.apply_movement(
        db_session,
        product_id=product.id,
        direction="entrada",
        quantity=1,
        unit_cost="1.00",
        recorder=recorder,
    )
    inventory_services.apply_movement(
        db_session,
        product_id=product.id,
        direction="Saída",
        quantity=2,
        reason="Ajuste",
        recorder=recorder,
    )
    with pytest.raises(inventory_services.InvalidMovement) as excinfo:
        inventory_services.apply_movement(
            db_session,
            product_id=product.id,
            direction="sideways",
            quantity=1,
            recorder=recorder,
        )

    assert excinfo.value.field == "direction"
    assert [call["action"] for call in recorder.calls] == ["stock_in", "stock_out", "stock_movement_failed"]
    db_session.refresh(product)
    assert product.quantity == 4


def test_reference_longer_than_limit_is_rejected(db_session):
    product = _create_product(db_session, quantity=5)

    with pytest.raises(inventory_services.InvalidMovement) as excinfo:
        inventory_services.record_stock_in(
            db_session,
            product_id=product.id,
            quantity=1,
            unit_cost="1.00",
            reference="x" * 129,
            recorder=RecordingAuditRecorder(),
        )

    assert excinfo.value.field == "reference"


def test_missing_acting_user_falls_back_to_system(db_session):
    product = _create_product(db_session, quantity=5)

    result = inventory_services.record_stock_out(
        db_session,
        product_id=product.id,
        quantity=1,
        reason="sale",
        acting_user_id="  ",
        recorder=RecordingAuditRecorder(),
    )

    assert result.movement.acting_user_id == "system"


def test_quantity_matches_opening_plus_ledger_after_mixed_sequence(db_session):
    product = _create_product(db_session, quantity=2)
    recorder = RecordingAuditRecorder()
    steps = [
        ("in", 5, "4.00", None),
        ("out", 3, None, "Venda"),
        ("out", 10, None, "Venda"),
        ("in", 1, "4.00", None),
        ("out", 5, None, "Perda"),
        ("out", 1, None, "Outro"),
    ]

    for direction, quantity, unit_cost, reason in steps:
        try:
            inventory_services.apply_movement(
                db_session,
                product_id=product.id,
                direction=direction,
                quantity=quantity,
                unit_cost=unit_cost,
                reason=reason,
                recorder=recorder,
            )
        except inventory_services.InsufficientStock:
            pass
        db_session.refresh(product)
        assert product.quantity >= 0

    reconciliation = inventory_services.reconcile_product(db_session, product.id)
    assert reconciliation.consistent is True
    assert reconciliation.total_in == 6
    assert reconciliation.total_out == 8
    assert reconciliation.quantity == 0
    assert reconciliation.movement_count == 4

    for movement in _movements(db_session, product.id):
        assert movement.quantity_after == movement.quantity_before + movement.signed_quantity
        assert movement.quantity_after >= 0


def test_repeated_failures_leave_state_identical(db_session):
    product = _create_product(db_session, quantity=1)

    for _ in range(5):
        with pytest.raises(inventory_services.InsufficientStock):
            inventory_services.record_stock_out(
                db_session,
                product_id=product.id,
                quantity=2,
                reason="Venda",
                recorder=RecordingAuditRecorder(),
            )

    db_session.refresh(product)
    assert product.quantity == 1
    assert _movements(db_session, product.id) == []


def test_ledger_failure_rolls_back_quantity(db_session, monkeypatch):
    product = _create_product(db_session, quantity=5)

    def _broken_movement(**kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(inventory_services.models, "StockMovement", _broken_movement)
    with pytest.raises(RuntimeError):
        inventory_services.record_stock_out(
            db_session,
            product_id=product.id,
            quantity=2,
            reason="Venda",
            recorder=RecordingAuditRecorder(),
        )
    monkeypatch.undo()

    db_session.refresh(product)
    assert product.quantity == 5
    assert _movements(db_session, product.id) == []


def test_recorded_movements_cannot_be_modified_or_deleted(db_session):
    product = _create_product(db_session, quantity=5)
    result = inventory_services.record_stock_out(
        db_session,
        product_id=product.id,
        quantity=1,
        reason="Venda",
        recorder=RecordingAuditRecorder(),
    )
    movement = result.movement

    movement.notes = "edited"
    with pytest.raises(inventory_models.LedgerImmutabilityError):
        db_session.flush()
    db_session.rollback()

    movement = db_session.get(inventory_models.StockMovement, result.movement.id)
    db_session.delete(movement)
    with pytest.raises(inventory_models.LedgerImmutabilityError):
        db_session.flush()
    db_session.rollback()

    assert len(_movements(db_session, product.id)) == 1


def test_database_recorder_writes_audit_events(db_session):
    product = _create_product(db_session, quantity=3)

    inventory_services.record_stock_in(
        db_session,
        product_id=product.id,
        quantity=2,
        unit_cost="9.90",
        acting_user_id="storekeeper-2",
    )
    with pytest.raises(inventory_services.InsufficientStock):
        inventory_services.record_stock_out(
            db_session,
            product_id=product.id,
            quantity=50,
            reason="Venda",
            acting_user_id="storekeeper-2",
        )

    events = db_session.query(audit_models.AuditEvent).all()
    by_action = {event.action: event for event in events}
    assert sorted(by_action) == ["stock_in", "stock_out_failed"]
    assert all(event.entity_type == "Product" for event in events)
    assert all(event.entity_id == str(product.id) for event in events)
    assert all(event.actor_user_id == "storekeeper-2" for event in events)
    assert by_action["stock_in"].after["new_quantity"] == 5
    assert by_action["stock_out_failed"].after["error"]["code"] == "insufficient_stock"
    assert by_action["stock_out_failed"].after["attempted"]["quantity"] == 50


def test_list_and_get_movements(db_session):
    first = _create_product(db_session, quantity=5, name="Logitech MK270")
    second = _create_product(db_session, quantity=5, name="Seagate Barracuda 1TB")
    recorder = RecordingAuditRecorder()
    inventory_services.record_stock_in(db_session, product_id=first.id, quantity=1, unit_cost="1.00", recorder=recorder)
    inventory_services.record_stock_out(db_session, product_id=first.id, quantity=2, reason="Venda", recorder=recorder)
    inventory_services.record_stock_out(db_session, product_id=second.id, quantity=1, reason="Venda", recorder=recorder)

    assert len(inventory_services.list_movements(db_session)) == 3
    assert len(inventory_services.list_movements(db_session, product_id=first.id)) == 2
    outs = inventory_services.list_movements(db_session, direction="out")
    assert {movement.product_id for movement in outs} == {first.id, second.id}

    movement = outs[0]
    assert inventory_services.get_movement(db_session, movement.id).id == movement.id
    with pytest.raises(inventory_services.MovementNotFound):
        inventory_services.get_movement(db_session, "missing")


def test_reconcile_unknown_product(db_session):
    with pytest.raises(inventory_services.ProductNotFound):
        inventory_services.reconcile_product(db_session, 404)


def test_pending_session_changes_are_refused_and_kept(db_session):
    product = _create_product(db_session, quantity=5)
    recorder = RecordingAuditRecorder()
    supplier = catalog_models.Supplier(name="Catarinense Pharma")
    db_session.add(supplier)

    with pytest.raises(inventory_services.InvalidMovement) as excinfo:
        inventory_services.record_stock_out(
            db_session,
            product_id=product.id,
            quantity=1,
            reason="Venda",
            recorder=recorder,
        )

    assert excinfo.value.field == "session"
    assert supplier in db_session.new
    assert recorder.calls == []
    db_session.rollback()
    db_session.refresh(product)
    assert product.quantity == 5
    assert _movements(db_session, product.id) == []
