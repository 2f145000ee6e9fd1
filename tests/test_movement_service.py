import threading
from datetime import date

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from retail_stock.errors import (
    AlreadyReversedError,
    BatchMismatchError,
    BatchNotFoundError,
    MovementNotFoundError,
    NegativeBalanceError,
)
from retail_stock.models.movement import MovementLedgerEntry, MovementType
from retail_stock.services import allocator, ledger, movement_service
from retail_stock.services.batch_registry import StockField
from retail_stock.services.movement_service import DebitSource, LineStatus, PlanLine


def _entries(db, **filters):
    return db.query(MovementLedgerEntry).filter_by(**filters).all()


def test_inbound_adds_to_warehouse(db, make_product, make_batch, balance):
    batch = make_batch(make_product())

    result = movement_service.apply(db, MovementType.IN, [PlanLine(batch_id=batch.id, quantity=12)], reason="Delivery")
    db.commit()

    assert result.applied
    assert balance(batch.id) == (12, 0)
    entry = ledger.get_entry(db, result.movement_ids[0])
    assert (entry.delta_on_hand, entry.delta_on_shelf) == (12, 0)
    assert entry.actor_id is None


def test_outbound_from_shelf_then_hand_splits_the_debit(db, make_product, make_batch, balance):
    batch = make_batch(make_product(), on_hand=5, on_shelf=2)

    result = movement_service.apply(
        db,
        MovementType.OUT,
        [PlanLine(batch_id=batch.id, quantity=4)],
        debit_source=DebitSource.SHELF_THEN_HAND,
    )

    assert result.applied
    assert balance(batch.id) == (3, 0)
    assert (result.lines[0].delta_on_hand, result.lines[0].delta_on_shelf) == (-2, -2)


def test_outbound_requires_debit_source(db, make_product, make_batch):
    batch = make_batch(make_product(), on_shelf=5)
    with pytest.raises(ValueError):
        movement_service.apply(db, MovementType.OUT, [PlanLine(batch_id=batch.id, quantity=1)])


@pytest.mark.parametrize(
    "movement_type, quantity",
    [(MovementType.IN, 0), (MovementType.IN, -3), (MovementType.ADJUSTMENT, 0)],
)
def test_invalid_quantities_are_rejected(db, make_product, make_batch, movement_type, quantity):
    batch = make_batch(make_product(), on_hand=5)
    with pytest.raises(ValueError):
        movement_service.apply(db, movement_type, [PlanLine(batch_id=batch.id, quantity=quantity)])


def test_failed_line_rolls_back_earlier_lines(db, make_product, make_batch, balance):
    product = make_product()
    plenty = make_batch(product, expiry_date=date(2030, 1, 1), on_shelf=5)
    scarce = make_batch(product, expiry_date=date(2030, 2, 1), on_shelf=3)
    before = db.query(MovementLedgerEntry).count()

    result = movement_service.apply(
        db,
        MovementType.OUT,
        [PlanLine(batch_id=plenty.id, quantity=2), PlanLine(batch_id=scarce.id, quantity=10)],
        debit_source=DebitSource.SHELF,
    )

    assert not result.applied
    assert [line.status for line in result.lines] == [LineStatus.ROLLED_BACK, LineStatus.FAILED]
    assert isinstance(result.failures[0].error, NegativeBalanceError)
    assert balance(plenty.id) == (0, 5)
    assert balance(scarce.id) == (0, 3)
    assert db.query(MovementLedgerEntry).count() == before

    db.rollback()
    assert balance(plenty.id) == (0, 5)


def test_lines_after_a_failure_are_skipped(db, make_product, make_batch, balance):
    product = make_product()
    scarce = make_batch(product, on_shelf=1)
    other = make_batch(product, on_shelf=5)

    result = movement_service.apply(
        db,
        MovementType.OUT,
        [PlanLine(batch_id=scarce.id, quantity=2), PlanLine(batch_id=other.id, quantity=1)],
        debit_source=DebitSource.SHELF,
    )

    assert [line.status for line in result.lines] == [LineStatus.FAILED, LineStatus.SKIPPED]
    assert balance(other.id) == (0, 5)


def test_raise_for_failure_surfaces_typed_error(db, make_product, make_batch):
    batch = make_batch(make_product(), on_shelf=1)
    result = movement_service.apply(
        db, MovementType.OUT, [PlanLine(batch_id=batch.id, quantity=2)], debit_source=DebitSource.SHELF
    )
    with pytest.raises(NegativeBalanceError):
        result.raise_for_failure()


def test_unknown_batch_fails_the_whole_plan(db, make_product, make_batch, balance):
    batch = make_batch(make_product(), on_hand=4)

    result = movement_service.apply(
        db,
        MovementType.IN,
        [PlanLine(batch_id=batch.id, quantity=1), PlanLine(batch_id="no-such-batch", quantity=1)],
    )

    assert not result.applied
    assert isinstance(result.failures[0].error, BatchNotFoundError)
    assert balance(batch.id) == (4, 0)


def test_mismatched_inventory_detail_is_rejected(db, make_product, make_batch, balance):
    product = make_product()
    first = make_batch(product, on_hand=4)
    second = make_batch(product, on_hand=4)

    result = movement_service.apply(
        db,
        MovementType.ADJUSTMENT,
        [PlanLine(batch_id=first.id, quantity=-1, inventory_detail_id=second.inventory.id)],
    )

    assert isinstance(result.failures[0].error, BatchMismatchError)
    assert balance(first.id) == (4, 0)


def test_transfer_keeps_total_quantity(db, make_product, make_batch, balance):
    batch = make_batch(make_product(), on_hand=10)

    movement_service.apply(db, MovementType.TRANSFER, [PlanLine(batch_id=batch.id, quantity=6)])
    assert balance(batch.id) == (4, 6)

    movement_service.apply(db, MovementType.TRANSFER, [PlanLine(batch_id=batch.id, quantity=-2)])
    assert balance(batch.id) == (6, 4)


def test_transfer_cannot_move_more_than_the_warehouse_holds(db, make_product, make_batch, balance):
    batch = make_batch(make_product(), on_hand=3)

    result = movement_service.apply(db, MovementType.TRANSFER, [PlanLine(batch_id=batch.id, quantity=4)])

    assert not result.applied
    assert balance(batch.id) == (3, 0)


def test_adjustment_targets_the_requested_field(db, make_product, make_batch, balance):
    batch = make_batch(make_product(), on_hand=3, on_shelf=3)

    movement_service.apply(
        db,
        MovementType.ADJUSTMENT,
        [PlanLine(batch_id=batch.id, quantity=-2, field=StockField.ON_SHELF)],
        reason="Damaged on shelf",
    )
    movement_service.apply(db, MovementType.AUDIT, [PlanLine(batch_id=batch.id, quantity=1)], reason="Count")

    assert balance(batch.id) == (4, 1)


def test_ledger_reconciles_with_balances(db, make_product, make_batch):
    batch = make_batch(make_product(), on_hand=20, on_shelf=5)
    movement_service.apply(
        db, MovementType.OUT, [PlanLine(batch_id=batch.id, quantity=3)], debit_source=DebitSource.SHELF
    )
    movement_service.apply(db, MovementType.TRANSFER, [PlanLine(batch_id=batch.id, quantity=7)])
    movement_service.apply(db, MovementType.ADJUSTMENT, [PlanLine(batch_id=batch.id, quantity=-1)])
    db.commit()

    report = ledger.reconcile(db, batch.id)

    assert report.matches
    assert (report.ledger_on_hand, report.ledger_on_shelf) == (12, 9)
    assert report.total == 21


def test_repeated_correlation_id_is_replayed(db, make_product, make_batch, balance):
    batch = make_batch(make_product(), on_shelf=10)
    line = [PlanLine(batch_id=batch.id, quantity=4)]

    first = movement_service.apply(
        db, MovementType.OUT, line, debit_source=DebitSource.SHELF, correlation_id="pos-tx-881"
    )
    db.commit()
    second = movement_service.apply(
        db, MovementType.OUT, line, debit_source=DebitSource.SHELF, correlation_id="pos-tx-881"
    )
    db.commit()

    assert not first.replayed
    assert second.replayed
    assert second.movement_ids == first.movement_ids
    assert balance(batch.id) == (0, 6)
    assert len(ledger.find_by_correlation(db, "pos-tx-881")) == 1


def test_stale_plan_cannot_oversell_across_sessions(db, session_factory, make_product, make_batch, balance):
    product = make_product()
    batch = make_batch(product, on_shelf=5)

    other = session_factory()
    try:
        stale_plan = allocator.allocate(other, product.id, 4)

        # Another till sells 3 and commits before the stale plan is applied
        sold = movement_service.apply(
            db, MovementType.OUT, [PlanLine(batch_id=batch.id, quantity=3)], debit_source=DebitSource.SHELF
        )
        db.commit()
        assert sold.applied

        late = movement_service.apply(
            other,
            MovementType.OUT,
            [PlanLine(batch_id=a.batch_id, quantity=a.quantity) for a in stale_plan.allocations],
            debit_source=DebitSource.SHELF,
        )
        assert not late.applied
        assert isinstance(late.failures[0].error, NegativeBalanceError)
        other.rollback()
    finally:
        other.close()

    assert balance(batch.id) == (0, 2)
    assert ledger.reconcile(db, batch.id).matches


def test_reversal_restores_balances(db, make_product, make_batch, balance):
    batch = make_batch(make_product(), on_shelf=8)
    sale = movement_service.apply(
        db, MovementType.OUT, [PlanLine(batch_id=batch.id, quantity=5)], debit_source=DebitSource.SHELF
    )
    db.commit()

    reversal = movement_service.reverse_movement(db, sale.movement_ids[0], actor_id="clerk-7", reason="Till error")
    db.commit()

    assert reversal.applied
    assert balance(batch.id) == (0, 8)
    entry = ledger.get_entry(db, reversal.movement_ids[0])
    assert entry.reversal_of_id == sale.movement_ids[0]
    assert entry.actor_id == "clerk-7"
    assert ledger.reconcile(db, batch.id).matches


def test_a_movement_is_reversed_only_once(db, make_product, make_batch):
    batch = make_batch(make_product(), on_hand=8)
    received = movement_service.apply(db, MovementType.IN, [PlanLine(batch_id=batch.id, quantity=2)])
    db.commit()
    reversal = movement_service.reverse_movement(db, received.movement_ids[0])
    db.commit()

    with pytest.raises(AlreadyReversedError):
        movement_service.reverse_movement(db, received.movement_ids[0])
    with pytest.raises(AlreadyReversedError):
        movement_service.reverse_movement(db, reversal.movement_ids[0])


def test_reversal_that_would_go_negative_fails(db, make_product, make_batch, balance):
    batch = make_batch(make_product())
    received = movement_service.apply(db, MovementType.IN, [PlanLine(batch_id=batch.id, quantity=5)])
    movement_service.apply(db, MovementType.TRANSFER, [PlanLine(batch_id=batch.id, quantity=5)])
    db.commit()

    result = movement_service.reverse_movement(db, received.movement_ids[0])

    assert not result.applied
    assert balance(batch.id) == (0, 5)


def test_reversing_unknown_movement(db):
    with pytest.raises(MovementNotFoundError):
        movement_service.reverse_movement(db, "nope")


def test_bulk_transfer_moves_every_batch_or_none(db, make_product, make_batch, balance):
    product = make_product()
    first = make_batch(product, on_shelf=5)
    second = make_batch(product, on_shelf=2)

    ok = movement_service.bulk_transfer(
        db,
        [PlanLine(batch_id=first.id, quantity=3), PlanLine(batch_id=second.id, quantity=2)],
        "to_warehouse",
    )
    assert ok.applied
    assert balance(first.id) == (3, 2)
    assert balance(second.id) == (2, 0)

    failed = movement_service.bulk_transfer(
        db,
        [PlanLine(batch_id=first.id, quantity=1), PlanLine(batch_id=second.id, quantity=5)],
        "to_shelf",
    )
    assert not failed.applied
    assert balance(first.id) == (3, 2)


def test_bulk_transfer_rejects_unknown_direction(db, make_product, make_batch):
    batch = make_batch(make_product(), on_hand=1)
    with pytest.raises(ValueError):
        movement_service.bulk_transfer(db, [PlanLine(batch_id=batch.id, quantity=1)], "sideways")


def test_correlation_ids_only_match_themselves(db, make_product, make_batch, balance):
    batch = make_batch(make_product(), on_shelf=10)

    first = movement_service.apply(
        db,
        MovementType.OUT,
        [PlanLine(batch_id=batch.id, quantity=2)],
        debit_source=DebitSource.SHELF,
        correlation_id="till-1:7",
    )
    db.commit()
    second = movement_service.apply(
        db,
        MovementType.OUT,
        [PlanLine(batch_id=batch.id, quantity=3)],
        debit_source=DebitSource.SHELF,
        correlation_id="till-1",
    )
    db.commit()

    assert first.applied and second.applied
    assert not second.replayed
    assert balance(batch.id) == (0, 5)


def test_duplicate_committed_by_another_session_is_replayed(
    db, session_factory, monkeypatch, make_product, make_batch, balance
):
    batch = make_batch(make_product(), on_shelf=10)
    line = [PlanLine(batch_id=batch.id, quantity=2)]

    other = session_factory()
    try:
        movement_service.apply(other, MovementType.OUT, line, debit_source=DebitSource.SHELF, correlation_id="till-9")
        other.commit()
    finally:
        other.close()

    # Both lookups ran before the other session committed
    real_lookup = ledger.find_by_correlation
    calls = []

    def lookup_missing_first(session, correlation_id):
        calls.append(correlation_id)
        return [] if len(calls) == 1 else real_lookup(session, correlation_id)

    monkeypatch.setattr(ledger, "find_by_correlation", lookup_missing_first)
    monkeypatch.setattr(ledger, "booked_id", lambda *args: None)

    result = movement_service.apply(db, MovementType.OUT, line, debit_source=DebitSource.SHELF, correlation_id="till-9")
    db.commit()

    assert result.replayed
    assert result.applied
    assert balance(batch.id) == (0, 8)
    assert db.query(MovementLedgerEntry).filter_by(correlation_id="till-9").count() == 1


def _serialized_engine(path):
    """Engine whose transactions take the write lock up front, so racing writers queue instead of failing."""
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False, "timeout": 30})

    @event.listens_for(engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def test_two_tills_racing_for_the_last_units(db, engine, make_product, make_batch, balance):
    batch = make_batch(make_product(), on_shelf=5)
    batch_id = batch.id
    racing = _serialized_engine(engine.url.database)
    RacingSession = sessionmaker(autocommit=False, autoflush=False, bind=racing)
    barrier = threading.Barrier(2)
    outcomes, errors = [], []

    def till():
        session = RacingSession()
        try:
            barrier.wait()
            result = movement_service.apply(
                session, MovementType.OUT, [PlanLine(batch_id=batch_id, quantity=5)], debit_source=DebitSource.SHELF
            )
            if result.applied:
                session.commit()
            else:
                session.rollback()
            outcomes.append(result.applied)
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=till) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    racing.dispose()

    assert errors == []
    assert sorted(outcomes) == [False, True]
    assert balance(batch_id) == (0, 0)
    assert len(ledger.history_for_batch(db, batch_id)) == 3
    assert ledger.reconcile(db, batch_id).matches
