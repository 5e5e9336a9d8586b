"""
Unit tests for app/services/transaction_machine.py.

The state machine is pure apart from reading the rate and the open payment
from the store, so every test hands it a (previous, next) pair directly and
inspects the WriteDecision.
"""
import pytest
from datetime import timedelta

from app.schemas.documents import TransactionDoc, TransactionStatus
from app.services import transaction_machine
from app.services.decision import COMMIT, NOOP, REVERT, PendingAdjustment
from app.services.transaction_machine import on_transaction_change
from tests.conftest import BASE_TIME, edit, make_payment, make_transaction, set_rate, transaction_doc

LATER_SAME_DAY = BASE_TIME + timedelta(hours=2)      # 12:00 local, 15/01
NEXT_MORNING = BASE_TIME + timedelta(hours=20)       # 06:00 local, 16/01
NEXT_EVENING = BASE_TIME + timedelta(hours=36)       # 22:00 local, 16/01


@pytest.fixture(autouse=True)
def rate_50(db):
    set_rate(db, 50.0)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------
class TestCreate:
    def test_create_assigns_derived_fields(self, db):
        proposed = TransactionDoc(license_number="ABC-123", timestamp_in=BASE_TIME, image_in="in.jpg")
        decision = on_transaction_change("T1", None, proposed, db, now=LATER_SAME_DAY)

        assert decision.action == COMMIT
        doc = decision.document
        assert doc.tid == "T1"
        assert doc.status == TransactionStatus.UNPAID
        assert doc.fee == 50.0
        assert doc.paid == 0.0
        assert doc.timestamp_out is None
        assert doc.remark == ""
        assert doc.is_edit is None

    def test_create_sends_entrance_notification(self, db):
        proposed = TransactionDoc(license_number="ABC-123", timestamp_in=BASE_TIME, image_in="in.jpg")
        decision = on_transaction_change("T1", None, proposed, db, now=LATER_SAME_DAY)

        assert decision.notification.kind == "entrance"
        assert decision.notification.license_number == "ABC-123"
        payload = decision.notification.payload
        assert payload["tid"] == "T1"
        assert payload["fee"] == 50.0
        assert payload["timestamp_in"] == "15/01/2024 10:00:00"
        assert payload["image_in"] == "in.jpg"

    def test_create_ignores_client_supplied_balance_fields(self, db):
        proposed = TransactionDoc(
            license_number="ABC-123",
            timestamp_in=BASE_TIME,
            timestamp_out=NEXT_EVENING,
            fee=999.0,
            paid=10.0,
            remark="typed by staff",
        )
        doc = on_transaction_change("T1", None, proposed, db, now=LATER_SAME_DAY).document

        assert doc.fee == 50.0
        assert doc.paid == 0.0
        assert doc.timestamp_out is None
        assert doc.remark == ""

    def test_entry_before_yesterday_charges_each_day(self, db):
        proposed = TransactionDoc(license_number="ABC-123", timestamp_in=BASE_TIME - timedelta(days=1))
        doc = on_transaction_change("T1", None, proposed, db, now=LATER_SAME_DAY).document
        assert doc.fee == 100.0

    def test_creation_write_back_is_noop(self, db):
        raw = TransactionDoc(license_number="ABC-123", timestamp_in=BASE_TIME)
        stamped = on_transaction_change("T1", None, raw, db, now=LATER_SAME_DAY).document

        assert on_transaction_change("T1", raw, stamped, db).action == NOOP

    def test_new_document_carrying_tid_is_created(self, db):
        proposed = TransactionDoc(tid="T1", license_number="ABC-123", timestamp_in=BASE_TIME)
        decision = on_transaction_change("T1", None, proposed, db, now=LATER_SAME_DAY)

        assert decision.action == COMMIT
        assert decision.document.status == TransactionStatus.UNPAID
        assert decision.document.fee == 50.0
        assert decision.document.paid == 0.0
        assert decision.notification.kind == "entrance"

    def test_write_back_of_created_document_carrying_tid_is_noop(self, db):
        proposed = TransactionDoc(tid="T1", license_number="ABC-123", timestamp_in=BASE_TIME)
        created = on_transaction_change("T1", None, proposed, db, now=LATER_SAME_DAY).document

        assert on_transaction_change("T1", proposed, created, db).action == NOOP

    def test_delete_is_noop(self, db):
        assert on_transaction_change("T1", transaction_doc(), None, db).action == NOOP


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------
class TestIdempotency:
    def test_update_without_fresh_marker_is_noop(self, db):
        previous = transaction_doc()
        proposed = previous.model_copy(update={"remark": "no marker"})
        assert on_transaction_change("T1", previous, proposed, db).action == NOOP

    def test_marker_already_set_before_is_noop(self, db):
        previous = transaction_doc().model_copy(update={"is_edit": True})
        proposed = previous.model_copy(update={"remark": "again"})
        assert on_transaction_change("T1", previous, proposed, db).action == NOOP

    def test_committed_write_back_is_noop(self, db):
        previous = transaction_doc()
        proposed = edit(previous, remark="gate 2")
        decision = on_transaction_change("T1", previous, proposed, db)
        assert decision.action == COMMIT

        assert on_transaction_change("T1", proposed, decision.document, db).action == NOOP
        assert on_transaction_change("T1", decision.document, decision.document, db).action == NOOP

    def test_reverted_write_back_is_noop(self, db):
        previous = transaction_doc(is_cancel=True, status=TransactionStatus.CANCEL)
        proposed = edit(previous, license_number="ZZZ-999")
        decision = on_transaction_change("T1", previous, proposed, db)
        assert decision.action == REVERT

        assert on_transaction_change("T1", proposed, decision.document, db).action == NOOP


# ---------------------------------------------------------------------------
# Permitted edits
# ---------------------------------------------------------------------------
class TestFieldEdits:
    def test_license_change_commits_and_clears_marker(self, db):
        previous = transaction_doc()
        decision = on_transaction_change("T1", previous, edit(previous, license_number="XYZ-789"), db)

        assert decision.action == COMMIT
        assert decision.document.license_number == "XYZ-789"
        assert decision.document.is_edit is None
        # Applied exactly as proposed, nothing to report.
        assert decision.notification is None

    def test_remark_and_image_in_change(self, db):
        previous = transaction_doc()
        decision = on_transaction_change(
            "T1", previous, edit(previous, remark="scratched bumper", image_in="in2.jpg"), db
        )
        assert decision.document.remark == "scratched bumper"
        assert decision.document.image_in == "in2.jpg"

    def test_edit_with_no_permitted_change_reverts(self, db):
        previous = transaction_doc()
        decision = on_transaction_change("T1", previous, edit(previous), db)
        assert decision.action == REVERT
        assert decision.document == previous

    def test_direct_fee_edit_reverts(self, db):
        previous = transaction_doc()
        decision = on_transaction_change("T1", previous, edit(previous, fee=1.0, paid=1.0), db)
        assert decision.action == REVERT
        assert decision.document == previous


class TestTimestampEdits:
    def test_exit_when_paid_in_full_after_fee_grows(self, db):
        # Paid 100 up front; exit the next evening brings the fee to 100.
        previous = transaction_doc(fee=50.0, paid=100.0, status=TransactionStatus.PAID)
        decision = on_transaction_change("T1", previous, edit(previous, timestamp_out=NEXT_EVENING), db)

        doc = decision.document
        assert decision.action == COMMIT
        assert doc.timestamp_out == NEXT_EVENING
        assert doc.fee == 100.0
        assert doc.status == TransactionStatus.PAID
        assert decision.notification.kind == "exit"
        assert decision.notification.payload["timestamp_out"] == "16/01/2024 22:00:00"

    def test_exit_same_day_when_paid(self, db):
        previous = transaction_doc(fee=50.0, paid=50.0, status=TransactionStatus.PAID)
        decision = on_transaction_change(
            "T1", previous, edit(previous, timestamp_out=LATER_SAME_DAY), db
        )
        assert decision.document.timestamp_out == LATER_SAME_DAY
        assert decision.notification.kind == "exit"

    def test_exit_deferred_while_balance_outstanding(self, db):
        previous = transaction_doc(fee=50.0, paid=0.0)
        decision = on_transaction_change("T1", previous, edit(previous, timestamp_out=NEXT_EVENING), db)

        doc = decision.document
        assert decision.action == COMMIT
        assert doc.timestamp_out is None
        assert doc.fee == 100.0
        assert doc.status == TransactionStatus.UNPAID
        assert decision.notification.kind == "update"

    def test_entry_change_recomputes_fee(self, db):
        previous = transaction_doc()
        decision = on_transaction_change(
            "T1", previous, edit(previous, timestamp_in=BASE_TIME - timedelta(days=1)), db,
            now=LATER_SAME_DAY,
        )
        doc = decision.document
        assert doc.timestamp_in == BASE_TIME - timedelta(days=1)
        assert doc.fee == 100.0
        assert doc.status == TransactionStatus.UNPAID
        assert decision.notification.kind == "update"

    def test_both_timestamps_apply_even_with_balance_outstanding(self, db):
        previous = transaction_doc()
        new_in = BASE_TIME - timedelta(days=1)
        decision = on_transaction_change(
            "T1", previous, edit(previous, timestamp_in=new_in, timestamp_out=LATER_SAME_DAY), db
        )
        doc = decision.document
        assert doc.timestamp_in == new_in
        assert doc.timestamp_out == LATER_SAME_DAY
        assert doc.fee == 100.0
        assert doc.status == TransactionStatus.UNPAID

    def test_exit_before_entry_alone_reverts(self, db):
        previous = transaction_doc()
        decision = on_transaction_change(
            "T1", previous, edit(previous, timestamp_out=BASE_TIME - timedelta(hours=1)), db
        )
        assert decision.action == REVERT
        assert decision.document == previous

    def test_invalid_timestamps_do_not_block_other_fields(self, db):
        previous = transaction_doc()
        decision = on_transaction_change(
            "T1", previous,
            edit(previous, timestamp_out=BASE_TIME - timedelta(hours=1), remark="gate jam"),
            db,
        )
        doc = decision.document
        assert decision.action == COMMIT
        assert doc.remark == "gate jam"
        assert doc.timestamp_out is None
        assert doc.fee == 50.0


class TestImageOut:
    def test_applies_once_exited_and_paid(self, db):
        previous = transaction_doc(
            timestamp_out=LATER_SAME_DAY, fee=50.0, paid=50.0, status=TransactionStatus.PAID
        )
        decision = on_transaction_change("T1", previous, edit(previous, image_out="out.jpg"), db)
        assert decision.action == COMMIT
        assert decision.document.image_out == "out.jpg"
        assert decision.notification.kind == "exit"

    def test_ignored_while_unpaid(self, db):
        previous = transaction_doc()
        decision = on_transaction_change("T1", previous, edit(previous, image_out="out.jpg"), db)
        assert decision.action == REVERT
        assert decision.document.image_out is None


class TestCancel:
    def test_cancel_when_nothing_paid(self, db):
        previous = transaction_doc()
        decision = on_transaction_change("T1", previous, edit(previous, is_cancel=True), db)

        assert decision.action == COMMIT
        assert decision.document.is_cancel is True
        assert decision.document.status == TransactionStatus.CANCEL
        assert decision.notification.kind == "cancel"

    def test_cancel_rejected_after_partial_payment(self, db):
        previous = transaction_doc(fee=100.0, paid=50.0)
        decision = on_transaction_change("T1", previous, edit(previous, is_cancel=True), db)

        assert decision.action == REVERT
        assert decision.document == previous
        assert decision.notification is None

    def test_cancel_rejected_when_paid(self, db):
        previous = transaction_doc(fee=50.0, paid=50.0, status=TransactionStatus.PAID)
        decision = on_transaction_change("T1", previous, edit(previous, is_cancel=True), db)
        assert decision.action == REVERT

    def test_cancel_takes_precedence_over_other_notifications(self, db):
        previous = transaction_doc()
        decision = on_transaction_change(
            "T1", previous, edit(previous, is_cancel=True, license_number="XYZ-789"), db
        )
        assert decision.notification.kind == "cancel"
        assert decision.document.license_number == "XYZ-789"

    @pytest.mark.parametrize("changes", [
        {"license_number": "ZZZ-999"},
        {"remark": "reopen"},
        {"timestamp_out": LATER_SAME_DAY},
        {"is_cancel": False},
        {"is_overnight": True},
    ])
    def test_canceled_transaction_is_frozen(self, db, changes):
        previous = transaction_doc(is_cancel=True, status=TransactionStatus.CANCEL)
        decision = on_transaction_change("T1", previous, edit(previous, **changes), db)
        assert decision.action == REVERT
        assert decision.document == previous


class TestOvernight:
    def test_recomputes_fee_and_notifies(self, db):
        previous = transaction_doc()
        decision = on_transaction_change(
            "T1", previous, edit(previous, is_overnight=True), db, now=NEXT_MORNING
        )
        doc = decision.document
        assert decision.action == COMMIT
        assert doc.fee == 100.0
        assert doc.status == TransactionStatus.UNPAID
        assert doc.is_overnight is None
        assert doc.is_edit is None
        assert decision.notification.kind == "overnight"

    def test_commits_even_when_fee_unchanged(self, db):
        previous = transaction_doc()
        decision = on_transaction_change(
            "T1", previous, edit(previous, is_overnight=True), db, now=LATER_SAME_DAY
        )
        assert decision.action == COMMIT
        assert decision.document.fee == 50.0
        assert decision.notification.kind == "overnight"


# ---------------------------------------------------------------------------
# Pending payment adjustment
# ---------------------------------------------------------------------------
class TestPendingAdjustment:
    def test_no_pending_payment_no_adjustment(self, db):
        previous = transaction_doc()
        decision = on_transaction_change(
            "T1", previous, edit(previous, is_overnight=True), db, now=NEXT_MORNING
        )
        assert decision.adjustment is None

    def test_fee_increase_raises_pending_amount(self, db):
        make_transaction(db, "T1")
        make_payment(db, "T1", "P1", amount=50.0)
        previous = transaction_doc()
        decision = on_transaction_change(
            "T1", previous, edit(previous, is_overnight=True), db, now=NEXT_MORNING
        )
        assert decision.adjustment.pid == "P1"
        assert decision.adjustment.action == PendingAdjustment.UPDATE
        assert decision.adjustment.amount == 100.0

    def test_fee_decrease_cancels_pending_intent(self, db):
        make_transaction(db, "T1", timestamp_in=BASE_TIME - timedelta(days=1), fee=100.0)
        make_payment(db, "T1", "P1", amount=100.0)
        previous = transaction_doc(timestamp_in=BASE_TIME - timedelta(days=1), fee=100.0)
        decision = on_transaction_change(
            "T1", previous, edit(previous, timestamp_in=BASE_TIME), db, now=LATER_SAME_DAY
        )
        assert decision.document.fee == 50.0
        assert decision.adjustment.action == PendingAdjustment.CANCEL

    def test_cancel_abandons_pending_intent(self, db):
        make_transaction(db, "T1")
        make_payment(db, "T1", "P1", amount=50.0)
        previous = transaction_doc()
        decision = on_transaction_change("T1", previous, edit(previous, is_cancel=True), db)
        assert decision.adjustment.pid == "P1"
        assert decision.adjustment.action == PendingAdjustment.CANCEL

    def test_unchanged_fee_leaves_pending_alone(self, db):
        make_transaction(db, "T1")
        make_payment(db, "T1", "P1", amount=50.0)
        previous = transaction_doc()
        decision = on_transaction_change("T1", previous, edit(previous, remark="note"), db)
        assert decision.adjustment is None


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------
class TestFailures:
    def test_unexpected_error_reverts_update(self, db, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("rate store unavailable")

        monkeypatch.setattr(transaction_machine, "compute_fee", boom)
        previous = transaction_doc()
        decision = on_transaction_change("T1", previous, edit(previous, is_overnight=True), db)
        assert decision.action == REVERT
        assert decision.document == previous

    def test_unexpected_error_on_create_leaves_document(self, db, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("rate store unavailable")

        monkeypatch.setattr(transaction_machine, "compute_fee", boom)
        proposed = TransactionDoc(license_number="ABC-123", timestamp_in=BASE_TIME)
        decision = on_transaction_change("T1", None, proposed, db)
        assert decision.action == NOOP
        assert decision.document is None
