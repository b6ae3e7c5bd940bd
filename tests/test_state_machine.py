from decimal import Decimal

import pytest

from commissions import state_machine
from commissions.exceptions import IllegalTransition
from commissions.models import CommissionRequest

Status = CommissionRequest.Status

LEGAL_EDGES = {
    (Status.PENDING_ARTIST, Status.REJECTED_BY_ARTIST),
    (Status.PENDING_ARTIST, Status.REQUESTED),
    (Status.PENDING_ARTIST, Status.CANCELLED),
    (Status.REQUESTED, Status.IN_PROGRESS),
    (Status.REQUESTED, Status.CANCELLED),
    (Status.IN_PROGRESS, Status.DELIVERED),
    (Status.IN_PROGRESS, Status.CANCELLED),
    (Status.DELIVERED, Status.APPROVED),
    (Status.DELIVERED, Status.IN_PROGRESS),
    (Status.DELIVERED, Status.CANCELLED),
    (Status.DELIVERED, Status.CRON_PENDING),
    (Status.APPROVED, Status.CRON_PENDING),
    (Status.CRON_PENDING, Status.COMPLETED),
}


def test_edge_table_matches_lifecycle():
    edges = {(src, dst) for src, targets in state_machine.TRANSITIONS.items() for dst in targets}
    assert edges == LEGAL_EDGES


def test_terminal_states_have_no_exits():
    assert state_machine.TERMINAL_STATES == {Status.COMPLETED, Status.CANCELLED, Status.REJECTED_BY_ARTIST}


@pytest.mark.django_db
def test_illegal_edges_raise_and_leave_record_untouched(make_commission):
    for from_status in Status:
        commission = make_commission(
            status=from_status,
            revision_count=1,
            stripe_payment_intent_id="pi_keep",
        )
        for to_status in Status:
            if (from_status, to_status) in LEGAL_EDGES:
                continue
            with pytest.raises(IllegalTransition):
                state_machine.transition(commission, to_status, revision_count=2)

            stored = CommissionRequest.objects.get(pk=commission.pk)
            assert stored.status == from_status
            assert stored.revision_count == 1
            assert stored.artist_price == Decimal("10.00")
            assert stored.customer_price == Decimal("11.50")
            assert stored.stripe_payment_intent_id == "pi_keep"


@pytest.mark.django_db
def test_transition_is_conditional_on_expected_status(make_commission):
    commission = make_commission(status=Status.DELIVERED)
    stale = CommissionRequest.objects.get(pk=commission.pk)

    state_machine.transition(commission, Status.IN_PROGRESS, revision_count=1)

    # The stale copy still thinks it's delivered; the write must not apply
    with pytest.raises(IllegalTransition):
        state_machine.transition(stale, Status.APPROVED)
    assert CommissionRequest.objects.get(pk=commission.pk).status == Status.IN_PROGRESS


@pytest.mark.django_db
def test_completion_stamps_completed_at_and_transfer(make_commission):
    commission = make_commission(status=Status.CRON_PENDING)

    state_machine.transition(commission, Status.COMPLETED, stripe_transfer_id="tr_1")

    assert commission.status == Status.COMPLETED
    assert commission.completed_at is not None
    assert commission.stripe_transfer_id == "tr_1"


@pytest.mark.django_db
def test_transition_rejects_fields_outside_whitelist(make_commission):
    commission = make_commission(status=Status.DELIVERED)

    with pytest.raises(ValueError):
        state_machine.transition(commission, Status.APPROVED, artist_price=Decimal("1.00"))
    assert CommissionRequest.objects.get(pk=commission.pk).status == Status.DELIVERED


@pytest.mark.django_db
def test_prices_are_immutable_on_save(make_commission):
    commission = make_commission()
    commission.artist_price = Decimal("99.00")

    with pytest.raises(ValueError):
        commission.save()


@pytest.mark.django_db
def test_payment_intent_is_never_cleared(make_commission):
    commission = make_commission(status=Status.IN_PROGRESS, stripe_payment_intent_id="pi_1")
    commission.stripe_payment_intent_id = None

    with pytest.raises(ValueError):
        commission.save()
