"""
Tests for Stripe webhook reconciliation.
"""
from unittest.mock import AsyncMock

import pytest
from fastapi import BackgroundTasks

from parcin.models import PaymentStatus, ReservationState, SubscriptionStatus
from parcin.services.notifications import ReservationNotifier
from parcin.services.payment_webhooks import (
    ALREADY_PROCESSED,
    CHECKOUT_COMPLETED,
    IGNORED,
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    PROCESSED,
    REJECTED,
    SUBSCRIPTION_DELETED,
    SUBSCRIPTION_UPDATED,
    PaymentWebhookHandler,
    ProcessedEventTracker,
)

from helpers import T0, minutes_after, result_with


def stripe_event(event_id, event_type, reservation_id=None, intent_id="pi_test_123"):
    metadata = {"reservation_id": reservation_id} if reservation_id else {}
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": {"id": intent_id, "object": "payment_intent", "metadata": metadata}},
    }


@pytest.fixture
def handler(mock_notifier):
    return PaymentWebhookHandler(mock_notifier, tracker=ProcessedEventTracker(max_size=100))


class TestPaymentSucceeded:

    @pytest.mark.asyncio
    async def test_confirms_and_emails(self, handler, mock_db, mock_notifier, lot, driver, make_reservation):
        reservation = make_reservation(lot)
        mock_db.execute.side_effect = [
            result_with(scalar=reservation),
            result_with(scalar=lot),
            result_with(scalar=driver),
        ]

        outcome = await handler.handle_event(
            mock_db, stripe_event("evt_1", PAYMENT_SUCCEEDED, reservation.id), now=minutes_after(T0, 1)
        )

        assert outcome == PROCESSED
        assert reservation.state == ReservationState.CONFIRMED
        assert reservation.payment_status == PaymentStatus.PAID
        assert reservation.payment_intent_id == "pi_test_123"
        assert lot.availability_manual == 9
        mock_db.commit.assert_awaited_once()
        details = mock_notifier.send_reservation_confirmation.await_args.args[0]
        assert details.reservation_id == reservation.id
        assert details.user_email == driver.email

    @pytest.mark.asyncio
    async def test_duplicate_delivery_applies_once(self, handler, mock_db, mock_notifier, lot, driver, make_reservation):
        reservation = make_reservation(lot)
        mock_db.execute.side_effect = [
            result_with(scalar=reservation),
            result_with(scalar=lot),
            result_with(scalar=driver),
            # Redelivery under a new event id
            result_with(scalar=reservation),
            result_with(scalar=lot),
        ]

        first = await handler.handle_event(mock_db, stripe_event("evt_1", PAYMENT_SUCCEEDED, reservation.id))
        second = await handler.handle_event(mock_db, stripe_event("evt_2", PAYMENT_SUCCEEDED, reservation.id))
        third = await handler.handle_event(mock_db, stripe_event("evt_2", PAYMENT_SUCCEEDED, reservation.id))

        assert (first, second, third) == (PROCESSED, ALREADY_PROCESSED, ALREADY_PROCESSED)
        assert lot.availability_manual == 9
        assert mock_notifier.send_reservation_confirmation.await_count == 1
        # The third delivery never reached the database
        assert mock_db.execute.await_count == 5

    @pytest.mark.asyncio
    async def test_missing_metadata_ignored(self, handler, mock_db, mock_notifier):
        outcome = await handler.handle_event(mock_db, stripe_event("evt_1", PAYMENT_SUCCEEDED))

        assert outcome == IGNORED
        mock_db.execute.assert_not_awaited()
        mock_notifier.send_reservation_confirmation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_reservation_ignored(self, handler, mock_db, mock_notifier):
        mock_db.execute.return_value = result_with(scalar=None)

        outcome = await handler.handle_event(mock_db, stripe_event("evt_1", PAYMENT_SUCCEEDED, "missing"))

        assert outcome == IGNORED
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_intent_mismatch_ignored(self, handler, mock_db, lot, make_reservation):
        reservation = make_reservation(lot, payment_intent_id="pi_other")
        mock_db.execute.side_effect = [result_with(scalar=reservation), result_with(scalar=lot)]

        outcome = await handler.handle_event(mock_db, stripe_event("evt_1", PAYMENT_SUCCEEDED, reservation.id))

        assert outcome == IGNORED
        assert reservation.state == ReservationState.PENDING_PAYMENT
        assert lot.availability_manual == 10

    @pytest.mark.asyncio
    async def test_cancelled_reservation_rejected(self, handler, mock_db, mock_notifier, lot, make_reservation):
        reservation = make_reservation(lot, state=ReservationState.CANCELLED)
        mock_db.execute.side_effect = [result_with(scalar=reservation), result_with(scalar=lot)]

        outcome = await handler.handle_event(mock_db, stripe_event("evt_1", PAYMENT_SUCCEEDED, reservation.id))

        assert outcome == REJECTED
        assert reservation.state == ReservationState.CANCELLED
        assert lot.availability_manual == 10
        mock_db.commit.assert_not_awaited()
        mock_notifier.send_reservation_confirmation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_user_skips_email(self, handler, mock_db, mock_notifier, lot, make_reservation):
        reservation = make_reservation(lot)
        mock_db.execute.side_effect = [
            result_with(scalar=reservation),
            result_with(scalar=lot),
            result_with(scalar=None),
        ]

        outcome = await handler.handle_event(mock_db, stripe_event("evt_1", PAYMENT_SUCCEEDED, reservation.id))

        assert outcome == PROCESSED
        mock_notifier.send_reservation_confirmation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_email_failure_does_not_fail_event(self, mock_db, lot, driver, make_reservation):
        provider = AsyncMock()
        provider.send_email.side_effect = RuntimeError("smtp down")
        handler = PaymentWebhookHandler(ReservationNotifier(provider=provider), tracker=ProcessedEventTracker())
        reservation = make_reservation(lot)
        mock_db.execute.side_effect = [
            result_with(scalar=reservation),
            result_with(scalar=lot),
            result_with(scalar=driver),
        ]

        outcome = await handler.handle_event(mock_db, stripe_event("evt_1", PAYMENT_SUCCEEDED, reservation.id))

        assert outcome == PROCESSED
        assert reservation.state == ReservationState.CONFIRMED
        provider.send_email.assert_awaited_once()


class TestPaymentFailed:

    @pytest.mark.asyncio
    async def test_expires_and_emails(self, handler, mock_db, mock_notifier, lot, driver, make_reservation):
        reservation = make_reservation(lot)
        mock_db.execute.side_effect = [
            result_with(scalar=reservation),
            result_with(scalar=lot),
            result_with(scalar=driver),
        ]

        outcome = await handler.handle_event(mock_db, stripe_event("evt_1", PAYMENT_FAILED, reservation.id))

        assert outcome == PROCESSED
        assert reservation.state == ReservationState.EXPIRED
        assert reservation.payment_status == PaymentStatus.FAILED
        assert lot.availability_manual == 10
        mock_notifier.send_payment_failure.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_already_expired(self, handler, mock_db, mock_notifier, lot, make_reservation):
        reservation = make_reservation(lot, state=ReservationState.EXPIRED)
        mock_db.execute.side_effect = [result_with(scalar=reservation), result_with(scalar=lot)]

        outcome = await handler.handle_event(mock_db, stripe_event("evt_1", PAYMENT_FAILED, reservation.id))

        assert outcome == ALREADY_PROCESSED
        mock_notifier.send_payment_failure.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_confirmed_reservation_not_expired(self, handler, mock_db, lot, make_reservation):
        reservation = make_reservation(lot, state=ReservationState.CONFIRMED)
        mock_db.execute.side_effect = [result_with(scalar=reservation), result_with(scalar=lot)]

        outcome = await handler.handle_event(mock_db, stripe_event("evt_1", PAYMENT_FAILED, reservation.id))

        assert outcome == REJECTED
        assert reservation.state == ReservationState.CONFIRMED


class TestBackgroundDelivery:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event_type,send_method",
        [
            (PAYMENT_SUCCEEDED, "send_reservation_confirmation"),
            (PAYMENT_FAILED, "send_payment_failure"),
        ],
    )
    async def test_email_queued_until_response_sent(
        self, mock_db, mock_notifier, lot, driver, make_reservation, event_type, send_method
    ):
        tasks = BackgroundTasks()
        handler = PaymentWebhookHandler(mock_notifier, tracker=ProcessedEventTracker(), background_tasks=tasks)
        reservation = make_reservation(lot)
        mock_db.execute.side_effect = [
            result_with(scalar=reservation),
            result_with(scalar=lot),
            result_with(scalar=driver),
        ]

        outcome = await handler.handle_event(mock_db, stripe_event("evt_1", event_type, reservation.id))

        send = getattr(mock_notifier, send_method)
        assert outcome == PROCESSED
        mock_db.commit.assert_awaited_once()
        send.assert_not_awaited()
        assert len(tasks.tasks) == 1

        await tasks()

        send.assert_awaited_once()
        assert send.await_args.args[0].reservation_id == reservation.id

    @pytest.mark.asyncio
    async def test_nothing_queued_for_ignored_event(self, mock_db, mock_notifier):
        tasks = BackgroundTasks()
        handler = PaymentWebhookHandler(mock_notifier, tracker=ProcessedEventTracker(), background_tasks=tasks)

        outcome = await handler.handle_event(mock_db, stripe_event("evt_1", PAYMENT_SUCCEEDED))

        assert outcome == IGNORED
        assert tasks.tasks == []


class TestSubscriptionEvents:

    @pytest.mark.asyncio
    async def test_checkout_completed_activates_subscription(self, handler, mock_db, make_plan, make_subscription):
        subscription = make_subscription(make_plan(), status=SubscriptionStatus.INCOMPLETE)
        mock_db.execute.return_value = result_with(scalar=subscription)
        event = {
            "id": "evt_sub_1",
            "type": CHECKOUT_COMPLETED,
            "data": {"object": {
                "id": "cs_1",
                "object": "checkout.session",
                "customer": "cus_1",
                "subscription": "sub_1",
                "metadata": {"subscription_id": "1"},
            }},
        }

        assert await handler.handle_event(mock_db, event) == PROCESSED
        assert await handler.handle_event(mock_db, event) == ALREADY_PROCESSED

        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.stripe_subscription_id == "sub_1"
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event_type,stripe_status,expected",
        [
            (SUBSCRIPTION_UPDATED, "unpaid", SubscriptionStatus.UNPAID),
            (SUBSCRIPTION_DELETED, "canceled", SubscriptionStatus.CANCELED),
        ],
    )
    async def test_subscription_changes_synced(
        self, handler, mock_db, make_plan, make_subscription, event_type, stripe_status, expected
    ):
        subscription = make_subscription(make_plan(), stripe_subscription_id="sub_1")
        mock_db.execute.return_value = result_with(scalar=subscription)
        event = {
            "id": "evt_sub_2",
            "type": event_type,
            "data": {"object": {
                "id": "sub_1",
                "object": "subscription",
                "status": stripe_status,
                "metadata": {"subscription_id": "1"},
            }},
        }

        outcome = await handler.handle_event(mock_db, event)

        assert outcome == PROCESSED
        assert subscription.status == expected

    @pytest.mark.asyncio
    async def test_unlinked_subscription_event_ignored(self, handler, mock_db, mock_notifier):
        event = {
            "id": "evt_sub_3",
            "type": CHECKOUT_COMPLETED,
            "data": {"object": {"id": "cs_9", "object": "checkout.session", "metadata": {}}},
        }

        outcome = await handler.handle_event(mock_db, event)

        assert outcome == IGNORED
        mock_db.commit.assert_not_awaited()
        mock_notifier.send_reservation_confirmation.assert_not_awaited()


@pytest.mark.asyncio
async def test_unhandled_event_type(handler, mock_db):
    outcome = await handler.handle_event(mock_db, stripe_event("evt_1", "charge.refunded", "r1"))

    assert outcome == IGNORED
    mock_db.execute.assert_not_awaited()


class TestProcessedEventTracker:

    def test_bounded(self):
        tracker = ProcessedEventTracker(max_size=3)
        for i in range(5):
            tracker.add(f"evt_{i}")

        assert len(tracker) == 3
        assert "evt_0" not in tracker
        assert "evt_1" not in tracker
        assert "evt_4" in tracker

    def test_ignores_empty_ids(self):
        tracker = ProcessedEventTracker()
        tracker.add(None)
        tracker.add("")

        assert len(tracker) == 0

    def test_readding_refreshes_position(self):
        tracker = ProcessedEventTracker(max_size=2)
        tracker.add("evt_a")
        tracker.add("evt_b")
        tracker.add("evt_a")
        tracker.add("evt_c")

        assert "evt_a" in tracker
        assert "evt_b" not in tracker
