"""
Tests for reservation and user API routes.
"""
from decimal import Decimal

import pytest

from parcin.models import ReservationState

from helpers import hours_ago, result_with


class TestCreateReservation:

    @pytest.mark.asyncio
    async def test_create(self, client, mock_db, lot):
        mock_db.execute.return_value = result_with(scalar=lot)

        resp = await client.post(
            "/api/reservations",
            json={"lot_id": 1, "car_plate": "ABC1D23", "expected_hours": 2},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["state"] == "PENDING_PAYMENT"
        assert body["lot"]["id"] == 1
        assert body["car_plate"] == "ABC1D23"
        assert Decimal(body["fees"]["reservation_fee_amount"]) == Decimal("1.20")
        assert body["payment"]["status"] == "REQUIRES_PAYMENT"
        assert body["payment"]["provider"] == "stripe"
        mock_db.add.assert_called_once()

    @pytest.mark.asyncio
    async def test_no_capacity(self, client, mock_db, make_lot):
        mock_db.execute.return_value = result_with(scalar=make_lot(availability=0))

        resp = await client.post("/api/reservations", json={"lot_id": 1, "car_plate": "ABC1D23"})

        assert resp.status_code == 400
        assert resp.json()["error"] == "NO_CAPACITY"
        mock_db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_lot(self, client, mock_db):
        mock_db.execute.return_value = result_with(scalar=None)

        resp = await client.post("/api/reservations", json={"lot_id": 42, "car_plate": "ABC1D23"})

        assert resp.status_code == 404
        assert resp.json()["error"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_blank_plate_rejected(self, client, mock_db):
        resp = await client.post("/api/reservations", json={"lot_id": 1, "car_plate": "   "})

        assert resp.status_code == 422
        mock_db.execute.assert_not_awaited()


class TestReadReservation:

    @pytest.mark.asyncio
    async def test_owner_can_read(self, client, mock_db, lot, make_reservation):
        reservation = make_reservation(lot, user_id=1)
        mock_db.execute.return_value = result_with(first=(reservation, lot))

        resp = await client.get(f"/api/reservations/{reservation.id}")

        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == reservation.id
        assert Decimal(body["price_estimate"]["hourly"]) == Decimal("10.00")
        assert body["price_estimate"]["expected_hours"] == 2

    @pytest.mark.asyncio
    async def test_other_driver_gets_not_found(self, client, mock_db, lot, make_reservation):
        reservation = make_reservation(lot, user_id=2)
        mock_db.execute.return_value = result_with(first=(reservation, lot))

        resp = await client.get(f"/api/reservations/{reservation.id}")

        assert resp.status_code == 404


class TestTransitions:

    @pytest.mark.asyncio
    async def test_confirm(self, client, mock_db, lot, make_reservation):
        reservation = make_reservation(lot)
        mock_db.execute.side_effect = [result_with(scalar=reservation), result_with(scalar=lot)]

        resp = await client.post(f"/api/reservations/{reservation.id}/confirm")

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["reservation"]["state"] == "CONFIRMED"
        assert body["reservation"]["payment"]["status"] == "PAID"
        assert lot.availability_manual == 9

    @pytest.mark.asyncio
    async def test_confirm_twice_is_invalid_state(self, client, mock_db, lot, make_reservation):
        reservation = make_reservation(lot, state=ReservationState.CONFIRMED)
        mock_db.execute.side_effect = [result_with(scalar=reservation), result_with(scalar=lot)]

        resp = await client.post(f"/api/reservations/{reservation.id}/confirm")

        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "INVALID_STATE"
        assert body["details"]["current_state"] == "CONFIRMED"

    @pytest.mark.asyncio
    async def test_check_in(self, client, mock_db, lot, make_reservation):
        reservation = make_reservation(lot, state=ReservationState.CONFIRMED, created_at=hours_ago(0, 5))
        mock_db.execute.side_effect = [result_with(scalar=reservation), result_with(scalar=lot)]

        resp = await client.post(f"/api/reservations/{reservation.id}/checkin")

        assert resp.status_code == 200
        assert resp.json()["reservation"]["state"] == "CHECKED_IN"
        assert resp.json()["reservation"]["checkin_at"] is not None

    @pytest.mark.asyncio
    async def test_late_check_in_is_no_show(self, client, mock_db, lot, make_reservation):
        reservation = make_reservation(lot, state=ReservationState.CONFIRMED, created_at=hours_ago(2))
        mock_db.execute.side_effect = [result_with(scalar=reservation), result_with(scalar=lot)]

        resp = await client.post(f"/api/reservations/{reservation.id}/checkin")

        assert resp.status_code == 400
        assert resp.json()["error"] == "ARRIVAL_WINDOW_EXPIRED"
        assert reservation.state == ReservationState.NO_SHOW
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_check_out(self, client, mock_db, lot, make_reservation):
        reservation = make_reservation(
            lot,
            state=ReservationState.CHECKED_IN,
            created_at=hours_ago(3),
            checkin_at=hours_ago(2, 10),
        )
        lot.occupy_spot()
        mock_db.execute.side_effect = [result_with(scalar=reservation), result_with(scalar=lot)]

        resp = await client.post(f"/api/reservations/{reservation.id}/checkout")

        assert resp.status_code == 200
        body = resp.json()
        assert body["reservation"]["state"] == "CHECKED_OUT"
        assert body["checkout"]["parking_hours"] == 3
        assert Decimal(body["checkout"]["total_amount"]) == Decimal("30.00")
        assert Decimal(body["checkout"]["reservation_fee_paid"]) == Decimal("1.20")
        assert Decimal(body["checkout"]["remaining_amount"]) == Decimal("28.80")
        assert lot.availability_manual == 10

    @pytest.mark.asyncio
    async def test_cancel_pending(self, client, mock_db, lot, make_reservation, mock_gateway):
        reservation = make_reservation(lot, created_at=hours_ago(0, 1))
        mock_db.execute.side_effect = [result_with(scalar=reservation), result_with(scalar=lot)]

        resp = await client.post(f"/api/reservations/{reservation.id}/cancel")

        assert resp.status_code == 200
        body = resp.json()
        assert body["reservation"]["state"] == "CANCELLED"
        assert Decimal(body["refund_amount"]) == Decimal("0")
        mock_gateway.refund.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_checked_out_is_invalid(self, client, mock_db, lot, make_reservation):
        reservation = make_reservation(lot, state=ReservationState.CHECKED_OUT)
        mock_db.execute.side_effect = [result_with(scalar=reservation), result_with(scalar=lot)]

        resp = await client.post(f"/api/reservations/{reservation.id}/cancel")

        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_unknown_reservation(self, client, mock_db):
        mock_db.execute.return_value = result_with(scalar=None)

        resp = await client.post("/api/reservations/does-not-exist/checkout")

        assert resp.status_code == 404


@pytest.mark.asyncio
async def test_list_my_reservations(client, mock_db, lot, make_reservation):
    newer = make_reservation(lot, created_at=hours_ago(1))
    older = make_reservation(lot, state=ReservationState.CANCELLED, created_at=hours_ago(5))
    mock_db.execute.return_value = result_with(rows=[(newer, lot), (older, lot)])

    resp = await client.get("/api/users/me/reservations")

    assert resp.status_code == 200
    reservations = resp.json()["reservations"]
    assert [r["id"] for r in reservations] == [newer.id, older.id]
    assert reservations[1]["state"] == "CANCELLED"
