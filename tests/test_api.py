"""
API tests for operator endpoints, tracking and health.
"""

import uuid

import pytest

from bhavan.models.service_request import ServiceRequest
from bhavan.models.user import User, UserRole

from conftest import WEBHOOK_PATH, auth_headers, signed_webhook

ADMIN_REQUESTS = "/api/v1/admin/service-requests"
ADMIN_GATEWAYS = "/api/v1/admin/payment-gateways"


async def _service_request(
    db_session, catalogue, status="pending_contact", provider=None, payment_status="completed",
) -> ServiceRequest:
    sr = ServiceRequest(
        id=uuid.uuid4(),
        reference_number=f"SR-TEST-{uuid.uuid4().hex[:6].upper()}",
        service_id=catalogue["service"].id,
        customer_name="Meera Iyer",
        customer_email="meera@example.com",
        customer_phone="9000000000",
        requirements="Rental agreement review",
        payment_gateway="mock",
        payment_amount=5000000,
        payment_currency="INR",
        payment_status=payment_status,
        payment_transaction_id="mock_txn_paid" if payment_status == "completed" else None,
        status=status,
        assigned_provider_id=provider.id if provider else None,
        affiliate_id="partner-1",
    )
    db_session.add(sr)
    await db_session.commit()
    return sr


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class TestOperatorAuth:
    @pytest.mark.asyncio
    async def test_requires_token(self, client, catalogue):
        response = await client.get(ADMIN_REQUESTS)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_rejects_garbage_token(self, client, catalogue):
        response = await client.get(ADMIN_REQUESTS, headers={"Authorization": "Bearer not.a.jwt"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_customers_forbidden(self, client, catalogue, db_session):
        customer = User(id=uuid.uuid4(), email="buyer@example.com", role=UserRole.USER.value)
        db_session.add(customer)
        await db_session.commit()

        response = await client.get(ADMIN_REQUESTS, headers=auth_headers(customer))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_broker_cannot_update(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue)
        response = await client.patch(
            f"{ADMIN_REQUESTS}/{sr.id}",
            json={"status": "cancelled"},
            headers=auth_headers(catalogue["broker"]),
        )
        assert response.status_code == 403


# ---------------------------------------------------------------------------
# Listing and detail
# ---------------------------------------------------------------------------

class TestListing:
    @pytest.mark.asyncio
    async def test_admin_sees_all(self, client, catalogue, db_session):
        await _service_request(db_session, catalogue)
        await _service_request(db_session, catalogue, provider=catalogue["ca"], status="team_assigned")

        response = await client.get(ADMIN_REQUESTS, headers=auth_headers(catalogue["admin"]))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["page"] == 1
        assert data["pages"] == 1

    @pytest.mark.asyncio
    async def test_ca_sees_only_assigned(self, client, catalogue, db_session):
        unassigned = await _service_request(db_session, catalogue)
        assigned = await _service_request(db_session, catalogue, provider=catalogue["ca"], status="team_assigned")
        headers = auth_headers(catalogue["ca"])

        response = await client.get(ADMIN_REQUESTS, headers=headers)
        assert [item["id"] for item in response.json()["items"]] == [str(assigned.id)]

        forbidden = await client.get(f"{ADMIN_REQUESTS}/{unassigned.id}", headers=headers)
        assert forbidden.status_code == 403

    @pytest.mark.asyncio
    async def test_filters(self, client, catalogue, db_session):
        await _service_request(db_session, catalogue)
        await _service_request(db_session, catalogue, status="in_progress")
        headers = auth_headers(catalogue["admin"])

        response = await client.get(ADMIN_REQUESTS, params={"status": "in_progress"}, headers=headers)
        assert response.json()["total"] == 1

        response = await client.get(ADMIN_REQUESTS, params={"search": "meera"}, headers=headers)
        assert response.json()["total"] == 2

    @pytest.mark.asyncio
    async def test_detail_has_allowed_transitions(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue)

        response = await client.get(f"{ADMIN_REQUESTS}/{sr.id}", headers=auth_headers(catalogue["admin"]))

        assert response.status_code == 200
        assert response.json()["allowed_transitions"] == ["team_assigned", "cancelled"]


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------

class TestUpdates:
    @pytest.mark.asyncio
    async def test_assigning_provider_advances_status(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue)
        ca = catalogue["ca"]

        response = await client.patch(
            f"{ADMIN_REQUESTS}/{sr.id}",
            json={"assigned_provider_id": str(ca.id)},
            headers=auth_headers(catalogue["admin"]),
        )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["status"] == "team_assigned"
        assert data["assigned_provider_id"] == str(ca.id)
        assert data["status_history"][-1]["notes"] == "Assigned to Chitra CA"
        assert data["status_history"][-1]["changed_by_user_id"] == str(catalogue["admin"].id)

    @pytest.mark.asyncio
    async def test_status_walk_to_completion(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue, status="team_assigned", provider=catalogue["ca"])
        headers = auth_headers(catalogue["admin"])

        for status in ("in_progress", "completed"):
            response = await client.patch(f"{ADMIN_REQUESTS}/{sr.id}", json={"status": status}, headers=headers)
            assert response.status_code == 200, response.text

        data = response.json()
        assert data["status"] == "completed"
        assert data["allowed_transitions"] == []
        assert [h["new_status"] for h in data["status_history"]] == ["in_progress", "completed"]

    @pytest.mark.asyncio
    async def test_invalid_transition(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue)

        response = await client.patch(
            f"{ADMIN_REQUESTS}/{sr.id}",
            json={"status": "completed"},
            headers=auth_headers(catalogue["admin"]),
        )

        assert response.status_code == 400
        assert "status" in response.json()["error"]["details"]["fields"]

    @pytest.mark.asyncio
    async def test_same_status_rejected(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue)
        response = await client.patch(
            f"{ADMIN_REQUESTS}/{sr.id}",
            json={"status": "pending_contact"},
            headers=auth_headers(catalogue["admin"]),
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_empty_update_rejected(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue)
        response = await client.patch(f"{ADMIN_REQUESTS}/{sr.id}", json={}, headers=auth_headers(catalogue["admin"]))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_broker_cannot_be_assigned(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue)
        response = await client.patch(
            f"{ADMIN_REQUESTS}/{sr.id}",
            json={"assigned_provider_id": str(catalogue["broker"].id)},
            headers=auth_headers(catalogue["admin"]),
        )
        assert response.status_code == 400
        assert "assigned_provider_id" in response.json()["error"]["details"]["fields"]

    @pytest.mark.asyncio
    async def test_notes_only(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue)
        response = await client.patch(
            f"{ADMIN_REQUESTS}/{sr.id}",
            json={"notes": "Customer prefers calls after 6pm"},
            headers=auth_headers(catalogue["admin"]),
        )
        assert response.status_code == 200
        assert response.json()["notes"] == "Customer prefers calls after 6pm"
        assert response.json()["status"] == "pending_contact"


class TestUnpaidRequests:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,value", [
        ("status", "cancelled"),
        ("status", "team_assigned"),
        ("assigned_provider_id", None),
    ])
    async def test_fulfilment_blocked_until_paid(self, client, catalogue, db_session, field, value):
        sr = await _service_request(db_session, catalogue, payment_status="pending")
        update = {field: value or str(catalogue["ca"].id)}

        response = await client.patch(
            f"{ADMIN_REQUESTS}/{sr.id}", json=update, headers=auth_headers(catalogue["admin"]),
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["fields"]["status"] == "Payment not yet confirmed"

        await db_session.refresh(sr)
        assert sr.status == "pending_contact"
        assert sr.assigned_provider_id is None

    @pytest.mark.asyncio
    async def test_notes_allowed_before_payment(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue, payment_status="pending")
        response = await client.patch(
            f"{ADMIN_REQUESTS}/{sr.id}",
            json={"notes": "Called, awaiting payment"},
            headers=auth_headers(catalogue["admin"]),
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_settlement_after_rejected_cancel(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue, payment_status="pending")
        headers = auth_headers(catalogue["admin"])
        rejected = await client.patch(f"{ADMIN_REQUESTS}/{sr.id}", json={"status": "cancelled"}, headers=headers)
        assert rejected.status_code == 400

        body, webhook_headers = signed_webhook({
            "event": "payment.success",
            "data": {
                "transaction_id": "mock_txn_late",
                "amount": sr.payment_amount,
                "currency": "INR",
                "metadata": {"service_request_id": str(sr.id), "affiliate_code": "partner-1"},
            },
        })
        settled = await client.post(WEBHOOK_PATH, content=body, headers=webhook_headers)
        assert settled.json()["processed"] is True

        detail = (await client.get(f"{ADMIN_REQUESTS}/{sr.id}", headers=headers)).json()
        assert detail["payment_status"] == "completed"
        assert detail["status"] == "payment_confirmed"
        assert [h["new_status"] for h in detail["status_history"]] == ["payment_confirmed"]


class TestRefunds:
    @pytest.mark.asyncio
    async def test_refund_requested_from_gateway(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue)

        response = await client.post(
            f"{ADMIN_REQUESTS}/{sr.id}/refund",
            json={"amount": 100000, "reason": "Customer cancelled"},
            headers=auth_headers(catalogue["admin"]),
        )

        assert response.status_code == 200, response.text
        assert response.json()["status"] == "success"
        assert response.json()["amount"] == 100000

        detail = await client.get(f"{ADMIN_REQUESTS}/{sr.id}", headers=auth_headers(catalogue["admin"]))
        assert detail.json()["payment_status"] == "completed"

    @pytest.mark.asyncio
    async def test_refund_exceeding_payment(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue)
        response = await client.post(
            f"{ADMIN_REQUESTS}/{sr.id}/refund",
            json={"amount": 9000000},
            headers=auth_headers(catalogue["admin"]),
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_full_refund_reports_amount_paid(self, client, catalogue, db_session):
        sr = await _service_request(db_session, catalogue)
        response = await client.post(
            f"{ADMIN_REQUESTS}/{sr.id}/refund",
            json={"reason": "Duplicate order"},
            headers=auth_headers(catalogue["admin"]),
        )
        assert response.status_code == 200, response.text
        assert response.json()["amount"] == 5000000


# ---------------------------------------------------------------------------
# Gateway configuration
# ---------------------------------------------------------------------------

class TestGatewayAdmin:
    @pytest.mark.asyncio
    async def test_save_and_list(self, client, catalogue):
        headers = auth_headers(catalogue["admin"])
        response = await client.put(
            ADMIN_GATEWAYS,
            json={
                "provider": "razorpay",
                "api_key": "rzp_test_key",
                "api_secret": "rzp_secret",
                "webhook_secret": "rzp_webhook",
                "is_default": True,
            },
            headers=headers,
        )
        assert response.status_code == 200, response.text
        assert response.json()["is_default"] is True
        assert "api_secret" not in response.json()

        listing = (await client.get(ADMIN_GATEWAYS, headers=headers)).json()
        assert [item["provider"] for item in listing["items"]] == ["razorpay"]
        assert listing["supported_providers"] == ["razorpay", "mock"]

    @pytest.mark.asyncio
    async def test_unsupported_provider_rejected(self, client, catalogue):
        response = await client.put(
            ADMIN_GATEWAYS,
            json={"provider": "stripe", "api_key": "k", "api_secret": "s", "webhook_secret": "w"},
            headers=auth_headers(catalogue["admin"]),
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_deactivate_unknown_provider(self, client, catalogue):
        response = await client.patch(
            f"{ADMIN_GATEWAYS}/razorpay",
            json={"is_active": False},
            headers=auth_headers(catalogue["admin"]),
        )
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Tracking and health
# ---------------------------------------------------------------------------

class TestTracking:
    @pytest.mark.asyncio
    async def test_records_event(self, client, catalogue):
        response = await client.post(
            "/api/v1/tracking/events",
            json={"event_type": "property_contact", "affiliate_code": "partner-1", "property_id": "prop-7"},
        )
        assert response.status_code == 201
        assert response.json()["affiliate_id"] == "partner-1"

    @pytest.mark.asyncio
    async def test_invalid_event_type(self, client, catalogue):
        response = await client.post("/api/v1/tracking/events", json={"event_type": "payment"})
        assert response.status_code == 400


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "connected"

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "req_caller_1"})
        assert response.headers["X-Request-ID"] == "req_caller_1"

    @pytest.mark.asyncio
    async def test_unknown_route(self, client):
        response = await client.get("/api/v1/nope")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"
