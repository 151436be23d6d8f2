"""
End-to-end checkout tests: purchase, webhook settlement, status tracking
and payment retry through the public API.
"""

import uuid

import pytest
from sqlalchemy import select

from bhavan.models.commission import AffiliateCommission
from bhavan.models.service_request import ServiceRequest
from bhavan.services.payment_gateway.mock_adapter import MockEvent, build_mock_webhook_payload
from bhavan.services.purchase_service import generate_reference_number, validate_customer
from bhavan.schemas.service import CustomerInfo

from conftest import WEBHOOK_PATH, purchase_body, signed_webhook

PURCHASE_PATH = "/api/v1/services/purchase"


async def _purchase(client, body: dict) -> dict:
    response = await client.post(PURCHASE_PATH, json=body)
    assert response.status_code == 200, response.text
    return response.json()


async def _settle(client, client_secret: str, event: MockEvent = MockEvent.PAYMENT_SUCCESS):
    body, headers = signed_webhook(build_mock_webhook_payload(client_secret, event))
    return await client.post(WEBHOOK_PATH, content=body, headers=headers)


async def _status(client, reference: str) -> dict:
    response = await client.get(f"/api/v1/services/requests/{reference}")
    assert response.status_code == 200, response.text
    return response.json()


class TestReferenceNumbers:
    def test_format(self):
        reference = generate_reference_number()
        prefix, timestamp, suffix = reference.split("-")
        assert prefix == "SR"
        assert timestamp.isalnum() and timestamp.isupper()
        assert len(suffix) == 6

    def test_unique(self):
        assert len({generate_reference_number() for _ in range(200)}) == 200


class TestCustomerValidation:
    def test_all_fields_reported(self):
        errors = validate_customer("", CustomerInfo(email="not-an-email"))
        assert errors == {
            "serviceId": "Service selection is required",
            "fullName": "Full name is required",
            "email": "Valid email address is required",
            "phone": "Phone number is required",
            "requirements": "Service requirements are required",
        }

    def test_valid(self):
        customer = CustomerInfo(full_name="A", email="a@b.co", phone="1", requirements="x")
        assert validate_customer("abc", customer) == {}


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------

class TestCatalogue:
    @pytest.mark.asyncio
    async def test_lists_active_services(self, client, catalogue):
        response = await client.get("/api/v1/services")
        assert response.status_code == 200
        names = [s["name"] for s in response.json()]
        assert "Property Valuation" in names

    @pytest.mark.asyncio
    async def test_unknown_service(self, client, catalogue):
        response = await client.get(f"/api/v1/services/{uuid.uuid4()}")
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Checkout to settlement
# ---------------------------------------------------------------------------

class TestPurchaseFlow:
    @pytest.mark.asyncio
    async def test_affiliate_purchase_settles_with_commission(self, client, catalogue, db_session):
        service = catalogue["service"]

        purchase = await _purchase(client, purchase_body(service.id, affiliate_code="partner-1"))

        assert purchase["referenceNumber"].startswith("SR-")
        intent = purchase["paymentIntent"]
        assert intent["gateway"] == "mock"
        assert intent["amount"] == 5000000
        assert intent["currency"] == "INR"

        status = await _status(client, purchase["referenceNumber"])
        assert status["status"] == "pending_contact"
        assert status["payment"]["status"] == "pending"
        assert status["customerEmail"] == "ravi.kumar@example.com"
        assert [t["status"] for t in status["timeline"]] == ["created"]

        response = await _settle(client, intent["clientSecret"])
        assert response.status_code == 200
        assert response.json() == {"received": True, "processed": True, "message": None}

        status = await _status(client, purchase["referenceNumber"])
        assert status["status"] == "payment_confirmed"
        assert status["statusLabel"] == "Payment Confirmed"
        assert status["payment"]["status"] == "completed"
        assert status["payment"]["completedAt"] is not None
        assert [t["status"] for t in status["timeline"]] == ["created", "payment_confirmed"]
        assert status["timeline"][1]["description"] == "Payment completed successfully"

        commission = (await db_session.execute(
            select(AffiliateCommission).where(
                AffiliateCommission.service_request_id == uuid.UUID(purchase["requestId"])
            )
        )).scalar_one()
        assert commission.affiliate_id == "partner-1"
        assert commission.commission_amount == 500000

    @pytest.mark.asyncio
    async def test_duplicate_webhook_acknowledged(self, client, catalogue):
        purchase = await _purchase(client, purchase_body(catalogue["service"].id, affiliate_code="partner-1"))
        secret = purchase["paymentIntent"]["clientSecret"]

        await _settle(client, secret)
        response = await _settle(client, secret)

        assert response.status_code == 200
        assert response.json()["processed"] is False

    @pytest.mark.asyncio
    async def test_tier_price_used(self, client, catalogue):
        body = purchase_body(catalogue["service"].id, tier_id=catalogue["tier"].id)
        purchase = await _purchase(client, body)
        assert purchase["paymentIntent"]["amount"] == 7500000

        status = await _status(client, purchase["referenceNumber"])
        assert status["service"]["tierName"] == "Premium"

    @pytest.mark.asyncio
    async def test_unknown_affiliate_still_purchases(self, client, catalogue, db_session):
        purchase = await _purchase(client, purchase_body(catalogue["service"].id, affiliate_code="ghost"))

        sr = await db_session.get(ServiceRequest, uuid.UUID(purchase["requestId"]))
        assert sr.affiliate_code == "ghost"
        assert sr.affiliate_id == "NO_AFFILIATE_ID"


class TestPurchaseValidation:
    @pytest.mark.asyncio
    async def test_missing_fields(self, client, catalogue):
        response = await client.post(PURCHASE_PATH, json={"serviceId": str(catalogue["service"].id), "customer": {}})

        assert response.status_code == 400
        fields = response.json()["error"]["details"]["fields"]
        assert set(fields) == {"fullName", "email", "phone", "requirements"}

    @pytest.mark.asyncio
    async def test_unknown_service(self, client, catalogue):
        response = await client.post(PURCHASE_PATH, json=purchase_body(uuid.uuid4()))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_malformed_service_id(self, client, catalogue):
        response = await client.post(PURCHASE_PATH, json=purchase_body("not-a-uuid"))
        assert response.status_code == 400
        assert "serviceId" in response.json()["error"]["details"]["fields"]

    @pytest.mark.asyncio
    async def test_tier_from_other_service(self, client, catalogue):
        body = purchase_body(catalogue["other_service"].id, tier_id=catalogue["tier"].id)
        response = await client.post(PURCHASE_PATH, json=body)
        assert response.status_code == 400
        assert "serviceTierId" in response.json()["error"]["details"]["fields"]

    @pytest.mark.asyncio
    async def test_unknown_reference(self, client, catalogue):
        response = await client.get("/api/v1/services/requests/SR-NOPE-000000")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

class TestRetryPayment:
    @pytest.mark.asyncio
    async def test_pending_request_gets_new_intent(self, client, catalogue):
        purchase = await _purchase(client, purchase_body(catalogue["service"].id))
        reference = purchase["referenceNumber"]

        response = await client.post(f"/api/v1/services/requests/{reference}/retry-payment")

        assert response.status_code == 200
        retry = response.json()
        assert retry["referenceNumber"] == reference
        assert retry["paymentIntent"]["clientSecret"] != purchase["paymentIntent"]["clientSecret"]

    @pytest.mark.asyncio
    async def test_failed_request_is_copied(self, client, catalogue):
        purchase = await _purchase(client, purchase_body(catalogue["service"].id, affiliate_code="partner-1"))
        reference = purchase["referenceNumber"]
        await _settle(client, purchase["paymentIntent"]["clientSecret"], MockEvent.PAYMENT_FAILED)
        assert (await _status(client, reference))["status"] == "cancelled"

        response = await client.post(f"/api/v1/services/requests/{reference}/retry-payment")

        assert response.status_code == 200
        retry = response.json()
        assert retry["referenceNumber"] != reference

        settled = await _settle(client, retry["paymentIntent"]["clientSecret"])
        assert settled.json()["processed"] is True
        assert (await _status(client, retry["referenceNumber"]))["status"] == "payment_confirmed"
        assert (await _status(client, reference))["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_paid_request_rejected(self, client, catalogue):
        purchase = await _purchase(client, purchase_body(catalogue["service"].id))
        await _settle(client, purchase["paymentIntent"]["clientSecret"])

        response = await client.post(f"/api/v1/services/requests/{purchase['referenceNumber']}/retry-payment")

        assert response.status_code == 400
