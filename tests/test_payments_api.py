"""Endpoint tests for /payments against an in-memory SQLite database.

Provider HTTP calls go through a MockTransport; webhook replay storage is
replaced with an in-process set so Redis is not needed.
"""

import hashlib
import hmac
import json

import httpx
import pytest
import pytest_asyncio
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import mmda_revenue.models  # noqa: F401
from mmda_revenue.db.base import Base
from mmda_revenue.db.session import get_session
from mmda_revenue.main import app
from mmda_revenue.models.models import AuditLog, Payment, User
from mmda_revenue.modules.payments import router as payments_router
from mmda_revenue.modules.payments.router import get_payment_service
from mmda_revenue.schemas.payment import PaymentCreate
from mmda_revenue.services import auth as auth_service
from mmda_revenue.services.payment_service import PaymentService

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeGateway:
    """Stands in for every provider; tests swap `handler` to script responses."""

    def __init__(self):
        self.requests = []
        self.handler = lambda request: httpx.Response(200, json={"transaction_id": "TX-1", "fee": 0.5})

    def __call__(self, request):
        self.requests.append(request)
        return self.handler(request)


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        TEST_DATABASE_URL, poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def processed_events(monkeypatch):
    seen = set()

    async def is_processed(provider, event_id):
        return (provider, event_id) in seen

    async def mark_processed(provider, event_id):
        if (provider, event_id) in seen:
            return False
        seen.add((provider, event_id))
        return True

    monkeypatch.setattr(payments_router, "is_event_processed", is_processed)
    monkeypatch.setattr(payments_router, "mark_event_processed", mark_processed)
    return seen


@pytest_asyncio.fixture
async def client(session_factory, gateway, payment_config, processed_events):
    service = PaymentService(payment_config, transport=httpx.MockTransport(gateway))

    async def _session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_payment_service] = lambda: service
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def login_as(session_factory):
    async def _login(email, role="taxpayer"):
        async with session_factory() as db:
            user = User(email=email, hashed_password=auth_service.hash_password("secret-pass"), role=role)
            db.add(user)
            await db.commit()
            await db.refresh(user)
        return {"Authorization": f"Bearer {auth_service.create_access_token(user.id)}"}

    return _login


def _cash(reference="CASH-REF-1", amount=50):
    return {"amount": amount, "reference": reference, "description": "Market toll", "paymentMethod": "cash"}


def _momo(reference="MM-REF-1"):
    return {
        "amount": 100,
        "reference": reference,
        "description": "Property rate",
        "paymentMethod": "mobile_money",
        "phone": "0241234567",
        "mobileMoneyProvider": "MTN",
    }


def _signed(payload, secret="mtn_secret"):
    body = json.dumps(payload).encode()
    signature = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return body, {"x-signature": signature, "content-type": "application/json"}


class TestPublicEndpoints:
    async def test_methods_available(self, client):
        resp = await client.get("/payments/methods/available")

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert set(data) == {"mobile_money", "bank_transfer", "card_payment", "cash"}
        assert data["bank_transfer"]["banks"]["002"] == "GCB Bank"

    async def test_health_echoes_trace_id(self, client):
        resp = await client.get("/health", headers={"x-trace-id": "trace-123"})

        assert resp.json() == {"status": "ok"}
        assert resp.headers["x-trace-id"] == "trace-123"

    async def test_listing_requires_token(self, client):
        resp = await client.get("/payments/")

        assert resp.status_code == 401

    async def test_bad_token(self, client):
        resp = await client.get("/payments/", headers={"Authorization": "Bearer not-a-jwt"})

        assert resp.status_code == 401


class TestCreatePayment:
    async def test_cash_payment_is_persisted(self, client, login_as, session_factory):
        headers = await login_as("ama@example.com")

        resp = await client.post("/payments/", json=_cash(), headers=headers)

        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Cash payment received, awaiting verification"
        payment = body["data"]["payment"]
        assert payment["status"] == "pending"
        assert payment["requires_verification"] is True
        assert payment["total_amount"] == "50.00"
        assert body["data"]["paymentResponse"]["transactionId"].startswith("CASH_")
        assert body["data"]["paymentResponse"]["requiresVerification"] is True

        async with session_factory() as db:
            stored = (await db.execute(select(Payment))).scalars().one()
        assert stored.payment_reference == "CASH-REF-1"
        assert stored.payment_details["collectionMethod"] == "cash"

    async def test_duplicate_reference_conflicts(self, client, login_as):
        headers = await login_as("kofi@example.com")

        first = await client.post("/payments/", json=_cash("DUP-1"), headers=headers)
        second = await client.post("/payments/", json=_cash("DUP-1"), headers=headers)

        assert first.status_code == 201
        assert second.status_code == 409

    async def test_missing_phone_is_422(self, client, login_as, gateway):
        headers = await login_as("esi@example.com")
        payload = _momo()
        del payload["phone"]

        resp = await client.post("/payments/", json=payload, headers=headers)

        assert resp.status_code == 422
        assert gateway.requests == []

    async def test_provider_rejection_is_400(self, client, login_as, gateway, session_factory):
        headers = await login_as("yaw@example.com")
        gateway.handler = lambda request: httpx.Response(402, json={"message": "Insufficient balance"})

        resp = await client.post("/payments/", json=_momo(), headers=headers)

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Insufficient balance"
        async with session_factory() as db:
            assert (await db.execute(select(Payment))).scalars().first() is None

    async def test_mobile_money_stores_provider_key(self, client, login_as):
        headers = await login_as("abena@example.com")

        resp = await client.post("/payments/", json=_momo(), headers=headers)

        payment = resp.json()["data"]["payment"]
        assert payment["provider_key"] == "mtn"
        assert payment["transaction_id"] == "TX-1"
        assert payment["total_amount"] == "100.50"


class TestReadPayments:
    async def test_taxpayers_only_see_their_own(self, client, login_as):
        owner = await login_as("owner@example.com")
        other = await login_as("other@example.com")
        staff = await login_as("clerk@example.com", role="staff")
        created = await client.post("/payments/", json=_cash(), headers=owner)
        payment_id = created.json()["data"]["payment"]["id"]

        assert (await client.get(f"/payments/{payment_id}", headers=owner)).status_code == 200
        assert (await client.get(f"/payments/{payment_id}", headers=other)).status_code == 404
        assert (await client.get(f"/payments/{payment_id}", headers=staff)).status_code == 200
        assert len((await client.get("/payments/", headers=owner)).json()["data"]) == 1
        assert (await client.get("/payments/", headers=other)).json()["data"] == []
        assert len((await client.get("/payments/", headers=staff)).json()["data"]) == 1


class TestStatusPolling:
    async def test_status_poll_updates_payment(self, client, login_as, gateway):
        headers = await login_as("poll@example.com")
        created = await client.post("/payments/", json=_momo(), headers=headers)
        payment_id = created.json()["data"]["payment"]["id"]
        gateway.handler = lambda request: httpx.Response(200, json={"status": "SUCCESSFUL", "amount": 100})

        resp = await client.get(f"/payments/{payment_id}/status", headers=headers)

        assert resp.status_code == 200
        payment = resp.json()["data"]
        assert payment["status"] == "success"
        assert payment["paid_at"] is not None
        assert str(gateway.requests[-1].url) == "https://mtn.test/v1/collections/TX-1"

    async def test_cash_awaits_verification(self, client, login_as, gateway):
        headers = await login_as("cashpoll@example.com")
        created = await client.post("/payments/", json=_cash(), headers=headers)
        payment_id = created.json()["data"]["payment"]["id"]

        resp = await client.get(f"/payments/{payment_id}/status", headers=headers)

        assert resp.json()["message"] == "Awaiting cash verification"
        assert resp.json()["data"]["status"] == "pending"


class TestCancelAndVerify:
    async def test_cancel_pending_once(self, client, login_as, session_factory):
        headers = await login_as("cancel@example.com")
        created = await client.post("/payments/", json=_cash(), headers=headers)
        payment_id = created.json()["data"]["payment"]["id"]

        first = await client.post(f"/payments/{payment_id}/cancel", headers=headers)
        second = await client.post(f"/payments/{payment_id}/cancel", headers=headers)

        assert first.status_code == 200
        assert first.json()["data"]["status"] == "cancelled"
        assert second.status_code == 409
        async with session_factory() as db:
            audit = (await db.execute(select(AuditLog))).scalars().one()
        assert audit.action == "payment.cancel"

    async def test_only_staff_verify_cash(self, client, login_as, session_factory):
        taxpayer = await login_as("payer@example.com")
        staff = await login_as("cashier@example.com", role="staff")
        created = await client.post("/payments/", json=_cash(), headers=taxpayer)
        payment_id = created.json()["data"]["payment"]["id"]

        denied = await client.post(f"/payments/{payment_id}/verify", headers=taxpayer)
        verified = await client.post(f"/payments/{payment_id}/verify", headers=staff)
        again = await client.post(f"/payments/{payment_id}/verify", headers=staff)

        assert denied.status_code == 403
        assert verified.status_code == 200
        payment = verified.json()["data"]
        assert payment["status"] == "success"
        assert payment["requires_verification"] is False
        assert payment["paid_at"] is not None
        assert again.status_code == 409
        async with session_factory() as db:
            actions = [a.action for a in (await db.execute(select(AuditLog))).scalars()]
        assert actions == ["payment.verify_cash"]

    async def test_verify_rejects_non_cash(self, client, login_as):
        headers = await login_as("admin@example.com", role="admin")
        created = await client.post("/payments/", json=_momo(), headers=headers)
        payment_id = created.json()["data"]["payment"]["id"]

        resp = await client.post(f"/payments/{payment_id}/verify", headers=headers)

        assert resp.status_code == 409


class TestWebhook:
    async def _pending_momo(self, client, login_as):
        headers = await login_as("hook@example.com")
        created = await client.post("/payments/", json=_momo(), headers=headers)
        return created.json()["data"]["payment"]["id"], headers

    async def test_signed_event_updates_status(self, client, login_as):
        payment_id, headers = await self._pending_momo(client, login_as)
        body, sig_headers = _signed({"id": "evt_1", "data": {"transaction_id": "TX-1", "status": "SUCCESSFUL"}})

        resp = await client.post("/payments/webhook/mtn", content=body, headers=sig_headers)

        assert resp.status_code == 200
        assert resp.json() == {"received": True}
        payment = (await client.get(f"/payments/{payment_id}", headers=headers)).json()["data"]
        assert payment["status"] == "success"

    async def test_replayed_event_is_ignored(self, client, login_as, processed_events):
        payment_id, headers = await self._pending_momo(client, login_as)
        failed, failed_headers = _signed({"id": "evt_2", "data": {"transaction_id": "TX-1", "status": "FAILED"}})
        await client.post("/payments/webhook/mtn", content=failed, headers=failed_headers)

        replay = await client.post("/payments/webhook/mtn", content=failed, headers=failed_headers)

        assert replay.status_code == 200
        assert processed_events == {("mtn", "evt_2")}
        payment = (await client.get(f"/payments/{payment_id}", headers=headers)).json()["data"]
        assert payment["status"] == "failed"

    async def test_bad_signature(self, client):
        body, headers = _signed({"id": "evt_3", "status": "SUCCESSFUL"}, secret="wrong")

        resp = await client.post("/payments/webhook/mtn", content=body, headers=headers)

        assert resp.status_code == 400

    async def test_unknown_provider(self, client):
        body, headers = _signed({"id": "evt_4"})

        resp = await client.post("/payments/webhook/paypal", content=body, headers=headers)

        assert resp.status_code == 404

    async def test_missing_event_id(self, client):
        body, headers = _signed({"status": "SUCCESSFUL"})

        resp = await client.post("/payments/webhook/mtn", content=body, headers=headers)

        assert resp.status_code == 400


class TestPaymentCreateValidation:
    def test_camel_case_body(self):
        body = PaymentCreate.model_validate(_momo())

        assert body.mobile_money_provider == "MTN"
        assert body.payment_method == "mobile_money"

    @pytest.mark.parametrize(
        "change",
        [
            {"amount": 0},
            {"amount": -5},
            {"reference": ""},
            {"description": ""},
            {"paymentMethod": "cheque"},
            {"mobileMoneyProvider": "glo"},
            {"phone": None},
        ],
    )
    def test_rejected_bodies(self, change):
        with pytest.raises(ValidationError):
            PaymentCreate.model_validate({**_momo(), **change})

    def test_bank_fields_required(self):
        with pytest.raises(ValidationError, match="beneficiary_account, beneficiary_bank, beneficiary_name required"):
            PaymentCreate.model_validate(
                {"amount": 10, "reference": "B", "description": "d", "paymentMethod": "bank_transfer"}
            )

    def test_cash_needs_no_extra_fields(self):
        assert PaymentCreate.model_validate(_cash()).payment_method == "cash"
