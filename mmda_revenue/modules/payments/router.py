import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import or_, select as sa_select

from mmda_revenue.auth.deps import STAFF_ROLES, get_current_user, is_staff, role_required
from mmda_revenue.db.session import get_session
from mmda_revenue.metrics import WEBHOOK_EVENTS
from mmda_revenue.models.models import Payment, User
from mmda_revenue.schemas.payment import PaymentCreate, PaymentMethod, PaymentRecordOut, PaymentStatus, WebhookAck
from mmda_revenue.services.audit import log_audit
from mmda_revenue.services.payment_gateway import UnknownProvider
from mmda_revenue.services.payment_service import PaymentService
from mmda_revenue.services.webhook_events import (
    extract_event_id,
    extract_status,
    extract_transaction_ref,
    is_event_processed,
    mark_event_processed,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])

CANCELLED = "cancelled"
OPEN_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value)


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


def _record(payment: Payment) -> dict:
    return PaymentRecordOut.model_validate(payment).model_dump(mode="json")


def _client_ip(request: Request):
    return request.client.host if request.client else None


async def _load_payment(db: AsyncSession, payment_id: int, user: User) -> Payment:
    res = await db.execute(sa_select(Payment).where(Payment.id == payment_id))
    payment = res.scalars().first()
    # taxpayers get a 404 for other people's payments, not a 403
    if not payment or (not is_staff(user) and payment.user_id != user.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return payment


def _apply_status(payment: Payment, new_status: str) -> bool:
    if payment.status == new_status:
        return False
    payment.status = new_status
    if new_status == PaymentStatus.SUCCESS.value and payment.paid_at is None:
        payment.paid_at = datetime.now(timezone.utc)
    return True


@router.get("/methods/available")
async def available_methods(service: PaymentService = Depends(get_payment_service)):
    return {"success": True, "data": service.get_payment_methods()}


@router.get("/")
async def list_payments(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    stmt = sa_select(Payment).order_by(Payment.created_at.desc()).limit(limit).offset(offset)
    if not is_staff(current_user):
        stmt = stmt.where(Payment.user_id == current_user.id)
    res = await db.execute(stmt)
    return {"success": True, "data": [_record(p) for p in res.scalars().all()]}


@router.get("/{payment_id}")
async def get_payment(
    payment_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    payment = await _load_payment(db, payment_id, current_user)
    return {"success": True, "data": _record(payment)}


@router.post("/", status_code=201)
async def create_payment(
    req: PaymentCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: PaymentService = Depends(get_payment_service),
):
    existing = await db.execute(sa_select(Payment.id).where(Payment.payment_reference == req.reference))
    if existing.first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Payment reference already exists")

    response = await service.process_payment(req)
    if not response.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=response.message)

    payment = Payment(
        user_id=current_user.id,
        payment_reference=req.reference,
        transaction_id=response.transaction_id,
        payment_method=response.payment_method,
        provider=response.provider,
        provider_key=response.provider_key,
        amount=response.amount,
        fee=response.fee,
        total_amount=response.total_amount,
        status=response.status.value,
        description=req.description,
        requires_verification=response.requires_verification,
        payment_details=response.metadata,
        receipt_url=response.receipt_url,
        estimated_settlement_time=response.estimated_settlement_time,
        paid_at=datetime.now(timezone.utc) if response.status == PaymentStatus.SUCCESS else None,
    )
    db.add(payment)
    try:
        await db.commit()
    except IntegrityError:
        # a concurrent request won the race on payment_reference
        await db.rollback()
        logger.warning("Duplicate payment reference on insert: %s", req.reference)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Payment reference already exists")
    await db.refresh(payment)

    return {
        "success": True,
        "message": response.message,
        "data": {
            "payment": _record(payment),
            "paymentResponse": response.model_dump(mode="json", by_alias=True),
        },
    }


@router.get("/{payment_id}/status")
async def payment_status(
    payment_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: PaymentService = Depends(get_payment_service),
):
    payment = await _load_payment(db, payment_id, current_user)

    if payment.requires_verification and payment.status in OPEN_STATUSES:
        return {"success": True, "message": "Awaiting cash verification", "data": _record(payment)}
    if payment.status not in OPEN_STATUSES:
        return {"success": True, "message": "Payment already settled", "data": _record(payment)}

    result = await service.check_payment_status(
        payment.transaction_id or payment.payment_reference,
        payment.payment_method,
        provider=payment.provider_key,
    )
    if result is None:
        return {"success": False, "message": "Status check unavailable", "data": _record(payment)}

    if _apply_status(payment, result.status.value):
        await db.commit()
        await db.refresh(payment)
    return {"success": True, "message": result.message, "data": _record(payment)}


@router.post("/{payment_id}/cancel")
async def cancel_payment(
    payment_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    payment = await _load_payment(db, payment_id, current_user)
    if payment.status != PaymentStatus.PENDING.value:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Only pending payments can be cancelled")

    payment.status = CANCELLED
    await log_audit(
        db,
        current_user.id,
        "payment.cancel",
        object_type="payment",
        object_id=str(payment.id),
        detail={"reference": payment.payment_reference},
        ip_address=_client_ip(request),
    )
    await db.commit()
    await db.refresh(payment)
    return {"success": True, "message": "Payment cancelled", "data": _record(payment)}


@router.post("/{payment_id}/verify")
async def verify_cash_payment(
    payment_id: int,
    request: Request,
    current_user: User = Depends(role_required(STAFF_ROLES)),
    db: AsyncSession = Depends(get_session),
):
    payment = await _load_payment(db, payment_id, current_user)
    if payment.payment_method != PaymentMethod.CASH.value or not payment.requires_verification:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Payment does not require verification")
    if payment.status != PaymentStatus.PENDING.value:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Only pending payments can be verified")

    _apply_status(payment, PaymentStatus.SUCCESS.value)
    payment.requires_verification = False
    await log_audit(
        db,
        current_user.id,
        "payment.verify_cash",
        object_type="payment",
        object_id=str(payment.id),
        detail={"reference": payment.payment_reference, "amount": str(payment.amount)},
        ip_address=_client_ip(request),
    )
    await db.commit()
    await db.refresh(payment)
    return {"success": True, "message": "Cash payment verified", "data": _record(payment)}


@router.post("/webhook/{provider}", response_model=WebhookAck)
async def payment_webhook(
    provider: str,
    request: Request,
    db: AsyncSession = Depends(get_session),
    service: PaymentService = Depends(get_payment_service),
):
    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}

    try:
        adapter = service.adapter_for(provider)
    except UnknownProvider:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown payment provider")

    if not adapter.verify_signature(headers, body):
        WEBHOOK_EVENTS.labels(provider=adapter.key, result="bad_signature").inc()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed webhook body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed webhook body")

    event_id = extract_event_id(payload)
    if not event_id:
        # cannot deduplicate without id
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing event id for idempotency")

    if await is_event_processed(adapter.key, event_id):
        WEBHOOK_EVENTS.labels(provider=adapter.key, result="replay").inc()
        return WebhookAck(received=True)
    if not await mark_event_processed(adapter.key, event_id):
        # race: someone else processed
        WEBHOOK_EVENTS.labels(provider=adapter.key, result="replay").inc()
        return WebhookAck(received=True)

    tx_ref = extract_transaction_ref(payload)
    payment = None
    if tx_ref:
        stmt = sa_select(Payment).where(
            Payment.provider_key == adapter.key,
            or_(Payment.transaction_id == tx_ref, Payment.payment_reference == tx_ref),
        )
        res = await db.execute(stmt)
        payment = res.scalars().first()
    if payment is None:
        logger.warning("Webhook from %s for unknown transaction %s", adapter.key, tx_ref)
        WEBHOOK_EVENTS.labels(provider=adapter.key, result="unmatched").inc()
        return WebhookAck(received=True)

    if payment.status in OPEN_STATUSES:
        new_status = adapter.map_status(extract_status(payload))
        if _apply_status(payment, new_status.value):
            await db.commit()
            logger.info("Payment %s moved to %s by %s webhook", payment.payment_reference, new_status.value, adapter.key)

    WEBHOOK_EVENTS.labels(provider=adapter.key, result="processed").inc()
    return WebhookAck(received=True)
