"""Card and cash handlers.

Neither method has a live gateway integration: card payments settle
immediately after a simulated processing delay, cash payments are recorded
as pending until a staff member confirms the money was received.
"""
import asyncio
import logging
import secrets
import string
import time
from decimal import Decimal

from mmda_revenue.config import PaymentConfig
from mmda_revenue.schemas.payment import PaymentMethod, PaymentRequest, PaymentResponse, PaymentStatus, money
from mmda_revenue.services.payment_gateway import PaymentValidationError

logger = logging.getLogger(__name__)

CARD_FEE_RATE = Decimal("0.025")
CARD_PROVIDER_NAME = "Card Gateway"
CASH_PROVIDER_NAME = "Cash Collection"

_ID_ALPHABET = string.ascii_lowercase + string.digits


def synthetic_transaction_id(prefix: str) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


async def process_card_payment(request: PaymentRequest, config: PaymentConfig) -> PaymentResponse:
    if not (request.card_number and request.card_expiry and request.card_cvv and request.card_holder_name):
        raise PaymentValidationError("Card details are required for card payments")

    amount = money(request.amount)
    logger.info("Processing card payment for %s, amount: %s", request.card_holder_name, amount)
    await asyncio.sleep(config.card_processing_delay)

    fee = money(amount * CARD_FEE_RATE)
    return PaymentResponse(
        success=True,
        transaction_id=synthetic_transaction_id("CARD"),
        reference=request.reference,
        status=PaymentStatus.SUCCESS,
        message="Card payment processed successfully",
        payment_method=PaymentMethod.CARD_PAYMENT.value,
        provider=CARD_PROVIDER_NAME,
        provider_key=config.card.provider,
        amount=amount,
        fee=fee,
        total_amount=amount + fee,
        receipt_url=f"{config.general.callback_url}/receipt/{request.reference}",
        metadata={
            "cardLast4": request.card_number[-4:],
            "cardHolderName": request.card_holder_name,
            **request.metadata,
        },
    )


async def process_cash_payment(request: PaymentRequest, config: PaymentConfig) -> PaymentResponse:
    amount = money(request.amount)
    logger.info("Processing cash payment for amount: %s, reference: %s", amount, request.reference)
    return PaymentResponse(
        success=True,
        transaction_id=synthetic_transaction_id("CASH"),
        reference=request.reference,
        status=PaymentStatus.PENDING,
        message="Cash payment received, awaiting verification",
        payment_method=PaymentMethod.CASH.value,
        provider=CASH_PROVIDER_NAME,
        amount=amount,
        fee=Decimal("0.00"),
        total_amount=amount,
        metadata={
            "collectionMethod": "cash",
            "requiresVerification": True,
            **request.metadata,
        },
        requires_verification=True,
    )


async def mock_payment_status(transaction_id: str, payment_method: str, config: PaymentConfig) -> PaymentResponse:
    # no status source exists for card/cash; amounts live in the caller's store
    await asyncio.sleep(config.mock_status_delay)
    provider = CARD_PROVIDER_NAME if payment_method == PaymentMethod.CARD_PAYMENT.value else CASH_PROVIDER_NAME
    return PaymentResponse(
        success=True,
        transaction_id=transaction_id,
        reference=transaction_id,
        status=PaymentStatus.SUCCESS,
        message="Payment verified successfully",
        payment_method=payment_method,
        provider=provider,
        amount=Decimal("0.00"),
        fee=Decimal("0.00"),
        total_amount=Decimal("0.00"),
    )
