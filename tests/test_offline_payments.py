"""Tests for the card and cash handlers."""

import re
from decimal import Decimal

import pytest

from mmda_revenue.schemas.payment import PaymentRequest, PaymentStatus
from mmda_revenue.services.offline_payments import (
    mock_payment_status,
    process_card_payment,
    process_cash_payment,
    synthetic_transaction_id,
)
from mmda_revenue.services.payment_gateway import PaymentValidationError


def _card_request(**overrides) -> PaymentRequest:
    fields = dict(
        amount=Decimal("200"),
        reference="CARD-REF",
        description="Signage permit",
        payment_method="card_payment",
        card_number="4111111111111111",
        card_expiry="12/27",
        card_cvv="123",
        card_holder_name="Ama Owusu",
        metadata={"mmda": "AMA"},
    )
    fields.update(overrides)
    return PaymentRequest(**fields)


def test_synthetic_transaction_id_shape():
    assert re.fullmatch(r"CARD_\d+_[a-z0-9]{9}", synthetic_transaction_id("CARD"))


class TestCard:
    async def test_fee_and_total(self, payment_config):
        response = await process_card_payment(_card_request(), payment_config)

        assert response.success is True
        assert response.status == PaymentStatus.SUCCESS
        assert response.fee == Decimal("5.00")
        assert response.total_amount == Decimal("205.00")
        assert response.transaction_id.startswith("CARD_")
        assert response.provider == "Card Gateway"
        assert response.provider_key == "paystack"
        assert response.receipt_url == "https://mmda.test/payments/receipt/CARD-REF"

    async def test_metadata_hides_card_number(self, payment_config):
        response = await process_card_payment(_card_request(), payment_config)

        assert response.metadata == {"cardLast4": "1111", "cardHolderName": "Ama Owusu", "mmda": "AMA"}
        assert "4111111111111111" not in response.model_dump_json()

    async def test_fee_rounds_half_up(self, payment_config):
        response = await process_card_payment(_card_request(amount=Decimal("10.10")), payment_config)

        # 2.5% of 10.10 is 0.2525
        assert response.fee == Decimal("0.25")
        assert response.total_amount == response.amount + response.fee

    @pytest.mark.parametrize("missing", ["card_number", "card_expiry", "card_cvv", "card_holder_name"])
    async def test_missing_card_field(self, payment_config, missing):
        with pytest.raises(PaymentValidationError, match="Card details are required"):
            await process_card_payment(_card_request(**{missing: None}), payment_config)


class TestCash:
    async def test_cash_is_pending_verification(self, payment_config):
        request = PaymentRequest(amount=50, reference="CASH-1", payment_method="cash")

        response = await process_cash_payment(request, payment_config)

        assert response.success is True
        assert response.status == PaymentStatus.PENDING
        assert response.fee == Decimal("0.00")
        assert response.total_amount == Decimal("50.00")
        assert response.transaction_id.startswith("CASH_")
        assert response.requires_verification is True
        assert response.metadata["requiresVerification"] is True
        assert response.metadata["collectionMethod"] == "cash"


@pytest.mark.parametrize("method,provider", [("card_payment", "Card Gateway"), ("cash", "Cash Collection")])
async def test_mock_status(payment_config, method, provider):
    response = await mock_payment_status("TX-1", method, payment_config)

    assert response.success is True
    assert response.status == PaymentStatus.SUCCESS
    assert response.message == "Payment verified successfully"
    assert response.provider == provider
    assert response.amount == Decimal("0.00")
    assert response.total_amount == Decimal("0.00")
