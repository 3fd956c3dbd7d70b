"""Payment routing across mobile money, bank transfer, card and cash.

PaymentService is the single place where payment errors are turned into
responses: process_payment always returns a PaymentResponse and
check_payment_status returns None when the status cannot be determined.
"""
import copy
import logging
from typing import Any, Dict, Optional

import httpx

from mmda_revenue.config import PaymentConfig
from mmda_revenue.logging_setup import PAYMENT_REF_CTX
from mmda_revenue.metrics import PAYMENT_FAILURE, PAYMENT_STATUS_UNKNOWN, PAYMENT_SUCCESS
from mmda_revenue.schemas.payment import PaymentMethod, PaymentRequest, PaymentResponse, PaymentStatus, ProviderResult, money
from mmda_revenue.services.bank_transfer import (
    BANK_PROVIDERS,
    GHANAIAN_BANKS,
    GHIPSS,
    BankTransferRequest,
    bank_provider_for_code,
    get_bank_adapter,
)
from mmda_revenue.services.mobile_money import (
    AIRTELTIGO,
    MOBILE_MONEY_PROVIDERS,
    MTN,
    VODAFONE,
    MobileMoneyRequest,
    get_mobile_money_adapter,
)
from mmda_revenue.services.offline_payments import mock_payment_status, process_card_payment, process_cash_payment
from mmda_revenue.services.payment_gateway import BaseAdapter, PaymentValidationError, UnknownProvider, UnsupportedPaymentMethod

logger = logging.getLogger(__name__)


# Display table for clients. These fees are illustrative; charged fees come from the adapters.
PAYMENT_METHODS: Dict[str, Dict[str, Any]] = {
    PaymentMethod.MOBILE_MONEY.value: {
        "providers": ["MTN", "Vodafone", "AirtelTigo"],
        "fees": {"mtn": 0.50, "vodafone": 0.30, "airteltigo": 0.40},
        "processingTime": "Instant",
        "description": "Pay using your mobile money wallet",
    },
    PaymentMethod.BANK_TRANSFER.value: {
        "banks": GHANAIAN_BANKS,
        "fees": {"ghipss": 5.00, "gcb": 3.50},
        "processingTime": "1-4 hours",
        "description": "Transfer directly to your bank account",
    },
    PaymentMethod.CARD_PAYMENT.value: {
        "cards": ["Visa", "Mastercard", "Verve"],
        "fees": "2.5%",
        "processingTime": "Instant",
        "description": "Pay using your debit or credit card",
    },
    PaymentMethod.CASH.value: {
        "locations": ["MMDA Offices", "Designated Collection Points"],
        "fees": 0,
        "processingTime": "Immediate upon verification",
        "description": "Pay in cash at our offices",
    },
}


def infer_mobile_money_provider(transaction_id: str) -> str:
    """Legacy guess of the wallet provider from a transaction id.

    Only used when the caller did not persist the provider key. Ids that match
    no rule default to MTN.
    """
    if "MTN" in transaction_id or transaction_id.startswith("M"):
        return MTN.key
    if "VOD" in transaction_id or transaction_id.startswith("V"):
        return VODAFONE.key
    if "ATL" in transaction_id or transaction_id.startswith("A"):
        return AIRTELTIGO.key
    return MTN.key


def _from_provider(result: ProviderResult, payment_method: str, provider_key: str, **extra) -> PaymentResponse:
    return PaymentResponse(
        success=result.success,
        transaction_id=result.transaction_id,
        reference=result.reference,
        status=result.status,
        message=result.message,
        payment_method=payment_method,
        provider=result.provider,
        provider_key=provider_key,
        amount=result.amount,
        fee=result.fee,
        total_amount=result.total_amount,
        estimated_settlement_time=result.estimated_settlement_time,
        **extra,
    )


class PaymentService:
    def __init__(self, config: PaymentConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        # test hook: lets callers swap the HTTP transport used by every adapter
        self.transport = transport
        self._processors = {
            PaymentMethod.MOBILE_MONEY.value: self._process_mobile_money,
            PaymentMethod.BANK_TRANSFER.value: self._process_bank_transfer,
            PaymentMethod.CARD_PAYMENT.value: self._process_card,
            PaymentMethod.CASH.value: self._process_cash,
        }

    async def process_payment(self, request: PaymentRequest) -> PaymentResponse:
        token = PAYMENT_REF_CTX.set(request.reference)
        try:
            logger.info(
                "Processing payment: %s for amount: %s, reference: %s",
                request.payment_method,
                request.amount,
                request.reference,
            )
            processor = self._processors.get(request.payment_method)
            if processor is None:
                raise UnsupportedPaymentMethod(f"Unsupported payment method: {request.payment_method}")
            response = await processor(request)
        except Exception as exc:
            logger.exception("Payment processing error: %s", exc)
            response = self._failed(request, str(exc) or "Payment processing failed")
        finally:
            PAYMENT_REF_CTX.reset(token)

        counter = PAYMENT_SUCCESS if response.success else PAYMENT_FAILURE
        counter.labels(method=response.payment_method, provider=response.provider or "unknown").inc()
        return response

    def _failed(self, request: PaymentRequest, message: str) -> PaymentResponse:
        amount = money(request.amount)
        return PaymentResponse(
            success=False,
            reference=request.reference,
            status=PaymentStatus.FAILED,
            message=message,
            payment_method=str(request.payment_method),
            amount=amount,
            total_amount=amount,
        )

    def _callback_url(self, request: PaymentRequest) -> str:
        return request.callback_url or self.config.general.callback_url

    async def _process_mobile_money(self, request: PaymentRequest) -> PaymentResponse:
        if not request.phone or not request.mobile_money_provider:
            raise PaymentValidationError(
                "Phone number and mobile money provider are required for mobile money payments"
            )

        adapter = get_mobile_money_adapter(request.mobile_money_provider, self.config, transport=self.transport)
        result = await adapter.initiate_payment(
            MobileMoneyRequest(
                phone=request.phone,
                amount=request.amount,
                reference=request.reference,
                description=request.description,
                callback_url=self._callback_url(request),
            )
        )
        return _from_provider(
            result,
            PaymentMethod.MOBILE_MONEY.value,
            adapter.key,
            metadata={"phone": request.phone, "provider": request.mobile_money_provider, **request.metadata},
        )

    async def _process_bank_transfer(self, request: PaymentRequest) -> PaymentResponse:
        if not request.beneficiary_account or not request.beneficiary_bank or not request.beneficiary_name:
            raise PaymentValidationError("Beneficiary account, bank, and name are required for bank transfers")

        adapter = get_bank_adapter(bank_provider_for_code(request.beneficiary_bank), self.config, transport=self.transport)
        result = await adapter.initiate_transfer(
            BankTransferRequest(
                amount=request.amount,
                reference=request.reference,
                description=request.description,
                beneficiary_account=request.beneficiary_account,
                beneficiary_bank=request.beneficiary_bank,
                beneficiary_name=request.beneficiary_name,
                callback_url=self._callback_url(request),
            )
        )
        return _from_provider(
            result,
            PaymentMethod.BANK_TRANSFER.value,
            adapter.key,
            metadata={
                "beneficiaryAccount": request.beneficiary_account,
                "beneficiaryBank": request.beneficiary_bank,
                "beneficiaryName": request.beneficiary_name,
                **request.metadata,
            },
        )

    async def _process_card(self, request: PaymentRequest) -> PaymentResponse:
        return await process_card_payment(request, self.config)

    async def _process_cash(self, request: PaymentRequest) -> PaymentResponse:
        return await process_cash_payment(request, self.config)

    async def check_payment_status(
        self, transaction_id: str, payment_method: str, provider: Optional[str] = None
    ) -> Optional[PaymentResponse]:
        """Poll the owning provider for a payment's status.

        ``provider`` is the adapter key persisted at initiation (``provider_key``
        on the PaymentResponse). Without it mobile money falls back to
        infer_mobile_money_provider and bank transfers to GhIPSS.

        Returns None when the status is unknown; that is not a failed payment.
        """
        try:
            logger.info("Checking payment status for %s, method: %s", transaction_id, payment_method)
            if payment_method == PaymentMethod.MOBILE_MONEY.value:
                key = provider or infer_mobile_money_provider(transaction_id)
                adapter = get_mobile_money_adapter(key, self.config, transport=self.transport)
                result = await adapter.check_payment_status(transaction_id)
                return _from_provider(result, payment_method, adapter.key)
            if payment_method == PaymentMethod.BANK_TRANSFER.value:
                adapter = get_bank_adapter(provider or GHIPSS.key, self.config, transport=self.transport)
                result = await adapter.check_transfer_status(transaction_id)
                return _from_provider(result, payment_method, adapter.key)
            if payment_method in (PaymentMethod.CARD_PAYMENT.value, PaymentMethod.CASH.value):
                return await mock_payment_status(transaction_id, payment_method, self.config)
            raise UnsupportedPaymentMethod(f"Unsupported payment method for status check: {payment_method}")
        except Exception as exc:
            logger.exception("Payment status check error: %s", exc)
            PAYMENT_STATUS_UNKNOWN.labels(method=str(payment_method)).inc()
            return None

    def adapter_for(self, provider_key: str) -> BaseAdapter:
        """Adapter for any mobile-money or bank provider key, used for webhook verification."""
        key = (provider_key or "").lower()
        if key in MOBILE_MONEY_PROVIDERS:
            return get_mobile_money_adapter(key, self.config, transport=self.transport)
        if key in BANK_PROVIDERS:
            return get_bank_adapter(key, self.config, transport=self.transport)
        raise UnknownProvider(f"Unsupported payment provider: {provider_key}")

    def get_payment_methods(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(PAYMENT_METHODS)
