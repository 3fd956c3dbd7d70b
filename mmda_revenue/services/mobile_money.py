import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx

from mmda_revenue.config import PaymentConfig
from mmda_revenue.schemas.payment import PaymentStatus, ProviderResult, money
from mmda_revenue.services.payment_gateway import (
    CURRENCY,
    BaseAdapter,
    ProviderSpec,
    UnknownProvider,
    error_message,
    status_table,
    text,
)

logger = logging.getLogger(__name__)


MTN = ProviderSpec(
    key="mtn",
    name="MTN Mobile Money",
    resource="collections",
    status_map=status_table("SUCCESSFUL"),
)
VODAFONE = ProviderSpec(
    key="vodafone",
    name="Vodafone Cash",
    resource="payments",
    status_map=status_table("SUCCESS"),
    account_field="msisdn",
)
AIRTELTIGO = ProviderSpec(
    key="airteltigo",
    name="AirtelTigo Money",
    resource="payments",
    status_map=status_table("SUCCESSFUL"),
)

MOBILE_MONEY_PROVIDERS = {spec.key: spec for spec in (MTN, VODAFONE, AIRTELTIGO)}


@dataclass
class MobileMoneyRequest:
    phone: str
    amount: Decimal
    reference: str
    description: str
    callback_url: str


class MobileMoneyAdapter(BaseAdapter):
    async def initiate_payment(self, request: MobileMoneyRequest) -> ProviderResult:
        amount = money(request.amount)
        logger.info("Initiating %s payment for %s, amount: %s", self.provider_name, request.phone, amount)
        payload = {
            self.spec.account_field: request.phone,
            "amount": float(amount),
            "reference": request.reference,
            "description": request.description,
            "callback_url": request.callback_url,
            "currency": CURRENCY,
        }
        try:
            data = await self._post(payload)
            fee = money(data.get("fee"))
            result = ProviderResult(
                success=True,
                transaction_id=text(data.get("transaction_id")),
                reference=text(data.get("reference")) or request.reference,
                status=PaymentStatus.PENDING,
                message="Payment initiated successfully",
                provider=self.provider_name,
                amount=amount,
                fee=fee,
                total_amount=amount + fee,
            )
        except Exception as exc:
            logger.error("%s payment initiation failed: %s", self.provider_name, exc)
            return ProviderResult(
                success=False,
                reference=request.reference,
                status=PaymentStatus.FAILED,
                message=error_message(exc, "Payment initiation failed"),
                provider=self.provider_name,
                amount=amount,
                fee=Decimal("0.00"),
                total_amount=amount,
            )

        logger.info("%s payment initiated successfully: %s", self.provider_name, result.transaction_id)
        return result

    async def check_payment_status(self, transaction_id: str) -> ProviderResult:
        logger.info("Checking %s payment status for transaction: %s", self.provider_name, transaction_id)
        try:
            return self._status_result(transaction_id, await self._get(transaction_id))
        except Exception as exc:
            logger.error("%s status check failed: %s", self.provider_name, exc)
            return self._failed_status(transaction_id)


def get_mobile_money_adapter(
    provider: Optional[str],
    config: PaymentConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> MobileMoneyAdapter:
    spec = MOBILE_MONEY_PROVIDERS.get((provider or "").lower())
    if spec is None:
        raise UnknownProvider(f"Unsupported mobile money provider: {provider}")
    return MobileMoneyAdapter(spec, config.provider(spec.key), timeout=config.timeout_seconds, transport=transport)
