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

DEFAULT_SETTLEMENT_TIME = "24-48 hours"
GCB_BANK_CODE = "002"

GHIPSS = ProviderSpec(
    key="ghipss",
    name="GhIPSS",
    resource="transfers",
    status_map=status_table("COMPLETED"),
)
GCB = ProviderSpec(
    key="gcb",
    name="GCB Bank",
    resource="transfers",
    status_map=status_table("COMPLETED"),
)

BANK_PROVIDERS = {spec.key: spec for spec in (GHIPSS, GCB)}

# Bank codes for Ghanaian banks
GHANAIAN_BANKS = {
    "001": "Bank of Ghana",
    "002": "GCB Bank",
    "003": "Agricultural Development Bank",
    "004": "National Investment Bank",
    "005": "Standard Chartered Bank Ghana",
    "006": "Barclays Bank Ghana",
    "007": "Ecobank Ghana",
    "008": "Fidelity Bank Ghana",
    "009": "Zenith Bank Ghana",
    "010": "Access Bank Ghana",
    "011": "Stanbic Bank Ghana",
    "012": "Cal Bank",
    "013": "Bank of Africa Ghana",
    "014": "First National Bank Ghana",
    "015": "Republic Bank Ghana",
    "016": "HFC Bank",
    "017": "Prudential Bank",
    "018": "OmniBank",
    "019": "UniBank",
    "020": "UT Bank",
    "021": "Capital Bank",
    "022": "Sovereign Bank",
    "023": "Energy Bank",
    "024": "Construction Bank",
    "025": "Premium Bank",
    "026": "Heritage Bank",
    "027": "First Atlantic Bank",
    "028": "Guaranty Trust Bank Ghana",
    "029": "UBA Ghana",
    "030": "Bank of Baroda Ghana",
}


@dataclass
class BankTransferRequest:
    amount: Decimal
    reference: str
    description: str
    beneficiary_account: str
    beneficiary_bank: str
    beneficiary_name: str
    callback_url: str


def bank_provider_for_code(bank_code: str) -> str:
    """GCB transfers go through GCB's own API, every other bank through GhIPSS."""
    if bank_code == GCB_BANK_CODE:
        return GCB.key
    return GHIPSS.key


class BankTransferAdapter(BaseAdapter):
    async def initiate_transfer(self, request: BankTransferRequest) -> ProviderResult:
        amount = money(request.amount)
        logger.info("Initiating %s bank transfer for %s, amount: %s", self.provider_name, request.beneficiary_account, amount)
        payload = {
            "amount": float(amount),
            "reference": request.reference,
            "description": request.description,
            "beneficiary_account": request.beneficiary_account,
            "beneficiary_bank": request.beneficiary_bank,
            "beneficiary_name": request.beneficiary_name,
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
                message="Bank transfer initiated successfully",
                provider=self.provider_name,
                amount=amount,
                fee=fee,
                total_amount=amount + fee,
                estimated_settlement_time=text(data.get("estimated_settlement_time")) or DEFAULT_SETTLEMENT_TIME,
            )
        except Exception as exc:
            logger.error("%s transfer initiation failed: %s", self.provider_name, exc)
            return ProviderResult(
                success=False,
                reference=request.reference,
                status=PaymentStatus.FAILED,
                message=error_message(exc, "Transfer initiation failed"),
                provider=self.provider_name,
                amount=amount,
                fee=Decimal("0.00"),
                total_amount=amount,
            )

        logger.info("%s transfer initiated successfully: %s", self.provider_name, result.transaction_id)
        return result

    async def check_transfer_status(self, transaction_id: str) -> ProviderResult:
        logger.info("Checking %s transfer status for transaction: %s", self.provider_name, transaction_id)
        try:
            data = await self._get(transaction_id)
            return self._status_result(
                transaction_id,
                data,
                estimated_settlement_time=text(data.get("estimated_settlement_time")),
            )
        except Exception as exc:
            logger.error("%s status check failed: %s", self.provider_name, exc)
            return self._failed_status(transaction_id)


def get_bank_adapter(
    provider: Optional[str],
    config: PaymentConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BankTransferAdapter:
    spec = BANK_PROVIDERS.get((provider or "").lower())
    if spec is None:
        raise UnknownProvider(f"Unsupported bank transfer provider: {provider}")
    return BankTransferAdapter(spec, config.provider(spec.key), timeout=config.timeout_seconds, transport=transport)
