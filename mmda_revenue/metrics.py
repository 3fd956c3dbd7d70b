from prometheus_client import Counter, Histogram

# Payment metrics
PAYMENT_SUCCESS = Counter("mmda_payments_success_total", "Payments accepted by the payment layer", ["method", "provider"])
PAYMENT_FAILURE = Counter("mmda_payments_failure_total", "Payments rejected or failed", ["method", "provider"])
PAYMENT_STATUS_UNKNOWN = Counter(
    "mmda_payment_status_unknown_total", "Status checks that could not determine a status", ["method"]
)

# Outbound provider calls
PROVIDER_CALL_LATENCY = Histogram(
    "mmda_provider_call_seconds", "Latency of outbound payment provider calls", ["provider", "operation"]
)
PROVIDER_CALL_ERRORS = Counter(
    "mmda_provider_call_errors_total", "Outbound provider calls that failed", ["provider", "operation"]
)

# Provider webhooks
WEBHOOK_EVENTS = Counter("mmda_payment_webhooks_total", "Provider webhook events received", ["provider", "result"])
