import logging
import sys
from contextvars import ContextVar
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

# trace id contextvar
TRACE_ID_CTX: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
# payment reference of the payment call in flight, if any
PAYMENT_REF_CTX: ContextVar[Optional[str]] = ContextVar("payment_ref", default=None)


class ContextFilter(logging.Filter):
    def filter(self, record):
        record.trace_id = TRACE_ID_CTX.get(None)
        record.payment_ref = PAYMENT_REF_CTX.get(None)
        return True


def setup_logging(level=logging.INFO):
    root = logging.getLogger()
    handler = logging.StreamHandler(sys.stdout)
    fmt = JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(trace_id)s %(payment_ref)s")
    handler.setFormatter(fmt)
    handler.addFilter(ContextFilter())
    root.setLevel(level)
    root.handlers = []
    root.addHandler(handler)
