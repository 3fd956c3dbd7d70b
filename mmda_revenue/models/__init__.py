from .models import *

__all__ = [
    "Base",
    "User",
    "Payment",
    "AuditLog",
]
