from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mmda_revenue.models.models import AuditLog


async def log_audit(
    db: AsyncSession,
    actor_id: Optional[int],
    action: str,
    object_type: Optional[str] = None,
    object_id: Optional[str] = None,
    detail: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> AuditLog:
    audit = AuditLog(
        actor_id=actor_id,
        action=action,
        object_type=object_type,
        object_id=object_id,
        detail=detail,
        ip_address=ip_address,
    )
    db.add(audit)
    # do not commit here; caller should include in transaction context
    return audit
