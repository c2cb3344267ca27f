from uuid import UUID

from sqlalchemy.orm import Session

from ledgerbook.models.audit import AuditLog


def record(
    db: Session,
    budget_id: UUID,
    action: str,
    entity_type: str,
    entity_id: UUID | None,
    diff: dict,
    user_id: UUID | None = None,
) -> None:
    db.add(
        AuditLog(
            budget_id=budget_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            diff_json=diff,
        )
    )
