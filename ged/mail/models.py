"""
GED Mail DTOs — Mail ("courrier") records, their state machine and the
notification views.

State machine:
    NEW → IN_PROGRESS → PROCESSED → ARCHIVED

ARCHIVED is terminal and only reachable through MailWorkflow.archive(),
which also files the backing document.
"""

from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict

from ged.engine.errors import GedConflictError


class MailType(str, enum.Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    INTERNAL = "internal"


class MailPriority(str, enum.Enum):
    NORMAL = "normal"
    URGENT = "urgent"
    VERY_URGENT = "very_urgent"


class MailStatus(str, enum.Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    PROCESSED = "processed"
    ARCHIVED = "archived"


# Transitions accepted by update_status(); ARCHIVED goes through archive()
ALLOWED_TRANSITIONS: Dict[MailStatus, FrozenSet[MailStatus]] = {
    MailStatus.NEW: frozenset({MailStatus.IN_PROGRESS}),
    MailStatus.IN_PROGRESS: frozenset({MailStatus.PROCESSED}),
    MailStatus.PROCESSED: frozenset(),
    MailStatus.ARCHIVED: frozenset(),
}


def can_transition(current: MailStatus, new: MailStatus, enforce: bool = True) -> bool:
    """
    Whether update_status() may move a mail from current to new.

    Setting the current status again is a no-op and always allowed. Without
    enforcement any status except ARCHIVED may be written, but an archived
    mail stays archived.
    """
    current, new = MailStatus(current), MailStatus(new)
    if current == new:
        return True
    if new == MailStatus.ARCHIVED or current == MailStatus.ARCHIVED:
        return False
    if not enforce:
        return True
    return new in ALLOWED_TRANSITIONS[current]


def validate_transition(
    current: MailStatus,
    new: MailStatus,
    enforce: bool = True,
    mail_id: Optional[int] = None,
) -> None:
    """Raise GedConflictError when can_transition() says no."""
    if can_transition(current, new, enforce):
        return
    if MailStatus(new) == MailStatus.ARCHIVED:
        message = "Use archive() to archive a mail"
    else:
        message = f"Cannot move mail from {MailStatus(current).value} to {MailStatus(new).value}"
    raise GedConflictError(
        message,
        entity="mail",
        entity_id=mail_id,
        field="status",
        current_status=MailStatus(current).value,
        requested_status=MailStatus(new).value,
    )


# ---------------------------------------------------------------------------
# Mail
# ---------------------------------------------------------------------------

class Mail(BaseModel):
    """A mail record. Exactly one document backs every mail."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    code: Optional[str] = None
    document_id: Optional[int] = None
    mail_type: Optional[MailType] = None
    subject: str = ""
    sender: Optional[str] = None
    recipient: Optional[str] = None
    reference: Optional[str] = None
    mail_date: Optional[date] = None
    priority: MailPriority = MailPriority.NORMAL
    observations: Optional[str] = None
    confidential: bool = False
    status: MailStatus = MailStatus.NEW
    archived_at: Optional[datetime] = None

    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Read-side display fields
    document_code: Optional[str] = None
    document_title: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "Mail":
        mail = cls.model_validate(row)
        if row.document is not None:
            mail.document_code = row.document.code
            mail.document_title = row.document.title
        return mail

    @property
    def is_archived(self) -> bool:
        return self.status == MailStatus.ARCHIVED


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class ResponsibleUser(BaseModel):
    """A user eligible as, or designated as, the mail responsible."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    authority_level: int
    role: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class MailNotificationView(BaseModel):
    """A notification joined with the mail it points to."""

    mail_id: int
    user_id: int
    mail_code: str
    subject: str
    sender: Optional[str] = None
    mail_type: MailType
    priority: MailPriority = MailPriority.NORMAL
    mail_status: MailStatus = MailStatus.NEW
    mail_date: Optional[date] = None
    is_read: bool = False
    notified_at: Optional[datetime] = None
    read_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "MailNotificationView":
        mail = row.mail
        return cls(
            mail_id=row.mail_id,
            user_id=row.user_id,
            mail_code=mail.code,
            subject=mail.subject,
            sender=mail.sender,
            mail_type=mail.mail_type,
            priority=mail.priority,
            mail_status=mail.status,
            mail_date=mail.mail_date,
            is_read=row.is_read,
            notified_at=row.notified_at,
            read_at=row.read_at,
        )

    @property
    def is_urgent(self) -> bool:
        return self.priority != MailPriority.NORMAL
