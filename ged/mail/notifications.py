"""
GED Notification Router — Single mail responsible + per-user mail notifications.

Invariants:
- At most one responsible row exists: the mail_responsible table is keyed by
  a unique slot and written with insert-or-update, never insert-many.
- A notification is created once, when the mail is created, for whoever is
  responsible at that moment. Changing the responsible later does not move
  existing notifications.
- mark_as_read() is idempotent: read_at keeps the first read time.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ged.db.base import live_filter
from ged.db.models import RESPONSIBLE_SLOT, MailNotification, MailResponsible, User
from ged.db.session import Database
from ged.engine.context import AUTHORITY_ADMIN, ActingUser
from ged.engine.errors import GedValidationError
from ged.engine.logging import AsyncLogQueue, LogEntry, emit, log_notification_event
from ged.mail.models import Mail, MailNotificationView, ResponsibleUser
from ged.security.permissions import require_authority

logger = logging.getLogger("ged.mail.notifications")


class NotificationRouter:
    """Routes every new mail to the current responsible user."""

    def __init__(
        self,
        db: Database,
        audit: Optional[AsyncLogQueue] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._db = db
        self._audit = audit
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -------------------------------------------------------------------
    # Responsible administration
    # -------------------------------------------------------------------

    def set_responsible(self, user_id: int, acting_user: ActingUser) -> bool:
        """
        Make user_id the mail responsible, replacing any previous one.

        Raises:
            GedPermissionError: authority level != 0.
            GedValidationError: unknown or inactive user.
        """
        require_authority(
            acting_user, AUTHORITY_ADMIN, "set_mail_responsible", "notifications", self._audit,
            entity="mail_responsible",
        )
        with self._db.session_scope() as session:
            user = session.get(User, user_id)
            if user is None or not user.is_active:
                raise GedValidationError(
                    f"User {user_id} does not exist or is inactive",
                    entity="user",
                    entity_id=user_id,
                    field="user_id",
                )
            self._upsert(session, user_id)
            name = user.full_name

        logger.info(f"Mail responsible set to {name} (user {user_id})")
        emit(self._audit, log_notification_event(
            "responsible_set",
            f"Mail responsible set to {name}",
            user_id=acting_user.user_id,
        ))
        return True

    def get_responsible(self) -> Optional[ResponsibleUser]:
        with self._db.session_scope() as session:
            user = self._current_responsible(session)
            return ResponsibleUser.model_validate(user) if user else None

    def remove_responsible(self, acting_user: ActingUser) -> bool:
        """Clear the responsible. False when none was set."""
        require_authority(
            acting_user, AUTHORITY_ADMIN, "remove_mail_responsible", "notifications", self._audit,
            entity="mail_responsible",
        )
        with self._db.session_scope() as session:
            result = session.execute(
                delete(MailResponsible).where(MailResponsible.slot == RESPONSIBLE_SLOT)
            )
            removed = result.rowcount > 0

        if removed:
            logger.info("Mail responsible removed")
            emit(self._audit, log_notification_event(
                "responsible_removed", "Mail responsible removed",
                user_id=acting_user.user_id,
            ))
        return removed

    def list_candidates(self) -> List[ResponsibleUser]:
        """Active users, by name."""
        stmt = (
            select(User)
            .where(live_filter(User))
            .order_by(User.last_name, User.first_name)
        )
        with self._db.session_scope() as session:
            return [ResponsibleUser.model_validate(u) for u in session.scalars(stmt)]

    # -------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------

    def notify_new_mail(
        self,
        mail: Mail,
        session: Optional[Session] = None,
        deferred: Optional[List[LogEntry]] = None,
    ) -> bool:
        """
        Bind a new mail to the current responsible.

        With ``session``, the row is written inside the caller's transaction.
        With ``deferred``, audit entries are appended to it instead of being
        emitted; the caller emits them once its transaction has committed.

        Returns:
            False when no responsible is set (a warning, not an error).
        """
        entries: List[LogEntry] = []
        if session is not None:
            notified = self._notify(session, mail, entries)
        else:
            with self._db.session_scope() as own:
                notified = self._notify(own, mail, entries)

        if deferred is not None:
            deferred.extend(entries)
        else:
            for entry in entries:
                emit(self._audit, entry)
        return notified

    def _notify(self, session: Session, mail: Mail, entries: List[LogEntry]) -> bool:
        user = self._current_responsible(session)
        if user is None:
            logger.warning(f"No mail responsible set, {mail.code} will not be notified")
            entries.append(log_notification_event(
                "notification_skipped",
                f"No responsible for mail {mail.code}",
                mail_id=mail.id,
                level="WARNING",
            ))
            return False

        try:
            with session.begin_nested():
                session.add(MailNotification(
                    mail_id=mail.id,
                    user_id=user.id,
                    is_read=False,
                    notified_at=self._clock(),
                ))
                session.flush()
        except IntegrityError:
            logger.info(f"Mail {mail.code} already notified to user {user.id}")
            return True

        logger.info(f"Mail {mail.code} notified to {user.full_name}")
        entries.append(log_notification_event(
            "mail_notified",
            f"Mail {mail.code} notified to {user.full_name}",
            user_id=user.id,
            mail_id=mail.id,
        ))
        return True

    # -------------------------------------------------------------------
    # Mailbox
    # -------------------------------------------------------------------

    def get_notifications(self, user_id: int, unread_only: bool = False) -> List[MailNotificationView]:
        """Newest first."""
        stmt = select(MailNotification).where(MailNotification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(MailNotification.is_read.is_(False))
        stmt = stmt.order_by(MailNotification.notified_at.desc(), MailNotification.id.desc())
        with self._db.session_scope() as session:
            return [MailNotificationView.from_row(r) for r in session.scalars(stmt).unique()]

    def count_unread(self, user_id: int) -> int:
        stmt = select(func.count(MailNotification.id)).where(
            MailNotification.user_id == user_id,
            MailNotification.is_read.is_(False),
        )
        with self._db.session_scope() as session:
            return session.execute(stmt).scalar() or 0

    def mark_as_read(self, mail_id: int, user_id: int) -> bool:
        """
        Mark one notification read. Repeating the call is a no-op success.

        Returns:
            False only when no such notification exists.
        """
        with self._db.session_scope() as session:
            result = session.execute(
                update(MailNotification)
                .where(
                    MailNotification.mail_id == mail_id,
                    MailNotification.user_id == user_id,
                    MailNotification.is_read.is_(False),
                )
                .values(is_read=True, read_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                flipped = True
            else:
                exists = session.execute(
                    select(MailNotification.id).where(
                        MailNotification.mail_id == mail_id,
                        MailNotification.user_id == user_id,
                    )
                ).first()
                if exists is None:
                    return False
                flipped = False

        if flipped:
            emit(self._audit, log_notification_event(
                "notification_read", f"Mail {mail_id} read",
                user_id=user_id, mail_id=mail_id,
            ))
        return True

    def mark_all_as_read(self, user_id: int) -> int:
        """Returns how many notifications were actually flipped."""
        with self._db.session_scope() as session:
            result = session.execute(
                update(MailNotification)
                .where(
                    MailNotification.user_id == user_id,
                    MailNotification.is_read.is_(False),
                )
                .values(is_read=True, read_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount or 0

        if count:
            emit(self._audit, log_notification_event(
                "notifications_read_all", f"{count} notification(s) marked read",
                user_id=user_id,
            ))
        return count

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    @staticmethod
    def _current_responsible(session: Session) -> Optional[User]:
        stmt = (
            select(User)
            .join(MailResponsible, MailResponsible.user_id == User.id)
            .where(
                MailResponsible.slot == RESPONSIBLE_SLOT,
                MailResponsible.is_active.is_(True),
                live_filter(User),
            )
        )
        return session.scalars(stmt).first()

    def _upsert(self, session: Session, user_id: int) -> None:
        now = self._clock()
        row = session.scalars(
            select(MailResponsible).where(MailResponsible.slot == RESPONSIBLE_SLOT)
        ).first()
        if row is None:
            try:
                with session.begin_nested():
                    session.add(MailResponsible(
                        slot=RESPONSIBLE_SLOT, user_id=user_id, is_active=True, updated_at=now,
                    ))
                    session.flush()
                return
            except IntegrityError:
                # Inserted concurrently: fall through to the update
                row = session.scalars(
                    select(MailResponsible).where(MailResponsible.slot == RESPONSIBLE_SLOT)
                ).one()
        row.user_id = user_id
        row.is_active = True
        row.updated_at = now
