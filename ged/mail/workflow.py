"""
GED Mail Workflow — Mail ("courrier") lifecycle bound one-to-one to a document.

Lifecycle:
    create()         status NEW, code COU-<YEAR>-<NNNN>, responsible notified
    update_status()  NEW → IN_PROGRESS → PROCESSED (see ged.mail.models)
    archive()        PROCESSED → ARCHIVED, document filed in the destination

create() writes the notification inside a SAVEPOINT of the mail's own
transaction: a committed mail always carries its notification when a
responsible was set, and a failed notification is logged without undoing the
mail.

archive() is one transaction: the document update, the mail update and the
activity row are committed together or not at all.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Union

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ged.db.models import Document as DocumentRow
from ged.db.models import Folder as FolderRow
from ged.db.models import Mail as MailRow
from ged.db.session import Database
from ged.documents.codes import CodeGenerator
from ged.documents.models import ActivityType, DocumentStatus
from ged.documents.service import record_activity
from ged.engine.config import MailConfig
from ged.engine.context import ActingUser
from ged.engine.errors import (
    GedConflictError,
    GedError,
    GedNotFoundError,
    GedValidationError,
)
from ged.engine.logging import AsyncLogQueue, LogEntry, emit, log_mail_event
from ged.mail.models import Mail, MailPriority, MailStatus, validate_transition
from ged.mail.notifications import NotificationRouter

logger = logging.getLogger("ged.mail.workflow")


class MailWorkflow:
    """Mail service. Collaborators are injected at construction."""

    def __init__(
        self,
        db: Database,
        notifications: NotificationRouter,
        codes: Optional[CodeGenerator] = None,
        config: Optional[MailConfig] = None,
        audit: Optional[AsyncLogQueue] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._db = db
        self._notifications = notifications
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._codes = codes or CodeGenerator(clock=self._clock)
        self._config = config or MailConfig()
        self._audit = audit

    # -------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------

    def create(self, mail: Mail, acting_user: ActingUser) -> Mail:
        """
        Create a mail record for an existing document.

        Raises:
            GedValidationError: empty subject, missing type, unknown or
                deleted document.
            GedConflictError: the document already backs a mail, or no
                free code could be allocated.
        """
        subject = (mail.subject or "").strip()
        if not subject:
            raise GedValidationError("Mail subject is required", entity="mail", field="subject")
        if mail.mail_type is None:
            raise GedValidationError("Mail type is required", entity="mail", field="mail_type")
        if mail.document_id is None:
            raise GedValidationError("A mail needs a document", entity="mail", field="document_id")

        now = self._clock()
        deferred: List[LogEntry] = []
        with self._db.session_scope() as session:
            document = session.get(DocumentRow, mail.document_id)
            if document is None or document.status == DocumentStatus.DELETED.value:
                raise GedValidationError(
                    f"Document {mail.document_id} does not exist",
                    entity="document",
                    entity_id=mail.document_id,
                    field="document_id",
                )
            bound = session.scalars(
                select(MailRow.code).where(MailRow.document_id == mail.document_id)
            ).first()
            if bound:
                raise GedConflictError(
                    f"Document {document.code} already backs mail {bound}",
                    entity="mail",
                    field="document_id",
                    document_id=mail.document_id,
                    mail_code=bound,
                )

            row = MailRow(
                document_id=mail.document_id,
                mail_type=mail.mail_type.value,
                subject=subject,
                sender=mail.sender,
                recipient=mail.recipient,
                reference=mail.reference,
                mail_date=mail.mail_date or now.date(),
                priority=(mail.priority or MailPriority.NORMAL).value,
                observations=mail.observations,
                confidential=mail.confidential,
                status=MailStatus.NEW.value,
                created_at=now,
                updated_at=now,
                created_by=acting_user.user_id,
                updated_by=acting_user.user_id,
            )
            self._codes.allocate(session, row, prefix=self._codes.mail_prefix, year=now.year)
            created = Mail.from_row(row)
            self._notify(session, created, deferred)

        logger.info(f"Mail created: {created.code} for document {created.document_code}")
        emit(self._audit, log_mail_event(
            "mail_created",
            f"Mail {created.code} '{created.subject}' created",
            user_id=acting_user.user_id,
            mail_id=created.id,
            mail_code=created.code,
            status=created.status.value,
        ))
        for entry in deferred:
            emit(self._audit, entry)
        return created

    def _notify(self, session: Session, mail: Mail, deferred: List[LogEntry]) -> bool:
        entries: List[LogEntry] = []
        try:
            with session.begin_nested():
                notified = self._notifications.notify_new_mail(mail, session=session, deferred=entries)
        except (GedError, SQLAlchemyError) as e:
            logger.warning(f"Notification for mail {mail.code} failed: {e}")
            return False
        deferred.extend(entries)
        return notified

    # -------------------------------------------------------------------
    # State changes
    # -------------------------------------------------------------------

    def update_status(
        self,
        mail_id: int,
        new_status: Union[MailStatus, str],
        acting_user: ActingUser,
    ) -> bool:
        """
        Move a mail along NEW → IN_PROGRESS → PROCESSED.

        With ``mail.enforce_transitions: false`` any status except ARCHIVED
        may be written. Returns False when the mail already has new_status.

        Raises:
            GedValidationError: unknown status value.
            GedNotFoundError: unknown mail.
            GedConflictError: transition not allowed.
        """
        try:
            new_status = MailStatus(new_status)
        except ValueError as e:
            raise GedValidationError(
                f"Unknown mail status {new_status!r}",
                entity="mail", entity_id=mail_id, field="status",
            ) from e

        with self._db.session_scope() as session:
            row = self._get(session, mail_id)
            current = MailStatus(row.status)
            validate_transition(current, new_status, self._config.enforce_transitions, mail_id)
            if current == new_status:
                return False
            row.status = new_status.value
            row.updated_by = acting_user.user_id
            row.updated_at = self._clock()
            code = row.code

        emit(self._audit, log_mail_event(
            "mail_status_changed",
            f"Mail {code}: {current.value} -> {new_status.value}",
            user_id=acting_user.user_id,
            mail_id=mail_id,
            mail_code=code,
            status=new_status.value,
        ))
        return True

    def archive(self, mail_id: int, destination_folder_id: Optional[int], acting_user: ActingUser) -> bool:
        """
        Archive a PROCESSED mail and file its document in the destination folder.

        Raises:
            GedValidationError: missing or unknown destination folder.
            GedNotFoundError: unknown mail.
            GedConflictError: mail is not PROCESSED.
        """
        if not destination_folder_id or destination_folder_id <= 0:
            raise GedValidationError(
                "A destination folder is required to archive",
                entity="mail", entity_id=mail_id, field="destination_folder_id",
            )

        now = self._clock()
        with self._db.session_scope() as session:
            row = self._get(session, mail_id)
            if row.status != MailStatus.PROCESSED.value:
                raise GedConflictError(
                    f"Mail {row.code} must be processed to archive",
                    entity="mail",
                    entity_id=mail_id,
                    field="status",
                    current_status=row.status,
                )
            folder = session.get(FolderRow, destination_folder_id)
            if folder is None or not folder.is_active:
                raise GedValidationError(
                    f"Folder {destination_folder_id} does not exist",
                    entity="folder",
                    entity_id=destination_folder_id,
                    field="destination_folder_id",
                )

            self._archive_document(session, row.document_id, folder.id, now, acting_user)
            self._archive_mail(session, row, now, acting_user)
            record_activity(
                session, row.document_id, ActivityType.ARCHIVAL, acting_user.user_id,
                f"Archived with mail {row.code} in {folder.full_path}", at=now,
            )
            session.flush()
            code = row.code

        logger.info(f"Mail archived: {code} -> folder {destination_folder_id}")
        emit(self._audit, log_mail_event(
            "mail_archived",
            f"Mail {code} archived in folder {destination_folder_id}",
            user_id=acting_user.user_id,
            mail_id=mail_id,
            mail_code=code,
            status=MailStatus.ARCHIVED.value,
        ))
        return True

    def _archive_document(
        self,
        session: Session,
        document_id: int,
        folder_id: int,
        now: datetime,
        acting_user: ActingUser,
    ) -> None:
        document = session.get(DocumentRow, document_id)
        document.folder_id = folder_id
        document.is_archived = True
        document.archived_at = now
        document.status = DocumentStatus.ARCHIVED.value
        document.updated_by = acting_user.user_id
        document.updated_at = now
        session.flush()

    def _archive_mail(self, session: Session, row: MailRow, now: datetime, acting_user: ActingUser) -> None:
        row.status = MailStatus.ARCHIVED.value
        row.archived_at = now
        row.updated_by = acting_user.user_id
        row.updated_at = now
        session.flush()

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def get_by_id(self, mail_id: int) -> Optional[Mail]:
        with self._db.session_scope() as session:
            row = session.get(MailRow, mail_id)
            return Mail.from_row(row) if row else None

    def get_for_document(self, document_id: int) -> Optional[Mail]:
        stmt = select(MailRow).where(MailRow.document_id == document_id)
        with self._db.session_scope() as session:
            row = session.scalars(stmt).first()
            return Mail.from_row(row) if row else None

    def get_all(self) -> List[Mail]:
        return self._fetch(select(MailRow).order_by(MailRow.created_at.desc(), MailRow.id.desc()))

    def get_by_status(self, status: Union[MailStatus, str]) -> List[Mail]:
        status = MailStatus(status)
        stmt = (
            select(MailRow)
            .where(MailRow.status == status.value)
            .order_by(MailRow.created_at.desc(), MailRow.id.desc())
        )
        return self._fetch(stmt)

    def get_ready_for_archival(self) -> List[Mail]:
        return self.get_by_status(MailStatus.PROCESSED)

    def search(self, term: str) -> List[Mail]:
        """Case-insensitive substring over code, subject, sender, recipient."""
        term = (term or "").strip()
        if not term:
            return self.get_all()
        pattern = f"%{term}%"
        stmt = (
            select(MailRow)
            .where(or_(
                MailRow.code.ilike(pattern),
                MailRow.subject.ilike(pattern),
                MailRow.sender.ilike(pattern),
                MailRow.recipient.ilike(pattern),
            ))
            .order_by(MailRow.created_at.desc(), MailRow.id.desc())
        )
        return self._fetch(stmt)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    @staticmethod
    def _get(session: Session, mail_id: int) -> MailRow:
        row = session.get(MailRow, mail_id)
        if row is None:
            raise GedNotFoundError(f"Mail {mail_id} not found", entity="mail", entity_id=mail_id)
        return row

    def _fetch(self, stmt) -> List[Mail]:
        with self._db.session_scope() as session:
            return [Mail.from_row(r) for r in session.scalars(stmt).unique()]
