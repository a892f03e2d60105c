"""
GED Document Store — Document metadata lifecycle tied to folders and files.

Handles:
- Creation from a source file: validation, code allocation, hash, local
  cache + durable copy, initial version row, activity row
- Metadata update, move, soft delete / restore (status 'deleted'), purge
- Listing and pattern search (soft-deleted documents never listed)
- Favorites and the per-document activity history

Codes:
    With a folder:    <FOLDER_INITIALS>-<YEAR>-<NNNN>  (e.g. OPS-2025-0001)
    Without a folder: DOC-<epoch millis>
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Union

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from ged.db.base import live_filter
from ged.db.models import Document as DocumentRow
from ged.db.models import DocumentActivity, DocumentFavorite, DocumentVersion
from ged.db.models import Folder as FolderRow
from ged.db.models import Mail as MailRow
from ged.db.session import Database
from ged.documents.codes import CodeGenerator
from ged.documents.models import ActivityType, Document, DocumentActivityView, DocumentStatus
from ged.documents.storage import FileStorage
from ged.engine.context import AUTHORITY_ADMIN, ActingUser
from ged.engine.errors import (
    GedConflictError,
    GedNotFoundError,
    GedStorageError,
    GedValidationError,
)
from ged.engine.logging import AsyncLogQueue, emit, log_document_event
from ged.security.permissions import require_authority

logger = logging.getLogger("ged.documents.service")

DEFAULT_RECENT_LIMIT = 10


def record_activity(
    session: Session,
    document_id: int,
    activity_type: Union[ActivityType, str],
    user_id: Optional[int],
    description: str,
    at: Optional[datetime] = None,
) -> DocumentActivity:
    """Append one row to a document's history (inside the caller's transaction)."""
    row = DocumentActivity(
        document_id=document_id,
        user_id=user_id,
        activity_type=getattr(activity_type, "value", activity_type),
        description=description,
    )
    if at is not None:
        row.created_at = at
    session.add(row)
    return row


class DocumentStore:
    """
    Document service. One instance per process; database, storage, code
    generator and audit queue are injected.
    """

    def __init__(
        self,
        db: Database,
        storage: FileStorage,
        codes: Optional[CodeGenerator] = None,
        audit: Optional[AsyncLogQueue] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._db = db
        self._storage = storage
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._codes = codes or CodeGenerator(clock=self._clock)
        self._audit = audit

    # -------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------

    def create(
        self,
        document: Document,
        source_file: Union[str, Path],
        acting_user: ActingUser,
    ) -> Document:
        """
        Create a document from an existing source file.

        1. Validate title, source file and folder (nothing persisted yet)
        2. Allocate the code and insert the row (SAVEPOINT + retry)
        3. Hash, cache locally, store on the server under the code
        4. Add version 1 and a 'creation' activity
        Any failure rolls the insert back and removes the files copied so far.

        Raises:
            GedValidationError: empty title, missing source file, unknown folder.
            GedStorageError: file copy or database failure.
        """
        title = (document.title or "").strip()
        if not title:
            raise GedValidationError("Document title is required", entity="document", field="title")
        source = self._storage.check_source(source_file)
        now = self._clock()

        written: List[str] = []
        try:
            with self._db.session_scope() as session:
                prefix = None
                if document.folder_id is not None:
                    self._require_active_folder(session, document.folder_id)
                    prefix = self._codes.document_prefix(session, document.folder_id)

                file_hash = self._storage.compute_hash(source)
                extension = self._storage.extension_of(source)
                self._warn_duplicates(session, file_hash, title)

                row = DocumentRow(
                    folder_id=document.folder_id,
                    title=title,
                    document_type=document.document_type,
                    file_size=source.stat().st_size,
                    extension=extension,
                    mime_type=document.mime_type or self._storage.detect_mime_type(source),
                    description=document.description,
                    keywords=document.keywords,
                    file_hash=file_hash,
                    confidential=document.confidential,
                    status=DocumentStatus.ACTIVE.value,
                    created_at=now,
                    updated_at=now,
                    created_by=acting_user.user_id,
                    updated_by=acting_user.user_id,
                )
                self._codes.allocate(session, row, prefix=prefix, year=now.year)

                cached = self._storage.cache_local(source, row.code, extension)
                written.append(str(cached))
                row.server_path = self._storage.store(source, row.code, extension, now.year)
                if row.server_path:
                    written.append(row.server_path)
                row.file_path = str(cached)

                session.add(DocumentVersion(
                    document_id=row.id,
                    version=1,
                    file_path=row.server_path or row.file_path,
                    file_size=row.file_size,
                    file_hash=file_hash,
                    uploaded_by=acting_user.user_id,
                    uploaded_at=now,
                    change_note="Initial upload",
                ))
                record_activity(
                    session, row.id, ActivityType.CREATION, acting_user.user_id,
                    f"Document created: {title}", at=now,
                )
                session.flush()
                created = Document.from_row(row)
        except Exception:
            self._discard(written)
            raise

        logger.info(f"Document created: {created.code} ({created.file_size} bytes)")
        emit(self._audit, log_document_event(
            "document_created",
            f"Document {created.code} '{created.title}' created",
            user_id=acting_user.user_id,
            document_id=created.id,
            document_code=created.code,
            folder_id=created.folder_id,
        ))
        return created

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------

    def update(self, document: Document, acting_user: ActingUser) -> bool:
        """Update metadata only: title, type, description, keywords, confidential."""
        title = (document.title or "").strip()
        if not title:
            raise GedValidationError(
                "Document title is required", entity="document", entity_id=document.id, field="title",
            )
        with self._db.session_scope() as session:
            row = self._get_live(session, document.id)
            row.title = title
            row.document_type = document.document_type
            row.description = document.description
            row.keywords = document.keywords
            row.confidential = document.confidential
            row.updated_by = acting_user.user_id
            row.updated_at = self._clock()
            record_activity(
                session, row.id, ActivityType.MODIFICATION, acting_user.user_id,
                "Metadata updated", at=row.updated_at,
            )
            code = row.code

        emit(self._audit, log_document_event(
            "document_updated", f"Document {code} metadata updated",
            user_id=acting_user.user_id, document_id=document.id, document_code=code,
        ))
        return True

    def move(self, document_id: int, folder_id: int, acting_user: ActingUser) -> bool:
        """
        Move a document to another folder. The code is kept: it records the
        folder the document was filed under at creation.
        """
        with self._db.session_scope() as session:
            row = self._get_live(session, document_id)
            target = self._require_active_folder(session, folder_id)
            previous = row.folder_id
            row.folder_id = folder_id
            row.updated_by = acting_user.user_id
            row.updated_at = self._clock()
            record_activity(
                session, row.id, ActivityType.MOVE, acting_user.user_id,
                f"Moved from folder {previous} to {target.code}", at=row.updated_at,
            )
            code = row.code

        emit(self._audit, log_document_event(
            "document_moved", f"Document {code} moved from folder {previous} to {folder_id}",
            user_id=acting_user.user_id, document_id=document_id, document_code=code,
            folder_id=folder_id,
        ))
        return True

    def delete(self, document_id: int, acting_user: ActingUser) -> bool:
        """Soft delete: status becomes 'deleted'. False if already deleted."""
        return self._set_status(
            document_id, DocumentStatus.DELETED, ActivityType.DELETION,
            "document_deleted", "Moved to trash", acting_user,
        )

    def restore(self, document_id: int, acting_user: ActingUser) -> bool:
        """Bring a soft-deleted document back to 'active'. False if not deleted."""
        return self._set_status(
            document_id, DocumentStatus.ACTIVE, ActivityType.RESTORATION,
            "document_restored", "Restored from trash", acting_user,
        )

    def hard_delete(self, document_id: int, acting_user: ActingUser) -> bool:
        """
        Permanently remove a document, its versions, activities and favorites,
        then its files.

        Raises:
            GedPermissionError: authority level != 0.
            GedNotFoundError: unknown id.
            GedConflictError: a mail record is bound to the document.
        """
        require_authority(
            acting_user, AUTHORITY_ADMIN, "purge_document", "documents", self._audit,
            entity="document", entity_id=document_id,
        )
        with self._db.session_scope() as session:
            row = session.get(DocumentRow, document_id)
            if row is None:
                raise GedNotFoundError(
                    f"Document {document_id} not found", entity="document", entity_id=document_id,
                )
            mail_code = session.scalars(
                select(MailRow.code).where(MailRow.document_id == document_id)
            ).first()
            if mail_code:
                raise GedConflictError(
                    f"Document {row.code} backs mail {mail_code} and cannot be purged",
                    entity="document",
                    entity_id=document_id,
                    current_status=row.status,
                    mail_code=mail_code,
                )

            files = [row.file_path, row.server_path]
            files.extend(session.scalars(
                select(DocumentVersion.file_path).where(DocumentVersion.document_id == document_id)
            ))
            code = row.code

            session.execute(delete(DocumentActivity).where(DocumentActivity.document_id == document_id))
            session.execute(delete(DocumentVersion).where(DocumentVersion.document_id == document_id))
            session.execute(delete(DocumentFavorite).where(DocumentFavorite.document_id == document_id))
            session.delete(row)

        # Rows are gone; leftover files are logged only
        for path in dict.fromkeys(p for p in files if p):
            try:
                self._storage.delete(path)
            except GedStorageError as e:
                logger.error(f"Purge of {code}: {e.message}")

        logger.info(f"Document purged: {code} by {acting_user.username}")
        emit(self._audit, log_document_event(
            "document_purged", f"Document {code} permanently deleted",
            user_id=acting_user.user_id, document_id=document_id, document_code=code,
        ))
        return True

    def toggle_favorite(self, document_id: int, user_id: int) -> bool:
        """Add or remove a bookmark. Returns True if now a favorite."""
        with self._db.session_scope() as session:
            self._get_live(session, document_id)
            existing = session.scalars(
                select(DocumentFavorite).where(
                    DocumentFavorite.document_id == document_id,
                    DocumentFavorite.user_id == user_id,
                )
            ).first()
            if existing is not None:
                session.delete(existing)
                return False
            session.add(DocumentFavorite(
                document_id=document_id, user_id=user_id, added_at=self._clock(),
            ))
            return True

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def get_by_id(self, document_id: int) -> Optional[Document]:
        """Any document, including soft-deleted ones (status tells)."""
        with self._db.session_scope() as session:
            row = session.get(DocumentRow, document_id)
            return Document.from_row(row) if row else None

    def get_all(self) -> List[Document]:
        return self._fetch(self._live().order_by(DocumentRow.created_at.desc(), DocumentRow.id.desc()))

    def get_by_folder(self, folder_id: int) -> List[Document]:
        stmt = self._live().where(DocumentRow.folder_id == folder_id).order_by(DocumentRow.title)
        return self._fetch(stmt)

    def search(self, term: str) -> List[Document]:
        """Case-insensitive substring over code, title, description, keywords, extension."""
        term = (term or "").strip()
        if not term:
            return self.get_all()
        stmt = self._live().where(self._term_clause(term)).order_by(DocumentRow.created_at.desc())
        return self._fetch(stmt)

    def advanced_search(
        self,
        term: Optional[str] = None,
        document_type: Optional[str] = None,
        folder_id: Optional[int] = None,
        confidential: Optional[bool] = None,
    ) -> List[Document]:
        stmt = self._live()
        if term and term.strip():
            stmt = stmt.where(self._term_clause(term.strip()))
        if document_type:
            stmt = stmt.where(DocumentRow.document_type == document_type)
        if folder_id is not None:
            stmt = stmt.where(DocumentRow.folder_id == folder_id)
        if confidential is not None:
            stmt = stmt.where(DocumentRow.confidential.is_(confidential))
        return self._fetch(stmt.order_by(DocumentRow.created_at.desc()))

    def search_by_extension(self, extension: str) -> List[Document]:
        ext = (extension or "").strip().lstrip(".").lower()
        stmt = self._live().where(func.lower(DocumentRow.extension) == ext).order_by(DocumentRow.title)
        return self._fetch(stmt)

    def search_by_period(self, start: date, end: date) -> List[Document]:
        """Documents created between start and end, both days inclusive."""
        if end < start:
            raise GedValidationError(
                "Period end precedes start", entity="document", field="end",
            )
        lower = datetime.combine(start, time.min, tzinfo=timezone.utc)
        upper = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
        stmt = (
            self._live()
            .where(DocumentRow.created_at >= lower, DocumentRow.created_at < upper)
            .order_by(DocumentRow.created_at.desc())
        )
        return self._fetch(stmt)

    def get_recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> List[Document]:
        stmt = self._live().order_by(DocumentRow.created_at.desc(), DocumentRow.id.desc()).limit(limit)
        return self._fetch(stmt)

    def get_deleted(self) -> List[Document]:
        """The trash: soft-deleted documents, most recently changed first."""
        stmt = (
            select(DocumentRow)
            .where(DocumentRow.status == DocumentStatus.DELETED.value)
            .order_by(DocumentRow.updated_at.desc())
        )
        return self._fetch(stmt)

    def get_favorites(self, user_id: int) -> List[Document]:
        stmt = (
            self._live()
            .join(DocumentFavorite, DocumentFavorite.document_id == DocumentRow.id)
            .where(DocumentFavorite.user_id == user_id)
            .order_by(DocumentFavorite.added_at.desc())
        )
        return self._fetch(stmt)

    def find_by_hash(self, file_hash: str) -> List[Document]:
        stmt = self._live().where(DocumentRow.file_hash == file_hash).order_by(DocumentRow.id)
        return self._fetch(stmt)

    def get_activities(self, document_id: int) -> List[DocumentActivityView]:
        """History of a document, newest first."""
        stmt = (
            select(DocumentActivity)
            .where(DocumentActivity.document_id == document_id)
            .order_by(DocumentActivity.created_at.desc(), DocumentActivity.id.desc())
        )
        with self._db.session_scope() as session:
            return [DocumentActivityView.model_validate(r) for r in session.scalars(stmt)]

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _set_status(
        self,
        document_id: int,
        status: DocumentStatus,
        activity: ActivityType,
        action: str,
        description: str,
        acting_user: ActingUser,
    ) -> bool:
        with self._db.session_scope() as session:
            row = session.get(DocumentRow, document_id)
            if row is None:
                raise GedNotFoundError(
                    f"Document {document_id} not found", entity="document", entity_id=document_id,
                )
            if status == DocumentStatus.ACTIVE and row.status != DocumentStatus.DELETED.value:
                return False
            if row.status == status.value:
                return False
            row.status = status.value
            row.updated_by = acting_user.user_id
            row.updated_at = self._clock()
            record_activity(session, row.id, activity, acting_user.user_id, description, at=row.updated_at)
            code = row.code

        emit(self._audit, log_document_event(
            action, f"Document {code}: {description.lower()}",
            user_id=acting_user.user_id, document_id=document_id, document_code=code,
        ))
        return True

    @staticmethod
    def _live():
        return select(DocumentRow).where(live_filter(DocumentRow))

    @staticmethod
    def _term_clause(term: str):
        pattern = f"%{term}%"
        return or_(
            DocumentRow.code.ilike(pattern),
            DocumentRow.title.ilike(pattern),
            DocumentRow.description.ilike(pattern),
            DocumentRow.keywords.ilike(pattern),
            DocumentRow.extension.ilike(pattern),
        )

    @staticmethod
    def _get_live(session: Session, document_id: Optional[int]) -> DocumentRow:
        row = session.get(DocumentRow, document_id) if document_id is not None else None
        if row is None or row.status == DocumentStatus.DELETED.value:
            raise GedNotFoundError(
                f"Document {document_id} not found", entity="document", entity_id=document_id,
            )
        return row

    @staticmethod
    def _require_active_folder(session: Session, folder_id: int) -> FolderRow:
        folder = session.get(FolderRow, folder_id)
        if folder is None or not folder.is_active:
            raise GedValidationError(
                f"Folder {folder_id} does not exist",
                entity="folder",
                entity_id=folder_id,
                field="folder_id",
            )
        return folder

    @staticmethod
    def _warn_duplicates(session: Session, file_hash: str, title: str) -> None:
        existing = session.scalars(
            select(DocumentRow.code).where(DocumentRow.file_hash == file_hash, live_filter(DocumentRow))
        ).all()
        if existing:
            logger.warning(f"'{title}' has the same content as {', '.join(existing)}")

    def _discard(self, paths: List[str]) -> None:
        """Remove files copied by a creation that did not commit."""
        for path in paths:
            try:
                self._storage.delete(path)
            except GedStorageError as e:
                logger.error(f"Orphaned file left at {path}: {e}")

    def _fetch(self, stmt) -> List[Document]:
        with self._db.session_scope() as session:
            return [Document.from_row(r) for r in session.scalars(stmt).unique()]
