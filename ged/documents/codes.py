"""
GED Code Generator — Year-scoped sequential codes for documents and mails.

Formats:
    Mail:      COU-<YEAR>-<NNNN>          (sequence per year)
    Document:  <INITIALS>-<YEAR>-<NNNN>   (sequence per folder + year)
    Fallback:  DOC-<epoch millis>         (document created without a folder)

Concurrency:
    Reading max(seq) and inserting are two statements, so two callers can
    compute the same code. The tables carry unique constraints on ``code``
    and on ``(code_prefix, code_year, code_seq)``; ``allocate()`` inserts
    inside a SAVEPOINT and, on IntegrityError, recomputes the sequence and
    retries up to ``max_attempts`` times.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ged.db.models import Document as DocumentRow
from ged.db.models import Folder as FolderRow
from ged.db.models import Mail as MailRow
from ged.engine.config import CodeConfig
from ged.engine.errors import GedConflictError, GedValidationError

logger = logging.getLogger("ged.documents.codes")

_CODE_RE = re.compile(r"^(?P<prefix>[A-Z0-9]+)-(?P<year>\d{4})-(?P<seq>\d+)$")


def format_code(prefix: str, year: int, seq: int, width: int = 4) -> str:
    """format_code("COU", 2025, 4) -> "COU-2025-0004"."""
    return f"{prefix}-{year}-{seq:0{width}d}"


def parse_code(code: str) -> Optional[Tuple[str, int, int]]:
    """Split a sequenced code into (prefix, year, seq). None for other shapes."""
    match = _CODE_RE.match(code or "")
    if not match:
        return None
    return match.group("prefix"), int(match.group("year")), int(match.group("seq"))


def folder_initials(folder_code: str) -> str:
    """Nomenclature prefix of a folder: its code, uppercased, alphanumerics only."""
    return re.sub(r"[^A-Z0-9]", "", (folder_code or "").upper())


class CodeGenerator:
    """
    Computes and allocates unique codes.

    The ``next_*`` methods are previews: they read the current maximum and
    return the following code without reserving it. Use ``allocate()`` to
    insert a row under a code that is guaranteed unique.
    """

    def __init__(
        self,
        config: Optional[CodeConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._config = config or CodeConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def mail_prefix(self) -> str:
        return self._config.mail_prefix

    # -------------------------------------------------------------------
    # Previews
    # -------------------------------------------------------------------

    def next_mail_code(self, session: Session, year: int) -> str:
        seq = self._max_seq(session, MailRow, self._config.mail_prefix, year) + 1
        return format_code(self._config.mail_prefix, year, seq, self._config.sequence_width)

    def next_document_code(self, session: Session, folder_id: int, year: int) -> str:
        prefix = self.document_prefix(session, folder_id)
        seq = self._max_seq(session, DocumentRow, prefix, year) + 1
        return format_code(prefix, year, seq, self._config.sequence_width)

    def fallback_document_code(self, now: Optional[datetime] = None) -> str:
        now = now or self._clock()
        millis = int(now.timestamp() * 1000)
        return f"{self._config.fallback_prefix}-{millis}"

    def document_prefix(self, session: Session, folder_id: int) -> str:
        """Raise GedValidationError if the folder does not exist."""
        folder = session.get(FolderRow, folder_id)
        if folder is None:
            raise GedValidationError(
                f"Folder {folder_id} does not exist",
                entity="folder",
                entity_id=folder_id,
                field="folder_id",
            )
        prefix = folder_initials(folder.code)
        if not prefix:
            raise GedValidationError(
                f"Folder {folder.code!r} has no usable initials",
                entity="folder",
                entity_id=folder_id,
                field="code",
            )
        return prefix

    # -------------------------------------------------------------------
    # Allocation
    # -------------------------------------------------------------------

    def allocate(
        self,
        session: Session,
        record: Any,
        prefix: Optional[str] = None,
        year: Optional[int] = None,
    ) -> Any:
        """
        Assign a unique code to ``record`` and flush it.

        With a prefix, the code is ``<prefix>-<year>-<seq>``; without one, the
        timestamp fallback is used (bumped by one millisecond per retry).

        Raises:
            GedConflictError: no free code after max_attempts, or the insert
                violated a constraint unrelated to the code.
        """
        model = type(record)
        attempts = self._config.max_attempts
        year = year or self._clock().year
        now = self._clock()

        for attempt in range(1, attempts + 1):
            if prefix:
                seq = self._max_seq(session, model, prefix, year) + 1
                record.code = format_code(prefix, year, seq, self._config.sequence_width)
                record.code_prefix, record.code_year, record.code_seq = prefix, year, seq
            else:
                record.code = self.fallback_document_code(now + timedelta(milliseconds=attempt - 1))
                record.code_prefix = record.code_year = record.code_seq = None

            try:
                with session.begin_nested():
                    session.add(record)
                    session.flush()
                return record
            except IntegrityError as e:
                if not self._code_taken(session, model, record.code):
                    raise GedConflictError(
                        f"Cannot insert {model.__tablename__} row: {e.orig}",
                        entity=model.__tablename__,
                        field="code",
                    ) from e
                logger.info(
                    f"Code {record.code} taken by a concurrent insert "
                    f"(attempt {attempt}/{attempts}), retrying"
                )

        raise GedConflictError(
            f"Could not allocate a unique code after {attempts} attempts",
            entity=model.__tablename__,
            field="code",
            prefix=prefix,
            year=year,
        )

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    @staticmethod
    def _max_seq(session: Session, model: Any, prefix: str, year: int) -> int:
        stmt = select(func.max(model.code_seq)).where(
            model.code_prefix == prefix,
            model.code_year == year,
        )
        return session.execute(stmt).scalar() or 0

    @staticmethod
    def _code_taken(session: Session, model: Any, code: str) -> bool:
        stmt = select(model.id).where(model.code == code).limit(1)
        return session.execute(stmt).first() is not None
