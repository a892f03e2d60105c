"""
GED Models — SQLAlchemy tables for the folder, document and mail core.

Tables:
1. users                — Accounts referenced by folders/documents/mails
2. folders              — Hierarchical folder tree (soft delete: is_active)
3. documents            — Document metadata (soft delete: status='deleted')
4. document_versions    — File versions of a document
5. document_activities  — Per-document activity history
6. document_favorites   — User ↔ Document bookmarks
7. mails                — Mail ("courrier") records, one per document
8. mail_responsible     — Single-row active responsible assignment
9. mail_notifications   — One row per (mail, user)
"""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from ged.db.base import AuditMixin, Base, SequencedCodeMixin, utcnow

DOCUMENT_STATUSES = ("active", "draft", "archived", "deleted")
MAIL_TYPES = ("incoming", "outgoing", "internal")
MAIL_PRIORITIES = ("normal", "urgent", "very_urgent")
MAIL_STATUSES = ("new", "in_progress", "processed", "archived")

RESPONSIBLE_SLOT = "mail"


def _in(column: str, values: tuple) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# ---------------------------------------------------------------------------
# 1. Users
# ---------------------------------------------------------------------------

class User(Base, AuditMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    last_name = Column(String(100), nullable=False)
    first_name = Column(String(100), nullable=False, default="")
    email = Column(String(255), nullable=True)
    authority_level = Column(Integer, nullable=False, default=2)
    role = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("authority_level >= 0", name="ck_users_authority_level"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def __live__(cls):
        return cls.is_active.is_(True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, code='{self.code}', level={self.authority_level})>"


# ---------------------------------------------------------------------------
# 2. Folders
# ---------------------------------------------------------------------------

class Folder(Base, AuditMixin):
    __tablename__ = "folders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(20), nullable=False)
    name = Column(String(200), nullable=False)
    parent_id = Column(Integer, ForeignKey("folders.id"), nullable=True, index=True)
    full_path = Column(String(1000), nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String(16), nullable=True)
    display_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    is_system = Column(Boolean, default=False, nullable=False)

    parent = relationship("Folder", remote_side=[id])

    __table_args__ = (
        # Code is unique among active folders only
        Index(
            "uq_folders_code_active",
            "code",
            unique=True,
            sqlite_where=text("is_active = TRUE"),
            postgresql_where=text("is_active = TRUE"),
        ),
        Index("idx_folders_full_path", "full_path"),
    )

    @classmethod
    def __live__(cls):
        return cls.is_active.is_(True)

    def __repr__(self) -> str:
        return f"<Folder(id={self.id}, code='{self.code}', path='{self.full_path}')>"


# ---------------------------------------------------------------------------
# 3. Documents
# ---------------------------------------------------------------------------

class Document(Base, AuditMixin, SequencedCodeMixin):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    folder_id = Column(Integer, ForeignKey("folders.id"), nullable=True, index=True)
    title = Column(String(500), nullable=False)
    document_type = Column(String(100), nullable=True)
    file_path = Column(String(1000), nullable=True)
    server_path = Column(String(1000), nullable=True)
    file_size = Column(BigInteger, default=0, nullable=False)
    extension = Column(String(20), nullable=True)
    mime_type = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    keywords = Column(Text, nullable=True)
    file_hash = Column(String(64), nullable=True, index=True)
    confidential = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), default="active", nullable=False, index=True)
    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)

    folder = relationship("Folder", lazy="joined")
    author = relationship(
        "User",
        primaryjoin="foreign(Document.created_by) == User.id",
        viewonly=True,
        lazy="joined",
    )

    __table_args__ = (
        UniqueConstraint("code", name="uq_documents_code"),
        UniqueConstraint("code_prefix", "code_year", "code_seq", name="uq_documents_code_seq"),
        CheckConstraint(_in("status", DOCUMENT_STATUSES), name="ck_documents_status"),
    )

    @classmethod
    def __live__(cls):
        return cls.status != "deleted"

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, code='{self.code}', status='{self.status}')>"


# ---------------------------------------------------------------------------
# 4. Document versions
# ---------------------------------------------------------------------------

class DocumentVersion(Base):
    __tablename__ = "document_versions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False)
    version = Column(Integer, nullable=False)
    file_path = Column(String(1000), nullable=True)
    file_size = Column(BigInteger, default=0, nullable=False)
    file_hash = Column(String(64), nullable=True)
    uploaded_by = Column(Integer, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    change_note = Column(String(500), nullable=True)

    __table_args__ = (
        UniqueConstraint("document_id", "version", name="uq_document_version"),
    )


# ---------------------------------------------------------------------------
# 5. Document activities
# ---------------------------------------------------------------------------

class DocumentActivity(Base):
    __tablename__ = "document_activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True)
    activity_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------------------------------------------------------------------------
# 6. Document favorites
# ---------------------------------------------------------------------------

class DocumentFavorite(Base):
    __tablename__ = "document_favorites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    added_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("document_id", "user_id", name="uq_document_favorite"),
        Index("idx_favorites_user_id", "user_id"),
    )


# ---------------------------------------------------------------------------
# 7. Mails
# ---------------------------------------------------------------------------

class Mail(Base, AuditMixin, SequencedCodeMixin):
    __tablename__ = "mails"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False)
    mail_type = Column(String(20), nullable=False)
    subject = Column(String(500), nullable=False)
    sender = Column(String(255), nullable=True)
    recipient = Column(String(255), nullable=True)
    reference = Column(String(100), nullable=True)
    mail_date = Column(Date, nullable=True)
    priority = Column(String(20), default="normal", nullable=False)
    observations = Column(Text, nullable=True)
    confidential = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), default="new", nullable=False, index=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)

    document = relationship("Document", lazy="joined")

    __table_args__ = (
        UniqueConstraint("code", name="uq_mails_code"),
        UniqueConstraint("code_prefix", "code_year", "code_seq", name="uq_mails_code_seq"),
        UniqueConstraint("document_id", name="uq_mails_document_id"),
        CheckConstraint(_in("mail_type", MAIL_TYPES), name="ck_mails_type"),
        CheckConstraint(_in("priority", MAIL_PRIORITIES), name="ck_mails_priority"),
        CheckConstraint(_in("status", MAIL_STATUSES), name="ck_mails_status"),
    )

    def __repr__(self) -> str:
        return f"<Mail(id={self.id}, code='{self.code}', status='{self.status}')>"


# ---------------------------------------------------------------------------
# 8. Active mail responsible (single row)
# ---------------------------------------------------------------------------

class MailResponsible(Base):
    __tablename__ = "mail_responsible"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slot = Column(String(20), nullable=False, default=RESPONSIBLE_SLOT)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", lazy="joined")

    __table_args__ = (
        UniqueConstraint("slot", name="uq_mail_responsible_slot"),
    )


# ---------------------------------------------------------------------------
# 9. Mail notifications
# ---------------------------------------------------------------------------

class MailNotification(Base):
    __tablename__ = "mail_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    mail_id = Column(Integer, ForeignKey("mails.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    notified_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    mail = relationship("Mail", lazy="joined")

    __table_args__ = (
        UniqueConstraint("mail_id", "user_id", name="uq_mail_notification"),
        Index("idx_notifications_user_read", "user_id", "is_read"),
    )
