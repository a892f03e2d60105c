"""Unit tests for ged.db.models, the DTOs and the mail state machine."""

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.exc import IntegrityError

from ged.db.base import live_filter
from ged.db.models import (
    DOCUMENT_STATUSES,
    MAIL_PRIORITIES,
    MAIL_STATUSES,
    MAIL_TYPES,
    Document,
    Folder,
    Mail,
    MailResponsible,
    User,
)
from ged.documents.models import DocumentStatus, Folder as FolderDTO, FolderNode
from ged.engine.errors import GedConflictError
from ged.mail.models import (
    ALLOWED_TRANSITIONS,
    MailPriority,
    MailStatus,
    MailType,
    can_transition,
    validate_transition,
)


class TestTables:
    def test_all_tables_created(self, db):
        tables = set(inspect(db.engine).get_table_names())
        assert {
            "users", "folders", "documents", "document_versions",
            "document_activities", "document_favorites", "mails",
            "mail_responsible", "mail_notifications",
        } <= tables

    def test_enum_values_match_check_constraints(self):
        assert tuple(s.value for s in DocumentStatus) == DOCUMENT_STATUSES
        assert tuple(s.value for s in MailStatus) == MAIL_STATUSES
        assert tuple(t.value for t in MailType) == MAIL_TYPES
        assert tuple(p.value for p in MailPriority) == MAIL_PRIORITIES

    def test_user_full_name(self):
        assert User(first_name="Sara", last_name="Sow").full_name == "Sara Sow"
        assert User(first_name="", last_name="Sow").full_name == "Sow"

    def test_live_filters(self, db):
        with db.session_scope() as session:
            session.add_all([
                Folder(code="AA", name="a", full_path="/ROOT/AA", is_active=True),
                Folder(code="BB", name="b", full_path="/ROOT/BB", is_active=False),
            ])
        with db.session_scope() as session:
            codes = session.scalars(select(Folder.code).where(live_filter(Folder))).all()
        assert codes == ["AA"]


class TestConstraints:
    def test_folder_code_unique_among_active_only(self, db):
        with db.session_scope() as session:
            session.add(Folder(code="DUP", name="old", full_path="/ROOT/DUP", is_active=False))
            session.add(Folder(code="DUP", name="new", full_path="/ROOT/DUP", is_active=True))

        session = db.session()
        try:
            session.add(Folder(code="DUP", name="again", full_path="/ROOT/DUP", is_active=True))
            with pytest.raises(IntegrityError):
                session.flush()
        finally:
            session.rollback()
            session.close()

    def test_document_status_check(self, db):
        session = db.session()
        try:
            session.add(Document(code="X-1", title="t", status="lost"))
            with pytest.raises(IntegrityError):
                session.flush()
        finally:
            session.rollback()
            session.close()

    def test_mail_requires_existing_document(self, db):
        session = db.session()
        try:
            session.add(Mail(code="COU-2025-0001", document_id=999, mail_type="incoming", subject="s"))
            with pytest.raises(IntegrityError):
                session.flush()
        finally:
            session.rollback()
            session.close()

    def test_single_responsible_slot(self, db, users):
        session = db.session()
        try:
            session.add(MailResponsible(user_id=users["admin"].user_id))
            session.flush()
            session.add(MailResponsible(user_id=users["secretary"].user_id))
            with pytest.raises(IntegrityError):
                session.flush()
        finally:
            session.rollback()
            session.close()


class TestMailTransitions:
    def test_linear_progression(self):
        assert can_transition(MailStatus.NEW, MailStatus.IN_PROGRESS)
        assert can_transition(MailStatus.IN_PROGRESS, MailStatus.PROCESSED)

    def test_no_skipping_or_going_back(self):
        assert not can_transition(MailStatus.NEW, MailStatus.PROCESSED)
        assert not can_transition(MailStatus.PROCESSED, MailStatus.NEW)
        assert not can_transition(MailStatus.PROCESSED, MailStatus.IN_PROGRESS)

    def test_archived_only_through_archive(self):
        for status in MailStatus:
            if status != MailStatus.ARCHIVED:
                assert not can_transition(status, MailStatus.ARCHIVED)
                assert not can_transition(status, MailStatus.ARCHIVED, enforce=False)

    def test_archived_is_terminal(self):
        assert ALLOWED_TRANSITIONS[MailStatus.ARCHIVED] == frozenset()
        assert not can_transition(MailStatus.ARCHIVED, MailStatus.NEW, enforce=False)

    def test_permissive_mode(self):
        assert can_transition(MailStatus.PROCESSED, MailStatus.NEW, enforce=False)
        assert can_transition("new", "processed", enforce=False)

    def test_same_status_is_allowed(self):
        assert can_transition(MailStatus.PROCESSED, MailStatus.PROCESSED)

    def test_validate_raises_conflict(self):
        with pytest.raises(GedConflictError) as exc:
            validate_transition(MailStatus.NEW, MailStatus.PROCESSED, mail_id=4)
        assert exc.value.current_status == "new"
        assert exc.value.entity_id == 4


class TestDTOs:
    def test_folder_from_row(self):
        row = Folder(id=3, code="OPS", name="Operations", full_path="/ROOT/OPS",
                     display_order=2, is_active=True, is_system=False)
        dto = FolderDTO.model_validate(row)
        assert dto.code == "OPS"
        assert dto.full_path == "/ROOT/OPS"
        assert dto.is_root

    def test_folder_node_walk_and_find(self):
        root = FolderNode(id=0, code="ROOT", name="Racine", children=[
            FolderNode(id=1, code="A", name="a", children=[FolderNode(id=3, code="C", name="c")]),
            FolderNode(id=2, code="B", name="b"),
        ])
        assert [n.id for n in root.walk()] == [0, 1, 3, 2]
        assert root.find(3).code == "C"
        assert root.find(42) is None
