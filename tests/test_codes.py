"""Unit tests for ged.documents.codes — formats, previews and race-safe allocation."""

from datetime import datetime, timezone

import pytest

from ged.db.models import Document as DocumentRow
from ged.db.models import Mail as MailRow
from ged.documents.codes import CodeGenerator, folder_initials, format_code, parse_code
from ged.documents.models import Document
from ged.engine.config import CodeConfig
from ged.engine.errors import GedConflictError, GedValidationError
from ged.mail.models import Mail, MailType


def _document_row(title="doc"):
    return DocumentRow(title=title, status="active")


class TestFormats:
    def test_format_code(self):
        assert format_code("COU", 2025, 4) == "COU-2025-0004"
        assert format_code("OPS", 2025, 12345) == "OPS-2025-12345"
        assert format_code("X", 2024, 7, width=2) == "X-2024-07"

    def test_parse_code(self):
        assert parse_code("COU-2025-0004") == ("COU", 2025, 4)
        assert parse_code("DOC-1741944600000") is None
        assert parse_code("") is None

    def test_folder_initials(self):
        assert folder_initials("ops") == "OPS"
        assert folder_initials("R&D-01") == "RD01"
        assert folder_initials("") == ""

    def test_fallback_code(self):
        gen = CodeGenerator()
        now = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)
        assert gen.fallback_document_code(now) == f"DOC-{int(now.timestamp() * 1000)}"


class TestPreviews:
    def test_first_mail_code_of_year(self, db, codes):
        with db.session_scope() as session:
            assert codes.next_mail_code(session, 2025) == "COU-2025-0001"

    def test_mail_sequence_is_per_year(self, db, codes):
        with db.session_scope() as session:
            for year in (2024, 2024, 2025):
                document = codes.allocate(session, _document_row(), prefix="OPS", year=year)
                codes.allocate(session, MailRow(
                    document_id=document.id, mail_type="incoming", subject="s",
                ), prefix="COU", year=year)
        with db.session_scope() as session:
            assert codes.next_mail_code(session, 2024) == "COU-2024-0003"
            assert codes.next_mail_code(session, 2025) == "COU-2025-0002"
            assert codes.next_mail_code(session, 2026) == "COU-2026-0001"

    def test_document_code_unknown_folder(self, db, codes):
        with db.session_scope() as session:
            with pytest.raises(GedValidationError) as exc:
                codes.next_document_code(session, 999, 2025)
        assert exc.value.field == "folder_id"

    def test_document_code_per_folder(self, db, codes, ops_folder, archive_folder):
        with db.session_scope() as session:
            assert codes.next_document_code(session, ops_folder.id, 2025) == "OPS-2025-0001"
            assert codes.next_document_code(session, archive_folder.id, 2025) == "ARCH-2025-0001"


class TestAllocate:
    def test_sequential(self, db, codes):
        with db.session_scope() as session:
            allocated = [codes.allocate(session, _document_row(), prefix="OPS", year=2025).code
                         for _ in range(3)]
        assert allocated == ["OPS-2025-0001", "OPS-2025-0002", "OPS-2025-0003"]

    def test_year_scoped(self, db, codes):
        with db.session_scope() as session:
            codes.allocate(session, _document_row(), prefix="OPS", year=2024)
            row = codes.allocate(session, _document_row(), prefix="OPS", year=2025)
        assert row.code == "OPS-2025-0001"
        assert (row.code_prefix, row.code_year, row.code_seq) == ("OPS", 2025, 1)

    def test_fallback_without_prefix(self, db, codes, clock):
        with db.session_scope() as session:
            row = codes.allocate(session, _document_row())
        assert row.code == f"DOC-{int(clock().timestamp() * 1000)}"
        assert row.code_seq is None

    def test_fallback_collision_bumps_timestamp(self, db, codes, clock):
        with db.session_scope() as session:
            first = codes.allocate(session, _document_row()).code
            second = codes.allocate(session, _document_row()).code
        millis = int(clock().timestamp() * 1000)
        assert first == f"DOC-{millis}"
        assert second == f"DOC-{millis + 1}"

    def test_concurrent_caller_is_retried(self, db, codes, monkeypatch):
        """A stale max(seq), as seen by a racing caller, collides once and is retried."""
        with db.session_scope() as session:
            codes.allocate(session, _document_row("first"), prefix="OPS", year=2025)

        real_max = CodeGenerator._max_seq
        calls = []

        def stale_once(session, model, prefix, year):
            calls.append(prefix)
            if len(calls) == 1:
                return 0
            return real_max(session, model, prefix, year)

        monkeypatch.setattr(CodeGenerator, "_max_seq", staticmethod(stale_once))
        with db.session_scope() as session:
            row = codes.allocate(session, _document_row("second"), prefix="OPS", year=2025)

        assert row.code == "OPS-2025-0002"
        assert len(calls) == 2

    def test_concurrent_mail_creation_is_retried(self, mails, documents, ops_folder, make_file,
                                                 manager, monkeypatch):
        first_doc, second_doc = (
            documents.create(Document(title=f"Scan {i}", folder_id=ops_folder.id),
                             make_file(f"scan{i}.pdf", f"scan {i}".encode()), manager)
            for i in (1, 2)
        )
        first = mails.create(Mail(document_id=first_doc.id, mail_type=MailType.INCOMING, subject="a"), manager)

        real_max = CodeGenerator._max_seq
        calls = []

        def stale_once(session, model, prefix, year):
            calls.append((model.__tablename__, prefix))
            if len(calls) == 1:
                return 0
            return real_max(session, model, prefix, year)

        monkeypatch.setattr(CodeGenerator, "_max_seq", staticmethod(stale_once))
        second = mails.create(Mail(document_id=second_doc.id, mail_type=MailType.INCOMING, subject="b"), manager)

        assert (first.code, second.code) == ("COU-2025-0001", "COU-2025-0002")
        assert calls == [("mails", "COU"), ("mails", "COU")]
        assert [m.code for m in mails.get_all()] == ["COU-2025-0002", "COU-2025-0001"]

    def test_gives_up_after_max_attempts(self, db, clock, monkeypatch):
        gen = CodeGenerator(CodeConfig(max_attempts=3), clock=clock)
        with db.session_scope() as session:
            gen.allocate(session, _document_row(), prefix="OPS", year=2025)

        monkeypatch.setattr(CodeGenerator, "_max_seq", staticmethod(lambda *a: 0))
        with pytest.raises(GedConflictError):
            with db.session_scope() as session:
                gen.allocate(session, _document_row(), prefix="OPS", year=2025)

        with db.session_scope() as session:
            assert session.query(DocumentRow).count() == 1

    def test_unrelated_integrity_error_is_conflict(self, db, codes):
        with pytest.raises(GedConflictError):
            with db.session_scope() as session:
                codes.allocate(session, MailRow(
                    document_id=999, mail_type="incoming", subject="orphan",
                ), prefix="COU", year=2025)

    def test_codes_stay_unique_across_many_allocations(self, db, codes):
        with db.session_scope() as session:
            allocated = {codes.allocate(session, _document_row(), prefix="OPS", year=2025).code
                         for _ in range(25)}
        assert len(allocated) == 25
