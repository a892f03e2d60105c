"""
GED Test Suite — Shared fixtures and configuration.

Every test gets its own SQLite file database and storage directories under
tmp_path, a fixed clock in 2025, and services wired by constructor injection.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict

import pytest

FIXED_NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock; tests move it forward explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_config():
    """Reset the loaded-config cache between tests."""
    from ged.engine.config import reset_config

    reset_config()
    yield
    reset_config()


@pytest.fixture
def clock():
    return FixedClock(FIXED_NOW)


@pytest.fixture
def db(tmp_path):
    """A fresh SQLite file database with every GED table."""
    from ged.db.session import Database

    database = Database(f"sqlite:///{tmp_path / 'ged.db'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def audit(tmp_path):
    """An audit queue without the flush thread; tests call flush()."""
    from ged.engine.logging import AsyncLogQueue, FileLogger

    return AsyncLogQueue(FileLogger(log_dir=str(tmp_path / "logs")))


@pytest.fixture
def storage(tmp_path):
    from ged.documents.storage import FileStorage
    from ged.engine.config import StorageConfig

    return FileStorage(StorageConfig(
        local_cache_dir=str(tmp_path / "cache"),
        server_root=str(tmp_path / "server"),
        max_upload_size_mb=1,
    ))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@pytest.fixture
def users(db) -> Dict[str, "ActingUser"]:
    """
    Seed four users and return them as acting users:
    admin (level 0), manager (1), reader (2), secretary (2).
    """
    from ged.db.models import User
    from ged.engine.context import ActingUser

    specs = [
        ("admin", "Admin", "Alice", 0, "admin"),
        ("manager", "Martin", "Marc", 1, "manager"),
        ("reader", "Robert", "Rose", 2, "agent"),
        ("secretary", "Sow", "Sara", 2, "secretary"),
    ]
    acting = {}
    with db.session_scope() as session:
        for code, last, first, level, role in specs:
            user = User(
                code=code, last_name=last, first_name=first,
                email=f"{code}@example.org", authority_level=level, role=role,
            )
            session.add(user)
            session.flush()
            acting[code] = ActingUser(
                user_id=user.id, username=code, authority_level=level,
                role=role, full_name=user.full_name,
            )
    return acting


@pytest.fixture
def admin(users):
    return users["admin"]


@pytest.fixture
def manager(users):
    return users["manager"]


@pytest.fixture
def reader(users):
    return users["reader"]


@pytest.fixture
def secretary(users):
    return users["secretary"]


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def codes(clock):
    from ged.documents.codes import CodeGenerator
    from ged.engine.config import CodeConfig

    return CodeGenerator(CodeConfig(), clock=clock)


@pytest.fixture
def folders(db, audit):
    from ged.documents.folders import FolderTree

    return FolderTree(db, audit=audit)


@pytest.fixture
def documents(db, storage, codes, audit, clock):
    from ged.documents.service import DocumentStore

    return DocumentStore(db, storage, codes=codes, audit=audit, clock=clock)


@pytest.fixture
def router(db, audit, clock):
    from ged.mail.notifications import NotificationRouter

    return NotificationRouter(db, audit=audit, clock=clock)


@pytest.fixture
def mails(db, router, codes, audit, clock):
    from ged.mail.workflow import MailWorkflow

    return MailWorkflow(db, router, codes=codes, audit=audit, clock=clock)


# ---------------------------------------------------------------------------
# Files and records
# ---------------------------------------------------------------------------

@pytest.fixture
def make_file(tmp_path) -> Callable[..., Path]:
    """Factory writing a source file under tmp_path/incoming."""
    incoming = tmp_path / "incoming"
    incoming.mkdir(exist_ok=True)

    def _make(name: str = "report.pdf", content: bytes = b"%PDF-1.4 quarterly report") -> Path:
        path = incoming / name
        path.write_bytes(content)
        return path

    return _make


@pytest.fixture
def source_file(make_file):
    return make_file()


@pytest.fixture
def ops_folder(folders, manager):
    from ged.documents.models import Folder

    return folders.create(Folder(code="OPS", name="Operations"), manager)


@pytest.fixture
def archive_folder(folders, manager):
    from ged.documents.models import Folder

    return folders.create(Folder(code="ARCH", name="Archives 2025"), manager)


@pytest.fixture
def ops_document(documents, ops_folder, source_file, manager):
    from ged.documents.models import Document

    return documents.create(Document(title="Report", folder_id=ops_folder.id), source_file, manager)
