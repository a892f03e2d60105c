"""
GED Folder Tree — Hierarchical folder structure with authority-gated mutation.

Rules:
- create: authority level <= 1; code 2-10 uppercase alphanumerics, unique
  among active folders; parent must exist and be active
- update: name / description / icon / display order only; code and parent
  are fixed because document codes are derived from the folder code
- delete: authority level 0; refused for system folders and for folders
  holding live documents; soft delete (is_active = False)
- full_path: parent.full_path + "/" + code, or "/ROOT/<code>" at root level
- the folder whose code is the confidential marker is visible to level 0 only
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ged.db.base import live_filter
from ged.db.models import Document as DocumentRow
from ged.db.models import Folder as FolderRow
from ged.db.session import Database
from ged.documents.icons import is_valid_icon, resolve_icon
from ged.documents.models import Folder, FolderNode
from ged.engine.config import FolderConfig, SystemFolderSpec
from ged.engine.context import AUTHORITY_ADMIN, AUTHORITY_MANAGER, ActingUser
from ged.engine.errors import GedConflictError, GedNotFoundError, GedValidationError
from ged.engine.logging import AsyncLogQueue, emit, log_folder_event
from ged.security.permissions import can_access_folder, require_authority

logger = logging.getLogger("ged.documents.folders")

ROOT_PATH = "/ROOT"
ROOT_NODE_ID = 0

_CODE_RE = re.compile(r"^[A-Z0-9]+$")
MIN_CODE_LENGTH = 2
MAX_CODE_LENGTH = 10
MAX_SYSTEM_CODE_LENGTH = 20


class FolderTree:
    """Folder service. One instance per process, injected into consumers."""

    def __init__(
        self,
        db: Database,
        config: Optional[FolderConfig] = None,
        audit: Optional[AsyncLogQueue] = None,
    ):
        self._db = db
        self._config = config or FolderConfig()
        self._audit = audit

    @property
    def confidential_code(self) -> str:
        return self._config.confidential_code

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------

    def create(self, folder: Folder, acting_user: ActingUser) -> Folder:
        """
        Create a folder.

        Raises:
            GedPermissionError: authority level > 1.
            GedValidationError: bad code, empty name, unknown/inactive parent.
            GedConflictError: an active folder already uses the code.
        """
        require_authority(
            acting_user, AUTHORITY_MANAGER, "create_folder", "folders", self._audit,
            entity="folder",
        )
        code = self._normalize_code(folder.code)
        name = (folder.name or "").strip()
        if not name:
            raise GedValidationError("Folder name is required", entity="folder", field="name")

        with self._db.session_scope() as session:
            row = self._insert(
                session,
                code=code,
                name=name,
                parent_id=folder.parent_id,
                description=folder.description,
                icon=folder.icon,
                display_order=folder.display_order,
                is_system=False,
                acting_user=acting_user,
            )
            created = Folder.model_validate(row)

        logger.info(f"Folder created: {created.full_path} by {acting_user.username}")
        emit(self._audit, log_folder_event(
            "folder_created",
            f"Folder {created.code} ({created.name}) created at {created.full_path}",
            user_id=acting_user.user_id,
            folder_id=created.id,
            folder_code=created.code,
        ))
        return created

    def update(self, folder: Folder, acting_user: ActingUser) -> bool:
        """
        Update name, description, icon and display order.

        code and parent_id on the input are ignored.
        """
        require_authority(
            acting_user, AUTHORITY_MANAGER, "update_folder", "folders", self._audit,
            entity="folder", entity_id=folder.id,
        )
        name = (folder.name or "").strip()
        if not name:
            raise GedValidationError(
                "Folder name is required", entity="folder", entity_id=folder.id, field="name",
            )

        with self._db.session_scope() as session:
            row = self._get_active(session, folder.id)
            row.name = name
            row.description = folder.description
            row.icon = resolve_icon(folder.icon, row.code, name, self._config.default_icon)
            row.display_order = folder.display_order
            row.updated_by = acting_user.user_id
            code = row.code

        emit(self._audit, log_folder_event(
            "folder_updated",
            f"Folder {code} renamed/updated to '{name}'",
            user_id=acting_user.user_id,
            folder_id=folder.id,
            folder_code=code,
        ))
        return True

    def delete(self, folder_id: int, acting_user: ActingUser) -> bool:
        """
        Soft-delete a folder.

        Raises:
            GedPermissionError: authority level != 0.
            GedNotFoundError: unknown id.
            GedConflictError: system folder, or live documents inside.

        Returns:
            False when the folder was already inactive.
        """
        require_authority(
            acting_user, AUTHORITY_ADMIN, "delete_folder", "folders", self._audit,
            entity="folder", entity_id=folder_id,
        )

        with self._db.session_scope() as session:
            row = session.get(FolderRow, folder_id)
            if row is None:
                raise GedNotFoundError(
                    f"Folder {folder_id} not found", entity="folder", entity_id=folder_id,
                )
            if not row.is_active:
                return False
            if row.is_system:
                raise GedConflictError(
                    f"Folder {row.code} is a system folder and cannot be deleted",
                    entity="folder",
                    entity_id=folder_id,
                    current_status="system",
                )
            live_docs = self._count_documents(session, folder_id)
            if live_docs:
                raise GedConflictError(
                    f"Folder {row.code} still contains {live_docs} document(s)",
                    entity="folder",
                    entity_id=folder_id,
                    current_status="not_empty",
                    document_count=live_docs,
                )
            row.is_active = False
            row.updated_by = acting_user.user_id
            code = row.code

        logger.info(f"Folder deleted: {code} by {acting_user.username}")
        emit(self._audit, log_folder_event(
            "folder_deleted",
            f"Folder {code} deleted",
            user_id=acting_user.user_id,
            folder_id=folder_id,
            folder_code=code,
        ))
        return True

    def ensure_system_folders(
        self,
        acting_user: ActingUser,
        specs: Optional[Iterable[SystemFolderSpec]] = None,
    ) -> List[Folder]:
        """
        Seed reserved root folders (is_system=True). Idempotent: codes that
        already exist as active folders are skipped.

        Returns:
            The folders created by this call.
        """
        require_authority(
            acting_user, AUTHORITY_ADMIN, "seed_system_folders", "folders", self._audit,
        )
        specs = list(specs if specs is not None else self._config.system_folders)
        created: List[Folder] = []

        with self._db.session_scope() as session:
            for spec in specs:
                code = self._normalize_code(spec.code, MAX_SYSTEM_CODE_LENGTH)
                if self._find_active_by_code(session, code) is not None:
                    continue
                row = self._insert(
                    session,
                    code=code,
                    name=spec.name,
                    parent_id=None,
                    description=spec.description,
                    icon=spec.icon,
                    display_order=0,
                    is_system=True,
                    acting_user=acting_user,
                )
                created.append(Folder.model_validate(row))

        for folder in created:
            logger.info(f"System folder seeded: {folder.code}")
            emit(self._audit, log_folder_event(
                "system_folder_seeded",
                f"System folder {folder.code} created",
                user_id=acting_user.user_id,
                folder_id=folder.id,
                folder_code=folder.code,
            ))
        return created

    def repair_icons(self, acting_user: Optional[ActingUser] = None) -> int:
        """Replace every stored unusable icon. Returns the number fixed."""
        fixed = 0
        with self._db.session_scope() as session:
            for row in session.scalars(select(FolderRow)):
                if is_valid_icon(row.icon):
                    continue
                row.icon = resolve_icon(None, row.code, row.name, self._config.default_icon)
                if acting_user is not None:
                    row.updated_by = acting_user.user_id
                fixed += 1

        if fixed:
            logger.info(f"Repaired {fixed} folder icon(s)")
            emit(self._audit, log_folder_event(
                "icons_repaired",
                f"{fixed} folder icon(s) repaired",
                user_id=acting_user.user_id if acting_user else None,
            ))
        return fixed

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def get_by_id(self, folder_id: int) -> Optional[Folder]:
        """Any folder, active or not."""
        with self._db.session_scope() as session:
            row = session.get(FolderRow, folder_id)
            return Folder.model_validate(row) if row else None

    def get_all(self) -> List[Folder]:
        """Active folders by full_path, then display_order."""
        stmt = (
            select(FolderRow)
            .where(live_filter(FolderRow))
            .order_by(FolderRow.full_path, FolderRow.display_order)
        )
        return self._fetch(stmt)

    def get_children(self, parent_id: int) -> List[Folder]:
        stmt = (
            select(FolderRow)
            .where(live_filter(FolderRow), FolderRow.parent_id == parent_id)
            .order_by(FolderRow.display_order, FolderRow.name)
        )
        return self._fetch(stmt)

    def get_roots(self) -> List[Folder]:
        stmt = (
            select(FolderRow)
            .where(live_filter(FolderRow), FolderRow.parent_id.is_(None))
            .order_by(FolderRow.display_order, FolderRow.name)
        )
        return self._fetch(stmt)

    def search(self, term: str) -> List[Folder]:
        """Case-insensitive substring match on code or name."""
        term = (term or "").strip()
        if not term:
            return self.get_all()
        pattern = f"%{term}%"
        stmt = (
            select(FolderRow)
            .where(
                live_filter(FolderRow),
                or_(FolderRow.code.ilike(pattern), FolderRow.name.ilike(pattern)),
            )
            .order_by(FolderRow.full_path, FolderRow.display_order)
        )
        return self._fetch(stmt)

    def get_breadcrumb(self, folder_id: int) -> List[Folder]:
        """Folders from the root down to folder_id (inclusive)."""
        chain: List[Folder] = []
        seen = set()
        with self._db.session_scope() as session:
            row = session.get(FolderRow, folder_id)
            if row is None:
                raise GedNotFoundError(
                    f"Folder {folder_id} not found", entity="folder", entity_id=folder_id,
                )
            while row is not None and row.id not in seen:
                seen.add(row.id)
                chain.append(Folder.model_validate(row))
                row = session.get(FolderRow, row.parent_id) if row.parent_id else None
        chain.reverse()
        return chain

    def count_documents(self, folder_id: int) -> int:
        """Live (not deleted) documents in the folder."""
        with self._db.session_scope() as session:
            return self._count_documents(session, folder_id)

    def can_access(self, user: ActingUser, folder: Folder) -> bool:
        return can_access_folder(user, folder.code, self._config.confidential_code)

    def resolve_icon(self, name: Optional[str], code: Optional[str], icon: Optional[str] = None) -> str:
        return resolve_icon(icon, code, name, self._config.default_icon)

    # -------------------------------------------------------------------
    # Tree
    # -------------------------------------------------------------------

    def build_tree(self, user: Optional[ActingUser] = None) -> FolderNode:
        """
        Build the display tree under a synthetic root (id=0).

        Folders are loaded once and indexed by id. A folder whose parent is
        missing or inactive hangs off the root. With a user, folders that
        user cannot access are pruned with their subtrees.
        """
        folders = self.get_all()
        root = FolderNode(id=ROOT_NODE_ID, code="ROOT", name="Racine", icon="🏠", full_path=ROOT_PATH)

        nodes: Dict[int, FolderNode] = {}
        for f in folders:
            nodes[f.id] = FolderNode(
                id=f.id,
                code=f.code,
                name=f.name,
                icon=f.icon,
                full_path=f.full_path,
                parent_id=f.parent_id,
            )
        order = {f.id: (f.display_order, f.name.lower()) for f in folders}

        for f in folders:
            parent = nodes.get(f.parent_id) if f.parent_id is not None else None
            (parent or root).children.append(nodes[f.id])

        for node in root.walk():
            node.children.sort(key=lambda n: order[n.id])

        if user is not None:
            self._prune(root, user)
        return root

    def _prune(self, node: FolderNode, user: ActingUser) -> None:
        node.children = [
            c for c in node.children
            if can_access_folder(user, c.code, self._config.confidential_code)
        ]
        for child in node.children:
            self._prune(child, user)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _insert(
        self,
        session: Session,
        *,
        code: str,
        name: str,
        parent_id: Optional[int],
        description: Optional[str],
        icon: Optional[str],
        display_order: int,
        is_system: bool,
        acting_user: ActingUser,
    ) -> FolderRow:
        if parent_id is not None:
            parent = session.get(FolderRow, parent_id)
            if parent is None or not parent.is_active:
                raise GedValidationError(
                    f"Parent folder {parent_id} does not exist",
                    entity="folder",
                    entity_id=parent_id,
                    field="parent_id",
                )
            full_path = f"{parent.full_path}/{code}"
        else:
            full_path = f"{ROOT_PATH}/{code}"

        if self._find_active_by_code(session, code) is not None:
            raise GedConflictError(
                f"An active folder already uses code {code}",
                entity="folder",
                field="code",
                current_status="duplicate",
            )

        row = FolderRow(
            code=code,
            name=name,
            parent_id=parent_id,
            full_path=full_path,
            description=description,
            icon=resolve_icon(icon, code, name, self._config.default_icon),
            display_order=display_order or 0,
            is_active=True,
            is_system=is_system,
            created_by=acting_user.user_id,
            updated_by=acting_user.user_id,
        )
        try:
            with session.begin_nested():
                session.add(row)
                session.flush()
        except IntegrityError as e:
            if self._find_active_by_code(session, code) is None:
                raise GedConflictError(
                    f"Cannot insert folder {code}: {e.orig}",
                    entity="folder",
                    parent_id=parent_id,
                ) from e
            raise GedConflictError(
                f"An active folder already uses code {code}",
                entity="folder",
                field="code",
                current_status="duplicate",
            ) from e
        return row

    @staticmethod
    def _normalize_code(code: Optional[str], max_length: int = MAX_CODE_LENGTH) -> str:
        normalized = (code or "").strip().upper()
        if not normalized:
            raise GedValidationError("Folder code is required", entity="folder", field="code")
        if not (MIN_CODE_LENGTH <= len(normalized) <= max_length) or not _CODE_RE.match(normalized):
            raise GedValidationError(
                f"Folder code must be {MIN_CODE_LENGTH}-{max_length} letters or digits, got {code!r}",
                entity="folder",
                field="code",
            )
        return normalized

    @staticmethod
    def _find_active_by_code(session: Session, code: str) -> Optional[FolderRow]:
        stmt = select(FolderRow).where(live_filter(FolderRow), FolderRow.code == code)
        return session.scalars(stmt).first()

    @staticmethod
    def _get_active(session: Session, folder_id: Optional[int]) -> FolderRow:
        row = session.get(FolderRow, folder_id) if folder_id is not None else None
        if row is None or not row.is_active:
            raise GedNotFoundError(
                f"Folder {folder_id} not found", entity="folder", entity_id=folder_id,
            )
        return row

    @staticmethod
    def _count_documents(session: Session, folder_id: int) -> int:
        stmt = select(func.count(DocumentRow.id)).where(
            DocumentRow.folder_id == folder_id,
            live_filter(DocumentRow),
        )
        return session.execute(stmt).scalar() or 0

    def _fetch(self, stmt) -> List[Folder]:
        with self._db.session_scope() as session:
            return [Folder.model_validate(r) for r in session.scalars(stmt)]
