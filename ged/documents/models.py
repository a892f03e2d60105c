"""
GED Document & Folder DTOs — Pydantic views over the SQLAlchemy rows.

Folder: hierarchical container, soft-deleted through is_active.
FolderNode: display tree node; the tree hangs off a synthetic root (id=0).
Document: file metadata with read-side display fields.
DocumentActivityView: one entry of a document's history.

Services accept these models as input and return them as output; ORM rows
never leave a session.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DocumentStatus(str, enum.Enum):
    ACTIVE = "active"
    DRAFT = "draft"
    ARCHIVED = "archived"
    DELETED = "deleted"


class ActivityType(str, enum.Enum):
    CREATION = "creation"
    MODIFICATION = "modification"
    MOVE = "move"
    DELETION = "deletion"
    RESTORATION = "restoration"
    ARCHIVAL = "archival"


# ---------------------------------------------------------------------------
# Folder
# ---------------------------------------------------------------------------

class Folder(BaseModel):
    """
    Folder record.

    code and parent_id are fixed at creation: document nomenclature codes
    are derived from the folder code.
    """

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = Field(default=None, description="Auto-generated primary key")
    code: str = Field(default="", max_length=20, description="Short uppercase token")
    name: str = Field(default="", max_length=200)
    parent_id: Optional[int] = Field(default=None, description="None means root-level")
    full_path: Optional[str] = Field(default=None, description="/ROOT/<code> materialized path")
    description: Optional[str] = None
    icon: Optional[str] = None
    display_order: int = 0
    is_active: bool = True
    is_system: bool = False

    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


class FolderNode(BaseModel):
    """Display tree node. children are ordered by display_order then name."""

    id: int
    code: str
    name: str
    icon: Optional[str] = None
    full_path: Optional[str] = None
    parent_id: Optional[int] = None
    children: List["FolderNode"] = Field(default_factory=list)

    def walk(self):
        """Depth-first iteration over this node and its descendants."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, folder_id: int) -> Optional["FolderNode"]:
        for node in self.walk():
            if node.id == folder_id:
                return node
        return None


FolderNode.model_rebuild()


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

class Document(BaseModel):
    """
    Document metadata. File bytes live with the storage collaborator;
    file_path is the local cache copy and server_path the durable one.
    """

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    code: Optional[str] = None
    folder_id: Optional[int] = None
    title: str = ""
    document_type: Optional[str] = None
    file_path: Optional[str] = None
    server_path: Optional[str] = None
    file_size: int = 0
    extension: Optional[str] = None
    mime_type: Optional[str] = None
    description: Optional[str] = None
    keywords: Optional[str] = Field(default=None, description="Comma-separated free text")
    file_hash: Optional[str] = None
    confidential: bool = False
    status: DocumentStatus = DocumentStatus.ACTIVE
    is_archived: bool = False
    archived_at: Optional[datetime] = None

    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Read-side display fields
    author_name: Optional[str] = None
    folder_name: Optional[str] = None
    folder_icon: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "Document":
        """Build from a documents row, joining author and folder display fields."""
        doc = cls.model_validate(row)
        if row.author is not None:
            doc.author_name = row.author.full_name
        if row.folder is not None:
            doc.folder_name = row.folder.name
            doc.folder_icon = row.folder.icon
        return doc

    @property
    def keyword_list(self) -> List[str]:
        if not self.keywords:
            return []
        return [k.strip() for k in self.keywords.split(",") if k.strip()]

    @property
    def is_deleted(self) -> bool:
        return self.status == DocumentStatus.DELETED


class DocumentActivityView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    document_id: int
    user_id: Optional[int] = None
    activity_type: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
