"""
GED Folder & Document Management.

Folder tree with authority-gated mutation, document lifecycle with
nomenclature codes, and the file storage collaborator.
"""

from ged.documents.codes import CodeGenerator
from ged.documents.folders import FolderTree
from ged.documents.models import Document, DocumentStatus, Folder, FolderNode
from ged.documents.service import DocumentStore
from ged.documents.storage import FileStorage

__all__ = [
    "CodeGenerator",
    "Document",
    "DocumentStatus",
    "DocumentStore",
    "FileStorage",
    "Folder",
    "FolderNode",
    "FolderTree",
]
