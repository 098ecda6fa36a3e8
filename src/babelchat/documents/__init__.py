"""Reference Org document engine."""

from .document_model import DocumentMetadata, DocumentModel, OrgDocument
from .org_parser import RawElement, ResultSection, scan_src_blocks

__all__ = [
    "DocumentMetadata",
    "DocumentModel",
    "OrgDocument",
    "RawElement",
    "ResultSection",
    "scan_src_blocks",
]
