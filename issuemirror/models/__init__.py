"""Database models"""

from issuemirror.models.base import Base
from issuemirror.models.canonical_issue import CanonicalIssue
from issuemirror.models.mirror_log import MirrorLog

__all__ = [
    "Base",
    "CanonicalIssue",
    "MirrorLog",
]
