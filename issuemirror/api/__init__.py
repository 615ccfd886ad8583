"""API routes"""

from issuemirror.api import dashboard, issues, mirror

__all__ = ["issues", "mirror", "dashboard"]
