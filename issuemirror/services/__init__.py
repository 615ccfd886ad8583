"""Services"""

from issuemirror.services.drift import DriftReport, detect_state_drift
from issuemirror.services.errors import ErrorClassifier, MirrorSyncError
from issuemirror.services.renderer import ContentRenderer
from issuemirror.services.resolver import CanonicalResolver
from issuemirror.services.status_model import compute_effective_status
from issuemirror.services.upsert import UpsertOrchestrator

__all__ = [
    "CanonicalResolver",
    "ContentRenderer",
    "DriftReport",
    "ErrorClassifier",
    "MirrorSyncError",
    "UpsertOrchestrator",
    "compute_effective_status",
    "detect_state_drift",
]
