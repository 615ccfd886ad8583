"""Deterministic rendering of canonical records into tracker issue content"""

import base64
import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from issuemirror.services.labels import ManagedLabelPolicy
from issuemirror.services.records import CanonicalRecord

# Keys dropped at every nesting level before hashing/rendering.
VOLATILE_FIELDS = frozenset(
    {"created_at", "updated_at", "generated_at", "synced_at", "last_synced_at"}
)
# Arrays under these keys are sets: order carries no meaning.
UNORDERED_SET_FIELDS = frozenset({"labels", "depends_on", "dependencies", "tags"})

BODY_MARKER_PREFIX = "Canonical-ID:"
TITLE_MARKER_PREFIX = "[CID:"
TITLE_MARKER_SUFFIX = "]"

_MACHINE_MARKER_RE = re.compile(
    r"<!--\s*issue-mirror:(?P<b64>[A-Za-z0-9+/=]+)\s*-->",
    re.IGNORECASE,
)

# Rendered in dedicated sections; everything else lands under "Details".
_SECTION_FIELDS = frozenset(
    {"canonical_id", "title", "body", "labels", "depends_on", "acceptance_criteria", "verify"}
)


@dataclass(frozen=True)
class RenderedContent:
    canonical_id: str
    title: str
    body: str
    labels: Tuple[str, ...]
    hash: str


def canonicalize(value: Any, key: Optional[str] = None) -> Any:
    """Return a key-order independent copy of `value` without volatile fields."""
    if isinstance(value, dict):
        return {
            k: canonicalize(v, k)
            for k, v in sorted(value.items())
            if k not in VOLATILE_FIELDS and v is not None
        }
    if isinstance(value, (list, tuple)):
        items = [canonicalize(v) for v in value]
        if key in UNORDERED_SET_FIELDS:
            unique = {_stable_json(item): item for item in items}
            return [unique[k] for k in sorted(unique)]
        return items
    if isinstance(value, str):
        return value.strip()
    return value


def _stable_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_content_hash(content: Dict[str, Any]) -> str:
    """sha256 over the canonical JSON of already-canonicalized content."""
    return hashlib.sha256(_stable_json(content).encode("utf-8")).hexdigest()


def _b64_json(data: Dict[str, Any]) -> str:
    raw = json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def machine_marker(canonical_id: str, content_hash: str) -> str:
    payload = {"v": 1, "canonical_id": canonical_id, "hash": content_hash}
    return f"<!-- issue-mirror:{_b64_json(payload)} -->"


def parse_machine_marker(body: Optional[str]) -> Optional[Dict[str, Any]]:
    if not body:
        return None
    m = _MACHINE_MARKER_RE.search(body)
    if not m:
        return None
    try:
        raw = base64.b64decode(m.group("b64").encode("ascii"))
        obj = json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    return obj if isinstance(obj, dict) else None


def body_marker(canonical_id: str) -> str:
    return f"{BODY_MARKER_PREFIX} {canonical_id}"


def title_with_marker(canonical_id: str, title: str) -> str:
    return f"{TITLE_MARKER_PREFIX}{canonical_id}{TITLE_MARKER_SUFFIX} {title}"


def extract_canonical_id_from_body(body: Optional[str]) -> Optional[str]:
    """Canonical id from the first `Canonical-ID: <id>` line, if any."""
    if not body:
        return None
    for line in body.splitlines():
        stripped = line.strip()
        if stripped.startswith(BODY_MARKER_PREFIX):
            cid = stripped[len(BODY_MARKER_PREFIX):].strip()
            if cid:
                return cid
    return None


def extract_canonical_id_from_title(title: Optional[str]) -> Optional[str]:
    """Canonical id from a `[CID:<id>] ...` title prefix, if any."""
    if not title:
        return None
    stripped = title.strip()
    if not stripped.startswith(TITLE_MARKER_PREFIX):
        return None
    end = stripped.find(TITLE_MARKER_SUFFIX, len(TITLE_MARKER_PREFIX))
    if end == -1:
        return None
    return stripped[len(TITLE_MARKER_PREFIX):end].strip() or None


def _format_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return _stable_json(value)
    return str(value)


class ContentRenderer:
    """Turns a canonical record into title/body/labels plus a content hash.

    Pure: the same record (up to key order and set ordering) always renders to
    the same output.
    """

    def __init__(self, label_policy: Optional[ManagedLabelPolicy] = None):
        self.label_policy = label_policy or ManagedLabelPolicy()

    @staticmethod
    def semantic_content(record: Union[CanonicalRecord, Dict[str, Any]]) -> Dict[str, Any]:
        if not isinstance(record, CanonicalRecord):
            record = CanonicalRecord.model_validate(record)
        return canonicalize(record.model_dump(mode="json", exclude_none=True))

    def render(self, record: Union[CanonicalRecord, Dict[str, Any]]) -> RenderedContent:
        content = self.semantic_content(record)
        content_hash = compute_content_hash(content)
        canonical_id = content["canonical_id"]

        return RenderedContent(
            canonical_id=canonical_id,
            title=title_with_marker(canonical_id, content["title"]),
            body=self._render_body(content, content_hash),
            labels=self._render_labels(content),
            hash=content_hash,
        )

    def _render_labels(self, content: Dict[str, Any]) -> Tuple[str, ...]:
        labels = set(self.label_policy.managed_labels())
        labels.add(self.label_policy.canonical_label(content["canonical_id"]))
        labels.update(content.get("labels", []))
        return tuple(sorted(labels))

    def _render_body(self, content: Dict[str, Any], content_hash: str) -> str:
        canonical_id = content["canonical_id"]
        header = "\n".join([body_marker(canonical_id), machine_marker(canonical_id, content_hash)])
        sections = [
            header,
            self._render_description(content),
            self._render_acceptance_criteria(content),
            self._render_dependencies(content),
            self._render_verify(content),
            self._render_details(content),
        ]
        return "\n\n".join(s for s in sections if s)

    @staticmethod
    def _render_description(content: Dict[str, Any]) -> str:
        body = content.get("body") or "*No description provided*"
        return f"## Description\n\n{body}"

    @staticmethod
    def _render_acceptance_criteria(content: Dict[str, Any]) -> str:
        criteria: List[str] = content.get("acceptance_criteria") or []
        if not criteria:
            return ""
        lines = ["## Acceptance Criteria", ""]
        lines.extend(f"{i}. {ac}" for i, ac in enumerate(criteria, start=1))
        return "\n".join(lines)

    @staticmethod
    def _render_dependencies(content: Dict[str, Any]) -> str:
        deps: List[str] = content.get("depends_on") or []
        if not deps:
            return ""
        lines = ["## Dependencies", ""]
        lines.extend(f"- {dep}" for dep in deps)
        return "\n".join(lines)

    @staticmethod
    def _render_verify(content: Dict[str, Any]) -> str:
        verify = content.get("verify") or {}
        if not verify:
            return ""
        lines = ["## Verification"]
        for key in sorted(verify):
            value = verify[key]
            lines.append("")
            lines.append(f"**{key.replace('_', ' ').capitalize()}:**")
            if isinstance(value, list):
                lines.extend(f"- `{item}`" for item in value)
            else:
                lines.append(_format_value(value))
        return "\n".join(lines)

    @staticmethod
    def _render_details(content: Dict[str, Any]) -> str:
        keys = [k for k in sorted(content) if k not in _SECTION_FIELDS]
        details = [(k, content[k]) for k in keys if content[k] not in ({}, [], "")]
        if not details:
            return ""
        lines = ["## Details", ""]
        lines.extend(f"- **{k}:** {_format_value(v)}" for k, v in details)
        return "\n".join(lines)
