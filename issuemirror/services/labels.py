"""Managed label policy

The engine owns a small set of labels (system marker + schema-version marker).
Every other label on a mirrored issue (state labels, operator labels, ...) is
preserved verbatim when the issue is updated.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Pattern, Tuple


@dataclass(frozen=True)
class ManagedLabelPolicy:
    """Injectable boundary between managed and preserved labels."""

    system_label: str = "afu9"
    schema_version_label: str = "v0.7"
    schema_version_pattern: Optional[str] = r"^v\d+\.\d+$"
    initial_state_label: Optional[str] = "state:CREATED"
    canonical_label_prefix: str = "cid:"
    extra_managed_labels: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls, settings) -> "ManagedLabelPolicy":
        return cls(
            system_label=settings.system_label,
            schema_version_label=settings.schema_version_label,
            schema_version_pattern=settings.schema_version_label_pattern or None,
            initial_state_label=settings.initial_state_label or None,
            canonical_label_prefix=settings.canonical_label_prefix,
        )

    @property
    def _schema_re(self) -> Optional[Pattern[str]]:
        if not self.schema_version_pattern:
            return None
        return re.compile(self.schema_version_pattern)

    def managed_labels(self) -> Tuple[str, ...]:
        """Labels the engine always applies."""
        labels = {self.system_label, self.schema_version_label, *self.extra_managed_labels}
        return tuple(sorted(label for label in labels if label))

    def is_managed(self, label: str) -> bool:
        if label in (self.system_label, self.schema_version_label):
            return True
        if label in self.extra_managed_labels:
            return True
        schema_re = self._schema_re
        return bool(schema_re is not None and schema_re.match(label))

    def canonical_label(self, canonical_id: str) -> str:
        return f"{self.canonical_label_prefix}{canonical_id}"

    def labels_for_create(self, content_labels: Iterable[str]) -> Tuple[str, ...]:
        labels = set(content_labels)
        if self.initial_state_label:
            labels.add(self.initial_state_label)
        return tuple(sorted(labels))

    def merge_for_update(
        self, existing_labels: Iterable[str], content_labels: Iterable[str]
    ) -> Tuple[str, ...]:
        """(existing - managed) | content labels, sorted."""
        preserved = {label for label in existing_labels if not self.is_managed(label)}
        return tuple(sorted(preserved | set(content_labels)))
