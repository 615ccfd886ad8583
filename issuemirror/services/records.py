"""Canonical record schema"""

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_CANONICAL_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:\-]*$")


class CanonicalRecord(BaseModel):
    """A locally-owned unit of work mirrored to the tracker.

    Besides the known fields, arbitrary structured fields are accepted and
    become part of the rendered (and hashed) content.
    """

    model_config = ConfigDict(extra="allow")

    canonical_id: str = Field(min_length=1, max_length=50)
    title: str = Field(min_length=1, max_length=200)
    body: str = ""
    type: str = "issue"
    labels: List[str] = Field(default_factory=list)
    depends_on: List[str] = Field(default_factory=list)
    priority: Optional[str] = None
    acceptance_criteria: List[str] = Field(default_factory=list)
    verify: Optional[Dict[str, Any]] = None
    kpi: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("canonical_id")
    @classmethod
    def _check_canonical_id(cls, value: str) -> str:
        value = value.strip()
        # The id is embedded in a single marker line and a label; keep it token-like.
        if not _CANONICAL_ID_RE.match(value):
            raise ValueError("canonical_id must be a single token of [A-Za-z0-9._:-]")
        return value

    @field_validator("labels", "depends_on")
    @classmethod
    def _drop_blank_entries(cls, value: List[str]) -> List[str]:
        return [v.strip() for v in value if v and v.strip()]
