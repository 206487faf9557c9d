"""
Credential data models.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class BackendKind(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class CredentialRecord(BaseModel):
    """A stored service/username/secret entry."""

    id: str = Field(description="Unique credential ID (UUID)")
    service: str = Field(description="Service name, e.g. 'Gmail'")
    username: str = Field(description="Account name on the service")
    secret: str = Field(description="Stored secret (plaintext, no at-rest encryption)")
    url: Optional[str] = Field(default=None, description="Login URL")
    notes: Optional[str] = Field(default=None, description="Free-form notes")
    created_at: datetime = Field(description="Creation timestamp (UTC)")
    updated_at: datetime = Field(description="Last modification timestamp (UTC)")

    def to_public_dict(self) -> Dict[str, Any]:
        """JSON-ready dict with ISO timestamps."""
        return self.model_dump(mode="json")


class CredentialPage(BaseModel):
    """One page of a credential listing."""

    records: List[CredentialRecord] = Field(default_factory=list)
    total: int = Field(description="Records matching the search across all pages")
    page: int = Field(description="1-based page number")
    page_size: int = Field(description="Maximum records per page")

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0

    @property
    def has_next(self) -> bool:
        return self.page * self.page_size < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "records": [r.to_public_dict() for r in self.records],
            "pagination": {
                "page": self.page,
                "page_size": self.page_size,
                "total": self.total,
                "total_pages": self.total_pages,
                "has_next": self.has_next,
                "has_prev": self.has_prev,
            },
        }


class ServiceBreakdown(BaseModel):
    service: str
    count: int
    last_updated: Optional[datetime] = None


class CredentialStats(BaseModel):
    """Aggregate figures over the whole store."""

    total: int
    recent_count: int = Field(description="Records created inside the window")
    window_days: int
    per_service: List[ServiceBreakdown] = Field(default_factory=list)

    @property
    def has_credentials(self) -> bool:
        return self.total > 0

    def to_public_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["has_credentials"] = self.has_credentials
        return data
