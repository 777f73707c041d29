"""
Incident RCA - Data Model
==========================

Records passed between the pipeline stages.

All records are pydantic models. The ones the pipeline borrows from the
persistence layer (organizations, integrations, indexes) are frozen so no
stage can mutate them during a run.
"""

from datetime import datetime
from typing import Any, Optional

from langchain_core.documents import Document
from pydantic import BaseModel, ConfigDict, Field, field_validator


class AlertEvent(BaseModel):
    """Vendor-neutral alert produced by an alert parser."""

    model_config = ConfigDict(frozen=True)

    source: str
    message: str
    created_at: datetime
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("source", "message")
    @classmethod
    def _not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value


class RetrievedDocument(BaseModel):
    """A knowledge-base chunk with its similarity score (higher = closer)."""

    model_config = ConfigDict(frozen=True)

    text: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_langchain(cls, document: Document, score: float) -> "RetrievedDocument":
        return cls(
            text=document.page_content,
            score=score,
            metadata=dict(document.metadata),
        )


class Vendor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str


class Integration(BaseModel):
    """
    A configured connection to a third-party vendor.

    ``credentials`` holds secret references until the secret manager
    populates them; populated copies are new objects.
    """

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    organization: str
    vendor: Vendor
    credentials: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Organization(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class KnowledgeIndex(BaseModel):
    """The organization's knowledge base: vector store name and type."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    organization: str
    name: str
    type: str


class LogCluster(BaseModel):
    """
    A group of structurally similar log lines returned by the log parser.

    Vendor-specific fields are kept as extra attributes.
    """

    model_config = ConfigDict(extra="allow")

    Level: str
    EventId: str
    EventTemplate: str
    Occurrences: int
    Percentage: float

    def additional_info(self) -> dict[str, Any]:
        """Everything except level, template, occurrences and percentage."""
        return {"EventId": self.EventId, **(self.model_extra or {})}


class LogRow(BaseModel):
    """
    One log row after decoding the vendor envelope.

    ``user_data`` is the decoded row, or None when the inner JSON string
    could not be decoded; ``raw`` always holds the original string.
    """

    user_data: Optional[dict[str, Any]] = None
    raw: str


class ParsedLogs(BaseModel):
    results: list[LogRow] = Field(default_factory=list)

    def rows(self) -> list[Any]:
        """Decoded rows, falling back to the raw string per row."""
        return [
            row.user_data if row.user_data is not None else row.raw
            for row in self.results
        ]


class RunContext(BaseModel):
    """Correlation data attached to the logs of one RCA run."""

    model_config = ConfigDict(frozen=True)

    organization_id: str
    organization_name: str
    env: str
    event_id: Optional[str] = None
    context: str
