# src/manuscript_pipeline/api/models.py — v1
"""Handler-facing request and response models.

The HTTP layer is an external collaborator; these models are the shapes
it exchanges with the facade.
"""

from __future__ import annotations

from pydantic import Field

from manuscript_pipeline.core.models import CamelModel, StatusRecord, SubmitOptions


class UploadRequest(CamelModel):
    user_id: str
    text: str = Field(min_length=1)
    title: str = ""
    genre: str = "general"
    manuscript_id: str | None = None


class UploadResponse(CamelModel):
    manuscript_id: str
    word_count: int


class SubmitRequest(CamelModel):
    """POST /submit body."""

    manuscript_id: str
    options: SubmitOptions
    # Caller-chosen id; generated when omitted
    report_id: str | None = None


class SubmitResponse(CamelModel):
    report_id: str
    status: StatusRecord


class CancelResponse(CamelModel):
    """POST /cancel/{reportId} answer (HTTP 202)."""

    report_id: str
    accepted: bool = True


class StatusView(CamelModel):
    """StatusRecord plus the user-facing message for failed/cancelled reports."""

    report_id: str
    status: StatusRecord
    user_message: str | None = None


class ErrorResponse(CamelModel):
    """Contract error mapped for the HTTP layer. Never carries internal text."""

    error: str
    message: str
    http_status: int
