"""Pydantic request/response schemas for export jobs.

Used by the export API routes for validation, serialisation, and OpenAPI
documentation generation.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ExportCreate(BaseModel):
    """Payload for submitting a new export.

    Attributes:
        user_id: Owner of the export; pays the credits.
        file_id: Upload whose rows are exported.
        selected_templates: Template names to generate per row.  Names that
            start with ``custom_`` need an entry in ``custom_prompts``.
        start_row: Index of the first row to export (default 0).
        max_rows: Number of rows to export from ``start_row``; all remaining
            rows when omitted.
        custom_prompts: Prompt text for custom templates, by template name.
    """

    user_id: str = Field(min_length=1)
    file_id: uuid.UUID
    selected_templates: List[str] = Field(min_length=1)
    start_row: int = Field(default=0, ge=0)
    max_rows: Optional[int] = Field(default=None, ge=1)
    custom_prompts: Optional[Dict[str, str]] = None


class ExportCreated(BaseModel):
    """Response to a successful submission."""

    job_id: uuid.UUID


class ExportJobRead(BaseModel):
    """Status of an export job, as returned to pollers.

    ``row_data`` is populated once the job has completed.
    """

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    file_id: uuid.UUID
    status: str
    selected_templates: List[str]
    total_rows: int
    processed_rows: int
    progress: float
    row_data: Optional[List[Dict[str, Any]]] = None
    error_message: Optional[str] = None
    credits_used: int = 0
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
