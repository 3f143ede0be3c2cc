"""Pydantic models describing registered step modules."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..contracts import utcnow


class ModuleDescriptor(BaseModel):
    """Metadata about a module registered under a step type."""

    name: str
    description: Optional[str] = None
    is_async: bool = False
    qualname: str = Field(..., description="Dotted path of the implementation")
    registered_at: datetime = Field(default_factory=utcnow)
