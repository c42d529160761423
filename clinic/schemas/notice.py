from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class Notice(BaseModel):
    """A dismissible, non-blocking message shown to the user."""
    id: int
    level: Literal["info", "success", "error"] = "info"
    title: str
    message: str
    field: Optional[str] = None
    retryable: bool = False
    created_at: datetime = Field(default_factory=datetime.now)
