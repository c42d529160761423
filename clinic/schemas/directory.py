from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


@dataclass
class Record:
    """A document as delivered by the directory: its path, id and stored fields."""
    path: str
    id: str
    data: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def as_entry(self) -> dict[str, Any]:
        return {"id": self.id, **self.data}


class Identity(BaseModel):
    id: str
    identifier: str
    auth_method: str  # "email" | "mobile"

    model_config = ConfigDict(from_attributes=True)


class SessionToken(BaseModel):
    access_token: str
    token_type: str = "bearer"
    identity: Identity
    expires_at: int


class BlobResponse(BaseModel):
    id: int
    name: str
    url: str
    file_size: Optional[int] = None
    uploaded_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
