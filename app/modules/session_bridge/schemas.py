from pydantic import BaseModel
from typing import Optional


class SessionTokens(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: Optional[int] = None  # unix seconds


class SessionWriteResponse(BaseModel):
    written: bool


class SessionClearResponse(BaseModel):
    cleared: bool
