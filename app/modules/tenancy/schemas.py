from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class TenantRef(BaseModel):
    id: str
    slug: str
    name: str
    owner_id: str
    custom_domain: Optional[str] = None

    class Config:
        from_attributes = True


class LibraryResponse(BaseModel):
    id: str
    slug: str
    name: str
    owner_id: str
    custom_domain: Optional[str] = None
    is_active: bool = True
    is_discoverable: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LibraryCreate(BaseModel):
    slug: str
    name: str


class LibraryUpdate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    custom_domain: Optional[str] = None
    clear_custom_domain: bool = False
    is_active: Optional[bool] = None
    is_discoverable: Optional[bool] = None


class SlugAvailability(BaseModel):
    slug: str
    available: bool
    reason: Optional[str] = None  # invalid_format | reserved | taken


class MembershipResponse(BaseModel):
    id: str
    library_id: str
    user_id: str
    role: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MembershipRoleUpdate(BaseModel):
    role: str
