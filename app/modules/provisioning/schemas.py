from pydantic import BaseModel, EmailStr
from typing import Optional


class ProvisionRequest(BaseModel):
    slug: str
    display_name: str
    owner_email: EmailStr
    owner_password_hash: Optional[str] = None  # schema-per-tenant mode
    owner_id: Optional[str] = None  # shared-schema mode: the authenticated caller


class ProvisionResult(BaseModel):
    tenant_id: str
    slug: str
    schema_name: Optional[str] = None
    owner_id: str
    owner_created: bool = False
    url: str

    class Config:
        from_attributes = True
