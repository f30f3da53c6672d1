from fastapi import APIRouter, Depends, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.modules.auth.schemas import LoginRequest, TokenResponse
from app.modules.auth.service import AuthService
from app.modules.session_bridge.service import SessionBridge
from app.core.dependencies import (
    get_auth_service, get_current_user_id, get_session_bridge, get_tenant, is_super_user
)
from app.modules.tenancy.schemas import TenantRef
from typing import Dict, Optional

router = APIRouter(prefix="/auth", tags=["auth"])

# Security scheme for JWT Bearer token
security = HTTPBearer()


def get_current_token(
    credentials: HTTPAuthorizationCredentials = Security(security)
) -> str:
    """Extract JWT token from Authorization header"""
    return credentials.credentials


@router.post("/login", response_model=TokenResponse)
async def login(
    login_data: LoginRequest,
    service: AuthService = Depends(get_auth_service),
    bridge: SessionBridge = Depends(get_session_bridge)
):
    """Login, get access token, and share the session across library subdomains"""
    token = service.login(login_data)
    if token.refresh_token:
        bridge.write(service.session_tokens(token))
    return token


@router.post("/logout", status_code=200)
async def logout(
    token: str = Depends(get_current_token),
    service: AuthService = Depends(get_auth_service),
    bridge: SessionBridge = Depends(get_session_bridge)
):
    """Logout, invalidate token and drop the shared session cookie"""
    service.logout(token)
    bridge.clear()
    return {"message": "Logged out successfully"}


@router.get("/me")
async def get_current_user(
    current_user: Dict = Depends(get_current_user_id),
    tenant: Optional[TenantRef] = Depends(get_tenant),
):
    """Current user plus whether they own the library this host belongs to."""
    return {
        **current_user,
        "is_platform_admin": is_super_user(current_user),
        "is_library_owner": bool(tenant and tenant.owner_id == current_user["id"]),
    }
