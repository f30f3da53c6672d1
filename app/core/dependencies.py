"""
Core dependencies for route protection and tenant context
"""

from fastapi import Depends, Request, Response, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.config.settings import settings
from app.config.isolation_policies import build_policy_registry
from app.core.exceptions import TenantNotFound
from app.core.policy_engine import PolicyRegistry, Principal
from app.database.supabase_client import get_supabase
from app.modules.auth.service import AuthService
from app.modules.session_bridge.service import CrossDomainSessionStore, SessionBridge
from app.modules.tenancy.reserved import ReservedSlugGuard
from app.modules.tenancy.schemas import TenantRef
from supabase import Client
from functools import lru_cache
from typing import Optional
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def get_auth_service(supabase: Client = Depends(get_supabase)) -> AuthService:
    return AuthService(supabase)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Security(security),
    auth_service: AuthService = Depends(get_auth_service)
) -> dict:
    """Extract current user info from JWT token"""
    token = credentials.credentials
    user_data = auth_service.get_current_user(token)
    return user_data


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_security),
    auth_service: AuthService = Depends(get_auth_service)
) -> Optional[dict]:
    """Current user when a bearer token is sent, None for anonymous callers"""
    if credentials is None:
        return None
    return auth_service.get_current_user(credentials.credentials)


def is_super_user(user_data: Optional[dict]) -> bool:
    """Check if user is a super user from app_metadata"""
    # app_metadata is set server-side and cannot be modified by users
    return Principal.from_user_data(user_data).is_platform_admin


def get_principal(user_data: Optional[dict] = Depends(get_optional_user)) -> Principal:
    return Principal.from_user_data(user_data)


def get_authenticated_principal(user_data: dict = Depends(get_current_user_id)) -> Principal:
    return Principal.from_user_data(user_data)


def get_tenant(request: Request) -> Optional[TenantRef]:
    """Tenant attached by the resolution middleware (None on platform hosts)"""
    return getattr(request.state, "tenant", None)


def require_tenant(tenant: Optional[TenantRef] = Depends(get_tenant)) -> TenantRef:
    if tenant is None:
        raise TenantNotFound("no tenant for this host")
    return tenant


def require_platform(tenant: Optional[TenantRef] = Depends(get_tenant)) -> None:
    """Platform-only routes do not exist on library hosts"""
    if tenant is not None:
        raise TenantNotFound(f"platform route requested on tenant host {tenant.slug}")


@lru_cache()
def get_reserved_guard() -> ReservedSlugGuard:
    return ReservedSlugGuard.from_settings(settings)


def get_policy_registry() -> PolicyRegistry:
    return build_policy_registry()


@lru_cache()
def get_session_store() -> CrossDomainSessionStore:
    return CrossDomainSessionStore.from_settings(settings)


def get_session_bridge(
    request: Request,
    response: Response,
    store: CrossDomainSessionStore = Depends(get_session_store)
) -> SessionBridge:
    return SessionBridge(store, request, response)
