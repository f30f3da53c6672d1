from fastapi import APIRouter, Depends, HTTPException, Request
from app.config.settings import settings
from app.core.dependencies import (
    get_authenticated_principal, get_current_user_id, get_policy_registry, get_principal,
    get_reserved_guard, require_platform, require_tenant
)
from app.core.policy_engine import PolicyRegistry, Principal
from app.core.tenant_middleware import get_strategy
from app.database.supabase_client import get_service_supabase
from app.modules.provisioning.schemas import ProvisionRequest, ProvisionResult
from app.modules.tenancy.reserved import ReservedSlugGuard
from app.modules.tenancy.schemas import (
    LibraryCreate, LibraryResponse, LibraryUpdate, MembershipResponse,
    MembershipRoleUpdate, SlugAvailability, TenantRef
)
from app.modules.tenancy.service import TenantService
from starlette.concurrency import run_in_threadpool
from supabase import Client
from typing import Dict

router = APIRouter(tags=["tenancy"])


def get_tenant_service(
    supabase: Client = Depends(get_service_supabase),
    registry: PolicyRegistry = Depends(get_policy_registry),
    guard: ReservedSlugGuard = Depends(get_reserved_guard)
) -> TenantService:
    return TenantService(supabase, registry, guard, settings.canonical_domain)


@router.get("/tenant", response_model=TenantRef)
async def get_current_tenant(tenant: TenantRef = Depends(require_tenant)):
    """Library this host belongs to"""
    return tenant


@router.get("/platform/check-slug/{slug}", response_model=SlugAvailability)
async def check_slug(
    slug: str,
    service: TenantService = Depends(get_tenant_service)
):
    """Whether a library URL can still be claimed"""
    return service.check_slug(slug)


@router.post(
    "/platform/libraries",
    response_model=ProvisionResult,
    status_code=201,
    dependencies=[Depends(require_platform)]
)
async def create_library(
    request: Request,
    library_data: LibraryCreate,
    current_user: Dict = Depends(get_current_user_id)
):
    """Create a library owned by the caller"""
    strategy = get_strategy(request.app)
    if strategy.mode != "shared":
        raise HTTPException(
            status_code=400,
            detail="Libraries are created with the create_tenant command in schema-per-tenant mode"
        )
    provision_request = ProvisionRequest(
        slug=library_data.slug.strip().lower(),
        display_name=library_data.name.strip(),
        owner_email=current_user["email"],
        owner_id=current_user["id"],
    )
    return await run_in_threadpool(strategy.provision, provision_request)


@router.get("/libraries/{library_id}", response_model=LibraryResponse)
async def get_library(
    library_id: str,
    principal: Principal = Depends(get_principal),
    service: TenantService = Depends(get_tenant_service)
):
    return service.get_library(library_id, principal)


@router.patch("/libraries/{library_id}", response_model=LibraryResponse)
async def update_library(
    library_id: str,
    library_data: LibraryUpdate,
    principal: Principal = Depends(get_authenticated_principal),
    service: TenantService = Depends(get_tenant_service)
):
    """Rename, change domain, or toggle activation/discoverability (owner or admin)"""
    return service.update_library(library_id, library_data, principal)


@router.post("/libraries/{library_id}/members", response_model=MembershipResponse, status_code=201)
async def join_library(
    library_id: str,
    principal: Principal = Depends(get_authenticated_principal),
    service: TenantService = Depends(get_tenant_service)
):
    return service.join(library_id, principal)


@router.delete("/libraries/{library_id}/members/me", status_code=204)
async def leave_library(
    library_id: str,
    principal: Principal = Depends(get_authenticated_principal),
    service: TenantService = Depends(get_tenant_service)
):
    service.leave(library_id, principal)


@router.put("/libraries/{library_id}/members/{user_id}/role", response_model=MembershipResponse)
async def set_member_role(
    library_id: str,
    user_id: str,
    role_data: MembershipRoleUpdate,
    principal: Principal = Depends(get_authenticated_principal),
    service: TenantService = Depends(get_tenant_service)
):
    """Promote a member to moderator or demote back (library owner only)"""
    return service.set_member_role(library_id, user_id, role_data.role, principal)
