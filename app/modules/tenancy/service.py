import logging
import re
from typing import Any, Dict, Optional

from fastapi import HTTPException
from supabase import Client

from app.core.exceptions import PolicyDenied, ReservedSlugConflict
from app.core.policy_engine import PolicyEngine, PolicyRegistry, Principal
from app.modules.isolation.store import PolicyEnforcedStore, SupabaseRowSource
from app.modules.provisioning.service import check_claimable
from app.modules.tenancy.directory import SupabaseTenantDirectory, TenantDirectory
from app.modules.tenancy.reserved import ReservedSlugGuard, is_valid_slug
from app.modules.tenancy.resolver import is_local_host, is_within_domain, normalize_host
from app.modules.tenancy.schemas import (
    LibraryResponse, LibraryUpdate, MembershipResponse, SlugAvailability
)

logger = logging.getLogger(__name__)

HOSTNAME_PATTERN = re.compile(r"^(?=.{4,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")
ASSIGNABLE_ROLES = ("member", "moderator")


class TenantService:
    def __init__(
        self,
        supabase: Client,
        registry: PolicyRegistry,
        guard: ReservedSlugGuard,
        root_domain: str,
        directory: Optional[TenantDirectory] = None,
    ):
        self.supabase = supabase
        self.guard = guard
        self.root_domain = root_domain
        self.directory = directory or SupabaseTenantDirectory(supabase)
        self.engine = PolicyEngine(registry, SupabaseRowSource(supabase))

    def store_for(self, principal: Principal) -> PolicyEnforcedStore:
        return PolicyEnforcedStore(self.engine, principal)

    # Slugs

    def check_slug(self, slug: str) -> SlugAvailability:
        """Availability of a slug for signup forms, without claiming it"""
        slug = (slug or "").strip().lower()
        if not is_valid_slug(slug):
            return SlugAvailability(slug=slug, available=False, reason="invalid_format")
        if self.guard.is_reserved(slug):
            return SlugAvailability(slug=slug, available=False, reason="reserved")
        if self.directory.slug_exists(slug):
            return SlugAvailability(slug=slug, available=False, reason="taken")
        return SlugAvailability(slug=slug, available=True)

    # Libraries

    def get_library(self, library_id: str, principal: Principal) -> LibraryResponse:
        return LibraryResponse(**self.store_for(principal).get("libraries", library_id))

    def update_library(self, library_id: str, data: LibraryUpdate, principal: Principal) -> LibraryResponse:
        """Owner mutations: rename, custom domain, activation and discoverability.

        Callers who may not update the library get the same answer as for a library
        that does not exist.
        """
        store = self.store_for(principal)
        library = store.get("libraries", library_id)

        changes: Dict[str, Any] = {}
        if data.name is not None:
            name = data.name.strip()
            if not name:
                raise HTTPException(status_code=422, detail="Library name cannot be empty")
            changes["name"] = name
        slug = data.slug.strip().lower() if data.slug is not None else None
        if slug is not None and slug != library["slug"]:
            changes["slug"] = self._claim_slug(slug)
        if data.clear_custom_domain:
            changes["custom_domain"] = None
        elif data.custom_domain is not None:
            domain = self._validate_custom_domain(data.custom_domain)
            if domain != library.get("custom_domain"):
                changes["custom_domain"] = domain
        if data.is_active is not None:
            changes["is_active"] = data.is_active
        if data.is_discoverable is not None:
            changes["is_discoverable"] = data.is_discoverable

        if not changes:
            return LibraryResponse(**library)

        updated = store.update("libraries", changes, id=library_id)
        if not updated:
            raise PolicyDenied("libraries", "update")
        logger.info(f"Library {library_id} updated by {principal.user_id}: {sorted(changes)}")
        return LibraryResponse(**updated[0])

    def _claim_slug(self, slug: str) -> str:
        check_claimable(slug, self.guard)
        if self.directory.slug_exists(slug):
            raise ReservedSlugConflict(slug, "taken")
        return slug

    def _validate_custom_domain(self, value: str) -> str:
        domain = normalize_host(value)
        if not HOSTNAME_PATTERN.match(domain) or is_local_host(domain):
            raise HTTPException(status_code=422, detail="Custom domain must be a valid hostname")
        if is_within_domain(domain, self.root_domain):
            raise HTTPException(
                status_code=422,
                detail=f"Custom domain cannot be {self.root_domain} or one of its subdomains"
            )
        if self.directory.custom_domain_exists(domain):
            raise HTTPException(status_code=409, detail="Custom domain is already in use")
        return domain

    # Membership

    def _membership(self, store: PolicyEnforcedStore, library_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        rows = store.select("library_members", library_id=library_id, user_id=user_id)
        return rows[0] if rows else None

    def join(self, library_id: str, principal: Principal) -> MembershipResponse:
        store = self.store_for(principal)
        existing = self._membership(store, library_id, principal.user_id)
        if existing:
            return MembershipResponse(**existing)
        row = store.insert("library_members", {
            "library_id": library_id,
            "user_id": principal.user_id,
            "role": "member",
        })
        logger.info(f"User {principal.user_id} joined library {library_id}")
        return MembershipResponse(**row)

    def leave(self, library_id: str, principal: Principal) -> None:
        store = self.store_for(principal)
        membership = self._membership(store, library_id, principal.user_id)
        if not membership:
            raise PolicyDenied("library_members", "delete")
        if membership["role"] == "owner":
            raise HTTPException(status_code=400, detail="The owner cannot leave their own library")
        store.delete("library_members", id=membership["id"])
        logger.info(f"User {principal.user_id} left library {library_id}")

    def set_member_role(self, library_id: str, user_id: str, role: str, principal: Principal) -> MembershipResponse:
        if role not in ASSIGNABLE_ROLES:
            raise HTTPException(
                status_code=422,
                detail=f"Role must be one of: {', '.join(ASSIGNABLE_ROLES)}"
            )
        store = self.store_for(principal)
        membership = self._membership(store, library_id, user_id)
        if not membership:
            raise PolicyDenied("library_members", "update")
        if membership["role"] == "owner":
            raise HTTPException(status_code=400, detail="The owner's role cannot be changed")
        if membership["role"] == role:
            return MembershipResponse(**membership)
        updated = store.update("library_members", {"role": role}, id=membership["id"])
        if not updated:
            raise PolicyDenied("library_members", "update")
        return MembershipResponse(**updated[0])
