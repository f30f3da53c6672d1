import logging
from typing import Optional

from supabase import Client

from app.core.exceptions import (
    ProvisioningPartialFailure, ReservedSlugConflict, TenantNotFound
)
from app.modules.provisioning.schemas import ProvisionRequest, ProvisionResult
from app.modules.provisioning.store import ProvisioningStore
from app.modules.tenancy.reserved import ReservedSlugGuard, schema_name_for, validate_slug

logger = logging.getLogger(__name__)


def tenant_url(slug: str, root_domain: str) -> str:
    return f"https://{slug}.{root_domain}/login"


def check_claimable(slug: str, guard: ReservedSlugGuard) -> str:
    """Shape and reserved-set checks; both run before any store access."""
    validate_slug(slug)
    if guard.is_reserved(slug):
        raise ReservedSlugConflict(slug, "reserved")
    return slug


class TenantProvisioner:
    """Schema-per-tenant provisioning: directory row, owner, membership and schema in one unit."""

    def __init__(self, store: ProvisioningStore, guard: ReservedSlugGuard, root_domain: str):
        self.store = store
        self.guard = guard
        self.root_domain = root_domain

    def provision(
        self,
        slug: str,
        display_name: str,
        owner_email: str,
        owner_password_hash: str,
    ) -> ProvisionResult:
        """Create a tenant and its isolated schema.

        An owner email that already has an identity gets the new tenant attached to
        that identity; the password hash is then ignored.

        Raises:
            SlugValidationError: slug shape invalid; the store is never touched.
            ReservedSlugConflict: slug reserved or already claimed; nothing written.
            ProvisioningPartialFailure: a step failed; every prior step rolled back.
        """
        check_claimable(slug, self.guard)
        schema_name = schema_name_for(slug)
        # Without transactional DDL the schema goes first, so the directory rows are
        # never committed ahead of a schema that might still fail
        schema_first = not self.store.transactional_ddl

        step = "check_slug"
        try:
            with self.store.transaction() as uow:
                if uow.slug_exists(slug):
                    raise ReservedSlugConflict(slug, "taken")

                if schema_first:
                    step = "schema"
                    uow.create_schema(schema_name)

                step = "owner"
                owner = uow.find_user_by_email(owner_email)
                owner_created = owner is None
                if owner_created:
                    owner = uow.insert_user(owner_email, owner_password_hash, display_name)

                step = "tenant"
                tenant = uow.insert_tenant(slug, display_name, owner["id"], schema_name)

                step = "membership"
                uow.insert_membership(tenant["id"], owner["id"], "owner")

                if not schema_first:
                    step = "schema"
                    uow.create_schema(schema_name)
        except ReservedSlugConflict:
            logger.info(f"Provisioning rejected, slug '{slug}' already taken")
            raise
        except Exception as e:
            logger.error(f"Provisioning '{slug}' failed at step '{step}': {e}")
            raise ProvisioningPartialFailure(step, e) from e

        logger.info(f"Provisioned tenant '{slug}' in schema {schema_name}")
        return ProvisionResult(
            tenant_id=tenant["id"],
            slug=slug,
            schema_name=schema_name,
            owner_id=owner["id"],
            owner_created=owner_created,
            url=tenant_url(slug, self.root_domain),
        )

    def provision_request(self, request: ProvisionRequest) -> ProvisionResult:
        return self.provision(
            request.slug, request.display_name, request.owner_email, request.owner_password_hash
        )

    def deprovision(self, slug: str) -> str:
        """Remove the directory row, memberships and schema of a tenant. Returns the schema name."""
        step = "tenant"
        try:
            with self.store.transaction() as uow:
                tenant = uow.delete_tenant(slug)
                if tenant is None:
                    raise TenantNotFound(slug)
                step = "schema"
                uow.drop_schema(tenant["schema_name"])
        except TenantNotFound:
            raise
        except Exception as e:
            logger.error(f"Deprovisioning '{slug}' failed at step '{step}': {e}")
            raise ProvisioningPartialFailure(step, e) from e
        logger.info(f"Deprovisioned tenant '{slug}'")
        return tenant["schema_name"]


class SupabaseTenantProvisioner:
    """Shared-schema provisioning: a libraries row plus the owner's membership row."""

    def __init__(self, supabase: Client, guard: ReservedSlugGuard, root_domain: str):
        self.supabase = supabase
        self.guard = guard
        self.root_domain = root_domain

    def provision(self, slug: str, display_name: str, owner_id: str) -> ProvisionResult:
        check_claimable(slug, self.guard)

        try:
            result = self.supabase.table("libraries").insert({
                "slug": slug,
                "name": display_name,
                "owner_id": owner_id,
            }).execute()
        except Exception as e:
            if _is_unique_violation(e):
                raise ReservedSlugConflict(slug, "taken") from e
            logger.error(f"Library insert for '{slug}' failed: {e}")
            raise ProvisioningPartialFailure("tenant", e) from e
        if not result.data:
            raise ProvisioningPartialFailure("tenant", RuntimeError("insert returned no row"))
        library = result.data[0]

        try:
            self.supabase.table("library_members").insert({
                "library_id": library["id"],
                "user_id": owner_id,
                "role": "owner",
            }).execute()
        except Exception as e:
            logger.error(f"Owner membership for '{slug}' failed, removing library: {e}")
            self._delete_library(library["id"])
            raise ProvisioningPartialFailure("membership", e) from e

        logger.info(f"Created library '{slug}' for owner {owner_id}")
        return ProvisionResult(
            tenant_id=library["id"],
            slug=slug,
            owner_id=owner_id,
            url=tenant_url(slug, self.root_domain),
        )

    def provision_request(self, request: ProvisionRequest) -> ProvisionResult:
        if not request.owner_id:
            raise ValueError("owner_id is required for shared-schema provisioning")
        return self.provision(request.slug, request.display_name, request.owner_id)

    def _delete_library(self, library_id: str) -> None:
        try:
            self.supabase.table("libraries").delete().eq("id", library_id).execute()
        except Exception as e:
            logger.error(f"Compensating delete of library {library_id} failed: {e}")


def _is_unique_violation(error: Exception) -> bool:
    code: Optional[str] = getattr(error, "code", None)
    return code == "23505" or "duplicate key" in str(error).lower()
