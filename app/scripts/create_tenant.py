"""
Create Tenant Script
Provisions a library in schema-per-tenant mode: directory row, owner identity,
owner membership and the library's own schema, all in one transaction.

    python -m app.scripts.create_tenant SLUG DISPLAY_NAME OWNER_EMAIL OWNER_PASSWORD
"""

import logging

import bcrypt
import typer
from pydantic import ValidationError

from app.config.settings import settings
from app.core.exceptions import (
    ProvisioningPartialFailure, ReservedSlugConflict, SlugValidationError
)
from app.database.sql_engine import ConfigurationError, get_engine
from app.modules.provisioning.schemas import ProvisionRequest, ProvisionResult
from app.modules.provisioning.service import TenantProvisioner, check_claimable
from app.modules.provisioning.store import SqlProvisioningStore
from app.modules.tenancy.reserved import ReservedSlugGuard

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 8

cli = typer.Typer(add_completion=False, help="Provision a new GameTaverns library.")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def _build_provisioner() -> TenantProvisioner:
    store = SqlProvisioningStore(get_engine())
    store.create_core_tables()
    guard = ReservedSlugGuard.from_settings(settings)
    return TenantProvisioner(store, guard, settings.canonical_domain)


def _provision(provisioner: TenantProvisioner, request: ProvisionRequest) -> ProvisionResult:
    """Provision, retrying once when the store dropped the connection."""
    try:
        return provisioner.provision_request(request)
    except ProvisioningPartialFailure as e:
        if not e.transient:
            raise
        logger.warning(f"Transient store failure at step '{e.step}', retrying once")
    return provisioner.provision_request(request)


def _fail(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


@cli.command()
def create_tenant(
    slug: str = typer.Argument(..., help="Subdomain label, e.g. tzolak"),
    display_name: str = typer.Argument(..., help="Library name shown to visitors"),
    owner_email: str = typer.Argument(..., help="Owner login; an existing account is reused"),
    owner_password: str = typer.Argument(..., help="Owner password (ignored for existing accounts)"),
):
    # Shape and reserved checks first; nothing touches the database before they pass
    try:
        check_claimable(slug, ReservedSlugGuard.from_settings(settings))
    except SlugValidationError as e:
        _fail(f"invalid slug '{slug}': {e}")
    except ReservedSlugConflict as e:
        _fail(str(e))

    if not display_name.strip():
        _fail("display name cannot be empty")
    if len(owner_password) < MIN_PASSWORD_LENGTH:
        _fail(f"password must be at least {MIN_PASSWORD_LENGTH} characters")

    try:
        request = ProvisionRequest(
            slug=slug,
            display_name=display_name.strip(),
            owner_email=owner_email,
            owner_password_hash=hash_password(owner_password),
        )
    except ValidationError:
        _fail(f"invalid owner email '{owner_email}'")

    try:
        provisioner = _build_provisioner()
    except ConfigurationError as e:
        _fail(str(e))

    try:
        result = _provision(provisioner, request)
    except ReservedSlugConflict as e:
        _fail(str(e))
    except ProvisioningPartialFailure as e:
        _fail(f"provisioning failed at step '{e.step}': {e.cause}. Nothing was created.")

    if not result.owner_created:
        typer.echo(f"Attached to existing account {request.owner_email}")
    typer.echo(f"Library '{request.display_name}' created in schema {result.schema_name}")
    typer.echo(result.url)


if __name__ == "__main__":
    cli()
