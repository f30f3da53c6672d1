"""
Tenancy error taxonomy.

These are raised by the resolver, policy engine, provisioner and session bridge and
mapped to HTTP status codes by the handlers registered in app.main.
"""

from typing import Optional


class TenancyError(Exception):
    """Base class for tenancy failures"""


class ResolutionFailed(TenancyError):
    """The tenant directory could not be queried; distinct from "no tenant"."""

    def __init__(self, hostname: str, cause: Optional[BaseException] = None):
        self.hostname = hostname
        self.cause = cause
        super().__init__(f"Tenant resolution failed for host '{hostname}': {cause}")


class SlugValidationError(TenancyError, ValueError):
    """Slug does not have the shape of a DNS label"""

    def __init__(self, slug: str, message: str):
        self.slug = slug
        super().__init__(message)


class ReservedSlugConflict(TenancyError):
    """Slug is reserved for the platform or already claimed by another tenant"""

    def __init__(self, slug: str, reason: str = "taken"):
        self.slug = slug
        self.reason = reason
        if reason == "reserved":
            message = f"The library URL '{slug}' is reserved"
        else:
            message = f"The library URL '{slug}' is already taken"
        super().__init__(message)


class TenantNotFound(TenancyError):
    """No tenant for this request or identifier"""


class PolicyDenied(TenancyError):
    """No allow-rule matched. Rendered exactly like a missing resource."""

    def __init__(self, table: str, operation: str):
        self.table = table
        self.operation = operation
        super().__init__(f"{operation} on {table} denied")


class PolicyRecursionError(TenancyError):
    """A policy predicate reads the table it protects"""

    def __init__(self, table: str, rule_name: Optional[str] = None):
        self.table = table
        self.rule_name = rule_name
        where = f" (rule '{rule_name}')" if rule_name else ""
        super().__init__(f"Policy predicate for '{table}' queries '{table}'{where}")


class StoreUnavailable(TenancyError):
    """Transient data store failure; the caller may retry once"""


class ProvisioningPartialFailure(TenancyError):
    """A provisioning step failed after the transaction began; everything was rolled back"""

    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"Provisioning failed at step '{step}': {cause}")

    @property
    def transient(self) -> bool:
        return isinstance(self.cause, StoreUnavailable)


class SessionBridgeMalformed(TenancyError):
    """Session cookie present but unparseable. Never escapes SessionBridge.read()."""
