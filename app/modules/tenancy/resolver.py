"""
Hostname -> tenant resolution.

    tzolak.gametaverns.com      -> slug lookup "tzolak"
    games.example.org           -> custom-domain lookup
    gametaverns.com, localhost  -> no tenant (platform request)
    a.b.gametaverns.com         -> no tenant (unexpected depth)
    www.gametaverns.com         -> no tenant (reserved, never looked up)

The Host header is normalized here (lowercase, port and trailing dot stripped), so
callers may pass it through verbatim.
"""

import ipaddress
import logging
from typing import Optional

from app.core.exceptions import ResolutionFailed
from app.modules.tenancy.directory import TenantDirectory
from app.modules.tenancy.reserved import ReservedSlugGuard
from app.modules.tenancy.schemas import TenantRef

logger = logging.getLogger(__name__)


def normalize_host(host: Optional[str]) -> str:
    """Lowercase a Host header value and drop the port and any trailing dot."""
    value = (host or "").strip().lower()
    if value.startswith("["):
        # Bracketed IPv6 literal, optionally followed by :port
        end = value.find("]")
        return value[1:end] if end != -1 else value[1:]
    if value.count(":") == 1:
        value = value.split(":", 1)[0]
    return value.rstrip(".")


def is_local_host(hostname: str) -> bool:
    if hostname == "localhost" or hostname.endswith(".localhost"):
        return True
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    # IP literals never name a tenant
    return True


def is_within_domain(hostname: str, root_domain: str) -> bool:
    """True for the root domain itself or any subdomain of it (label boundary respected)."""
    return hostname == root_domain or hostname.endswith("." + root_domain)


class HostnameResolver:
    def __init__(self, directory: TenantDirectory, guard: ReservedSlugGuard, root_domain: str):
        self.directory = directory
        self.guard = guard
        self.root_domain = normalize_host(root_domain)

    def resolve(self, hostname: str) -> Optional[TenantRef]:
        """Return the active tenant for a host, or None for platform-level requests.

        Raises:
            ResolutionFailed: the directory could not be queried.
        """
        host = normalize_host(hostname)
        if not host or host == self.root_domain or is_local_host(host):
            return None

        if is_within_domain(host, self.root_domain):
            label = host[: -(len(self.root_domain) + 1)]
            if not label or "." in label:
                return None
            if self.guard.is_reserved(label):
                return None
            return self._lookup(host, self.directory.find_active_by_slug, label)

        return self._lookup(host, self.directory.find_active_by_custom_domain, host)

    def _lookup(self, host: str, finder, key: str) -> Optional[TenantRef]:
        try:
            return finder(key)
        except Exception as e:
            logger.error(f"Tenant lookup failed for host {host}: {e}")
            raise ResolutionFailed(host, e) from e
