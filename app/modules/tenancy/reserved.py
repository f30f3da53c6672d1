"""
Reserved slugs and slug shape rules.

A reserved slug is a subdomain label used by platform infrastructure; it can never be
claimed by a library and never resolves to one, whatever the directory holds.
"""

import hashlib
import re
from typing import FrozenSet, Iterable, Optional

from app.core.exceptions import SlugValidationError

BUILTIN_RESERVED_SLUGS: FrozenSet[str] = frozenset({
    "www", "api", "admin", "mail", "app", "help", "support", "blog",
    "tavern", "docs", "status", "platform", "demo",
})

SLUG_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")
SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 63
SCHEMA_PREFIX = "tenant_"
MAX_IDENTIFIER_LENGTH = 63


class ReservedSlugGuard:
    """Immutable reserved-slug set: built-ins plus the operator's extension list."""

    def __init__(self, extra: Optional[Iterable[str]] = None):
        extension = {s.strip().lower() for s in (extra or []) if s and s.strip()}
        self._slugs: FrozenSet[str] = BUILTIN_RESERVED_SLUGS | frozenset(extension)

    @classmethod
    def from_settings(cls, settings) -> "ReservedSlugGuard":
        return cls(settings.get_reserved_slugs_list())

    @property
    def slugs(self) -> FrozenSet[str]:
        return self._slugs

    def is_reserved(self, slug: str) -> bool:
        return (slug or "").strip().lower() in self._slugs

    def __contains__(self, slug: str) -> bool:
        return self.is_reserved(slug)


def is_valid_slug(slug: str) -> bool:
    return (
        isinstance(slug, str)
        and SLUG_MIN_LENGTH <= len(slug) <= SLUG_MAX_LENGTH
        and SLUG_PATTERN.match(slug) is not None
    )


def validate_slug(slug: str) -> str:
    """Return the slug unchanged or raise SlugValidationError."""
    if not isinstance(slug, str) or not SLUG_PATTERN.match(slug):
        raise SlugValidationError(
            str(slug),
            "Slug must be lowercase alphanumeric with optional internal hyphens",
        )
    if not SLUG_MIN_LENGTH <= len(slug) <= SLUG_MAX_LENGTH:
        raise SlugValidationError(
            slug,
            f"Slug must be between {SLUG_MIN_LENGTH} and {SLUG_MAX_LENGTH} characters",
        )
    return slug


def schema_name_for(slug: str) -> str:
    """Isolated schema name for a slug.

    Slugs cannot contain '_', so the plain form is injective. Names that would exceed the
    63-byte identifier limit keep a prefix and end in a digest of the full slug; the core
    tenants table also carries a unique index on schema_name.
    """
    name = SCHEMA_PREFIX + validate_slug(slug).replace("-", "_")
    if len(name) <= MAX_IDENTIFIER_LENGTH:
        return name
    digest = hashlib.sha1(slug.encode("utf-8")).hexdigest()[:8]
    return f"{name[:MAX_IDENTIFIER_LENGTH - 9]}_{digest}"
