"""
Cross-subdomain session bridge.

Signing in on gametaverns.com must also sign the user in on tzolak.gametaverns.com.
The bridge mirrors the auth token pair into one cookie scoped to `.{root domain}`,
which the browser sends to the root and every subdomain and to nothing else.

The bridge only acts in production and only when the request host is the root
domain or one of its subdomains; on custom domains and in local development every
call is a no-op.
"""

import json
import logging
from typing import Any, Mapping, Optional
from urllib.parse import quote, unquote

from fastapi import Request, Response
from pydantic import ValidationError

from app.core.exceptions import SessionBridgeMalformed
from app.modules.session_bridge.schemas import SessionTokens
from app.modules.tenancy.resolver import is_within_domain, normalize_host

logger = logging.getLogger(__name__)

MAX_COOKIE_BYTES = 4096

_UNSET = object()


class CrossDomainSessionStore:
    def __init__(
        self,
        root_domain: str,
        production: bool,
        cookie_name: str = "gt_session",
        max_age: int = 60 * 60 * 24 * 30,
    ):
        self.root_domain = normalize_host(root_domain)
        self.production = production
        self.cookie_name = cookie_name
        self.max_age = max_age

    @classmethod
    def from_settings(cls, settings) -> "CrossDomainSessionStore":
        return cls(
            root_domain=settings.canonical_domain,
            production=settings.is_production,
            cookie_name=settings.session_cookie_name,
            max_age=settings.session_cookie_max_age,
        )

    @property
    def cookie_domain(self) -> str:
        return "." + self.root_domain

    def is_bridgeable_host(self, hostname: Optional[str]) -> bool:
        if not self.production:
            return False
        return is_within_domain(normalize_host(hostname), self.root_domain)

    @staticmethod
    def encode(tokens: SessionTokens) -> str:
        payload: dict = {
            "access_token": tokens.access_token,
            "refresh_token": tokens.refresh_token,
        }
        if tokens.expires_at is not None:
            payload["expires_at"] = tokens.expires_at
        return quote(json.dumps(payload, separators=(",", ":")), safe="")

    @staticmethod
    def decode(value: str) -> SessionTokens:
        try:
            payload: Any = json.loads(unquote(value))
        except (ValueError, RecursionError) as e:
            raise SessionBridgeMalformed("cookie is not JSON") from e
        if not isinstance(payload, dict):
            raise SessionBridgeMalformed("cookie payload is not an object")
        if not payload.get("access_token") or not payload.get("refresh_token"):
            raise SessionBridgeMalformed("cookie payload is missing a token")
        try:
            return SessionTokens(
                access_token=payload["access_token"],
                refresh_token=payload["refresh_token"],
                expires_at=payload.get("expires_at"),
            )
        except ValidationError as e:
            raise SessionBridgeMalformed("cookie payload has invalid fields") from e

    def write(self, response: Response, hostname: Optional[str], tokens: SessionTokens, secure: bool) -> bool:
        """Set the cookie. Returns False when the host or payload size rules it out."""
        if not self.is_bridgeable_host(hostname):
            return False
        value = self.encode(tokens)
        if len(self.cookie_name) + 1 + len(value) > MAX_COOKIE_BYTES:
            logger.warning(
                f"Session payload of {len(value)} bytes exceeds the cookie limit; not bridged"
            )
            return False
        response.set_cookie(
            key=self.cookie_name,
            value=value,
            max_age=self.max_age,
            path="/",
            domain=self.cookie_domain,
            secure=secure,
            httponly=True,
            samesite="lax",
        )
        return True

    def read(self, cookies: Mapping[str, str], hostname: Optional[str]) -> Optional[SessionTokens]:
        if not self.is_bridgeable_host(hostname):
            return None
        value = cookies.get(self.cookie_name)
        if not value:
            return None
        try:
            return self.decode(value)
        except SessionBridgeMalformed as e:
            logger.debug(f"Ignoring malformed session cookie: {e}")
            return None

    def clear(self, response: Response, hostname: Optional[str], secure: bool) -> bool:
        if not self.is_bridgeable_host(hostname):
            return False
        response.delete_cookie(
            key=self.cookie_name,
            path="/",
            domain=self.cookie_domain,
            secure=secure,
            httponly=True,
            samesite="lax",
        )
        return True


def request_is_secure(request: Request) -> bool:
    forwarded = request.headers.get("x-forwarded-proto", "")
    return request.url.scheme == "https" or forwarded.split(",")[0].strip().lower() == "https"


class SessionBridge:
    """The bridge bound to one request/response pair: write, read, clear."""

    def __init__(self, store: CrossDomainSessionStore, request: Request, response: Response):
        self.store = store
        self.request = request
        self.response = response
        self.hostname = request.headers.get("host") or request.url.hostname
        self.secure = request_is_secure(request)
        self._pending: Any = _UNSET

    def write(self, tokens: Optional[SessionTokens]) -> bool:
        if tokens is None:
            return self.clear()
        written = self.store.write(self.response, self.hostname, tokens, self.secure)
        if written:
            self._pending = tokens
        return written

    def read(self) -> Optional[SessionTokens]:
        if not self.store.is_bridgeable_host(self.hostname):
            return None
        if self._pending is not _UNSET:
            return self._pending
        return self.store.read(self.request.cookies, self.hostname)

    def clear(self) -> bool:
        cleared = self.store.clear(self.response, self.hostname, self.secure)
        if cleared:
            self._pending = None
        return cleared
