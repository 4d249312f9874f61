"""
MAILDECK - Security Headers Middleware

Response headers for the three listeners. They differ only in who may frame
them:

    trusted    nobody        (frame-ancestors 'none', X-Frame-Options DENY)
    sandboxed  trusted UI    (frame-ancestors <trusted origin>, no X-Frame-Options)
    public     nobody

The sandboxed listener renders untrusted content (templates, user HTML) that
the trusted UI embeds in iframes; X-Frame-Options cannot express a single
allowed origin, so only CSP governs framing there.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urlparse

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# CSP directives shared by every tier; frame-ancestors is added per tier
BASE_CSP = (
    ("default-src", "'self'"),
    ("script-src", "'self'"),
    ("style-src", "'self' 'unsafe-inline'"),
    ("img-src", "'self' data: https:"),
    ("base-uri", "'self'"),
    ("form-action", "'self'"),
)


@dataclass
class SecurityHeadersConfig:
    """Header policy of one listener."""

    environment: str = field(default_factory=lambda: os.environ.get("ENVIRONMENT", "development"))
    frame_ancestors: List[str] = field(default_factory=lambda: ["'none'"])
    # None omits the header
    frame_options: Optional[str] = "DENY"
    hsts_max_age: int = 31536000
    referrer_policy: str = "strict-origin-when-cross-origin"
    # FastAPI's docs page loads its assets from a CDN
    exclude_paths: List[str] = field(default_factory=lambda: ["/docs", "/openapi.json"])

    @classmethod
    def for_tier(cls, tier: str, trusted_url_base: str, environment: str = "development") -> "SecurityHeadersConfig":
        if tier == "sandboxed":
            return cls(
                environment=environment,
                frame_ancestors=[trusted_origin(trusted_url_base)],
                frame_options=None,
            )
        return cls(environment=environment)

    def content_security_policy(self) -> str:
        directives = list(BASE_CSP) + [("frame-ancestors", " ".join(self.frame_ancestors))]
        return "; ".join(f"{name} {value}" for name, value in directives)


def trusted_origin(url_base: str) -> str:
    """Scheme, host and port of a URL: 'https://example.com:3000'."""
    parsed = urlparse(url_base)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Not an absolute URL: {url_base!r}")
    return f"{parsed.scheme}://{parsed.netloc}"


def get_security_headers(config: Optional[SecurityHeadersConfig] = None) -> Dict[str, str]:
    cfg = config or SecurityHeadersConfig()
    headers = {
        "Content-Security-Policy": cfg.content_security_policy(),
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": cfg.referrer_policy,
    }
    if cfg.frame_options:
        headers["X-Frame-Options"] = cfg.frame_options
    # Only in production; development listeners are plain HTTP
    if cfg.environment == "production":
        headers["Strict-Transport-Security"] = f"max-age={cfg.hsts_max_age}; includeSubDomains"
    return headers


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds the listener's security headers to every response it serves."""

    def __init__(self, app, config: Optional[SecurityHeadersConfig] = None):
        super().__init__(app)
        self.config = config or SecurityHeadersConfig()
        self._headers = get_security_headers(self.config)

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        if request.url.path in self.config.exclude_paths:
            return response
        for key, value in self._headers.items():
            response.headers.setdefault(key, value)
        return response
