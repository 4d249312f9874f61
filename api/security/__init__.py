"""
MAILDECK - API Security Module

Per-tier security headers for the web listeners.
"""

from api.security.headers import (
    SecurityHeadersConfig,
    SecurityHeadersMiddleware,
    get_security_headers,
    trusted_origin,
)

__all__ = [
    "SecurityHeadersConfig",
    "SecurityHeadersMiddleware",
    "get_security_headers",
    "trusted_origin",
]
