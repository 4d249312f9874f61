"""
MAILDECK - Web Applications

One FastAPI application per audience tier, gated on process readiness.
"""

from api.app_builder import create_app

__all__ = ["create_app"]
