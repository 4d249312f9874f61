"""
Tests for api/app_builder.py - per-tier application factory.
"""
import pytest
from fastapi.testclient import TestClient

from api.app_builder import create_app
from api.security.headers import SecurityHeadersConfig, get_security_headers, trusted_origin
from core.listeners import AudienceTier
from core.readiness import ReadinessFlag


@pytest.fixture
def readiness():
    return ReadinessFlag()


def client_for(tier, readiness, config):
    return TestClient(create_app(tier, readiness, config))


class TestProbes:

    def test_health_always_ok(self, readiness, test_config):
        client = client_for(AudienceTier.PUBLIC, readiness, test_config)

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "tier": "public"}

    def test_ready_503_until_marked(self, readiness, test_config):
        client = client_for(AudienceTier.TRUSTED, readiness, test_config)

        assert client.get("/ready").status_code == 503

        readiness.mark_ready()
        response = client.get("/ready")

        assert response.status_code == 200
        assert response.json()["ready"] is True
        assert response.json()["ready_at"] == readiness.ready_at


class TestStartingGate:

    def test_routes_blocked_while_starting(self, readiness, test_config):
        client = client_for(AudienceTier.TRUSTED, readiness, test_config)

        response = client.get("/")

        assert response.status_code == 503
        assert response.json() == {"status": "starting"}
        assert response.headers["Retry-After"] == "5"

    def test_routes_open_once_ready(self, readiness, test_config):
        client = client_for(AudienceTier.SANDBOXED, readiness, test_config)
        readiness.mark_ready()

        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["tier"] == "sandboxed"
        assert response.json()["service"] == "maildeck-test"

    def test_shared_flag_across_tiers(self, readiness, test_config):
        clients = [client_for(tier, readiness, test_config) for tier in AudienceTier]
        readiness.mark_ready()

        assert all(c.get("/").status_code == 200 for c in clients)


class TestSecurityHeaders:

    def test_trusted_tier_denies_framing(self, readiness, test_config):
        response = client_for(AudienceTier.TRUSTED, readiness, test_config).get("/health")

        assert response.headers["X-Frame-Options"] == "DENY"
        assert "frame-ancestors 'none'" in response.headers["Content-Security-Policy"]

    def test_sandbox_tier_framed_by_trusted_origin_only(self, readiness, test_config):
        response = client_for(AudienceTier.SANDBOXED, readiness, test_config).get("/health")

        assert "X-Frame-Options" not in response.headers
        assert "frame-ancestors http://localhost:3000" in response.headers["Content-Security-Policy"]

    def test_docs_only_on_trusted_tier(self, readiness, test_config):
        readiness.mark_ready()

        assert client_for(AudienceTier.TRUSTED, readiness, test_config).get("/docs").status_code == 200
        assert client_for(AudienceTier.PUBLIC, readiness, test_config).get("/docs").status_code == 404


def test_trusted_origin_strips_path():
    assert trusted_origin("https://mail.example.com:8443/app/") == "https://mail.example.com:8443"


def test_trusted_origin_rejects_relative():
    with pytest.raises(ValueError):
        trusted_origin("/app")


def test_hsts_only_in_production():
    assert "Strict-Transport-Security" not in get_security_headers(SecurityHeadersConfig(environment="development"))
    assert "Strict-Transport-Security" in get_security_headers(SecurityHeadersConfig(environment="production"))
