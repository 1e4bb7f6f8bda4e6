"""Unit tests for main.py endpoints and helper functions.

Covers the public probes (/api/health, /api/version, /api/metrics, /api/jobs)
and the ``get_client_ip`` key function used by the rate limiter.
"""

from unittest.mock import MagicMock

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from app.__version__ import __build_date__, __commit_sha__, __version__
from app.core.rate_limit import get_client_ip


@pytest.fixture
def client(monkeypatch, tmp_path):
    """Create a test client for the FastAPI app."""
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    from app.main import app

    return TestClient(app)


class TestHealthEndpoint:
    """Tests for /api/health endpoint."""

    def test_health_returns_ok_status(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_health_returns_json(self, client):
        resp = client.get("/api/health")
        assert "application/json" in resp.headers.get("content-type", "")


class TestVersionEndpoint:
    """Tests for /api/version endpoint."""

    def test_version_matches_package_version(self, client):
        resp = client.get("/api/version")
        assert resp.status_code == 200
        data = resp.json()
        assert data["version"] == __version__
        assert data["build_date"] == __build_date__
        assert data["commit_sha"] == __commit_sha__


class TestOperationalEndpoints:
    def test_metrics_are_exposed(self, client):
        client.get("/api/health")
        resp = client.get("/api/metrics")
        assert resp.status_code == 200
        assert "http_request" in resp.text

    def test_jobs_lists_nothing_before_startup(self, client):
        resp = client.get("/api/jobs")
        assert resp.status_code == 200
        assert resp.json() == {"jobs": []}


class TestGetClientIpFunction:
    """Tests for get_client_ip helper function."""

    def test_get_client_ip_from_forwarded_header(self):
        mock_request = MagicMock(spec=Request)
        mock_request.headers.get.return_value = "192.168.1.1, 10.0.0.1"
        mock_request.client.host = "127.0.0.1"

        assert get_client_ip(mock_request) == "192.168.1.1"

    def test_get_client_ip_from_client_host(self):
        mock_request = MagicMock(spec=Request)
        mock_request.headers.get.return_value = None
        mock_request.client.host = "127.0.0.1"

        assert get_client_ip(mock_request) == "127.0.0.1"

    def test_get_client_ip_strips_whitespace(self):
        mock_request = MagicMock(spec=Request)
        mock_request.headers.get.return_value = "  192.168.1.1  , 10.0.0.1"
        mock_request.client.host = "127.0.0.1"

        assert get_client_ip(mock_request) == "192.168.1.1"
