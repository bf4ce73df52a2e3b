"""Security tests for network exposure.

Tests verify the service exposes only what it must:
- the HTTP server binds to localhost unless configured otherwise
- interactive API docs are disabled
- every domain route requires a bearer token
"""

import pytest
from fastapi.testclient import TestClient

from task_service.cli import get_default_config
from task_service.config import Settings


class TestBinding:
    def test_default_bind_is_localhost(self) -> None:
        assert Settings().http_host == "127.0.0.1"

    def test_generated_config_binds_localhost(self) -> None:
        assert get_default_config()["server"]["host"] == "127.0.0.1"


class TestEndpoints:
    """Exercise the running application."""

    @pytest.mark.parametrize("path", ["/docs", "/redoc"])
    def test_no_interactive_docs(self, client: TestClient, path: str) -> None:
        assert client.get(path).status_code == 404

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/tasks"),
            ("POST", "/tasks"),
            ("GET", "/tasks/1"),
            ("PATCH", "/tasks/1"),
            ("PATCH", "/tasks/1/status"),
            ("GET", "/projects"),
            ("POST", "/projects"),
            ("GET", "/projects/1"),
            ("PATCH", "/projects/1"),
            ("GET", "/users"),
            ("GET", "/users/1"),
            ("PUT", "/users/1"),
            ("GET", "/webhooks"),
            ("POST", "/webhooks"),
            ("GET", "/webhooks/1"),
            ("DELETE", "/webhooks/1"),
        ],
    )
    def test_domain_routes_require_token(self, client: TestClient, method: str, path: str) -> None:
        response = client.request(method, path, json={})

        assert response.status_code == 401
