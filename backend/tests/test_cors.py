from fastapi import status
from fastapi.testclient import TestClient

from docuscan.main import app

CHECK_PATH = "/api/endpoint-authorization/check"


def test_cors_preflight_for_allowed_origin() -> None:
    """Preflight from an allowed origin gets 204 with CORS headers."""
    client = TestClient(app)

    response = client.options(
        CHECK_PATH,
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "GET",
            "Access-Control-Request-Headers": "authorization",
        },
    )

    assert response.status_code == status.HTTP_204_NO_CONTENT
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
    assert response.headers["access-control-allow-credentials"] == "true"
    assert "GET" in response.headers["access-control-allow-methods"]
    assert response.headers["access-control-allow-headers"] == "authorization"
    assert response.headers["vary"] == "Origin"


def test_cors_preflight_without_request_headers_uses_allowlist() -> None:
    client = TestClient(app)

    response = client.options(
        "/api/endpoint-authorization/endpoints/1/roles",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert response.status_code == status.HTTP_204_NO_CONTENT
    assert response.headers["access-control-allow-headers"] == "authorization, content-type"


def test_cors_preflight_from_unknown_origin_has_no_cors_headers() -> None:
    client = TestClient(app)

    response = client.options(
        CHECK_PATH,
        headers={
            "Origin": "http://untrusted.test",
            "Access-Control-Request-Method": "GET",
        },
    )

    assert response.status_code == status.HTTP_204_NO_CONTENT
    assert "access-control-allow-origin" not in response.headers
