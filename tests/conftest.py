import pathlib
import sys
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from report_service.delivery import DeliveryConfig, SimulatedDepartmentTransport
from report_service.main import build_components, create_app

JWT_SECRET = "jwt_test_secret"

SECURITY_DEPT = "6f1c2a4e-9d3b-4c71-8a52-1b0e7d4f3a01"
PROJECT_ID = "9a3e1c77-52d4-4b8e-a1f0-6c2d8e4b5a10"


def issue_token(*, subject: str, secret: str = JWT_SECRET, ttl_minutes: int = 30) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
        "iat": int(now.timestamp()),
        "iss": "test-issuer",
        "aud": "test-audience",
    }
    return jwt.encode(payload, secret, algorithm="HS256")


class AuthenticatedClient:
    """TestClient wrapper that signs requests as ``user`` (``None`` sends no token)."""

    def __init__(self, client: TestClient, *, default_user: str | None = "user-123"):
        self._client = client
        self._default_user = default_user

    def request(self, method: str, url: str, *, user: str | None = "", **kwargs):
        headers = dict(kwargs.pop("headers", {}) or {})
        subject = self._default_user if user == "" else user
        if subject is not None and "Authorization" not in headers and url.startswith("/api/"):
            headers["Authorization"] = f"Bearer {issue_token(subject=subject)}"
        return self._client.request(method, url, headers=headers, **kwargs)

    def __getattr__(self, name: str):
        return getattr(self._client, name)

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs):
        return self.request("PUT", url, **kwargs)


@pytest.fixture(autouse=True)
def security_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("JWT_SHARED_SECRET", JWT_SECRET)
    monkeypatch.setenv("JWT_ISSUER", "test-issuer")
    monkeypatch.setenv("JWT_AUDIENCE", "test-audience")
    monkeypatch.setenv("JWT_REQUIRED_CLAIMS", "sub,exp")
    monkeypatch.delenv("AUTH_DEV_MODE", raising=False)
    yield


@pytest.fixture
def delivery_config() -> DeliveryConfig:
    return DeliveryConfig(
        simulated_latency_ms=0,
        max_retries=2,
        retry_backoff_base_ms=0,
        autostart=False,
    )


@pytest.fixture
def components(delivery_config: DeliveryConfig):
    return build_components(
        delivery_config=delivery_config,
        transport=SimulatedDepartmentTransport(latency_ms=0),
    )


@pytest.fixture
def app(components):
    return create_app(components=components)


@pytest.fixture
def client(app) -> AuthenticatedClient:
    return AuthenticatedClient(TestClient(app))


def _report_body(**overrides) -> dict:
    body = {
        "title": "Auth Module Review",
        "description": "JWT login and refresh flow",
        "project_id": PROJECT_ID,
        "department_id": SECURITY_DEPT,
    }
    body.update(overrides)
    return body


def _evaluation_body(**overrides) -> dict:
    body = {
        "security_score": 8,
        "performance_score": 7,
        "memory_score": 6,
        "testing_score": 7,
        "error_score": 8,
        "load_score": 6,
        "security_details": "JWT implementation, CSRF protection, input validation",
        "performance_details": "Response caching, lazy loading",
        "memory_details": "No leaks under soak test",
        "testing_details": "Unit and integration tests",
        "error_details": "Comprehensive validation",
        "load_details": "Handles 500 users/sec",
    }
    body.update(overrides)
    return body


@pytest.fixture
def report_body():
    return _report_body


@pytest.fixture
def evaluation_body():
    return _evaluation_body
