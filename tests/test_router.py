import re
import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from twofactor.exceptions import StoreUnavailableError
from twofactor.main import create_app
from twofactor.mfa.dependencies import get_two_factor_service
from twofactor.utils import get_current_user_id


@pytest.fixture
def app(service, user):
    app = create_app()
    app.dependency_overrides[get_two_factor_service] = lambda: service
    app.dependency_overrides[get_current_user_id] = lambda: user.id
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def enable(client, code_for, clock):
    """Enroll over HTTP; returns the setup response body."""

    def run() -> dict:
        setup = client.post("/2fa/setup").json()
        response = client.post("/2fa/verify-setup", json={"code": code_for(setup["secret"])})
        assert response.json() == {"verified": True}
        clock.advance(30)
        return setup

    return run


def step_up_headers(client, sender) -> dict:
    challenge = client.post("/2fa/challenge", json={"method": "sms"}).json()
    code = re.search(r"\b(\d{6})\b", sender.sms[-1][1]).group(1)
    return {"X-2FA-Challenge": challenge["challenge_id"], "X-2FA-Token": code}


class TestStatus:
    def test_not_configured(self, client) -> None:
        response = client.get("/2fa/status")

        assert response.status_code == 200
        assert response.json() == {
            "enabled": False,
            "status": "not_configured",
            "backup_codes_remaining": None,
            "setup_url": "/2fa/setup",
        }

    def test_enabled(self, client, enable) -> None:
        enable()

        body = client.get("/2fa/status").json()
        assert body["enabled"] is True
        assert body["status"] == "enabled"
        assert body["backup_codes_remaining"] == 10
        assert body["setup_url"] is None


class TestMethods:
    def test_before_enrollment(self, client) -> None:
        response = client.get("/2fa/methods")

        assert response.status_code == 200
        body = response.json()
        assert body["totp"]["enabled"] is False
        assert body["totp"]["setup_url"] == "/2fa/setup"
        assert body["sms"] == {
            "name": "SMS",
            "description": "Receive codes via text message",
            "enabled": True,
            "setup_url": None,
            "challenge_url": "/2fa/challenge",
            "verify_url": None,
        }
        assert body["email"]["enabled"] is True
        assert body["backup_codes"]["enabled"] is False
        assert body["backup_codes"]["verify_url"] == "/2fa/backup-codes/verify"

    def test_after_enrollment(self, client, enable) -> None:
        enable()

        body = client.get("/2fa/methods").json()
        assert body["totp"]["enabled"] is True
        assert body["totp"]["setup_url"] is None
        assert body["backup_codes"]["enabled"] is True

    def test_sms_needs_phone(self, app, service, user_without_phone) -> None:
        app.dependency_overrides[get_current_user_id] = lambda: user_without_phone.id

        body = TestClient(app).get("/2fa/methods").json()
        assert body["sms"]["enabled"] is False
        assert body["email"]["enabled"] is True


class TestEnrollment:
    def test_setup(self, client) -> None:
        response = client.post("/2fa/setup")

        assert response.status_code == 200
        body = response.json()
        assert len(body["secret"]) == 64
        assert body["provisioning_uri"].startswith("otpauth://totp/")
        assert body["qr_code_base64"]
        assert len(body["backup_codes"]) == 10
        assert "authenticator" in body["instructions"]

    def test_setup_twice_conflicts(self, client) -> None:
        client.post("/2fa/setup")

        response = client.post("/2fa/setup")
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE"

    def test_verify_setup_wrong_code(self, client) -> None:
        client.post("/2fa/setup")

        response = client.post("/2fa/verify-setup", json={"code": "abcdef"})
        assert response.status_code == 200
        assert response.json() == {"verified": False}

    def test_verify_setup_without_setup(self, client) -> None:
        response = client.post("/2fa/verify-setup", json={"code": "123456"})
        assert response.status_code == 409

    def test_empty_code_rejected(self, client) -> None:
        response = client.post("/2fa/verify-setup", json={"code": ""})
        assert response.status_code == 422


class TestVerification:
    def test_verify_totp(self, client, enable, code_for) -> None:
        setup = enable()

        response = client.post("/2fa/verify", json={"code": code_for(setup["secret"])})
        assert response.json() == {"verified": True}

    def test_backup_code(self, client, enable) -> None:
        setup = enable()
        code = setup["backup_codes"][0]

        assert client.post("/2fa/backup-codes/verify", json={"code": code}).json() == {"verified": True}
        assert client.post("/2fa/backup-codes/verify", json={"code": code}).json() == {"verified": False}

    def test_sms_challenge(self, client, sender) -> None:
        response = client.post("/2fa/challenge", json={"method": "sms"})

        assert response.status_code == 200
        body = response.json()
        assert body["method"] == "sms"
        assert body["expires_in"] == 300
        assert "code" not in body

        code = re.search(r"\b(\d{6})\b", sender.sms[-1][1]).group(1)
        verify = {"challenge_id": body["challenge_id"], "code": code}
        assert client.post("/2fa/challenge/verify", json=verify).json() == {"verified": True}
        assert client.post("/2fa/challenge/verify", json=verify).json() == {"verified": False}

    def test_totp_challenge_requires_enabled(self, client) -> None:
        response = client.post("/2fa/challenge", json={"method": "totp"})
        assert response.status_code == 409

    def test_unknown_method(self, client) -> None:
        response = client.post("/2fa/challenge", json={"method": "carrier-pigeon"})
        assert response.status_code == 422


class TestStepUp:
    def test_disable_requires_headers(self, client, enable) -> None:
        enable()

        response = client.post("/2fa/disable")

        assert response.status_code == 428
        detail = response.json()["detail"]
        assert detail["code"] == "TWO_FACTOR_REQUIRED"
        assert detail["operation"] == "two_factor_disable"
        assert client.get("/2fa/status").json()["enabled"] is True

    def test_disable_with_invalid_token(self, client, enable, sender) -> None:
        enable()
        headers = step_up_headers(client, sender)
        headers["X-2FA-Token"] = f"{(int(headers['X-2FA-Token']) + 1) % 1_000_000:06d}"

        response = client.post("/2fa/disable", headers=headers)

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "INVALID_TWO_FACTOR_TOKEN"

    def test_disable_with_step_up(self, client, enable, sender) -> None:
        enable()

        response = client.post("/2fa/disable", headers=step_up_headers(client, sender))

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert client.get("/2fa/status").json()["status"] == "disabled"

    def test_step_up_token_single_use(self, client, enable, sender) -> None:
        enable()
        headers = step_up_headers(client, sender)

        assert client.post("/2fa/backup-codes/regenerate", headers=headers).status_code == 200
        assert client.post("/2fa/backup-codes/regenerate", headers=headers).status_code == 401

    def test_regenerate_backup_codes(self, client, enable, sender) -> None:
        setup = enable()

        response = client.post("/2fa/backup-codes/regenerate", headers=step_up_headers(client, sender))

        body = response.json()
        assert body["remaining"] == 10
        assert len(body["codes"]) == 10
        old = {"code": setup["backup_codes"][0]}
        assert client.post("/2fa/backup-codes/verify", json=old).json() == {"verified": False}

    def test_disable_without_2fa_conflicts(self, client) -> None:
        response = client.post("/2fa/disable")
        assert response.status_code == 409


class TestErrors:
    def test_store_failure_is_503(self, client, service, monkeypatch) -> None:
        def broken(user_id):
            raise StoreUnavailableError("redis at 10.0.0.5 refused connection")

        monkeypatch.setattr(service, "get_status", broken)

        response = client.get("/2fa/status")

        assert response.status_code == 503
        assert "10.0.0.5" not in response.text


class TestAuthentication:
    @pytest.fixture
    def unauthenticated_client(self, service) -> TestClient:
        app = create_app()
        app.dependency_overrides[get_two_factor_service] = lambda: service
        return TestClient(app)

    def test_missing_token(self, unauthenticated_client) -> None:
        assert unauthenticated_client.get("/2fa/status").status_code == 401

    def test_bearer_token(self, unauthenticated_client, user) -> None:
        token = jwt.encode(
            {"sub": str(user.id), "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            "test-secret-key-for-two-factor-suite",
            algorithm="HS256",
        )

        response = unauthenticated_client.get(
            "/2fa/status", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 200

    def test_expired_token(self, unauthenticated_client, user) -> None:
        token = jwt.encode(
            {"sub": str(user.id), "exp": datetime.now(timezone.utc) - timedelta(minutes=5)},
            "test-secret-key-for-two-factor-suite",
            algorithm="HS256",
        )

        response = unauthenticated_client.get(
            "/2fa/status", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    def test_bad_subject(self, unauthenticated_client) -> None:
        token = jwt.encode({"sub": "not-a-uuid"}, "test-secret-key-for-two-factor-suite", algorithm="HS256")

        response = unauthenticated_client.get(
            "/2fa/status", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    def test_unknown_user_is_404(self, unauthenticated_client) -> None:
        token = jwt.encode({"sub": str(uuid.uuid4())}, "test-secret-key-for-two-factor-suite", algorithm="HS256")

        response = unauthenticated_client.post(
            "/2fa/setup", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 404
