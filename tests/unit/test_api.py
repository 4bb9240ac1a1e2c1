"""
HTTP surface tests.

Routes run against an in-memory ServiceContext injected through
dependency overrides; the lifespan hook is not exercised.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from src.adapters.clock import FixedClock
from src.api.auth_utils import create_identity_token
from src.api.deps import Settings, get_context, get_settings, get_token_secret
from src.api.main import app
from src.app_shell.context import ServiceContext
from src.domain.errors import UnavailableError

ADMIN_IDENTITY = 1000
SECRET = "test-gateway-secret"


@pytest.fixture
def ctx(memory_ctx: ServiceContext) -> ServiceContext:
    invite = memory_ctx.invite_service.issue(ADMIN_IDENTITY, "boss")
    account = memory_ctx.registration_service.register(
        invite.code, "boss", "boss@example.com", "correct-horse"
    )
    memory_ctx.account_service.assign_role(account.id, "admin")
    return memory_ctx


@pytest.fixture
def client(ctx: ServiceContext) -> Iterator[TestClient]:
    app.dependency_overrides[get_context] = lambda: ctx
    app.dependency_overrides[get_token_secret] = lambda: SECRET
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(identity_id: int, secret: str = SECRET) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_identity_token(identity_id, secret)}"}


ADMIN = auth(ADMIN_IDENTITY)


def _roles(client: TestClient, identity_id: int) -> dict:
    url = f"/api/accounts/identity/{identity_id}/roles"
    return client.get(url, headers=auth(identity_id)).json()


def _issue(client: TestClient, identity_id: int, name: str = "someone") -> dict:
    response = client.post(
        "/api/invites", json={"display_name": name}, headers=auth(identity_id)
    )
    assert response.status_code == 200
    return response.json()


class TestInviteRoutes:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"status": "ok", "service": "api"}

    def test_issue_is_idempotent(self, client: TestClient) -> None:
        first = _issue(client, 42, "alice")
        second = _issue(client, 42, "alice")

        assert first["code"] == second["code"]
        assert first["status"] == "pending"
        assert first["revoked"] is False

    def test_issue_for_linked_identity_conflicts(self, client: TestClient) -> None:
        response = client.post("/api/invites", json={"display_name": "boss"}, headers=ADMIN)

        assert response.status_code == 409
        assert response.json()["code"] == "already_linked"

    def test_issue_validation_error(self, client: TestClient) -> None:
        response = client.post("/api/invites", json={"display_name": " "}, headers=auth(5))

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    def test_validate(self, client: TestClient) -> None:
        issued = _issue(client, 42)

        response = client.get(f"/api/invites/{issued['code'].lower()}")

        assert response.status_code == 200
        assert response.json()["code"] == issued["code"]

    def test_validate_unknown(self, client: TestClient) -> None:
        response = client.get("/api/invites/ZZZZ-ZZZZ-ZZZZ")

        assert response.status_code == 404
        assert response.json()["invite_code"] == "ZZZZ-ZZZZ-ZZZZ"

    def test_validate_expired(self, client: TestClient, clock: FixedClock) -> None:
        issued = _issue(client, 42)
        clock.advance(timedelta(hours=25))

        assert client.get(f"/api/invites/{issued['code']}").status_code == 410

    def test_active_and_history(self, client: TestClient) -> None:
        assert client.get("/api/invites/identity/42/active", headers=auth(42)).status_code == 404
        issued = _issue(client, 42)

        active = client.get("/api/invites/identity/42/active", headers=auth(42)).json()
        history = client.get("/api/invites/identity/42/history", headers=auth(42)).json()

        assert active["code"] == issued["code"]
        assert [h["code"] for h in history] == [issued["code"]]

    def test_store_unavailable_maps_to_503(
        self, client: TestClient, ctx: ServiceContext, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def boom(code: str) -> None:
            raise UnavailableError()

        monkeypatch.setattr(ctx.invite_repo, "find_by_code", boom)

        response = client.get("/api/invites/ABCD-EFGH-JKLM")

        assert response.status_code == 503
        assert response.json()["code"] == "unavailable"


class TestRegistrationRoute:
    def test_register_links_identity(self, client: TestClient) -> None:
        issued = _issue(client, 77, "newbie")

        response = client.post(
            "/api/register",
            json={
                "code": issued["code"],
                "username": "newbie",
                "email": "newbie@example.com",
                "password": "long-enough",
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["identity_id"] == 77
        assert body["identity_display_name"] == "newbie"
        assert body["roles"] == ["User"]

        roles = _roles(client, 77)
        assert roles["linked"] is True
        assert roles["roles"] == ["User"]

        again = client.post(
            "/api/register",
            json={
                "code": issued["code"],
                "username": "other",
                "email": "other@example.com",
                "password": "long-enough",
            },
        )
        assert again.status_code == 409
        assert again.json()["code"] == "already_used"


class TestAdminRoutes:
    def test_requires_bearer_token(self, client: TestClient) -> None:
        assert client.get("/api/admin/invites").status_code == 401

    def test_requires_admin_role(self, client: TestClient) -> None:
        response = client.get("/api/admin/invites", headers=auth(42))
        assert response.status_code == 403

    def test_list_stats_revoke_sweep(self, client: TestClient, clock: FixedClock) -> None:
        a = _issue(client, 1, "one")
        clock.advance(timedelta(minutes=1))
        _issue(client, 2, "two")

        listing = client.get("/api/admin/invites?page=1&page_size=10", headers=ADMIN).json()
        # The admin's own redeemed code is listed too
        assert listing["total_count"] == 3
        assert listing["items"][0]["owner_identity_id"] == 2

        revoked = client.post(f"/api/admin/invites/{a['code']}/revoke", headers=ADMIN)
        assert revoked.status_code == 200
        assert revoked.json()["revoked"] is True
        assert revoked.json()["status"] == "expired"

        again = client.post(f"/api/admin/invites/{a['code']}/revoke", headers=ADMIN)
        assert again.status_code == 409

        stats = client.get("/api/admin/invites/stats", headers=ADMIN).json()
        assert stats == {
            "pending_count": 1,
            "used_count": 1,
            "expired_count": 1,
            "revoked_count": 1,
            "total": 3,
        }

        filtered = client.get("/api/admin/invites?status=revoked", headers=ADMIN).json()
        assert [i["code"] for i in filtered["items"]] == [a["code"]]

        active = client.get("/api/admin/invites/active", headers=ADMIN).json()
        assert [i["owner_identity_id"] for i in active] == [2]

        clock.advance(timedelta(days=30))
        swept = client.post("/api/admin/invites/sweep", json={"days_old": 7}, headers=ADMIN)
        assert swept.json() == {"deleted": 3}

    def test_bad_status_filter(self, client: TestClient) -> None:
        response = client.get("/api/admin/invites?status=bogus", headers=ADMIN)
        assert response.status_code == 422


class TestAccountRoutes:
    def _register(self, client: TestClient, identity_id: int, username: str) -> dict:
        issued = _issue(client, identity_id, username)
        response = client.post(
            "/api/register",
            json={
                "code": issued["code"],
                "username": username,
                "email": f"{username}@example.com",
                "password": "long-enough",
            },
        )
        assert response.status_code == 201
        return response.json()

    def test_role_mutations_are_visible_immediately(self, client: TestClient) -> None:
        account = self._register(client, 55, "member")
        assert _roles(client, 55)["roles"] == ["User"]

        granted = client.post(
            f"/api/accounts/{account['id']}/roles", json={"role": "premium"}, headers=ADMIN
        )
        assert granted.status_code == 200
        assert granted.json()["roles"] == ["Premium", "User"]
        assert _roles(client, 55)["roles"] == ["Premium", "User"]

        removed = client.delete(f"/api/accounts/{account['id']}/roles/user", headers=ADMIN)
        assert removed.json()["roles"] == ["Premium"]
        assert _roles(client, 55)["roles"] == ["Premium"]

    def test_reassign_and_delete(self, client: TestClient) -> None:
        account = self._register(client, 56, "mover")

        moved = client.post(
            "/api/accounts/roles/reassign",
            json={"from_role": "User", "to_role": "Moderator"},
            headers=ADMIN,
        )
        # The admin account holds User too
        assert moved.json() == {"changed": 2}
        assert _roles(client, 56)["roles"] == ["Moderator"]

        deleted = client.delete(f"/api/accounts/{account['id']}", headers=ADMIN)
        assert deleted.status_code == 204
        assert _roles(client, 56)["linked"] is False
        assert client.get(f"/api/accounts/{account['id']}", headers=ADMIN).status_code == 404


class TestCallerAuthentication:
    def test_unsigned_identity_header_is_ignored(self, client: TestClient) -> None:
        forged = {"X-Identity-Id": str(ADMIN_IDENTITY)}

        assert client.get("/api/admin/invites/stats", headers=forged).status_code == 401
        assert client.get("/api/invites/identity/77/active", headers=forged).status_code == 401

    def test_token_signed_with_other_secret_rejected(self, client: TestClient) -> None:
        response = client.get(
            "/api/admin/invites/stats", headers=auth(ADMIN_IDENTITY, secret="guessed")
        )

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_expired_token_rejected(self, client: TestClient) -> None:
        token = create_identity_token(
            ADMIN_IDENTITY,
            SECRET,
            expires_delta=timedelta(minutes=5),
            now_utc=datetime.now(UTC) - timedelta(hours=1),
        )

        response = client.get(
            "/api/admin/invites/stats", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401

    def test_cannot_read_or_issue_for_another_identity(self, client: TestClient) -> None:
        victim_code = _issue(client, 77, "victim")["code"]
        attacker = auth(666)

        assert client.get("/api/invites/identity/77/active", headers=attacker).status_code == 403
        assert client.get("/api/invites/identity/77/history", headers=attacker).status_code == 403
        assert client.get("/api/accounts/identity/77/roles", headers=attacker).status_code == 403
        response = client.post(
            "/api/invites", json={"identity_id": 77, "display_name": "x"}, headers=attacker
        )
        assert response.status_code == 403

        own = client.get("/api/invites/identity/77/active", headers=auth(77))
        assert own.json()["code"] == victim_code

    def test_admin_may_act_for_any_identity(self, client: TestClient) -> None:
        issued = client.post(
            "/api/invites", json={"identity_id": 88, "display_name": "friend"}, headers=ADMIN
        )
        assert issued.status_code == 200
        assert issued.json()["owner_identity_id"] == 88

        active = client.get("/api/invites/identity/88/active", headers=ADMIN)
        assert active.json()["code"] == issued.json()["code"]

    def test_unconfigured_secret_is_unavailable(self, client: TestClient) -> None:
        settings = Settings()
        settings.secret_key = None
        app.dependency_overrides.pop(get_token_secret)
        app.dependency_overrides[get_settings] = lambda: settings

        response = client.get("/api/invites/identity/42/active", headers=auth(42))

        assert response.status_code == 503
