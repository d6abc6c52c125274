"""
Tests for API Routes.

Drives the FastAPI app over ASGI with the in-memory container injected and
checks status codes and bodies.
"""

import asyncio
import base64
from uuid import uuid4

from fakes import StubAIService, ai_failure, auth_headers
from httpx import AsyncClient

from ielts_lover.models.api import UserRole

# ============================================================================
# Attempts
# ============================================================================


class TestAttemptRoutes:
    """Tests for /v1/exercises and /v1/attempts."""

    async def test_start_attempt_created(
        self, api_client: AsyncClient, create_user, create_exercise
    ):
        user = await create_user()
        exercise = await create_exercise()

        response = await api_client.post(
            f"/v1/exercises/{exercise.exercise_id}/attempts", headers=auth_headers(user)
        )

        assert response.status_code == 201
        assert response.json()["state"] == "CREATED"

    async def test_unauthenticated_is_401(self, api_client: AsyncClient, create_exercise):
        exercise = await create_exercise()

        response = await api_client.post(f"/v1/exercises/{exercise.exercise_id}/attempts")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    async def test_malformed_user_header_is_401(self, api_client: AsyncClient):
        response = await api_client.get("/v1/credits/balance", headers={"X-User-Id": "nope"})

        assert response.status_code == 401

    async def test_unknown_user_is_401(self, api_client: AsyncClient):
        response = await api_client.get(
            "/v1/credits/balance", headers={"X-User-Id": str(uuid4())}
        )

        assert response.status_code == 401

    async def test_unknown_exercise_is_404(self, api_client: AsyncClient, create_user):
        user = await create_user()

        response = await api_client.post(
            f"/v1/exercises/{uuid4()}/attempts", headers=auth_headers(user)
        )

        assert response.status_code == 404

    async def test_mock_test_for_free_user_is_403(
        self, api_client: AsyncClient, create_user, create_exercise
    ):
        user = await create_user(balance=50)
        exercise = await create_exercise(is_mock_test=True)

        response = await api_client.post(
            f"/v1/exercises/{exercise.exercise_id}/attempts", headers=auth_headers(user)
        )

        assert response.status_code == 403
        assert "MOCK_TEST_PREMIUM_ONLY" in response.json()["detail"]

    async def test_submit_success(self, api_client: AsyncClient, create_user, create_exercise):
        user = await create_user(balance=10)
        exercise = await create_exercise()
        started = await api_client.post(
            f"/v1/exercises/{exercise.exercise_id}/attempts", headers=auth_headers(user)
        )

        response = await api_client.post(
            f"/v1/attempts/{started.json()['id']}/submit",
            json={"content": "my essay"},
            headers=auth_headers(user),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["attempt"]["state"] == "EVALUATED"
        assert body["attempt"]["score"] == 6.5

    async def test_submit_insufficient_is_402_with_saved_attempt(
        self, api_client: AsyncClient, create_user, create_exercise
    ):
        user = await create_user(balance=0)
        exercise = await create_exercise()
        started = await api_client.post(
            f"/v1/exercises/{exercise.exercise_id}/attempts", headers=auth_headers(user)
        )

        response = await api_client.post(
            f"/v1/attempts/{started.json()['id']}/submit",
            json={"content": "my essay"},
            headers=auth_headers(user),
        )

        assert response.status_code == 402
        body = response.json()
        assert body["reason"] == "INSUFFICIENT_CREDITS"
        assert body["attempt"]["content"] == "my essay"
        assert body["attempt"]["state"] == "SUBMITTED"

    async def test_submit_ai_failure_is_500_with_trace_id(
        self,
        api_client: AsyncClient,
        ai_service: StubAIService,
        create_user,
        create_exercise,
    ):
        user = await create_user(balance=10)
        exercise = await create_exercise()
        started = await api_client.post(
            f"/v1/exercises/{exercise.exercise_id}/attempts", headers=auth_headers(user)
        )
        ai_service.error = ai_failure()

        response = await api_client.post(
            f"/v1/attempts/{started.json()['id']}/submit",
            json={"content": "my essay"},
            headers=auth_headers(user),
        )

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "INTERNAL_ERROR"
        assert body["trace_id"].startswith("ERR-")

    async def test_second_submit_during_evaluation_is_409(
        self,
        api_client: AsyncClient,
        ai_service: StubAIService,
        create_user,
        create_exercise,
    ):
        user = await create_user(balance=10)
        exercise = await create_exercise()
        started = await api_client.post(
            f"/v1/exercises/{exercise.exercise_id}/attempts", headers=auth_headers(user)
        )
        path = f"/v1/attempts/{started.json()['id']}/submit"
        ai_service.gate = asyncio.Event()

        first = asyncio.create_task(
            api_client.post(path, json={"content": "my essay"}, headers=auth_headers(user))
        )
        await ai_service.wait_until_evaluating()
        second = await api_client.post(
            path, json={"content": "my essay"}, headers=auth_headers(user)
        )
        ai_service.gate.set()
        first_response = await first

        assert second.status_code == 409
        assert first_response.status_code == 200
        assert first_response.json()["attempt"]["state"] == "EVALUATED"
        balance = await api_client.get("/v1/credits/balance", headers=auth_headers(user))
        assert balance.json()["credits_balance"] == 5

    async def test_submit_empty_content_is_422(
        self, api_client: AsyncClient, create_user, create_exercise
    ):
        user = await create_user()
        exercise = await create_exercise()
        started = await api_client.post(
            f"/v1/exercises/{exercise.exercise_id}/attempts", headers=auth_headers(user)
        )

        response = await api_client.post(
            f"/v1/attempts/{started.json()['id']}/submit",
            json={"content": ""},
            headers=auth_headers(user),
        )

        assert response.status_code == 422

    async def test_draft_after_evaluation_is_409(
        self, api_client: AsyncClient, create_user, create_exercise
    ):
        user = await create_user(balance=10)
        exercise = await create_exercise()
        started = await api_client.post(
            f"/v1/exercises/{exercise.exercise_id}/attempts", headers=auth_headers(user)
        )
        attempt_id = started.json()["id"]
        await api_client.post(
            f"/v1/attempts/{attempt_id}/submit", json={"content": "x"}, headers=auth_headers(user)
        )

        response = await api_client.put(
            f"/v1/attempts/{attempt_id}/draft", json={"content": "y"}, headers=auth_headers(user)
        )

        assert response.status_code == 409

    async def test_foreign_attempt_is_404(
        self, api_client: AsyncClient, create_user, create_exercise
    ):
        owner = await create_user()
        intruder = await create_user()
        exercise = await create_exercise()
        started = await api_client.post(
            f"/v1/exercises/{exercise.exercise_id}/attempts", headers=auth_headers(owner)
        )

        response = await api_client.get(
            f"/v1/attempts/{started.json()['id']}", headers=auth_headers(intruder)
        )

        assert response.status_code == 404

    async def test_reevaluate_insufficient_is_402(
        self, api_client: AsyncClient, create_user, create_exercise
    ):
        user = await create_user(balance=5)
        exercise = await create_exercise()
        started = await api_client.post(
            f"/v1/exercises/{exercise.exercise_id}/attempts", headers=auth_headers(user)
        )
        attempt_id = started.json()["id"]
        await api_client.post(
            f"/v1/attempts/{attempt_id}/submit", json={"content": "x"}, headers=auth_headers(user)
        )

        response = await api_client.post(
            f"/v1/attempts/{attempt_id}/reevaluate", headers=auth_headers(user)
        )

        assert response.status_code == 402
        assert response.json()["message"] == "Insufficient credits. Required: 5, Available: 0"

    async def test_list_attempts(self, api_client: AsyncClient, create_user, create_exercise):
        user = await create_user()
        exercise = await create_exercise()
        await api_client.post(
            f"/v1/exercises/{exercise.exercise_id}/attempts", headers=auth_headers(user)
        )

        response = await api_client.get("/v1/attempts", headers=auth_headers(user))

        assert response.status_code == 200
        assert response.json()["total_count"] == 1


# ============================================================================
# Tools
# ============================================================================


class TestToolRoutes:
    """Tests for /v1/tools."""

    async def test_rewrite(self, api_client: AsyncClient, create_user):
        user = await create_user(balance=5)

        response = await api_client.post(
            "/v1/tools/rewrite", json={"text": "hello"}, headers=auth_headers(user)
        )

        assert response.status_code == 200
        assert response.json()["text"] == "HELLO"

    async def test_rewrite_insufficient_is_402(self, api_client: AsyncClient, create_user):
        user = await create_user(balance=1)

        response = await api_client.post(
            "/v1/tools/rewrite", json={"text": "hello"}, headers=auth_headers(user)
        )

        assert response.status_code == 402
        assert response.json()["reason"] == "INSUFFICIENT_CREDITS"

    async def test_chart_analysis_for_teacher(self, api_client: AsyncClient, create_user):
        teacher = await create_user(balance=5, role=UserRole.TEACHER)
        image = base64.b64encode(b"\x89PNG\r\n").decode()

        response = await api_client.post(
            "/v1/tools/chart-analysis",
            json={"image_base64": image, "mime_type": "image/png"},
            headers=auth_headers(teacher),
        )

        assert response.status_code == 200
        assert response.json()["data"]["chart_type"] == "bar"

    async def test_chart_analysis_for_student_is_403(self, api_client: AsyncClient, create_user):
        student = await create_user(balance=5)
        image = base64.b64encode(b"\x89PNG\r\n").decode()

        response = await api_client.post(
            "/v1/tools/chart-analysis",
            json={"image_base64": image, "mime_type": "image/png"},
            headers=auth_headers(student),
        )

        assert response.status_code == 403

    async def test_feature_access(self, api_client: AsyncClient, create_user):
        user = await create_user(is_premium=True)

        response = await api_client.get(
            "/v1/features/mock_test/access", headers=auth_headers(user)
        )

        assert response.json() == {"feature_key": "mock_test", "allowed": True}

        priced = await api_client.get(
            "/v1/features/mock_test/access", params={"cost": 10}, headers=auth_headers(user)
        )

        assert priced.json()["allowed"] is False


# ============================================================================
# Credits
# ============================================================================


class TestCreditRoutes:
    """Tests for /v1/credits."""

    async def test_balance(self, api_client: AsyncClient, create_user):
        user = await create_user(balance=12)

        response = await api_client.get("/v1/credits/balance", headers=auth_headers(user))

        assert response.status_code == 200
        assert response.json()["credits_balance"] == 12

    async def test_transactions(self, api_client: AsyncClient, create_user):
        user = await create_user(balance=12)

        response = await api_client.get(
            "/v1/credits/transactions", params={"limit": 10}, headers=auth_headers(user)
        )

        body = response.json()
        assert body["total_count"] == 1
        assert body["transactions"][0]["amount"] == 12

    async def test_daily_grant(self, api_client: AsyncClient, create_user):
        user = await create_user()

        first = await api_client.post("/v1/credits/daily-grant", headers=auth_headers(user))
        second = await api_client.post("/v1/credits/daily-grant", headers=auth_headers(user))

        assert first.json()["granted"] is True
        assert second.json() == {"granted": False, "amount": 0, "credits_balance": 5}


# ============================================================================
# Admin
# ============================================================================


class TestAdminRoutes:
    """Tests for /v1/admin."""

    async def test_pricing_requires_admin(self, api_client: AsyncClient, create_user):
        user = await create_user()

        response = await api_client.get("/v1/admin/pricing", headers=auth_headers(user))

        assert response.status_code == 403

    async def test_update_and_list_pricing(self, api_client: AsyncClient, create_user):
        admin = await create_user(role=UserRole.ADMIN)

        updated = await api_client.put(
            "/v1/admin/pricing/text_rewriter",
            json={"cost": 4, "is_active": True},
            headers=auth_headers(admin),
        )
        listing = await api_client.get("/v1/admin/pricing", headers=auth_headers(admin))

        assert updated.status_code == 200
        costs = {p["feature_key"]: p["cost"] for p in listing.json()["pricing"]}
        assert costs["text_rewriter"] == 4

    async def test_grant_credits(self, api_client: AsyncClient, create_user):
        admin = await create_user(role=UserRole.ADMIN)
        student = await create_user()

        response = await api_client.post(
            f"/v1/admin/users/{student.user_id}/credits",
            json={"amount": 30, "transaction_type": "teacher_grant"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 201
        assert response.json()["amount"] == 30

    async def test_grant_to_unknown_user_is_404(self, api_client: AsyncClient, create_user):
        admin = await create_user(role=UserRole.ADMIN)

        response = await api_client.post(
            f"/v1/admin/users/{uuid4()}/credits",
            json={"amount": 30},
            headers=auth_headers(admin),
        )

        assert response.status_code == 404

    async def test_reward_routes(self, api_client: AsyncClient, credit_service, create_user):
        admin = await create_user(role=UserRole.ADMIN)
        student = await create_user()
        base = f"/v1/admin/users/{student.user_id}"

        welcome = await api_client.post(f"{base}/welcome-bonus", headers=auth_headers(admin))
        invite = await api_client.post(
            f"{base}/invite-bonus",
            json={"friend_email": "friend@x.com"},
            headers=auth_headers(admin),
        )
        gift = await api_client.post(
            f"{base}/gift-codes", json={"code": "SPRING"}, headers=auth_headers(admin)
        )

        assert [r.status_code for r in (welcome, invite, gift)] == [201, 201, 201]
        assert welcome.json()["transaction_type"] == "reward"
        assert gift.json()["transaction_type"] == "gift_code"
        assert await credit_service.get_balance(student.user_id) == 40

    async def test_gift_code_amount_must_be_positive(
        self, api_client: AsyncClient, create_user
    ):
        admin = await create_user(role=UserRole.ADMIN)

        response = await api_client.post(
            f"/v1/admin/users/{admin.user_id}/gift-codes",
            json={"code": "ZERO", "amount": 0},
            headers=auth_headers(admin),
        )

        assert response.status_code == 422

    async def test_double_refund_is_409(
        self, api_client: AsyncClient, credit_service, create_user
    ):
        admin = await create_user(role=UserRole.ADMIN)
        student = await create_user(balance=10)
        charge = await credit_service.bill_user(student.user_id, "writing_evaluation")
        path = f"/v1/admin/transactions/{charge.transaction_id}/refund"

        first = await api_client.post(path, headers=auth_headers(admin))
        second = await api_client.post(path, headers=auth_headers(admin))

        assert first.status_code == 201
        assert second.status_code == 409

    async def test_save_exercise_versions(self, api_client: AsyncClient, create_user):
        teacher = await create_user(role=UserRole.TEACHER)
        body = {"type": "writing_task1", "title": "Rainfall", "prompt": "Summarise the chart."}

        first = await api_client.post(
            "/v1/admin/exercises", json=body, headers=auth_headers(teacher)
        )
        second = await api_client.post(
            "/v1/admin/exercises", json=body, headers=auth_headers(teacher)
        )

        assert first.status_code == 201
        assert [first.json()["version"], second.json()["version"]] == [1, 2]


class TestServiceRoutes:
    """Tests for root and metrics endpoints."""

    async def test_root(self, api_client: AsyncClient):
        response = await api_client.get("/")

        assert response.json()["status"] == "running"

    async def test_metrics(self, api_client: AsyncClient):
        response = await api_client.get("/metrics")

        assert response.status_code == 200
        assert "credits_http_requests_total" in response.text
