"""
API tests for the job queue endpoints.
"""

import pytest

ORDER_JOB = {
    "type": "create_order",
    "payload": {"post_id": "post_1", "like_count": 10, "save_count": 5},
}


async def submit(client, headers, body=None):
    response = await client.post("/v1/jobs", json=body or ORDER_JOB, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


class TestSubmitJob:
    async def test_submit_returns_envelope(self, async_client, auth_headers):
        response = await async_client.post("/v1/jobs", json=ORDER_JOB, headers=auth_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["ok"] is True
        assert body["message"] == "Job added to queue"
        assert "timestamp" in body

        job = body["data"]
        assert job["job_id"].startswith("job_")
        assert job["status"] == "pending"
        assert job["queue_position"] == 1
        assert job["attempts"] == 0
        assert job["max_attempts"] == 3
        assert job["user_id"] == "user_1"
        assert job["team_id"] == "team_1"
        assert job["payload"]["save_to_db"] is False

    async def test_unknown_type_is_422(self, async_client, auth_headers):
        response = await async_client.post(
            "/v1/jobs", json={"type": "send_email", "payload": {}}, headers=auth_headers
        )

        assert response.status_code == 422
        body = response.json()
        assert body["ok"] is False
        assert body["error"]["message"] == "Unknown job type: send_email"
        assert "create_order" in body["error"]["details"]["registered_types"]

    async def test_invalid_payload_is_422(self, async_client, auth_headers):
        response = await async_client.post(
            "/v1/jobs",
            json={"type": "create_order", "payload": {"like_count": 1}},
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"]["message"] == (
            "Invalid payload for job type create_order"
        )

    @pytest.mark.parametrize("priority", [40000, -40000])
    async def test_out_of_range_priority_is_422(
        self, async_client, auth_headers, priority
    ):
        response = await async_client.post(
            "/v1/jobs",
            json={
                "type": "check_order_status",
                "payload": {"order_id": "ord_1"},
                "priority": priority,
            },
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert response.json()["detail"][0]["loc"] == ["body", "priority"]

        response = await async_client.get("/v1/jobs", headers=auth_headers)
        assert response.json()["data"]["total"] == 0

    async def test_missing_user_header_is_400(self, async_client):
        response = await async_client.post("/v1/jobs", json=ORDER_JOB)

        assert response.status_code == 400
        assert response.json()["ok"] is False


class TestReadJobs:
    async def test_get_job(self, async_client, auth_headers):
        job = await submit(async_client, auth_headers)

        response = await async_client.get(f"/v1/jobs/{job['job_id']}", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["job_id"] == job["job_id"]
        assert data["estimated_completion_at"] is None

    async def test_other_users_job_is_404(self, async_client, auth_headers):
        job = await submit(async_client, auth_headers)

        response = await async_client.get(
            f"/v1/jobs/{job['job_id']}", headers={"X-User-ID": "user_2"}
        )

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Job not found"

    async def test_team_member_can_read(self, async_client, auth_headers):
        job = await submit(async_client, auth_headers)

        response = await async_client.get(
            f"/v1/jobs/{job['job_id']}",
            headers={"X-User-ID": "user_3", "X-Team-ID": "team_1"},
        )

        assert response.status_code == 200

    async def test_missing_job_is_404(self, async_client, auth_headers):
        response = await async_client.get("/v1/jobs/job_missing", headers=auth_headers)

        assert response.status_code == 404

    async def test_list_jobs(self, async_client, auth_headers):
        for _ in range(3):
            await submit(async_client, auth_headers)
        await submit(
            async_client,
            auth_headers,
            {"type": "check_order_status", "payload": {"order_id": "ord_1"}},
        )
        await submit(async_client, {"X-User-ID": "user_2"})

        response = await async_client.get("/v1/jobs", headers=auth_headers)
        data = response.json()["data"]
        assert data["total"] == 4
        assert data["limit"] == 50
        assert data["offset"] == 0
        assert len(data["jobs"]) == 4

        response = await async_client.get(
            "/v1/jobs",
            params={"type": "create_order", "limit": 2, "offset": 2},
            headers=auth_headers,
        )
        data = response.json()["data"]
        assert data["total"] == 3
        assert len(data["jobs"]) == 1

        response = await async_client.get(
            "/v1/jobs", params={"status": "completed"}, headers=auth_headers
        )
        assert response.json()["data"]["total"] == 0

    @pytest.mark.parametrize("params", [{"status": "bogus"}, {"limit": 0}])
    async def test_list_rejects_bad_filters(self, async_client, auth_headers, params):
        response = await async_client.get("/v1/jobs", params=params, headers=auth_headers)

        assert response.status_code == 422

    async def test_job_logs(self, async_client, auth_headers):
        job = await submit(async_client, auth_headers)

        response = await async_client.get(
            f"/v1/jobs/{job['job_id']}/logs", headers=auth_headers
        )

        assert response.status_code == 200
        logs = response.json()["data"]
        assert logs[0]["message"] == "Job created and added to queue"
        assert logs[0]["level"] == "info"
        assert logs[0]["details"] == {"position": 1, "type": "create_order"}

        response = await async_client.get(
            f"/v1/jobs/{job['job_id']}/logs", headers={"X-User-ID": "user_2"}
        )
        assert response.status_code == 404


class TestCancelJob:
    async def test_cancel(self, async_client, auth_headers):
        job = await submit(async_client, auth_headers)

        response = await async_client.post(
            f"/v1/jobs/{job['job_id']}/cancel", headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"job_id": job["job_id"], "status": "cancelled"}

        response = await async_client.get(f"/v1/jobs/{job['job_id']}", headers=auth_headers)
        assert response.json()["data"]["status"] == "cancelled"
        assert response.json()["data"]["error"] == "Job cancelled by user"

    async def test_cancel_twice_is_404(self, async_client, auth_headers):
        job = await submit(async_client, auth_headers)
        await async_client.post(f"/v1/jobs/{job['job_id']}/cancel", headers=auth_headers)

        response = await async_client.post(
            f"/v1/jobs/{job['job_id']}/cancel", headers=auth_headers
        )

        assert response.status_code == 404
        assert response.json()["error"]["message"] == (
            "Job not found or cannot be cancelled"
        )

    async def test_cannot_cancel_other_users_job(self, async_client, auth_headers):
        job = await submit(async_client, auth_headers)

        response = await async_client.post(
            f"/v1/jobs/{job['job_id']}/cancel", headers={"X-User-ID": "user_2"}
        )

        assert response.status_code == 404


class TestQueueOperations:
    async def test_stats(self, async_client, auth_headers):
        job = await submit(async_client, auth_headers)
        await submit(async_client, auth_headers)
        await async_client.post(f"/v1/jobs/{job['job_id']}/cancel", headers=auth_headers)

        response = await async_client.get("/v1/jobs/stats", headers=auth_headers)

        assert response.status_code == 200
        stats = response.json()["data"]
        assert stats["pending"] == 1
        assert stats["cancelled"] == 1
        assert stats["total"] == 2

    async def test_jobs_only_run_in_the_worker(self, async_client, auth_headers, fake_api):
        job = await submit(async_client, auth_headers)

        response = await async_client.post(
            "/v1/jobs/worker/run", params={"max_jobs": 5}, headers=auth_headers
        )

        assert response.status_code == 404
        assert fake_api.requests == []
        response = await async_client.get(f"/v1/jobs/{job['job_id']}", headers=auth_headers)
        assert response.json()["data"]["status"] == "pending"
