from datetime import timedelta

from orderqueue.v1.infra.jobs.models import utcnow
from orderqueue.v1.infra.jobs.schemas import JobCreate


async def test_health_check_success(async_client):
    """Test health check endpoint returns correct format."""
    response = await async_client.get("/v1/healthz")

    assert response.status_code == 200

    data = response.json()
    assert data["ok"] is True
    assert "data" in data

    health_data = data["data"]
    assert health_data["ok"] is True
    assert health_data["version"] == "1.0.0"
    assert health_data["environment"] == "development"
    assert health_data["database"]["connected"] is True
    assert health_data["queue"] == {
        "processing": 0,
        "stuck_jobs_count": 0,
        "queue_depth": 0,
        "last_heartbeat_age_seconds": None,
    }


async def test_health_check_response_structure(async_client):
    """Test health check response envelope structure."""
    response = await async_client.get("/v1/healthz")

    data = response.json()

    # Check response envelope structure
    required_keys = ["ok", "data", "message", "request_id"]
    for key in required_keys:
        assert key in data

    # Check that request ID is present in headers
    assert "X-Request-ID" in response.headers


async def test_health_reports_queue_state(
    async_client, job_service, db_session, principal, set_job_fields
):
    for _ in range(3):
        await job_service.create_job(
            db_session,
            JobCreate(type="check_order_status", payload={"order_id": "ord_1"}),
            principal,
        )
    job = await job_service.claim_next_job(db_session)
    stale = utcnow() - timedelta(minutes=10)
    await set_job_fields(job.job_id, started_at=stale, heartbeat_at=stale)

    response = await async_client.get("/v1/healthz")

    queue = response.json()["data"]["queue"]
    assert queue["processing"] == 1
    assert queue["stuck_jobs_count"] == 1
    assert queue["queue_depth"] == 2
    assert queue["last_heartbeat_age_seconds"] >= 600
