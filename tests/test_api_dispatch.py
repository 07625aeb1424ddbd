from decimal import Decimal

from escortcore.models.db.enums import JobStatus, WorkStatus


def test_race_claim_endpoint(client, container, provider_factory, job_factory):
    provider = provider_factory()
    job = job_factory()

    resp = client.post(f"/api/v1/dispatch/jobs/{job.id}/claim", json={"provider_id": provider.id})

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["claimed"] is True
    assert body["data"]["provider_id"] == provider.id
    # job_assigned + provider_assigned wait in the outbox
    assert container.queue.snapshot()["ready"] == 2
    assert resp.headers.get("X-Request-ID")


def test_losing_claim_is_409(client, provider_factory, job_factory):
    winner = provider_factory()
    loser = provider_factory()
    job = job_factory()
    client.post(f"/api/v1/dispatch/jobs/{job.id}/claim", json={"provider_id": winner.id})

    resp = client.post(f"/api/v1/dispatch/jobs/{job.id}/claim", json={"provider_id": loser.id})

    assert resp.status_code == 409
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "This job was just taken"
    assert body["details"]["reason"] == "conflict"


def test_ineligible_provider_is_422(client, provider_factory, job_factory):
    provider = provider_factory(work_status=WorkStatus.RESTING)
    job = job_factory()

    resp = client.post(
        f"/api/v1/dispatch/jobs/{job.id}/claim",
        json={"provider_id": provider.id, "method": "manual", "operator_id": 9},
    )

    assert resp.status_code == 422
    assert resp.json()["details"]["reason_code"] == "not_accepting_work"


def test_unknown_job_is_404(client, provider_factory):
    provider = provider_factory()
    resp = client.post("/api/v1/dispatch/jobs/999999/claim", json={"provider_id": provider.id})
    assert resp.status_code == 404
    assert resp.json()["details"]["reason"] == "not_found"


def test_invalid_claim_body(client, job_factory):
    job = job_factory()
    resp = client.post(f"/api/v1/dispatch/jobs/{job.id}/claim", json={"provider_id": 0})
    assert resp.status_code == 422
    assert resp.json()["message"] == "Request validation failed"


def test_auto_assign_endpoint(client, provider_factory, job_factory):
    provider = provider_factory()
    job = job_factory()

    resp = client.post(f"/api/v1/dispatch/jobs/{job.id}/auto-assign")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["claimed"] is True
    assert data["provider_id"] == provider.id
    assert data["score"]["score"] > 0


def test_auto_assign_without_candidates_is_not_an_error(client, job_factory):
    job = job_factory()
    resp = client.post(f"/api/v1/dispatch/jobs/{job.id}/auto-assign")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["data"]["reason"] == "no_eligible_providers"


def test_recommendations_endpoint(client, provider_factory, job_factory):
    first = provider_factory(rating="5.00")
    second = provider_factory(rating="4.20")
    job = job_factory()

    resp = client.get(f"/api/v1/dispatch/jobs/{job.id}/recommendations", params={"limit": 1})

    assert resp.status_code == 200
    candidates = resp.json()["data"]["candidates"]
    assert [c["provider_id"] for c in candidates] == [first.id]
    assert set(candidates[0]["factors"]) == {"proximity", "familiarity", "rating", "tier", "load"}
    assert second.id not in [c["provider_id"] for c in candidates]


def test_recommendations_unknown_job(client):
    resp = client.get("/api/v1/dispatch/jobs/999999/recommendations")
    assert resp.status_code == 404


def test_pool_endpoint(client, job_factory, venue_factory):
    venue = venue_factory()
    open_job = job_factory(venue=venue)
    job_factory()
    job_factory(status=JobStatus.PENDING)

    all_open = client.get("/api/v1/dispatch/pool").json()["data"]["jobs"]
    at_venue = client.get("/api/v1/dispatch/pool", params={"venue_id": venue.id}).json()["data"]["jobs"]

    assert len(all_open) == 2
    assert [j["id"] for j in at_venue] == [open_job.id]
    assert Decimal(at_venue[0]["paid_amount"]) == Decimal("200.00")


def test_pool_endpoint_gates_on_viewing_provider(client, job_factory, provider_factory):
    job_factory()
    resting = provider_factory(work_status=WorkStatus.RESTING)

    gated = client.get("/api/v1/dispatch/pool", params={"provider_id": resting.id})
    assert gated.status_code == 200
    assert gated.json()["data"]["jobs"] == []
    assert client.get("/api/v1/dispatch/pool", params={"provider_id": 999999}).status_code == 404


def test_health_endpoints(client):
    assert client.get("/health").json()["outbox_backend"] == "memory"
    detailed = client.get("/health/detailed").json()
    assert detailed["checks"]["database"] == "healthy"
    assert detailed["checks"]["sweep"] == "disabled"
    assert detailed["checks"]["outbox"]["backend"] == "memory"
