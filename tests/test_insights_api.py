from datetime import UTC, datetime, timedelta
from uuid import uuid4

from attention.v1.infra.jobs.models import JobStatus
from attention.v1.infra.jobs.service import EnqueueService

TEST_SHOP = "test-shop.myshopify.com"


def product_node(product_id: str, days_old: int, **extra) -> dict:
    updated_at = datetime.now(UTC) - timedelta(days=days_old, hours=1)
    node = {
        "id": product_id,
        "title": f"Product {product_id}",
        "updatedAt": updated_at.isoformat().replace("+00:00", "Z"),
        "status": "ACTIVE",
        "featuredMedia": {"id": "media-1"},
        "totalInventory": 25,
    }
    node.update(extra)
    return node


class TestInsightEndpoints:
    async def test_evaluate_creates_insights(self, async_client):
        response = await async_client.post(
            "/v1/insights/evaluate",
            json={
                "products": [
                    product_node("p-1", 90),
                    product_node("p-2", 3, totalInventory=0),
                    {"title": "no id"},
                ]
            },
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 2

        by_id = {i["product_id"]: i for i in data["insights"]}
        assert by_id["p-1"]["status"] == "NEGLECTED"
        assert by_id["p-1"]["attention_score"] == 90
        assert by_id["p-1"]["ai_confidence"] == "High"
        assert by_id["p-2"]["inventory_status"] == "OUT_OF_STOCK"
        assert by_id["p-2"]["status"] == "NEGLECTED"

    async def test_evaluate_keeps_ai_fields(
        self, async_client, db_session, make_insight, test_settings
    ):
        await make_insight(db_session, "p-1")
        await EnqueueService(test_settings).enqueue_one(db_session, TEST_SHOP, "p-1")

        response = await async_client.post(
            "/v1/insights/evaluate", json={"products": [product_node("p-1", 10)]}
        )

        insight = response.json()["data"]["insights"][0]
        assert insight["attention_score"] == 10
        assert insight["status"] == "HEALTHY"
        assert insight["ai_status"] == JobStatus.QUEUED.value

    async def test_list_insights_orders_by_score(self, async_client):
        await async_client.post(
            "/v1/insights/evaluate",
            json={
                "products": [
                    product_node("p-1", 20),
                    product_node("p-2", 200),
                    product_node("p-3", 70),
                ]
            },
        )

        response = await async_client.get("/v1/insights")
        ids = [i["product_id"] for i in response.json()["data"]["insights"]]
        assert ids == ["p-2", "p-3", "p-1"]

        response = await async_client.get("/v1/insights", params={"status": "NEGLECTED"})
        ids = [i["product_id"] for i in response.json()["data"]["insights"]]
        assert ids == ["p-2", "p-3"]

    async def test_get_insight(self, async_client, db_session, make_insight):
        await make_insight(db_session, "p-1", title="Wool Scarf")

        response = await async_client.get("/v1/insights/p-1")

        assert response.status_code == 200
        assert response.json()["data"]["product_title"] == "Wool Scarf"

    async def test_get_unknown_insight_is_404(self, async_client):
        response = await async_client.get("/v1/insights/missing")

        assert response.status_code == 404
        assert response.json()["ok"] is False


class TestGenerationEndpoints:
    async def test_generate_then_deduplicate(self, async_client, db_session, make_insight):
        await make_insight(db_session, "p-1")

        first = await async_client.post("/v1/insights/p-1/generate")
        second = await async_client.post("/v1/insights/p-1/generate")

        assert first.status_code == 200
        assert first.json()["data"]["deduplicated"] is False
        assert second.json()["data"]["deduplicated"] is True
        assert second.json()["data"]["job_id"] == first.json()["data"]["job_id"]
        assert second.json()["message"] == "Generation already in progress"

    async def test_regenerate_supersedes(self, async_client, db_session, make_insight):
        await make_insight(db_session, "p-1")

        first = await async_client.post("/v1/insights/p-1/generate")
        forced = await async_client.post("/v1/insights/p-1/regenerate")

        data = forced.json()["data"]
        assert data["deduplicated"] is False
        assert data["superseded_job_id"] == first.json()["data"]["job_id"]

        old = await async_client.get(f"/v1/jobs/{first.json()['data']['job_id']}")
        assert old.json()["data"]["status"] == JobStatus.FAILED.value

    async def test_generate_for_unknown_product_is_404(self, async_client):
        response = await async_client.post("/v1/insights/missing/generate")
        assert response.status_code == 404

    async def test_batch_creates_run(self, async_client):
        response = await async_client.post(
            "/v1/insights/batch", json={"product_ids": ["p-1", "p-2", "p-3"]}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["products_queued"] == 3
        assert data["jobs_created"] == 3

        run = await async_client.get(f"/v1/runs/{data['run_id']}")
        run_data = run.json()["data"]
        assert run_data["status"] == "RUNNING"
        assert run_data["products_queued"] == 3
        assert {j["product_id"] for j in run_data["jobs"]} == {"p-1", "p-2", "p-3"}

    async def test_batch_limits(self, async_client, test_settings):
        empty = await async_client.post("/v1/insights/batch", json={"product_ids": []})
        assert empty.status_code == 422

        too_many = [f"p-{i}" for i in range(test_settings.batch_max + 1)]
        response = await async_client.post(
            "/v1/insights/batch", json={"product_ids": too_many}
        )
        assert response.status_code == 422
        assert response.json()["error"]["details"]["batch_max"] == test_settings.batch_max


class TestJobAndRunEndpoints:
    async def test_list_jobs_filters(self, async_client, db_session, make_insight):
        await make_insight(db_session, "p-1")
        await make_insight(db_session, "p-2")
        await async_client.post("/v1/insights/p-1/generate")
        await async_client.post("/v1/insights/p-2/generate")
        await async_client.post("/v1/insights/p-2/regenerate")

        response = await async_client.get("/v1/jobs")
        assert response.json()["data"]["total"] == 3

        response = await async_client.get(
            "/v1/jobs", params={"status": ["QUEUED"], "limit": 1}
        )
        data = response.json()["data"]
        assert data["total"] == 2
        assert len(data["jobs"]) == 1
        assert data["limit"] == 1

    async def test_job_stats(self, async_client, db_session, make_insight):
        await make_insight(db_session, "p-1")
        await async_client.post("/v1/insights/p-1/generate")

        response = await async_client.get("/v1/jobs/stats")

        data = response.json()["data"]
        assert data["total_jobs"] == 1
        assert data["queue_depth"] == 1
        assert data["by_status"] == {"QUEUED": 1}

    async def test_unknown_job_and_run_are_404(self, async_client):
        assert (await async_client.get(f"/v1/jobs/{uuid4()}")).status_code == 404
        assert (await async_client.get(f"/v1/runs/{uuid4()}")).status_code == 404

    async def test_other_shop_data_is_hidden(self, async_client, db_session, test_settings):
        other = await EnqueueService(test_settings).start_batch(
            db_session, "other.myshopify.com", ["p-1"]
        )

        assert (await async_client.get(f"/v1/runs/{other.run_id}")).status_code == 404
        runs = await async_client.get("/v1/runs")
        assert runs.json()["data"]["runs"] == []

    async def test_run_detail_includes_titles(self, async_client, db_session, make_insight):
        await make_insight(db_session, "p-1", title="Oak Board")
        batch = await async_client.post(
            "/v1/insights/batch", json={"product_ids": ["p-1", "p-9"]}
        )
        run_id = batch.json()["data"]["run_id"]

        response = await async_client.get(f"/v1/runs/{run_id}")

        titles = {j["product_id"]: j["product_title"] for j in response.json()["data"]["jobs"]}
        assert titles == {"p-1": "Oak Board", "p-9": None}
