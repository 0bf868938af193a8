"""REST API: camelCase bodies, status codes and the error shape."""

import uuid

import httpx
import pytest
import pytest_asyncio

from conftest import ANALYSIS_COST, SCENE_COUNT, SCRIPT_COST
from storyflow.api.app import create_app
from storyflow.orchestrator import StageOrchestrator
from storyflow.services.generators import GeneratorSet


@pytest_asyncio.fixture
async def client(orchestrator):
    app = create_app(orchestrator)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _create(client, **overrides) -> str:
    body = {"topic": "a lantern festival", "language": "en", "duration": 30, "userId": "user-1"}
    body.update(overrides)
    response = await client.post("/api/videos", json=body)
    assert response.status_code == 201, response.text
    return response.json()["videoId"]


def _assert_error(response, status: int, code: str) -> None:
    assert response.status_code == status, response.text
    body = response.json()
    assert set(body) == {"error", "code"}
    assert body["code"] == code
    assert body["error"]


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["database"] == "connected"


@pytest.mark.asyncio
async def test_create_and_get_video(client):
    video_id = await _create(client, isPremium=True)

    response = await client.get(f"/api/videos/{video_id}")
    assert response.status_code == 200
    body = response.json()
    assert body["id"] == video_id
    assert body["status"] == "draft"
    assert body["isPremium"] is True
    assert body["totalCost"] == 0.0
    assert body["userId"] == "user-1"
    assert body["assets"] == []
    assert body["renderedVideo"] is None


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {"language": "en", "duration": 30},
    {"topic": "t", "language": "xx", "duration": 30},
    {"topic": "t", "language": "en", "duration": 31},
    {"topic": "t", "language": "en", "duration": "long"},
])
async def test_create_validation_errors(client, body):
    response = await client.post("/api/videos", json=body)
    _assert_error(response, 400, "VALIDATION_ERROR")


@pytest.mark.asyncio
async def test_unknown_video_and_route(client):
    _assert_error(await client.get(f"/api/videos/{uuid.uuid4()}"), 404, "NOT_FOUND")
    _assert_error(await client.post(f"/api/videos/{uuid.uuid4()}/analyze"), 404, "NOT_FOUND")
    _assert_error(await client.get("/api/nothing-here"), 404, "NOT_FOUND")


@pytest.mark.asyncio
async def test_malformed_id_is_validation_error(client):
    _assert_error(await client.get("/api/videos/not-a-uuid"), 400, "VALIDATION_ERROR")


@pytest.mark.asyncio
async def test_wrong_status_is_conflict(client):
    video_id = await _create(client)
    response = await client.post(f"/api/videos/{video_id}/script")
    _assert_error(response, 409, "VALIDATION_ERROR")


@pytest.mark.asyncio
async def test_review_flow(client, orchestrator):
    video_id = await _create(client)

    response = await client.post(f"/api/videos/{video_id}/analyze")
    assert response.status_code == 200
    assert response.json()["concept"].startswith("A story about")

    response = await client.post(f"/api/videos/{video_id}/script")
    assert response.status_code == 200
    script = response.json()
    assert len(script["scenes"]) == SCENE_COUNT
    assert {"startTime", "endTime", "visualDescription"} <= set(script["scenes"][0])
    assert script["wordCount"] > 0

    response = await client.post(
        f"/api/videos/{video_id}/script/approve",
        json={"approved": False, "revisionNotes": "more lanterns"},
    )
    assert response.status_code == 200
    assert response.json()["followup"] == "script"
    await orchestrator.wait_idle(uuid.UUID(video_id))

    response = await client.post(f"/api/videos/{video_id}/script/approve", json={"approved": True})
    assert response.status_code == 200
    decision = response.json()
    assert decision["status"] == "script_approved"
    assert decision["followup"] == "storyboard"
    await orchestrator.wait_idle(uuid.UUID(video_id))

    response = await client.post(f"/api/videos/{video_id}/storyboard/approve", json={"approved": False})
    _assert_error(response, 400, "VALIDATION_ERROR")

    response = await client.get(f"/api/videos/{video_id}")
    body = response.json()
    assert body["status"] == "storyboard_review"
    assert body["storyboard"]["visualStyle"] == "watercolor"
    assert body["script"]["approvedAt"] is not None

    response = await client.get(f"/api/videos/{video_id}/cost")
    cost = response.json()
    assert cost["videoId"] == video_id
    assert [e["stage"] for e in cost["entries"]] == ["analysis", "script", "script", "storyboard"]
    assert cost["totalCost"] == pytest.approx(sum(e["amount"] for e in cost["entries"]))


@pytest.mark.asyncio
async def test_script_rejection_requires_notes(client):
    video_id = await _create(client)
    await client.post(f"/api/videos/{video_id}/analyze")
    await client.post(f"/api/videos/{video_id}/script")

    response = await client.post(f"/api/videos/{video_id}/script/approve", json={"approved": False})
    _assert_error(response, 400, "VALIDATION_ERROR")


@pytest.mark.asyncio
async def test_edit_script(client):
    video_id = await _create(client)
    await client.post(f"/api/videos/{video_id}/analyze")
    await client.post(f"/api/videos/{video_id}/script")

    response = await client.put(
        f"/api/videos/{video_id}/script",
        json={
            "script": "Lanterns rise over the river.",
            "scenes": [{"order": 1, "narration": "Lanterns rise over the river.", "startTime": 0, "endTime": 30}],
        },
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["wordCount"] == 5
    assert body["estimatedDuration"] == 30
    assert len(body["scenes"]) == 1

    response = await client.put(f"/api/videos/{video_id}/script", json={"script": "x", "scenes": []})
    _assert_error(response, 400, "VALIDATION_ERROR")


@pytest.mark.asyncio
async def test_back_navigation(client, orchestrator):
    video_id = await _create(client)
    await client.post(f"/api/videos/{video_id}/analyze")
    await client.post(f"/api/videos/{video_id}/script")
    await client.post(f"/api/videos/{video_id}/script/approve", json={"approved": True})
    await orchestrator.wait_idle(uuid.UUID(video_id))

    response = await client.post(f"/api/videos/{video_id}/back", json={"target": "script_review"})
    assert response.status_code == 200
    assert response.json()["status"] == "script_review"

    response = await client.post(f"/api/videos/{video_id}/back", json={"target": "draft"})
    _assert_error(response, 400, "VALIDATION_ERROR")


@pytest.mark.asyncio
async def test_adapter_failure_is_server_error(client, generators):
    video_id = await _create(client)
    generators.analyzer.fail_next = 1

    response = await client.post(f"/api/videos/{video_id}/analyze")
    _assert_error(response, 500, "SERVER_ERROR")

    body = (await client.get(f"/api/videos/{video_id}")).json()
    assert body["status"] == "failed"
    assert body["failedFrom"] == "draft"
    assert body["errorMessage"]


@pytest.mark.asyncio
async def test_missing_generator_is_not_implemented(session_factory):
    app = create_app(StageOrchestrator(session_factory, GeneratorSet()))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        video_id = await _create(client)
        response = await client.post(f"/api/videos/{video_id}/analyze")
    _assert_error(response, 501, "NOT_IMPLEMENTED")


@pytest.mark.asyncio
async def test_list_videos_by_user(client):
    mine = await _create(client, userId="alice")
    await _create(client, userId="bob")

    response = await client.get("/api/videos", params={"userId": "alice"})
    assert response.status_code == 200
    assert [v["id"] for v in response.json()["videos"]] == [mine]


@pytest.mark.asyncio
async def test_download_before_render(client):
    video_id = await _create(client)
    _assert_error(await client.get(f"/api/videos/{video_id}/download"), 404, "NOT_FOUND")
    _assert_error(await client.get(f"/api/videos/{video_id}/subtitles"), 404, "NOT_FOUND")


@pytest.mark.asyncio
async def test_cost_after_analysis_and_script(client):
    video_id = await _create(client)
    await client.post(f"/api/videos/{video_id}/analyze")
    await client.post(f"/api/videos/{video_id}/script", json={"revisionNotes": "short and sweet"})

    body = (await client.get(f"/api/videos/{video_id}/cost")).json()
    assert body["totalCost"] == pytest.approx(ANALYSIS_COST + SCRIPT_COST)
