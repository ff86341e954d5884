"""
Integration tests for the HTTP surface.

The app is built with the temporary JSONL index and the scripted oracle stub;
the result cache is disabled unless a test overrides it.
"""
import uuid

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CONTENT_TYPE_LATEST

from pathways.main import create_app
from pathways.models.requests import HISTORY_NOT_ARRAY, MESSAGE_REQUIRED
from pathways.routes.dependencies import get_orchestrator, get_pathway_cache
from pathways.routes.pathway import GENERIC_FAILURE
from pathways.services.index.reader import COLLEGE_PROGRAMS_FILE, LocalSearchIndex


@pytest.fixture
def app(config, llm, index):
    return create_app(config=config, llm_client=llm, index=index, enable_tracing=False)


@pytest.fixture
def client(app):
    return TestClient(app)


class FakePathwayCache:
    """In-memory stand-in recording what the route stores."""

    def __init__(self, stored=None):
        self.stored = dict(stored or {})
        self.set_calls = []

    def key_for(self, message, history, profile):
        return f"key:{message}"

    async def get(self, key):
        return self.stored.get(key)

    async def set(self, key, value, ttl=None, tags=None, metadata=None):
        self.set_calls.append((key, value, metadata))
        self.stored[key] = value
        return True

    async def invalidate_tags(self, tags):
        return len(self.stored)


class BrokenOrchestrator:
    async def run(self, message, history=(), profile=None):
        raise RuntimeError("boom")


class TestPathwayValidation:
    @pytest.mark.parametrize(
        "body",
        [{}, {"message": 42}, {"message": "   "}, {"conversationHistory": []}],
    )
    def test_missing_message(self, client, body):
        response = client.post("/api/pathway", json=body)

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": MESSAGE_REQUIRED}

    def test_history_must_be_a_list(self, client):
        response = client.post("/api/pathway", json={"message": "nursing", "conversationHistory": "hi"})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": HISTORY_NOT_ARRAY}

    def test_invalid_json_body(self, client):
        response = client.post(
            "/api/pathway",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == MESSAGE_REQUIRED


class TestPathwayEndpoint:
    def test_nursing_search(self, client):
        response = client.post("/api/pathway", json={"message": "nursing programs"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["category"] == "search"
        assert data["attempts"] == 1
        assert data["qualityScore"] == 6
        assert data["toolsUsed"] == ["trace_pathway"]
        assert "cached" not in data
        assert isinstance(data["processingTime"], int)

        nursing = data["data"]["collegePrograms"][0]
        assert nursing["name"] == "Nursing"
        assert nursing["cipCode"] == "51.3801"
        assert nursing["campusCount"] == 3
        assert nursing["variants"] == [
            "Nursing (Bachelor of Science)",
            "Nursing (Associate in Science)",
            "Nursing (Master of Science)",
        ]
        assert [p["name"] for p in data["data"]["highSchoolPrograms"]] == ["Health Services", "Nursing Services"]
        assert data["data"]["careerCodes"] == ["29-1141", "29-1151", "29-2061"]
        assert data["data"]["summary"] == {
            "totalHighSchoolPrograms": 2,
            "totalHighSchools": 2,
            "totalCollegePrograms": 2,
            "totalCollegeCampuses": 3,
            "totalCareerPaths": 3,
        }
        assert data["message"].startswith("## Programs Found")

    def test_greeting(self, client):
        response = client.post(
            "/api/pathway",
            json={"message": "hello", "conversationHistory": [{"role": "bot", "content": "Aloha!"}]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["category"] == "greeting"
        assert data["attempts"] == 0
        assert data["qualityScore"] == 10
        assert data["data"]["collegePrograms"] == []

    def test_cache_hit(self, app, client):
        cached = {"success": True, "message": "From cache", "attempts": 1}
        app.dependency_overrides[get_pathway_cache] = lambda: FakePathwayCache({"key:nursing": cached})

        response = client.post("/api/pathway", json={"message": "nursing"})

        assert response.status_code == 200
        assert response.json() == {**cached, "cached": True}

    def test_search_results_are_cached(self, app, client):
        cache = FakePathwayCache()
        app.dependency_overrides[get_pathway_cache] = lambda: cache

        client.post("/api/pathway", json={"message": "nursing programs"})
        client.post("/api/pathway", json={"message": "hello"})

        assert [key for key, _, _ in cache.set_calls] == ["key:nursing programs"]
        assert cache.set_calls[0][2] == {"query": "nursing programs", "qualityScore": 6}

    def test_orchestrator_failure(self, app, client):
        app.dependency_overrides[get_orchestrator] = lambda: BrokenOrchestrator()

        response = client.post("/api/pathway", json={"message": "nursing"})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": GENERIC_FAILURE}

    def test_service_info(self, client):
        response = client.get("/api/pathway")

        assert response.status_code == 200
        assert "POST /api/pathway" in response.json()["endpoints"]


class TestHealth:
    def test_basic_health_check(self, client):
        response = client.get("/health/")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_index_health(self, client):
        response = client.get("/health/index")

        data = response.json()
        assert data["status"] == "ok"
        assert data["missing"] == []
        assert data["files"][COLLEGE_PROGRAMS_FILE] == 5

    def test_index_health_degraded(self, index_dir, config, llm):
        (index_dir / COLLEGE_PROGRAMS_FILE).unlink()
        app = create_app(config=config, llm_client=llm, index=LocalSearchIndex(index_dir), enable_tracing=False)

        data = TestClient(app).get("/health/index").json()

        assert data["status"] == "degraded"
        assert data["missing"] == [COLLEGE_PROGRAMS_FILE]
        assert data["files"][COLLEGE_PROGRAMS_FILE] is None


class TestCacheAdmin:
    def test_invalidate_without_redis(self, client):
        response = client.post("/cache/invalidate", json={"tags": ["pathway"]})

        assert response.status_code == 200
        assert response.json() == {"success": True, "tags": ["pathway"], "removed": 0}

    def test_invalidate_default_tags(self, app, client):
        app.dependency_overrides[get_pathway_cache] = lambda: FakePathwayCache({"a": 1, "b": 2})

        response = client.post("/cache/invalidate", json={})

        assert response.json() == {"success": True, "tags": ["pathway"], "removed": 2}


class TestMetricsEndpoint:
    def test_exposition(self, client):
        client.post("/api/pathway", json={"message": "nursing programs"})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"] == CONTENT_TYPE_LATEST
        assert "pathway_requests_total" in response.text
        assert "http_requests_total" in response.text
        assert 'pathway_index_rows{table="cip_to_program_mapping"} 5.0' in response.text
        assert 'pathway_index_available{table="cip_to_soc_mapping"} 1.0' in response.text


class TestTraceIDPropagation:
    def test_trace_id_generated_when_missing(self, client):
        response = client.get("/health/")

        uuid.UUID(response.headers["X-Trace-ID"])
        assert "X-Request-ID" in response.headers

    def test_trace_id_echoed(self, client):
        trace_id = str(uuid.uuid4())

        response = client.get("/health/", headers={"X-Trace-ID": trace_id})

        assert response.headers["X-Trace-ID"] == trace_id

    def test_request_id_used_as_trace_fallback(self, client):
        request_id = str(uuid.uuid4())

        response = client.get("/health/", headers={"X-Request-ID": request_id})

        assert response.headers["X-Trace-ID"] == request_id
        assert response.headers["X-Request-ID"] == request_id
