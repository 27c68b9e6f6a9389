import httpx
import pytest

from ingest.backend_client import BackendError, SnapshotClient
from settings import Settings

TABLES = {
    "students": [
        {"id": "s1", "full_name": "Alice", "section": "A", "department": "CS"},
        {"id": "s2", "full_name": "Bob", "section": "A", "department": "CS"},
    ],
    "quizzes": [{"code": "Q1", "subject": "Math", "total_submissions_expected": 2}],
    "quiz_results": [
        {"id": 1, "studentid": "s1", "quizcode": "Q1", "score": 70,
         "submittedat": "2025-03-01T09:00:00Z"},
        {"id": 2, "studentid": "s2", "quizcode": "Q1", "score": 90,
         "submittedat": "not a date"},
    ],
}


@pytest.fixture
def config():
    return Settings(backend_url="https://backend.test/", backend_api_key="secret")


def table_handler(requests):
    def handler(request: httpx.Request):
        requests.append(request)
        table = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(200, json=TABLES[table])
    return handler


class TestSnapshotClient:
    @pytest.mark.asyncio
    async def test_fetch_snapshot(self, config):
        requests = []
        async with SnapshotClient(config, transport=httpx.MockTransport(table_handler(requests))) as client:
            snapshot = await client.fetch_snapshot()

        assert [s.display_name for s in snapshot.students] == ["Alice", "Bob"]
        assert [q.code for q in snapshot.quizzes] == ["Q1"]
        assert [s.id for s in snapshot.submissions] == ["1"]
        assert [s.record_id for s in snapshot.skipped] == ["2"]

        assert sorted(r.url.path for r in requests) == [
            "/rest/v1/quiz_results", "/rest/v1/quizzes", "/rest/v1/students",
        ]
        assert all(r.headers["apikey"] == "secret" for r in requests)
        assert all(r.headers["Authorization"] == "Bearer secret" for r in requests)
        assert all(r.url.params["select"] == "*" for r in requests)

    @pytest.mark.asyncio
    async def test_custom_table_names(self):
        config = Settings(backend_url="https://backend.test", submissions_table="attempts")
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200, json=[])

        async with SnapshotClient(config, transport=httpx.MockTransport(handler)) as client:
            snapshot = await client.fetch_snapshot()
        assert "/rest/v1/attempts" in seen
        assert snapshot.submissions == []

    @pytest.mark.asyncio
    async def test_http_error_raises_backend_error(self, config):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with SnapshotClient(config, transport=transport) as client:
            with pytest.raises(BackendError, match="HTTP 503"):
                await client.fetch_rows("students")

    @pytest.mark.asyncio
    async def test_unexpected_payload_raises_backend_error(self, config):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"rows": []}))
        async with SnapshotClient(config, transport=transport) as client:
            with pytest.raises(BackendError, match="expected a list"):
                await client.fetch_rows("students")

    @pytest.mark.asyncio
    async def test_transport_error_raises_backend_error(self, config):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with SnapshotClient(config, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(BackendError, match="refused"):
                await client.fetch_snapshot()
