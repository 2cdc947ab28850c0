from fastapi.testclient import TestClient

from app.main import create_app


def test_health_reports_schema_after_startup(database_url):
    with TestClient(create_app(database_url)) as client:
        res = client.get("/health")
        assert res.status_code == 200
        assert res.json() == {"status": "ok", "schema": "normalized"}
        assert client.app.state.todos.schema_is_normalized()


def test_startup_is_repeatable(database_url):
    for _ in range(2):
        with TestClient(create_app(database_url)) as client:
            assert client.get("/health").status_code == 200
