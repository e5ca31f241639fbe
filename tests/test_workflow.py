import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from backend.application import configure_services, reset_services
from backend.core.retry import NO_RETRY
from backend.core.settings import reset_settings
from backend.infrastructure import InMemoryOrchestrationPlatform, InMemoryReferenceData


@pytest.fixture()
def reference_csv(tmp_path) -> Path:
    path = tmp_path / "estimates.csv"
    path.write_text(
        "\n".join(
            [
                "id,state,city,category,reviews",
                "12,California,San Jose,Caterer,4",
                "10,California,San Jose,Caterer,9",
                "11,California,San Jose,Caterer,1",
                "13,California,San Jose,Bakery,0",
                "20,California,Fresno,Caterer,3",
                "30,Texas,Austin,Florist,8",
            ]
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture()
def orchestration() -> InMemoryOrchestrationPlatform:
    return InMemoryOrchestrationPlatform()


@pytest.fixture()
def client(monkeypatch, reference_csv, orchestration):
    monkeypatch.setenv("SCRAPER_BACKEND", "memory")
    monkeypatch.setenv("RECONCILE_INTERVAL_SECONDS", "0")
    reset_settings()
    configure_services(
        orchestration=orchestration,
        reference_data=InMemoryReferenceData.from_csv(reference_csv),
        retry=NO_RETRY,
    )
    from backend.app import create_app

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
    reset_services()
    reset_settings()


SAN_JOSE_CATERERS = {
    "mode": "by_state",
    "states": [
        {
            "state": "California",
            "city_filters": [{"city": "San Jose", "business_types": ["Caterer"]}],
        }
    ],
}


def test_landing_page(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["docs"] == "/docs"


def test_filter_form_and_resolution(client):
    assert client.get("/api/estimates/states").json() == {"states": ["California", "Texas"]}
    cities = client.get("/api/estimates/states/California/cities").json()
    assert cities["cities"] == ["Fresno", "San Jose"]

    response = client.post("/api/estimates/query-ids", json=SAN_JOSE_CATERERS)
    assert response.status_code == 200
    assert response.json() == {"ids": [10, 11, 12], "count": 3}

    everything = client.post("/api/estimates/query-ids", json={"mode": "entire"}).json()
    assert everything["ids"] == [10, 11, 12, 13, 20, 30]

    bad = client.post(
        "/api/estimates/query-ids",
        json={"mode": "by_state", "states": [{"state": "Texas", "city_filters": [{"city": "Austin", "business_types": ["All", "Florist"]}]}]},
    )
    assert bad.status_code == 422


def test_start_scraping_endpoint(client, orchestration):
    response = client.post(
        "/api/estimates/scraping",
        json={"task_count": 2, "ids": [1, 2, 3], "start_date": "2024-06-01"},
    )
    assert response.status_code == 200
    body = response.json()
    assert len(body["tasks"]) == 2
    assert body["tasks"][0]["lifecycle_status"] == "PROVISIONING"
    assert orchestration.payload(body["tasks"][1]["task_handle"]) == [3]

    empty = client.post("/api/estimates/scraping", json={"task_count": 2, "ids": [], "start_date": "2024-06-01"})
    assert empty.status_code == 400

    zero = client.post("/api/estimates/scraping", json={"task_count": 0, "ids": [1], "start_date": "2024-06-01"})
    assert zero.status_code == 422


def test_end_to_end_project_lifecycle(client, orchestration):
    # 1. launch a project from a filter
    response = client.post(
        "/api/projects/launch",
        json={"name": "Nightly", "filters": SAN_JOSE_CATERERS, "task_count": 2, "start_date": "2024-06-01"},
    )
    assert response.status_code == 201
    project = response.json()["project"]
    assert project["query_ids"] == [10, 11, 12]
    assert project["status"] == "running"
    first, second = (task["task_handle"] for task in project["scraping_tasks"])

    # 2. the worker tasks finish
    orchestration.add_logs(first, "All estimates processed successfully")
    orchestration.add_logs(second, "Error processing estimates 12")
    orchestration.set_status(first, "STOPPED", reason="Essential container in task exited")
    orchestration.set_status(second, "STOPPED", reason="Essential container in task exited")

    performance = client.get("/api/estimates/performance")
    assert performance.status_code == 200
    statuses = {item["task_handle"]: item["status"] for item in performance.json()["tasks"]}
    assert statuses == {first: "Successful", second: "Failed"}

    tasks = client.get(f"/api/projects/{project['id']}/tasks").json()["items"]
    assert [task["last_status"] for task in tasks] == ["Successful", "Failed"]
    stored = client.get(f"/api/projects/{project['id']}").json()
    assert stored["status"] == "pending"
    assert (stored["success_count"], stored["failed_count"]) == (1, 1)
    assert stored["last_run"] is not None

    # 3. logs are exposed per task
    logs = client.get(f"/api/projects/{project['id']}/tasks/{second}/logs")
    assert logs.status_code == 200
    assert logs.json()["logs"] == ["Error processing estimates 12"]

    # 4. relaunch the failed task
    started = client.post(f"/api/projects/{project['id']}/tasks/{second}/start")
    assert started.status_code == 200
    assert started.json()["status"] == "Running"
    new_handle = started.json()["task_handle"]

    stopped = client.post(f"/api/projects/{project['id']}/tasks/{new_handle}/stop")
    assert stopped.json() == {"status": "Stopped", "task_handle": new_handle}

    # 5. submitting the same name merges into the existing project
    merged = client.post(
        "/api/projects",
        json={
            "name": "Nightly",
            "query_ids": [12, 13],
            "scraping_tasks": [{"task_handle": "arn:local:ecs:task/local-cluster/external"}],
        },
    )
    assert merged.status_code == 200
    assert merged.json()["merged"] is True
    assert merged.json()["project"]["query_ids"] == [10, 11, 12, 13]

    # 6. edit and delete
    renamed = client.put(f"/api/projects/{project['id']}", json={"name": "Nightly v2"})
    assert renamed.json()["name"] == "Nightly v2"
    assert client.delete(f"/api/projects/{project['id']}").status_code == 200
    assert client.get(f"/api/projects/{project['id']}").status_code == 404
    assert client.get("/api/projects").json() == {"items": []}


def test_partial_launch_failure_returns_502_with_project(client, orchestration):
    orchestration.fail_launch_on = {2}
    response = client.post(
        "/api/projects/launch",
        json={"name": "Flaky", "filters": SAN_JOSE_CATERERS, "task_count": 3, "start_date": "2024-06-01"},
    )
    assert response.status_code == 502
    detail = response.json()["detail"]
    assert len(detail["tasks"]) == 2
    assert len(detail["failures"]) == 1

    stored = client.get(f"/api/projects/{detail['project_id']}").json()
    assert len(stored["scraping_tasks"]) == 2


def test_error_mapping(client):
    assert client.get("/api/projects/unknown").status_code == 404
    assert client.post("/api/projects/unknown/tasks/abc/stop").status_code == 404
    assert client.post("/api/projects/unknown/tasks/abc/explode").status_code == 404
    response = client.get(
        "/api/estimates/performance",
        params={"start_time": "2024-06-02T00:00:00Z", "end_time": "2024-06-01T00:00:00Z"},
    )
    assert response.status_code == 400


def test_recording_a_run(client):
    response = client.post(
        "/api/projects/launch",
        json={"name": "Weekly", "filters": SAN_JOSE_CATERERS, "task_count": 1, "start_date": "2024-06-01"},
    )
    project_id = response.json()["project"]["id"]

    recorded = client.post(f"/api/projects/{project_id}/status", json={"success": True})
    assert recorded.status_code == 200
    body = recorded.json()
    assert (body["success_count"], body["failed_count"]) == (1, 0)
    assert body["last_run"] is not None
    assert body["status"] == "running"

    failed = client.post(f"/api/projects/{project_id}/status", json={"success": False}).json()
    assert (failed["success_count"], failed["failed_count"]) == (1, 1)

    assert client.post("/api/projects/unknown/status", json={}).status_code == 404
    assert client.post(f"/api/projects/{project_id}/status", json={"success": "maybe"}).status_code == 422
