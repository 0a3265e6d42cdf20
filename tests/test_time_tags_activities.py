from datetime import datetime, timedelta

from models import utcnow


# ── Timer ──

def test_only_one_timer_can_run(client, auth_headers):
    response = client.post("/api/time-entries/start", json={"description": "Leer docs"}, headers=auth_headers)
    assert response.status_code == 201
    assert response.json()["data"]["isRunning"] is True

    response = client.post("/api/time-entries/start", json={}, headers=auth_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "CONFLICT"

    running = client.get("/api/time-entries/running", headers=auth_headers).json()["data"]
    assert running["description"] == "Leer docs"


def test_stop_timer_records_duration_and_activity(client, auth_headers):
    client.post("/api/time-entries/start", json={}, headers=auth_headers)

    response = client.post("/api/time-entries/stop", json={"notes": "hecho"}, headers=auth_headers)
    assert response.status_code == 200
    entry = response.json()["data"]
    assert entry["isRunning"] is False
    assert entry["durationSeconds"] >= 0
    assert entry["notes"] == "hecho"

    activities = client.get("/api/activities?type=coding", headers=auth_headers).json()["data"]
    assert len(activities) == 1

    assert client.get("/api/time-entries/running", headers=auth_headers).json()["data"] is None


def test_stop_without_running_timer_is_not_found(client, auth_headers):
    response = client.post("/api/time-entries/stop", headers=auth_headers)
    assert response.status_code == 404


def test_timers_of_different_users_are_independent(client, auth_headers, other_headers):
    assert client.post("/api/time-entries/start", json={}, headers=auth_headers).status_code == 201
    assert client.post("/api/time-entries/start", json={}, headers=other_headers).status_code == 201


def test_manual_entry_and_time_summary(client, auth_headers):
    start = utcnow().replace(microsecond=0) - timedelta(hours=2)
    response = client.post("/api/time-entries", json={
        "startTime": start.isoformat(),
        "endTime": (start + timedelta(minutes=30)).isoformat(),
    }, headers=auth_headers)
    assert response.status_code == 201
    assert response.json()["data"]["durationSeconds"] == 1800

    summary = client.get("/api/stats/time-summary?period=week", headers=auth_headers).json()["data"]
    assert summary["totalSeconds"] == 1800
    assert summary["entriesCount"] == 1


def test_manual_entry_end_before_start_is_rejected(client, auth_headers):
    start = datetime(2024, 5, 1, 10, 0)
    response = client.post("/api/time-entries", json={
        "startTime": start.isoformat(),
        "endTime": (start - timedelta(minutes=5)).isoformat(),
    }, headers=auth_headers)
    assert response.status_code == 400


def test_running_entry_cannot_get_end_time(client, auth_headers):
    entry = client.post("/api/time-entries/start", json={}, headers=auth_headers).json()["data"]

    response = client.put(f"/api/time-entries/{entry['id']}", json={"endTime": "2099-01-01T00:00:00"},
                          headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "endTime"

    running = client.get("/api/time-entries/running", headers=auth_headers).json()["data"]
    assert running["endTime"] is None


def test_times_with_offset_are_stored_as_utc(client, auth_headers):
    response = client.post("/api/time-entries", json={
        "startTime": "2024-01-01T10:00:00",
        "endTime": "2024-01-01T12:30:00+02:00",
    }, headers=auth_headers)
    assert response.status_code == 201
    entry = response.json()["data"]
    assert entry["endTime"] == "2024-01-01T10:30:00"
    assert entry["durationSeconds"] == 1800

    response = client.put(f"/api/time-entries/{entry['id']}", json={"endTime": "2024-01-01T12:00:00Z"},
                          headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"]["durationSeconds"] == 7200


def test_offset_end_before_naive_start_is_rejected(client, auth_headers):
    response = client.post("/api/time-entries", json={
        "startTime": "2024-01-01T10:00:00",
        "endTime": "2024-01-01T11:00:00+02:00",
    }, headers=auth_headers)
    assert response.status_code == 400


# ── Tags ──

def test_tag_names_are_unique_per_user(client, auth_headers, other_headers):
    response = client.post("/api/tags", json={"name": "backend"}, headers=auth_headers)
    assert response.status_code == 201
    assert response.json()["data"]["color"] == "#8b5cf6"

    response = client.post("/api/tags", json={"name": "backend"}, headers=auth_headers)
    assert response.status_code == 409

    assert client.post("/api/tags", json={"name": "backend"}, headers=other_headers).status_code == 201


def test_tag_items_and_usage(client, auth_headers, make_skill):
    tag = client.post("/api/tags", json={"name": "web", "color": "#112233"}, headers=auth_headers).json()["data"]
    skill = make_skill(tagIds=[tag["id"]])

    data = client.get(f"/api/tags/{tag['id']}/items", headers=auth_headers).json()["data"]
    assert data["tag"]["usageCount"] == 1
    assert [s["id"] for s in data["skills"]] == [skill["id"]]

    client.delete(f"/api/tags/{tag['id']}", headers=auth_headers)
    skill = client.get(f"/api/skills/{skill['id']}", headers=auth_headers).json()["data"]
    assert skill["tags"] == []


def test_invalid_tag_color(client, auth_headers):
    response = client.post("/api/tags", json={"name": "x", "color": "rojo"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "color"


# ── Actividades ──

def test_manual_activity_updates_daily_counter(client, auth_headers):
    for _ in range(2):
        response = client.post(
            "/api/activities", json={"type": "practice", "date": "2024-03-04"}, headers=auth_headers
        )
        assert response.status_code == 201

    activities = client.get("/api/activities?startDate=2024-03-04&endDate=2024-03-04",
                            headers=auth_headers).json()
    assert activities["pagination"]["total"] == 2


def test_manual_milestone_is_rejected(client, auth_headers):
    response = client.post("/api/activities", json={"type": "milestone"}, headers=auth_headers)
    assert response.status_code == 400


def test_export_contains_everything(client, auth_headers, make_skill, make_project):
    make_project()
    make_skill()
    data = client.get("/api/export/data", headers=auth_headers).json()["data"]
    assert len(data["skills"]) == 1
    assert len(data["projects"]) == 1
    assert len(data["activities"]) == 2
    assert data["user"]["email"] == "ana@example.com"


# ── Atajos ──

def test_add_and_remove_skill_tags(client, auth_headers, other_headers, make_skill):
    web = client.post("/api/tags", json={"name": "web"}, headers=auth_headers).json()["data"]
    api = client.post("/api/tags", json={"name": "api"}, headers=auth_headers).json()["data"]
    foreign = client.post("/api/tags", json={"name": "suyo"}, headers=other_headers).json()["data"]
    skill = make_skill(tagIds=[web["id"]])

    response = client.post(f"/api/skills/{skill['id']}/tags",
                           json={"tagIds": [web["id"], api["id"], foreign["id"]]}, headers=auth_headers)
    assert response.status_code == 200
    assert sorted(t["id"] for t in response.json()["data"]["tags"]) == sorted([web["id"], api["id"]])

    response = client.delete(f"/api/skills/{skill['id']}/tags/{web['id']}", headers=auth_headers)
    assert response.status_code == 200
    skill = client.get(f"/api/skills/{skill['id']}", headers=auth_headers).json()["data"]
    assert [t["id"] for t in skill["tags"]] == [api["id"]]

    response = client.delete(f"/api/skills/{skill['id']}/tags/{web['id']}", headers=auth_headers)
    assert response.status_code == 404


def test_resource_favorite_toggles_and_read_sticks(client, auth_headers, other_headers):
    resource = client.post("/api/resources", json={"title": "Docs", "url": "https://docs.python.org"},
                           headers=auth_headers).json()["data"]
    assert resource["isFavorite"] is False

    first = client.post(f"/api/resources/{resource['id']}/favorite", headers=auth_headers).json()["data"]
    second = client.post(f"/api/resources/{resource['id']}/favorite", headers=auth_headers).json()["data"]
    assert (first["isFavorite"], second["isFavorite"]) == (True, False)

    for _ in range(2):
        data = client.post(f"/api/resources/{resource['id']}/read", headers=auth_headers).json()["data"]
        assert data["isRead"] is True

    assert client.post(f"/api/resources/{resource['id']}/read", headers=other_headers).status_code == 404


def test_time_entries_summary_groups_by_skill_and_project(client, auth_headers, make_skill, make_project):
    skill = make_skill()
    project = make_project()
    start = datetime(2024, 5, 1, 10, 0)
    for minutes, refs in ((30, {"skillId": skill["id"]}), (15, {"skillId": skill["id"], "projectId": project["id"]}),
                          (10, {})):
        response = client.post("/api/time-entries", json={
            "startTime": start.isoformat(),
            "endTime": (start + timedelta(minutes=minutes)).isoformat(),
            **refs,
        }, headers=auth_headers)
        assert response.status_code == 201

    data = client.get("/api/time-entries/summary?startDate=2024-05-01&endDate=2024-05-01",
                      headers=auth_headers).json()["data"]
    assert data["total"] == {"seconds": 3300, "entries": 3}
    assert data["bySkill"] == [{"skill": {"id": skill["id"], "name": "Python"}, "seconds": 2700, "entries": 2}]
    assert data["byProject"] == [{"project": {"id": project["id"], "name": "Proyecto"}, "seconds": 900, "entries": 1}]

    empty = client.get("/api/time-entries/summary?startDate=2024-06-01", headers=auth_headers).json()["data"]
    assert empty["total"] == {"seconds": 0, "entries": 0}
