from datetime import date, datetime, timedelta

from models import Project, User
from stats import calculate_streak, get_progress, iso_week_label, weekly_progress

TODAY = date(2024, 6, 12)


# ── Rachas ──

def test_streak_counts_consecutive_days_ending_today():
    days = [TODAY, TODAY - timedelta(days=1), TODAY - timedelta(days=2)]
    assert calculate_streak(days, TODAY) == 3


def test_streak_can_end_yesterday():
    days = [TODAY - timedelta(days=1), TODAY - timedelta(days=2)]
    assert calculate_streak(days, TODAY) == 2


def test_streak_stops_at_first_gap():
    assert calculate_streak([TODAY, TODAY - timedelta(days=2)], TODAY) == 1


def test_streak_broken_when_last_activity_is_old():
    assert calculate_streak([TODAY - timedelta(days=3)], TODAY) == 0


def test_streak_empty_and_duplicates():
    assert calculate_streak([], TODAY) == 0
    assert calculate_streak([TODAY, TODAY, TODAY - timedelta(days=1)], TODAY) == 2


# ── Semanas ISO ──

def test_iso_week_uses_iso_year():
    assert iso_week_label(date(2024, 12, 30)) == "2025-01"
    assert iso_week_label(date(2021, 1, 3)) == "2020-53"
    assert iso_week_label(date(2024, 6, 12)) == "2024-24"


def test_weekly_progress_is_sparse_and_windowed():
    counters = [
        (TODAY, 2),
        (TODAY - timedelta(days=1), 3),
        (TODAY - timedelta(days=30), 1),
        (TODAY - timedelta(days=200), 9),
    ]
    milestones = [(TODAY, 2), (TODAY - timedelta(days=14), 1)]

    weeks = weekly_progress(counters, milestones, TODAY)

    assert weeks == [
        {"week": iso_week_label(TODAY - timedelta(days=30)), "count": 1, "points": 0},
        {"week": iso_week_label(TODAY - timedelta(days=14)), "count": 0, "points": 1},
        {"week": iso_week_label(TODAY), "count": 5, "points": 2},
    ]


def test_weekly_progress_without_data_is_empty():
    assert weekly_progress([], [], TODAY) == []


# ── Endpoints ──

def test_stats_reflect_created_data(client, auth_headers, make_skill, make_project):
    make_skill(name="Rust", status="learning")
    make_project(name="Web", status="completed", githubUrl="https://github.com/ana/web")

    response = client.get("/api/stats", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["skills"]["total"] == 1
    assert data["skills"]["learning"] == 1
    assert data["projects"]["completed"] == 1
    assert data["totalActivities"] == 2
    assert data["activeDaysLast30"] == 1
    assert data["currentStreak"] == 1


def test_progress_counts_milestone_points(client, auth_headers, make_project, make_skill):
    project = make_project(name="API", status="completed", githubUrl="https://github.com/ana/api")
    make_skill(name="FastAPI", status="mastered", linkedProjectIds=[project["id"]])

    data = client.get("/api/stats/progress", headers=auth_headers).json()["data"]

    assert data["skillsMastered"] == 1
    assert data["projectsCompleted"] == 1
    assert len(data["weeklyActivities"]) == 1
    week = data["weeklyActivities"][0]
    assert week["count"] == 2
    assert week["points"] == 3


def test_heatmap_and_breakdown_group_by_day_and_type(client, auth_headers):
    client.post("/api/activities", json={"type": "reading", "durationMinutes": 20}, headers=auth_headers)
    client.post("/api/activities", json={"type": "coding", "durationMinutes": 45}, headers=auth_headers)
    client.post("/api/activities", json={"type": "coding"}, headers=auth_headers)

    heatmap = client.get("/api/activities/heatmap", headers=auth_headers).json()["data"]
    assert len(heatmap) == 1
    assert heatmap[0]["count"] == 3

    breakdown = client.get("/api/activities/breakdown", headers=auth_headers).json()["data"]
    assert breakdown == [
        {"type": "coding", "count": 2, "minutes": 45},
        {"type": "reading", "count": 1, "minutes": 20},
    ]


def test_progress_buckets_milestones_by_local_date(db):
    user = User(provider_id="user-madrid", timezone="Europe/Madrid")
    db.add(user)
    db.flush()
    # Domingo 23:30 en UTC ya es lunes en Madrid → semana siguiente
    db.add(Project(user_id=user.id, name="Web", status="completed",
                   github_url="https://github.com/ana/web", completed_at=datetime(2024, 1, 7, 23, 30)))
    db.commit()

    data = get_progress(db, user, today=date(2024, 1, 10))
    assert data["projects_completed"] == 1
    assert data["weekly_activities"] == [{"week": "2024-02", "count": 0, "points": 2}]
