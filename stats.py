"""
=============================================================================
STATS.PY: Rachas, heatmap y progreso semanal
=============================================================================
Todo se calcula AL LEER (no hay jobs nocturnos) a partir de la tabla
daily_activity: una fila por día con actividad, con su contador.

  - Racha actual  → días seguidos con actividad terminando hoy o ayer
  - Días activos  → días con actividad en los últimos 30
  - Progreso      → actividad + puntos por semana ISO, últimos 84 días
                    (skill dominada = 1 punto, proyecto completado = 2)
  - Heatmap       → contador por día del último año

Las funciones de cálculo (calculate_streak, iso_week_label,
weekly_progress) son puras; las get_* solo leen de la BD y las llaman.
"""

from collections import Counter
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from activity import local_date, local_today
from models import (
    User, Skill, Project, Resource, DailyActivity, Activity, TimeEntry,
    SkillStatus, ProjectStatus, utcnow
)

STREAK_WINDOW_DAYS = 365
ACTIVE_DAYS_WINDOW = 30
PROGRESS_WINDOW_DAYS = 84
HEATMAP_WINDOW_DAYS = 365

MASTERED_POINTS = 1
COMPLETED_POINTS = 2


# =============================================================================
# ===================== CÁLCULOS PUROS ========================================
# =============================================================================

def calculate_streak(dates: Iterable[date], today: date) -> int:
    """
    Días consecutivos con actividad.

    Si el día más reciente no es hoy ni ayer → 0 (la racha se rompió).
    Si no, se cuenta hacia atrás mientras cada fecha sea exactamente el
    día anterior a la previa. Las fechas repetidas no cuentan dos veces.

      {hoy, ayer, anteayer} → 3
      {hoy, anteayer}       → 1
      {hace 3 días}         → 0
      {}                    → 0
    """
    days = sorted(set(dates), reverse=True)
    if not days:
        return 0
    if days[0] not in (today, today - timedelta(days=1)):
        return 0

    streak = 1
    for previous, current in zip(days, days[1:]):
        if previous - current != timedelta(days=1):
            break
        streak += 1
    return streak


def iso_week_label(day: date) -> str:
    """2024-12-30 → "2025-01" (año ISO, que no siempre es el del calendario)"""
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_year}-{iso_week:02d}"


def weekly_progress(counters: Iterable[tuple[date, int]],
                    milestones: Iterable[tuple[date, int]],
                    today: date,
                    window_days: int = PROGRESS_WINDOW_DAYS) -> list[dict]:
    """
    Junta dos series por semana ISO:
      counters   → (día, nº de actividades)
      milestones → (día de la transición, puntos)

    Solo entra lo que cae dentro de la ventana [today - window_days, today].
    Semanas sin actividad ni puntos NO aparecen (salida dispersa): quien
    quiera una serie continua tiene que rellenar con ceros.
    """
    start = today - timedelta(days=window_days)
    counts: Counter = Counter()
    points: Counter = Counter()

    for day, count in counters:
        if start <= day <= today:
            counts[iso_week_label(day)] += count or 0
    for day, value in milestones:
        if start <= day <= today:
            points[iso_week_label(day)] += value

    weeks = sorted(set(counts) | set(points))
    return [
        {"week": week, "count": counts[week], "points": points[week]}
        for week in weeks
        if counts[week] or points[week]
    ]


# =============================================================================
# ===================== CONSULTAS =============================================
# =============================================================================

def _counter_rows(db: Session, user: User, since: date) -> list[tuple[date, int]]:
    return db.query(DailyActivity.date, DailyActivity.count).filter(
        DailyActivity.user_id == user.id,
        DailyActivity.date >= since,
        DailyActivity.count > 0
    ).order_by(DailyActivity.date).all()


def _count_by_status(db: Session, model, user: User, statuses) -> dict:
    rows = db.query(model.status, func.count(model.id)).filter(
        model.user_id == user.id
    ).group_by(model.status).all()
    found = dict(rows)
    result = {s.value: found.get(s.value, 0) for s in statuses}
    result["total"] = sum(found.values())
    return result


def get_streak(db: Session, user: User, today: Optional[date] = None) -> int:
    today = today or local_today(user)
    rows = _counter_rows(db, user, today - timedelta(days=STREAK_WINDOW_DAYS))
    return calculate_streak((day for day, _ in rows), today)


def get_stats(db: Session, user: User, today: Optional[date] = None) -> dict:
    """Resumen del dashboard"""
    today = today or local_today(user)

    total_activities = db.query(func.coalesce(func.sum(DailyActivity.count), 0)).filter(
        DailyActivity.user_id == user.id
    ).scalar()

    active_days = db.query(func.count(DailyActivity.id)).filter(
        DailyActivity.user_id == user.id,
        DailyActivity.date >= today - timedelta(days=ACTIVE_DAYS_WINDOW),
        DailyActivity.count > 0
    ).scalar()

    tracked = db.query(func.coalesce(func.sum(TimeEntry.duration_seconds), 0)).filter(
        TimeEntry.user_id == user.id,
        TimeEntry.is_running == False  # noqa: E712
    ).scalar()

    return {
        "skills": _count_by_status(db, Skill, user, SkillStatus),
        "projects": _count_by_status(db, Project, user, ProjectStatus),
        "resources": db.query(func.count(Resource.id)).filter(Resource.user_id == user.id).scalar(),
        "total_activities": int(total_activities or 0),
        "active_days_last_30": int(active_days or 0),
        "current_streak": get_streak(db, user, today),
        "total_tracked_seconds": int(tracked or 0),
    }


def get_progress(db: Session, user: User, today: Optional[date] = None) -> dict:
    """Serie semanal para la gráfica de progreso"""
    today = today or local_today(user)
    since = today - timedelta(days=PROGRESS_WINDOW_DAYS)
    # Un día de margen: el corte real se hace con la fecha local
    since_dt = datetime.combine(since - timedelta(days=1), datetime.min.time())

    mastered = db.query(Skill.mastered_at).filter(
        Skill.user_id == user.id,
        Skill.status == SkillStatus.mastered.value,
        Skill.mastered_at >= since_dt
    ).all()
    completed = db.query(Project.completed_at).filter(
        Project.user_id == user.id,
        Project.status == ProjectStatus.completed.value,
        Project.completed_at >= since_dt
    ).all()

    mastered_days = [d for d in (local_date(user, row[0]) for row in mastered) if since <= d <= today]
    completed_days = [d for d in (local_date(user, row[0]) for row in completed) if since <= d <= today]
    milestones = [(day, MASTERED_POINTS) for day in mastered_days]
    milestones += [(day, COMPLETED_POINTS) for day in completed_days]

    return {
        "weekly_activities": weekly_progress(_counter_rows(db, user, since), milestones, today),
        "skills_mastered": len(mastered_days),
        "projects_completed": len(completed_days),
    }


def get_heatmap(db: Session, user: User, today: Optional[date] = None) -> list[dict]:
    """[{date, count}] del último año, de más antiguo a más reciente"""
    today = today or local_today(user)
    rows = _counter_rows(db, user, today - timedelta(days=HEATMAP_WINDOW_DAYS))
    return [{"date": day, "count": count} for day, count in rows]


def get_breakdown(db: Session, user: User, today: Optional[date] = None) -> list[dict]:
    """Actividades y minutos por tipo en los últimos 30 días"""
    today = today or local_today(user)
    rows = db.query(
        Activity.type,
        func.count(Activity.id),
        func.coalesce(func.sum(Activity.duration_minutes), 0)
    ).filter(
        Activity.user_id == user.id,
        Activity.date >= today - timedelta(days=ACTIVE_DAYS_WINDOW)
    ).group_by(Activity.type).order_by(Activity.type).all()
    return [
        {"type": type_, "count": count, "minutes": int(minutes or 0)}
        for type_, count, minutes in rows
    ]


TIME_SUMMARY_PERIODS = {"week": 7, "month": 30, "year": 365}


def get_time_summary(db: Session, user: User, period: str = "week",
                     now: Optional[datetime] = None) -> dict:
    """Segundos registrados por día (entradas terminadas) en el periodo"""
    days = TIME_SUMMARY_PERIODS.get(period, 7)
    now = now or utcnow()
    entries = db.query(TimeEntry).filter(
        TimeEntry.user_id == user.id,
        TimeEntry.is_running == False,  # noqa: E712
        TimeEntry.start_time >= now - timedelta(days=days)
    ).all()

    by_day: Counter = Counter()
    for entry in entries:
        by_day[entry.start_time.date().isoformat()] += entry.duration_seconds or 0

    return {
        "period": period,
        "daily": [{"date": day, "seconds": by_day[day]} for day in sorted(by_day)],
        "total_seconds": sum(by_day.values()),
        "entries_count": len(entries),
    }


def get_time_breakdown(db: Session, user: User, start_date: Optional[date] = None,
                       end_date: Optional[date] = None) -> dict:
    """Tiempo de las entradas terminadas, en total y agrupado por skill y por proyecto"""
    query = db.query(TimeEntry).filter(
        TimeEntry.user_id == user.id,
        TimeEntry.is_running == False  # noqa: E712
    )
    if start_date:
        query = query.filter(TimeEntry.start_time >= datetime.combine(start_date, datetime.min.time()))
    if end_date:
        query = query.filter(TimeEntry.start_time < datetime.combine(end_date + timedelta(days=1), datetime.min.time()))
    entries = query.all()

    def group(attr: str) -> list[dict]:
        totals: dict = {}
        for entry in entries:
            target = getattr(entry, attr)
            if target is None:
                continue
            row = totals.setdefault(target.id, {
                attr: {"id": target.id, "name": target.name}, "seconds": 0, "entries": 0
            })
            row["seconds"] += entry.duration_seconds or 0
            row["entries"] += 1
        return sorted(totals.values(), key=lambda row: (-row["seconds"], row[attr]["id"]))

    return {
        "total": {"seconds": sum(e.duration_seconds or 0 for e in entries), "entries": len(entries)},
        "by_skill": group("skill"),
        "by_project": group("project"),
    }
