"""
=============================================================================
ACTIVITY.PY: Registro de actividad y contadores diarios
=============================================================================
Cada vez que pasa algo (crear una skill, completar un proyecto, parar el
timer...) se llama a log_activity(), que hace DOS cosas:

  1. Añade una fila a activities (append-only)
  2. Incrementa el contador del día en daily_activity (upsert)

El contador diario es lo que leen las rachas y el heatmap (stats.py).
"""

import logging
from datetime import date, datetime
from typing import Optional

import pytz
from sqlalchemy.orm import Session

from models import Activity, DailyActivity, User, utcnow

logger = logging.getLogger("devorbit.activity")


def _user_tz(user: User):
    try:
        return pytz.timezone(user.timezone or "UTC")
    except pytz.UnknownTimeZoneError:
        return pytz.utc


def local_date(user: User, moment: datetime) -> date:
    """Un instante guardado en UTC (sin zona) → su fecha en la zona del usuario"""
    return pytz.utc.localize(moment).astimezone(_user_tz(user)).date()


def local_today(user: User, now: Optional[datetime] = None) -> date:
    """
    La fecha de "hoy" para el usuario, según su zona horaria.
    Un usuario en Madrid a las 00:30 ya está en el día siguiente aunque
    en UTC sean las 22:30.
    """
    return local_date(user, now or utcnow())


def bump_daily_counter(db: Session, user_id: int, day: date, activity_type: str,
                       description: str = "") -> DailyActivity:
    """Upsert + incremento del contador de (usuario, día)"""
    counter = db.query(DailyActivity).filter(
        DailyActivity.user_id == user_id,
        DailyActivity.date == day
    ).first()

    if counter is None:
        counter = DailyActivity(user_id=user_id, date=day, count=0, types={})
        db.add(counter)

    counter.count = (counter.count or 0) + 1
    # Reasignar el dict para que SQLAlchemy detecte el cambio en la columna JSON
    types = dict(counter.types or {})
    types[activity_type] = types.get(activity_type, 0) + 1
    counter.types = types
    if description:
        counter.last_activity = description[:300]
    counter.updated_at = utcnow()
    # La sesión no hace autoflush: sin esto, dos actividades del mismo día
    # en la misma transacción crearían dos contadores
    db.flush()
    return counter


def log_activity(
    db: Session,
    user: User,
    activity_type: str,
    description: str = "",
    skill_id: Optional[int] = None,
    project_id: Optional[int] = None,
    duration_minutes: Optional[int] = None,
    day: Optional[date] = None,
    commit: bool = True,
) -> Activity:
    """
    Registra una actividad del usuario.

    commit=False → deja la escritura en la transacción del llamante
    (así la actividad y el cambio que la provoca se guardan juntos).
    """
    day = day or local_today(user)
    activity_type = getattr(activity_type, "value", activity_type)

    activity = Activity(
        user_id=user.id,
        date=day,
        type=activity_type,
        description=description,
        skill_id=skill_id,
        project_id=project_id,
        duration_minutes=duration_minutes,
    )
    db.add(activity)
    bump_daily_counter(db, user.id, day, activity_type, description)

    if commit:
        db.commit()
        db.refresh(activity)

    logger.info(f"📝 Actividad [{activity_type}] {description} (user: {user.id})")
    return activity
