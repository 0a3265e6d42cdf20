"""
=============================================================================
SCHEMAS.PY: Esquemas de Validación (Pydantic)
=============================================================================
Models (SQLAlchemy) definen las TABLAS; Schemas (Pydantic) definen qué
DATOS acepta y devuelve la API.

En el JSON todo va en camelCase ("githubUrl", "linkedProjectIds"); en
Python todo es snake_case. La entrada acepta las dos formas y este es el
ÚNICO sitio donde se normaliza: de aquí para dentro ya no existe
"githubUrl", solo github_url.

Convención de nombres:
  XxxCreate   → para crear algo nuevo (POST)
  XxxUpdate   → para actualizar algo (PUT): solo se aplican los campos enviados
  XxxResponse → lo que devuelve la API (GET)
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
import datetime as dt
from datetime import date, datetime
from typing import Optional, Any
import pytz

from models import SkillCategory, SkillStatus, ProjectStatus, ResourceType, ActivityType

MAX_LINKED_IDS = 50
MAX_BATCH_SIZE = 50


class ApiModel(BaseModel):
    """Base común: alias camelCase, lectura desde objetos ORM"""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
        "use_enum_values": True,
    }


def dump(schema: type[BaseModel], obj: Any) -> dict:
    """Objeto ORM → dict JSON con las claves en camelCase"""
    return schema.model_validate(obj).model_dump(mode="json", by_alias=True)


def _clean_url(value: Optional[str]) -> Optional[str]:
    # "" y "   " cuentan como "sin enlace"
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if not value.startswith(("http://", "https://")):
        raise ValueError("URL no válida")
    return value


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # En BD todo es UTC sin zona; "...Z" o "+02:00" se pasan a UTC
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(pytz.utc).replace(tzinfo=None)


# =============================================================================
# ===================== COMUNES ===============================================
# =============================================================================

class Pagination(ApiModel):
    page: int
    limit: int
    total: int
    total_pages: int


class TagBrief(ApiModel):
    id: int
    name: str
    color: str


# =============================================================================
# ===================== AUTH ==================================================
# =============================================================================

class UserResponse(ApiModel):
    """Datos del usuario para la API"""
    id: int
    email: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    role: str
    timezone: str
    preferences: dict = {}
    created_at: datetime
    last_active: datetime


class UserUpdate(ApiModel):
    """Campos actualizables del usuario"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    avatar_url: Optional[str] = Field(None, max_length=500)
    timezone: Optional[str] = None
    preferences: Optional[dict] = None

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v):
        if v is not None and v not in pytz.all_timezones_set:
            raise ValueError("Zona horaria desconocida")
        return v


# =============================================================================
# ===================== SKILLS ================================================
# =============================================================================

class SkillCreate(ApiModel):
    name: str = Field(min_length=1, max_length=100)
    category: SkillCategory = SkillCategory.language
    status: SkillStatus = SkillStatus.want_to_learn
    icon: str = Field("📚", max_length=10)
    notes: Optional[str] = Field(None, max_length=5000)
    priority: int = Field(0, ge=0, le=100)
    linked_project_ids: list[int] = Field(default_factory=list, max_length=MAX_LINKED_IDS)
    tag_ids: list[int] = Field(default_factory=list, max_length=MAX_LINKED_IDS)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("El nombre es obligatorio")
        return v


class SkillUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    category: Optional[SkillCategory] = None
    status: Optional[SkillStatus] = None
    icon: Optional[str] = Field(None, max_length=10)
    notes: Optional[str] = Field(None, max_length=5000)
    priority: Optional[int] = Field(None, ge=0, le=100)
    linked_project_ids: Optional[list[int]] = Field(None, max_length=MAX_LINKED_IDS)
    tag_ids: Optional[list[int]] = Field(None, max_length=MAX_LINKED_IDS)


class SkillResponse(ApiModel):
    id: int
    name: str
    category: str
    status: str
    icon: str
    notes: Optional[str] = None
    priority: int
    linked_project_ids: list[int] = []
    tags: list[TagBrief] = []
    mastered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class DependencyCreate(ApiModel):
    prerequisite_id: int


class TagAssign(ApiModel):
    tag_ids: list[int] = Field(min_length=1, max_length=MAX_LINKED_IDS)


class SkillBrief(ApiModel):
    id: int
    name: str
    status: str
    icon: str


# =============================================================================
# ===================== PROJECTS ==============================================
# =============================================================================

class ProjectCreate(ApiModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = Field("", max_length=2000)
    status: ProjectStatus = ProjectStatus.idea
    priority: int = Field(0, ge=0, le=100)
    github_url: Optional[str] = Field(None, max_length=500)
    demo_url: Optional[str] = Field(None, max_length=500)
    tech_stack: list[str] = []
    due_date: Optional[date] = None
    linked_skill_ids: list[int] = Field(default_factory=list, max_length=MAX_LINKED_IDS)
    tag_ids: list[int] = Field(default_factory=list, max_length=MAX_LINKED_IDS)

    @field_validator("github_url", "demo_url")
    @classmethod
    def valid_urls(cls, v):
        return _clean_url(v)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("El nombre es obligatorio")
        return v


class ProjectUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    status: Optional[ProjectStatus] = None
    priority: Optional[int] = Field(None, ge=0, le=100)
    github_url: Optional[str] = Field(None, max_length=500)
    demo_url: Optional[str] = Field(None, max_length=500)
    tech_stack: Optional[list[str]] = None
    due_date: Optional[date] = None
    linked_skill_ids: Optional[list[int]] = Field(None, max_length=MAX_LINKED_IDS)
    tag_ids: Optional[list[int]] = Field(None, max_length=MAX_LINKED_IDS)

    @field_validator("github_url", "demo_url")
    @classmethod
    def valid_urls(cls, v):
        return _clean_url(v)


class ProjectResponse(ApiModel):
    id: int
    name: str
    description: Optional[str] = ""
    status: str
    priority: int
    github_url: Optional[str] = None
    demo_url: Optional[str] = None
    tech_stack: list[str] = []
    due_date: Optional[date] = None
    linked_skill_ids: list[int] = []
    tags: list[TagBrief] = []
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# =============================================================================
# ===================== RESOURCES =============================================
# =============================================================================

class ResourceCreate(ApiModel):
    title: str = Field(min_length=1, max_length=300)
    url: str = Field(max_length=2000)
    type: ResourceType = ResourceType.article
    notes: str = Field("", max_length=5000)
    skill_id: Optional[int] = None
    project_id: Optional[int] = None
    is_read: bool = False
    is_favorite: bool = False
    rating: Optional[int] = Field(None, ge=1, le=5)
    tag_ids: list[int] = Field(default_factory=list, max_length=MAX_LINKED_IDS)

    @field_validator("url")
    @classmethod
    def valid_url(cls, v):
        v = _clean_url(v)
        if v is None:
            raise ValueError("La URL es obligatoria")
        return v


class ResourceUpdate(ApiModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    url: Optional[str] = Field(None, max_length=2000)
    type: Optional[ResourceType] = None
    notes: Optional[str] = Field(None, max_length=5000)
    skill_id: Optional[int] = None
    project_id: Optional[int] = None
    is_read: Optional[bool] = None
    is_favorite: Optional[bool] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    tag_ids: Optional[list[int]] = Field(None, max_length=MAX_LINKED_IDS)

    @field_validator("url")
    @classmethod
    def valid_url(cls, v):
        if v is None:
            return v
        v = _clean_url(v)
        if v is None:
            raise ValueError("La URL es obligatoria")
        return v


class ResourceResponse(ApiModel):
    id: int
    title: str
    url: str
    type: str
    notes: Optional[str] = ""
    skill_id: Optional[int] = None
    project_id: Optional[int] = None
    is_read: bool
    is_favorite: bool
    rating: Optional[int] = None
    tags: list[TagBrief] = []
    created_at: datetime
    updated_at: datetime


# =============================================================================
# ===================== BATCH UPDATE ==========================================
# =============================================================================
# Cuerpo: {"updates": [{"id": 3, "data": {"status": "mastered"}}, ...]}
# Máximo 50 elementos por llamada: el cliente trocea si tiene más.

class SkillBatchItem(ApiModel):
    id: int
    data: SkillUpdate

class ProjectBatchItem(ApiModel):
    id: int
    data: ProjectUpdate

class ResourceBatchItem(ApiModel):
    id: int
    data: ResourceUpdate

class SkillBatchRequest(ApiModel):
    updates: list[SkillBatchItem] = Field(min_length=1, max_length=MAX_BATCH_SIZE)

class ProjectBatchRequest(ApiModel):
    updates: list[ProjectBatchItem] = Field(min_length=1, max_length=MAX_BATCH_SIZE)

class ResourceBatchRequest(ApiModel):
    updates: list[ResourceBatchItem] = Field(min_length=1, max_length=MAX_BATCH_SIZE)


# =============================================================================
# ===================== ACTIVITIES ============================================
# =============================================================================

class ActivityCreate(ApiModel):
    date: Optional[dt.date] = None
    # date → si no se envía, "hoy" en la zona horaria del usuario
    type: ActivityType
    description: str = Field("", max_length=1000)
    skill_id: Optional[int] = None
    project_id: Optional[int] = None
    duration_minutes: Optional[int] = Field(None, ge=0)


class ActivityResponse(ApiModel):
    id: int
    date: dt.date
    type: str
    description: Optional[str] = ""
    skill_id: Optional[int] = None
    project_id: Optional[int] = None
    duration_minutes: Optional[int] = None
    created_at: datetime


# =============================================================================
# ===================== TAGS ==================================================
# =============================================================================

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


class TagCreate(ApiModel):
    name: str = Field(min_length=1, max_length=50)
    color: str = Field("#8b5cf6", pattern=HEX_COLOR)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("El nombre es obligatorio")
        return v


class TagUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    color: Optional[str] = Field(None, pattern=HEX_COLOR)


class TagResponse(ApiModel):
    id: int
    name: str
    color: str
    usage_count: int = 0
    created_at: datetime


# =============================================================================
# ===================== TIME ENTRIES ==========================================
# =============================================================================

class TimerStart(ApiModel):
    description: Optional[str] = Field(None, max_length=500)
    skill_id: Optional[int] = None
    project_id: Optional[int] = None
    tag_ids: list[int] = Field(default_factory=list, max_length=MAX_LINKED_IDS)


class TimerStop(ApiModel):
    notes: Optional[str] = Field(None, max_length=2000)


class TimeEntryCreate(ApiModel):
    """Entrada manual (ya terminada o no)"""
    description: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=2000)
    skill_id: Optional[int] = None
    project_id: Optional[int] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    tag_ids: list[int] = Field(default_factory=list, max_length=MAX_LINKED_IDS)

    @field_validator("start_time", "end_time")
    @classmethod
    def as_naive_utc(cls, v):
        return _naive_utc(v)

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("La hora de fin debe ser posterior a la de inicio")
        return self


class TimeEntryUpdate(ApiModel):
    description: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=2000)
    skill_id: Optional[int] = None
    project_id: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    tag_ids: Optional[list[int]] = Field(None, max_length=MAX_LINKED_IDS)

    @field_validator("start_time", "end_time")
    @classmethod
    def as_naive_utc(cls, v):
        return _naive_utc(v)


class TimeEntryResponse(ApiModel):
    id: int
    description: Optional[str] = None
    notes: Optional[str] = None
    skill_id: Optional[int] = None
    project_id: Optional[int] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    is_running: bool
    tags: list[TagBrief] = []
    created_at: datetime


# =============================================================================
# ===================== STATS =================================================
# =============================================================================

class WeeklyPoint(ApiModel):
    week: str
    # week → "2024-07" (año ISO + semana ISO)
    count: int = 0
    points: int = 0


class StatsResponse(ApiModel):
    skills: dict
    # skills → {"total": 5, "want_to_learn": 1, "learning": 3, "mastered": 1}
    projects: dict
    resources: int
    total_activities: int
    active_days_last_30: int
    current_streak: int
    total_tracked_seconds: int


class ProgressResponse(ApiModel):
    weekly_activities: list[WeeklyPoint]
    skills_mastered: int
    projects_completed: int


class HeatmapDay(ApiModel):
    date: dt.date
    count: int
