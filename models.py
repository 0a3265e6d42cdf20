"""
=============================================================================
MODELS.PY: Todos los Modelos (Tablas) de la Base de Datos
=============================================================================
Cada clase aquí = una tabla. Cada atributo = una columna.

RELACIONES:
  USER
  ├── skills[] ←──── skill_projects ────→ projects[]
  │     └── prerequisites (skill_dependencies)
  ├── projects[]
  ├── resources[]      (opcionalmente ligados a una skill o un proyecto)
  ├── activities[]     (registro append-only)
  ├── daily_activity[] (un contador por día → rachas y heatmap)
  ├── tags[]           (etiquetas many-to-many sobre skills, proyectos,
  │                     recursos y entradas de tiempo)
  └── time_entries[]   (como máximo UNA con is_running = True)

Propiedad: todas las tablas (salvo users) llevan user_id y TODA consulta
se filtra por el usuario autenticado. Nunca se lee el dueño del body.
"""

from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Boolean, Text, Date, DateTime,
    ForeignKey, JSON, UniqueConstraint, Index, Table, text
)
from sqlalchemy.orm import relationship
from database import Base
import enum


def utcnow() -> datetime:
    """Hora actual en UTC sin tzinfo (así se guarda en todas las columnas)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ===================== ENUMS (Tipos predefinidos) ============================
# =============================================================================

class SkillCategory(str, enum.Enum):
    language = "language"
    framework = "framework"
    library = "library"
    tool = "tool"
    database = "database"
    runtime = "runtime"
    other = "other"

class SkillStatus(str, enum.Enum):
    want_to_learn = "want_to_learn"
    learning = "learning"
    mastered = "mastered"      # terminal: exige un proyecto completado ligado

class ProjectStatus(str, enum.Enum):
    idea = "idea"
    active = "active"
    on_hold = "on_hold"
    completed = "completed"    # terminal: exige github_url o demo_url
    archived = "archived"

class ResourceType(str, enum.Enum):
    documentation = "documentation"
    video = "video"
    course = "course"
    article = "article"
    tutorial = "tutorial"
    other = "other"

class ActivityType(str, enum.Enum):
    learning = "learning"
    coding = "coding"
    reading = "reading"
    project = "project"
    review = "review"
    practice = "practice"
    milestone = "milestone"    # skill dominada / proyecto completado
    other = "other"


# =============================================================================
# ===================== TABLAS INTERMEDIAS (many-to-many) =====================
# =============================================================================
# skill_projects es la ÚNICA fuente de verdad del vínculo skill ↔ proyecto:
# skill.linked_projects y project.linked_skills son las dos caras de la
# misma fila, así que nunca pueden desincronizarse.

skill_projects = Table(
    "skill_projects", Base.metadata,
    Column("skill_id", Integer, ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True),
    Column("project_id", Integer, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
)

skill_tags = Table(
    "skill_tags", Base.metadata,
    Column("skill_id", Integer, ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

project_tags = Table(
    "project_tags", Base.metadata,
    Column("project_id", Integer, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

resource_tags = Table(
    "resource_tags", Base.metadata,
    Column("resource_id", Integer, ForeignKey("resources.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

time_entry_tags = Table(
    "time_entry_tags", Base.metadata,
    Column("time_entry_id", Integer, ForeignKey("time_entries.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


# =============================================================================
# ===================== TABLA 1: USERS ========================================
# =============================================================================
# El usuario se crea solo, la primera vez que llega un token válido con un
# "sub" que no conocemos. No guardamos contraseñas: eso es del proveedor.

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # ── Identidad (viene del proveedor) ──
    provider_id = Column(String(128), unique=True, nullable=False, index=True)
    # provider_id → el "sub" del token
    email = Column(String(255), unique=True, nullable=True, index=True)
    name = Column(String(100), nullable=True)
    avatar_url = Column(String(500), nullable=True)

    # ── Configuración ──
    role = Column(String(20), default="user")
    timezone = Column(String(50), default="UTC")
    # timezone → decide qué es "hoy" para rachas y contadores diarios
    preferences = Column(JSON, default=dict)

    # ── Timestamps ──
    created_at = Column(DateTime, default=utcnow)
    last_active = Column(DateTime, default=utcnow)

    # ── Relaciones ──
    # cascade="all, delete-orphan" → borrar la cuenta borra todos sus datos
    skills = relationship("Skill", back_populates="user", cascade="all, delete-orphan")
    projects = relationship("Project", back_populates="user", cascade="all, delete-orphan")
    resources = relationship("Resource", back_populates="user", cascade="all, delete-orphan")
    activities = relationship("Activity", back_populates="user", cascade="all, delete-orphan")
    daily_activity = relationship("DailyActivity", back_populates="user", cascade="all, delete-orphan")
    tags = relationship("Tag", back_populates="user", cascade="all, delete-orphan")
    time_entries = relationship("TimeEntry", back_populates="user", cascade="all, delete-orphan")


# =============================================================================
# ===================== TABLA 2: SKILLS =======================================
# =============================================================================

class Skill(Base):
    __tablename__ = "skills"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(100), nullable=False)
    category = Column(String(20), default=SkillCategory.language.value)
    status = Column(String(20), default=SkillStatus.want_to_learn.value)
    icon = Column(String(10), default="📚")
    notes = Column(Text, nullable=True)
    priority = Column(Integer, default=0)

    mastered_at = Column(DateTime, nullable=True)
    # mastered_at → cuándo pasó a "mastered" (puntos de progreso semanales)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="skills")
    linked_projects = relationship(
        "Project", secondary=skill_projects, back_populates="linked_skills", order_by="Project.id"
    )
    tags = relationship("Tag", secondary=skill_tags, back_populates="skills", order_by="Tag.name")
    resources = relationship("Resource", back_populates="skill")
    activities = relationship("Activity", back_populates="skill")
    time_entries = relationship("TimeEntry", back_populates="skill")

    # Aristas del grafo de prerequisitos en las dos direcciones
    prerequisite_links = relationship(
        "SkillDependency", foreign_keys="SkillDependency.skill_id",
        back_populates="skill", cascade="all, delete-orphan"
    )
    dependent_links = relationship(
        "SkillDependency", foreign_keys="SkillDependency.prerequisite_id",
        back_populates="prerequisite", cascade="all, delete-orphan"
    )

    @property
    def linked_project_ids(self) -> list[int]:
        return [p.id for p in self.linked_projects]


class SkillDependency(Base):
    """Arista 'skill requiere prerequisite'. El grafo nunca tiene ciclos."""
    __tablename__ = "skill_dependencies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    skill_id = Column(Integer, ForeignKey("skills.id", ondelete="CASCADE"), nullable=False)
    prerequisite_id = Column(Integer, ForeignKey("skills.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('skill_id', 'prerequisite_id', name='uq_skill_prerequisite'),
    )

    skill = relationship("Skill", foreign_keys=[skill_id], back_populates="prerequisite_links")
    prerequisite = relationship("Skill", foreign_keys=[prerequisite_id], back_populates="dependent_links")


# =============================================================================
# ===================== TABLA 3: PROJECTS =====================================
# =============================================================================

class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(200), nullable=False)
    description = Column(Text, default="")
    status = Column(String(20), default=ProjectStatus.idea.value)
    priority = Column(Integer, default=0)

    # ── Enlaces (al menos uno para poder marcarlo como completado) ──
    github_url = Column(String(500), nullable=True)
    demo_url = Column(String(500), nullable=True)
    tech_stack = Column(JSON, default=list)
    # tech_stack → ["python", "fastapi", "postgres"]

    due_date = Column(Date, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="projects")
    linked_skills = relationship(
        "Skill", secondary=skill_projects, back_populates="linked_projects", order_by="Skill.id"
    )
    tags = relationship("Tag", secondary=project_tags, back_populates="projects", order_by="Tag.name")
    resources = relationship("Resource", back_populates="project")
    activities = relationship("Activity", back_populates="project")
    time_entries = relationship("TimeEntry", back_populates="project")

    @property
    def linked_skill_ids(self) -> list[int]:
        return [s.id for s in self.linked_skills]


# =============================================================================
# ===================== TABLA 4: RESOURCES ====================================
# =============================================================================

class Resource(Base):
    __tablename__ = "resources"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String(300), nullable=False)
    url = Column(String(2000), nullable=False)
    type = Column(String(20), default=ResourceType.article.value)
    notes = Column(Text, default="")

    # Vínculos opcionales: si se borra la skill/proyecto, quedan a NULL
    skill_id = Column(Integer, ForeignKey("skills.id", ondelete="SET NULL"), nullable=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)

    is_read = Column(Boolean, default=False)
    is_favorite = Column(Boolean, default=False)
    rating = Column(Integer, nullable=True)
    # rating → 1 a 5

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="resources")
    skill = relationship("Skill", back_populates="resources")
    project = relationship("Project", back_populates="resources")
    tags = relationship("Tag", secondary=resource_tags, back_populates="resources", order_by="Tag.name")


# =============================================================================
# ===================== TABLA 5: ACTIVITIES ===================================
# =============================================================================
# Registro append-only. Lo generan otras operaciones (crear una skill,
# completar un proyecto, parar el timer...). Nunca se edita.

class Activity(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    date = Column(Date, nullable=False, index=True)
    type = Column(String(20), nullable=False)
    description = Column(Text, default="")

    skill_id = Column(Integer, ForeignKey("skills.id", ondelete="SET NULL"), nullable=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    duration_minutes = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="activities")
    skill = relationship("Skill", back_populates="activities")
    project = relationship("Project", back_populates="activities")


# =============================================================================
# ===================== TABLA 6: DAILY_ACTIVITY ===============================
# =============================================================================
# Un contador por usuario y día. Se incrementa cada vez que se registra una
# Activity. Es la entrada del motor de rachas y del heatmap.

class DailyActivity(Base):
    __tablename__ = "daily_activity"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    date = Column(Date, nullable=False)
    count = Column(Integer, default=0)
    types = Column(JSON, default=dict)
    # types → {"learning": 2, "milestone": 1}
    last_activity = Column(String(300), nullable=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'date', name='uq_daily_activity_date'),
    )

    user = relationship("User", back_populates="daily_activity")


# =============================================================================
# ===================== TABLA 7: TAGS =========================================
# =============================================================================

class Tag(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    name = Column(String(50), nullable=False)
    color = Column(String(7), default="#8b5cf6")

    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'name', name='uq_tag_name'),
    )

    user = relationship("User", back_populates="tags")
    skills = relationship("Skill", secondary=skill_tags, back_populates="tags")
    projects = relationship("Project", secondary=project_tags, back_populates="tags")
    resources = relationship("Resource", secondary=resource_tags, back_populates="tags")
    time_entries = relationship("TimeEntry", secondary=time_entry_tags, back_populates="tags")

    @property
    def usage_count(self) -> int:
        return len(self.skills) + len(self.projects) + len(self.resources) + len(self.time_entries)


# =============================================================================
# ===================== TABLA 8: TIME_ENTRIES =================================
# =============================================================================

class TimeEntry(Base):
    __tablename__ = "time_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    description = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)

    skill_id = Column(Integer, ForeignKey("skills.id", ondelete="SET NULL"), nullable=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    # end_time → NULL mientras el timer está corriendo
    duration_seconds = Column(Integer, nullable=True)
    # duration_seconds → se calcula al parar
    is_running = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # ── Un solo timer corriendo por usuario ──
    # El endpoint ya lo comprueba antes de insertar; el índice parcial es la
    # red de seguridad si dos peticiones llegan a la vez.
    __table_args__ = (
        Index(
            'uq_time_entry_running', 'user_id', unique=True,
            sqlite_where=text('is_running = 1'),
            postgresql_where=text('is_running'),
        ),
    )

    user = relationship("User", back_populates="time_entries")
    skill = relationship("Skill", back_populates="time_entries")
    project = relationship("Project", back_populates="time_entries")
    tags = relationship("Tag", secondary=time_entry_tags, back_populates="time_entries", order_by="Tag.name")
