"""
=============================================================================
MAIN.PY: La API de DevOrbit
=============================================================================
Este archivo define TODOS los endpoints de la API REST (base: /api).

Organización por secciones:
  1. AUTH         → Perfil del usuario autenticado
  2. SKILLS       → CRUD, batch update, prerequisitos, tags
  3. PROJECTS     → CRUD, batch update (borrar baja skills en cascada)
  4. RESOURCES    → CRUD, batch update, favorito, leído
  5. TIME ENTRIES → Timer (un solo timer corriendo), entradas manuales, resumen
  6. TAGS         → Etiquetas para todo lo anterior
  7. ACTIVITIES   → Registro de actividad, heatmap, desglose
  8. STATS        → Dashboard, progreso semanal, resumen de tiempo
  9. EXPORT       → Todos los datos del usuario en un JSON

Respuestas:
  OK     → {"success": true, "data": ..., "pagination"?: {...}}
  Error  → {"success": false, "error": "...", "code": "...", "details"?: [...]}
"""

import os
import math
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Literal, Optional

from fastapi import FastAPI, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic.alias_generators import to_snake
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import get_db, init_db
from models import *
from schemas import *
from auth import get_current_user, unverified_subject
from errors import register_exception_handlers, ValidationError, NotFoundError, ConflictError
from activity import log_activity, local_today
from batch import (
    stage_skill_update, stage_project_update, stage_resource_update,
    apply_batch_update, log_milestone
)
from links import (
    resolve_owned, completed_project_ids, unlink_project, unlink_skill, check_refs,
    add_prerequisite, remove_prerequisite, get_prerequisites, get_dependents
)
from status_gate import check_skill, check_project
import stats as stats_engine

# ─────────────────────────────────────────────────────────────────────────────
# LOGGING
# ─────────────────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
)
logger = logging.getLogger("devorbit.api")

# ─────────────────────────────────────────────────────────────────────────────
# CONFIGURACIÓN
# ─────────────────────────────────────────────────────────────────────────────

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("1", "true", "yes")
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "100"))
RATE_LIMIT_WINDOW_MINUTES = int(os.getenv("RATE_LIMIT_WINDOW_MINUTES", "15"))


# ─────────────────────────────────────────────────────────────────────────────
# RATE LIMIT
# ─────────────────────────────────────────────────────────────────────────────
# Clave: el "sub" del token si viene uno, si no la IP. El "sub" se lee SIN
# verificar: solo reparte cuotas, la autorización la hace get_current_user.

def rate_limit_key(request: Request) -> str:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        subject = unverified_subject(header[7:].strip())
        if subject:
            return f"user:{subject}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[f"{RATE_LIMIT_MAX_REQUESTS} per {RATE_LIMIT_WINDOW_MINUTES} minutes"],
    enabled=RATE_LIMIT_ENABLED,
)


# ─────────────────────────────────────────────────────────────────────────────
# LIFESPAN (Arranque y apagado)
# ─────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Arrancando DevOrbit API...")
    init_db()
    logger.info("✅ Base de datos inicializada")
    yield
    logger.info("👋 Apagado completo")


# ─────────────────────────────────────────────────────────────────────────────
# APLICACIÓN FASTAPI
# ─────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="DevOrbit API",
    description="Seguimiento de skills, proyectos, recursos y tiempo de aprendizaje",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# ─────────────────────────────────────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────────────────────────────────────

def ok(data=None, **extra) -> dict:
    return {"success": True, "data": data, **extra}


def get_owned(db: Session, user: User, model, entity_id: int, label: str):
    """Fila del usuario o 404. "No existe" y "no es tuya" son lo mismo."""
    entity = db.query(model).filter(model.id == entity_id, model.user_id == user.id).first()
    if entity is None:
        raise NotFoundError(label)
    return entity


def parse_id_list(raw: Optional[str], field: str) -> list[int]:
    """"3,5,8" → [3, 5, 8]"""
    if not raw:
        return []
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise ValidationError("Lista de ids no válida", [{"field": field, "message": "Se esperan enteros separados por comas"}])


def apply_sort(query, model, sort_by: Optional[str], sort_order: str, allowed: set[str]):
    column = to_snake(sort_by) if sort_by else "created_at"
    if column not in allowed:
        raise ValidationError("Campo de orden no válido", [{"field": "sortBy", "message": f"Opciones: {', '.join(sorted(allowed))}"}])
    attr = getattr(model, column)
    return query.order_by(attr.asc() if sort_order == "asc" else attr.desc(), model.id.asc())


def paginate(query, page: int, limit: int, schema) -> dict:
    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    pagination = Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit))
    return ok(
        [dump(schema, item) for item in items],
        pagination=pagination.model_dump(by_alias=True),
    )


def batch_response(result: dict, schema) -> dict:
    return ok({
        "updated": [dump(schema, entity) for entity in result["updated"]],
        "errors": result["errors"],
    })


SKILL_LABELS = {
    SkillStatus.mastered: "Dominada",
    SkillStatus.learning: "Empezando a aprender",
    SkillStatus.want_to_learn: "Añadida a pendientes",
}

PROJECT_LABELS = {
    ProjectStatus.idea: "Vuelta a idea",
    ProjectStatus.active: "Proyecto en marcha",
    ProjectStatus.on_hold: "Proyecto en pausa",
    ProjectStatus.completed: "Proyecto completado",
    ProjectStatus.archived: "Proyecto archivado",
}


# =============================================================================
# ===================== HEALTH CHECK ==========================================
# =============================================================================

@app.get("/", tags=["Health"])
@limiter.exempt
def root(request: Request):
    """Verifica que la API está viva"""
    return {"status": "ok", "app": "DevOrbit", "version": "1.0.0"}


@app.get("/api/health", tags=["Health"])
@limiter.exempt
def health_check(request: Request):
    return {"status": "ok", "timestamp": utcnow().isoformat()}


# =============================================================================
# ===================== SECCIÓN 1: AUTH =======================================
# =============================================================================
# El login lo hace el proveedor de identidad. Aquí solo el perfil.

@app.get("/api/auth/me", tags=["Auth"])
def get_me(user: User = Depends(get_current_user)):
    """Devuelve los datos del usuario autenticado"""
    return ok(dump(UserResponse, user))


@app.patch("/api/auth/me", tags=["Auth"])
def update_me(data: UserUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Actualiza datos del usuario. Las preferencias se mezclan, no se reemplazan."""
    if data.name is not None:
        user.name = data.name
    if data.avatar_url is not None:
        user.avatar_url = data.avatar_url
    if data.timezone is not None:
        user.timezone = data.timezone
    if data.preferences is not None:
        user.preferences = {**(user.preferences or {}), **data.preferences}

    db.commit()
    db.refresh(user)
    return ok(dump(UserResponse, user))


@app.delete("/api/auth/me", tags=["Auth"])
def delete_account(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Borra la cuenta y TODOS los datos del usuario (irreversible)"""
    user_id = user.id
    db.delete(user)
    db.commit()
    logger.info(f"🗑️ Cuenta borrada: {user_id}")
    return {"success": True, "message": "Cuenta y todos los datos eliminados"}


# =============================================================================
# ===================== SECCIÓN 2: SKILLS =====================================
# =============================================================================

SKILL_SORT_FIELDS = {"name", "category", "status", "priority", "created_at", "updated_at"}


@app.get("/api/skills", tags=["Skills"])
def list_skills(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    status: Optional[SkillStatus] = None,
    category: Optional[SkillCategory] = None,
    search: Optional[str] = None,
    tag_ids: Optional[str] = Query(None, alias="tagIds"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Lista paginada de skills con filtros"""
    query = db.query(Skill).filter(Skill.user_id == user.id)
    if status:
        query = query.filter(Skill.status == status.value)
    if category:
        query = query.filter(Skill.category == category.value)
    if search:
        query = query.filter(Skill.name.ilike(f"%{search}%"))
    ids = parse_id_list(tag_ids, "tagIds")
    if ids:
        query = query.filter(Skill.tags.any(Tag.id.in_(ids)))

    query = apply_sort(query, Skill, sort_by, sort_order, SKILL_SORT_FIELDS)
    return paginate(query, page, limit, SkillResponse)


@app.get("/api/skills/{skill_id}", tags=["Skills"])
def get_skill(skill_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(dump(SkillResponse, get_owned(db, user, Skill, skill_id, "Skill")))


@app.post("/api/skills", status_code=201, tags=["Skills"])
def create_skill(data: SkillCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    Crea una skill.
    Si nace como "mastered" tiene que traer ya un proyecto completado ligado.
    """
    projects = resolve_owned(db, user, Project, data.linked_project_ids)
    gate = check_skill(data.status, [p.id for p in projects], completed_project_ids(db, user))
    if not gate.valid:
        raise ValidationError(gate.reason, gate.as_details())

    skill = Skill(
        user_id=user.id,
        name=data.name,
        category=data.category,
        status=data.status,
        icon=data.icon,
        notes=data.notes,
        priority=data.priority,
        mastered_at=utcnow() if data.status == SkillStatus.mastered else None,
    )
    skill.linked_projects = projects
    skill.tags = resolve_owned(db, user, Tag, data.tag_ids)
    db.add(skill)
    db.flush()

    log_activity(db, user, ActivityType.learning, f"Nueva skill: {skill.name}", skill_id=skill.id, commit=False)
    db.commit()
    db.refresh(skill)

    logger.info(f"➕ Skill creada: {skill.name} (user: {user.id})")
    return ok(dump(SkillResponse, skill))


@app.put("/api/skills/{skill_id}", tags=["Skills"])
def update_skill(
    skill_id: int, data: SkillUpdate,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """Actualiza una skill. El status gate se comprueba con el estado resultante."""
    skill = get_owned(db, user, Skill, skill_id, "Skill")
    change = stage_skill_update(db, user, skill, data)

    if change.entered_terminal:
        log_milestone(db, user, change)
    elif change.status_changed:
        label = SKILL_LABELS.get(change.new_status, "Actualizada")
        log_activity(db, user, ActivityType.learning, f"{label}: {skill.name}", skill_id=skill.id, commit=False)

    db.commit()
    db.refresh(skill)
    return ok(dump(SkillResponse, skill))


@app.delete("/api/skills/{skill_id}", tags=["Skills"])
def delete_skill(skill_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Elimina una skill: se desvincula de sus proyectos y del grafo de prerequisitos"""
    skill = get_owned(db, user, Skill, skill_id, "Skill")
    name = skill.name

    unlink_skill(db, skill)
    db.delete(skill)
    log_activity(db, user, ActivityType.learning, f"Skill eliminada: {name}", commit=False)
    db.commit()

    return {"success": True, "message": f"Skill '{name}' eliminada"}


@app.post("/api/skills/batch-update", tags=["Skills"])
def batch_update_skills(
    data: SkillBatchRequest,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """Hasta 50 cambios en un solo commit. Revisa "errors" aunque la respuesta sea 200."""
    return batch_response(apply_batch_update(db, user, "skill", data.updates), SkillResponse)


# ── Prerequisitos ──

@app.get("/api/skills/{skill_id}/dependencies", tags=["Skills"])
def list_dependencies(skill_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    skill = get_owned(db, user, Skill, skill_id, "Skill")
    return ok({
        "skillId": skill.id,
        "prerequisites": [dump(SkillBrief, s) for s in get_prerequisites(skill)],
        "dependents": [dump(SkillBrief, s) for s in get_dependents(skill)],
    })


@app.post("/api/skills/{skill_id}/dependencies", status_code=201, tags=["Skills"])
def create_dependency(
    skill_id: int, data: DependencyCreate,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    skill = get_owned(db, user, Skill, skill_id, "Skill")
    prerequisite = get_owned(db, user, Skill, data.prerequisite_id, "Skill")

    add_prerequisite(db, user, skill, prerequisite)
    db.commit()
    db.refresh(skill)

    return ok({
        "skillId": skill.id,
        "prerequisites": [dump(SkillBrief, s) for s in get_prerequisites(skill)],
    })


@app.delete("/api/skills/{skill_id}/dependencies/{prerequisite_id}", tags=["Skills"])
def delete_dependency(
    skill_id: int, prerequisite_id: int,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    skill = get_owned(db, user, Skill, skill_id, "Skill")
    if not remove_prerequisite(db, skill, prerequisite_id):
        raise NotFoundError("Prerequisito")
    db.commit()
    return {"success": True, "message": "Prerequisito eliminado"}


# ── Tags ──

@app.post("/api/skills/{skill_id}/tags", tags=["Skills"])
def add_skill_tags(
    skill_id: int, data: TagAssign,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """Añade tags a la skill (los que ya tenía se quedan, los ajenos se ignoran)"""
    skill = get_owned(db, user, Skill, skill_id, "Skill")
    current = {tag.id for tag in skill.tags}
    for tag in resolve_owned(db, user, Tag, data.tag_ids):
        if tag.id not in current:
            skill.tags.append(tag)
    skill.updated_at = utcnow()
    db.commit()
    db.refresh(skill)
    return ok(dump(SkillResponse, skill))


@app.delete("/api/skills/{skill_id}/tags/{tag_id}", tags=["Skills"])
def remove_skill_tag(
    skill_id: int, tag_id: int,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    skill = get_owned(db, user, Skill, skill_id, "Skill")
    tag = next((t for t in skill.tags if t.id == tag_id), None)
    if tag is None:
        raise NotFoundError("Tag")
    skill.tags.remove(tag)
    skill.updated_at = utcnow()
    db.commit()
    return {"success": True, "message": "Tag quitado"}


# =============================================================================
# ===================== SECCIÓN 3: PROJECTS ===================================
# =============================================================================

PROJECT_SORT_FIELDS = {"name", "status", "priority", "due_date", "created_at", "updated_at"}


@app.get("/api/projects", tags=["Projects"])
def list_projects(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    status: Optional[ProjectStatus] = None,
    search: Optional[str] = None,
    tag_ids: Optional[str] = Query(None, alias="tagIds"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = db.query(Project).filter(Project.user_id == user.id)
    if status:
        query = query.filter(Project.status == status.value)
    if search:
        query = query.filter(Project.name.ilike(f"%{search}%") | Project.description.ilike(f"%{search}%"))
    ids = parse_id_list(tag_ids, "tagIds")
    if ids:
        query = query.filter(Project.tags.any(Tag.id.in_(ids)))

    query = apply_sort(query, Project, sort_by, sort_order, PROJECT_SORT_FIELDS)
    return paginate(query, page, limit, ProjectResponse)


@app.get("/api/projects/{project_id}", tags=["Projects"])
def get_project(project_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(dump(ProjectResponse, get_owned(db, user, Project, project_id, "Proyecto")))


@app.post("/api/projects", status_code=201, tags=["Projects"])
def create_project(data: ProjectCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    gate = check_project(data.status, data.github_url, data.demo_url)
    if not gate.valid:
        raise ValidationError(gate.reason, gate.as_details())

    now = utcnow()
    project = Project(
        user_id=user.id,
        name=data.name,
        description=data.description,
        status=data.status,
        priority=data.priority,
        github_url=data.github_url,
        demo_url=data.demo_url,
        tech_stack=data.tech_stack,
        due_date=data.due_date,
        started_at=now if data.status in (ProjectStatus.active, ProjectStatus.completed) else None,
        completed_at=now if data.status == ProjectStatus.completed else None,
    )
    project.linked_skills = resolve_owned(db, user, Skill, data.linked_skill_ids)
    project.tags = resolve_owned(db, user, Tag, data.tag_ids)
    db.add(project)
    db.flush()

    log_activity(db, user, ActivityType.project, f"Nuevo proyecto: {project.name}", project_id=project.id, commit=False)
    db.commit()
    db.refresh(project)

    logger.info(f"➕ Proyecto creado: {project.name} (user: {user.id})")
    return ok(dump(ProjectResponse, project))


@app.put("/api/projects/{project_id}", tags=["Projects"])
def update_project(
    project_id: int, data: ProjectUpdate,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """
    Actualiza un proyecto.
    Si deja de estar completado, sus skills dominadas sin otra prueba bajan a learning.
    """
    project = get_owned(db, user, Project, project_id, "Proyecto")
    change = stage_project_update(db, user, project, data)

    if change.entered_terminal:
        log_milestone(db, user, change)
    elif change.status_changed:
        label = PROJECT_LABELS.get(change.new_status, "Proyecto actualizado")
        log_activity(db, user, ActivityType.project, f"{label}: {project.name}", project_id=project.id, commit=False)

    db.commit()
    db.refresh(project)
    return ok(dump(ProjectResponse, project))


@app.delete("/api/projects/{project_id}", tags=["Projects"])
def delete_project(project_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    Elimina un proyecto. En la MISMA transacción:
      - se quita de las skills que lo tenían ligado
      - las skills dominadas que se quedan sin proyecto completado → learning
    """
    project = get_owned(db, user, Project, project_id, "Proyecto")
    name = project.name

    downgraded = unlink_project(db, project)
    db.delete(project)
    log_activity(db, user, ActivityType.project, f"Proyecto eliminado: {name}", commit=False)
    db.commit()

    return {
        "success": True,
        "message": f"Proyecto '{name}' eliminado",
        "data": {"downgradedSkillIds": [s.id for s in downgraded]},
    }


@app.post("/api/projects/batch-update", tags=["Projects"])
def batch_update_projects(
    data: ProjectBatchRequest,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return batch_response(apply_batch_update(db, user, "project", data.updates), ProjectResponse)


# =============================================================================
# ===================== SECCIÓN 4: RESOURCES ==================================
# =============================================================================

RESOURCE_SORT_FIELDS = {"title", "type", "rating", "created_at", "updated_at"}


@app.get("/api/resources", tags=["Resources"])
def list_resources(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    type: Optional[ResourceType] = None,
    skill_id: Optional[int] = Query(None, alias="skillId"),
    project_id: Optional[int] = Query(None, alias="projectId"),
    is_read: Optional[bool] = Query(None, alias="isRead"),
    is_favorite: Optional[bool] = Query(None, alias="isFavorite"),
    search: Optional[str] = None,
    tag_ids: Optional[str] = Query(None, alias="tagIds"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = db.query(Resource).filter(Resource.user_id == user.id)
    if type:
        query = query.filter(Resource.type == type.value)
    if skill_id is not None:
        query = query.filter(Resource.skill_id == skill_id)
    if project_id is not None:
        query = query.filter(Resource.project_id == project_id)
    if is_read is not None:
        query = query.filter(Resource.is_read == is_read)
    if is_favorite is not None:
        query = query.filter(Resource.is_favorite == is_favorite)
    if search:
        query = query.filter(Resource.title.ilike(f"%{search}%") | Resource.notes.ilike(f"%{search}%"))
    ids = parse_id_list(tag_ids, "tagIds")
    if ids:
        query = query.filter(Resource.tags.any(Tag.id.in_(ids)))

    query = apply_sort(query, Resource, sort_by, sort_order, RESOURCE_SORT_FIELDS)
    return paginate(query, page, limit, ResourceResponse)


@app.get("/api/resources/{resource_id}", tags=["Resources"])
def get_resource(resource_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(dump(ResourceResponse, get_owned(db, user, Resource, resource_id, "Recurso")))


@app.post("/api/resources", status_code=201, tags=["Resources"])
def create_resource(data: ResourceCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    check_refs(db, user, data.skill_id, data.project_id)

    resource = Resource(
        user_id=user.id,
        title=data.title,
        url=data.url,
        type=data.type,
        notes=data.notes,
        skill_id=data.skill_id,
        project_id=data.project_id,
        is_read=data.is_read,
        is_favorite=data.is_favorite,
        rating=data.rating,
    )
    resource.tags = resolve_owned(db, user, Tag, data.tag_ids)
    db.add(resource)
    db.flush()

    log_activity(
        db, user, ActivityType.reading, f"Recurso guardado: {resource.title}",
        skill_id=resource.skill_id, project_id=resource.project_id, commit=False
    )
    db.commit()
    db.refresh(resource)
    return ok(dump(ResourceResponse, resource))


@app.put("/api/resources/{resource_id}", tags=["Resources"])
def update_resource(
    resource_id: int, data: ResourceUpdate,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    resource = get_owned(db, user, Resource, resource_id, "Recurso")
    stage_resource_update(db, user, resource, data)
    db.commit()
    db.refresh(resource)
    return ok(dump(ResourceResponse, resource))


@app.delete("/api/resources/{resource_id}", tags=["Resources"])
def delete_resource(resource_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    resource = get_owned(db, user, Resource, resource_id, "Recurso")
    db.delete(resource)
    db.commit()
    return {"success": True, "message": "Recurso eliminado"}


@app.post("/api/resources/batch-update", tags=["Resources"])
def batch_update_resources(
    data: ResourceBatchRequest,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return batch_response(apply_batch_update(db, user, "resource", data.updates), ResourceResponse)


@app.post("/api/resources/{resource_id}/favorite", tags=["Resources"])
def toggle_favorite(resource_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Marca o desmarca como favorito"""
    resource = get_owned(db, user, Resource, resource_id, "Recurso")
    resource.is_favorite = not resource.is_favorite
    resource.updated_at = utcnow()
    db.commit()
    db.refresh(resource)
    return ok(dump(ResourceResponse, resource))


@app.post("/api/resources/{resource_id}/read", tags=["Resources"])
def mark_read(resource_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    resource = get_owned(db, user, Resource, resource_id, "Recurso")
    resource.is_read = True
    resource.updated_at = utcnow()
    db.commit()
    db.refresh(resource)
    return ok(dump(ResourceResponse, resource))


# =============================================================================
# ===================== SECCIÓN 5: TIME ENTRIES ===============================
# =============================================================================
# Como mucho UN timer corriendo por usuario. Arrancar otro → 409 CONFLICT
# (nunca se para el anterior en silencio).

def _running_entry(db: Session, user: User) -> Optional[TimeEntry]:
    return db.query(TimeEntry).filter(
        TimeEntry.user_id == user.id,
        TimeEntry.is_running == True  # noqa: E712
    ).first()


@app.get("/api/time-entries", tags=["Time Entries"])
def list_time_entries(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    skill_id: Optional[int] = Query(None, alias="skillId"),
    project_id: Optional[int] = Query(None, alias="projectId"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    is_running: Optional[bool] = Query(None, alias="isRunning"),
    tag_ids: Optional[str] = Query(None, alias="tagIds"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = db.query(TimeEntry).filter(TimeEntry.user_id == user.id)
    if skill_id is not None:
        query = query.filter(TimeEntry.skill_id == skill_id)
    if project_id is not None:
        query = query.filter(TimeEntry.project_id == project_id)
    if start_date:
        query = query.filter(TimeEntry.start_time >= datetime.combine(start_date, datetime.min.time()))
    if end_date:
        query = query.filter(TimeEntry.start_time < datetime.combine(end_date + timedelta(days=1), datetime.min.time()))
    if is_running is not None:
        query = query.filter(TimeEntry.is_running == is_running)
    ids = parse_id_list(tag_ids, "tagIds")
    if ids:
        query = query.filter(TimeEntry.tags.any(Tag.id.in_(ids)))

    query = apply_sort(query, TimeEntry, sort_by or "startTime", sort_order,
                       {"start_time", "end_time", "duration_seconds", "created_at"})
    return paginate(query, page, limit, TimeEntryResponse)


@app.get("/api/time-entries/running", tags=["Time Entries"])
def get_running_entry(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    entry = _running_entry(db, user)
    return ok(dump(TimeEntryResponse, entry) if entry else None)


@app.get("/api/time-entries/summary", tags=["Time Entries"])
def get_time_entries_summary(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Tiempo total (entradas terminadas) y reparto por skill y por proyecto"""
    if start_date and end_date and end_date < start_date:
        raise ValidationError("Rango de fechas no válido",
                              [{"field": "endDate", "message": "Anterior a startDate"}])
    summary = stats_engine.get_time_breakdown(db, user, start_date, end_date)
    return ok({
        "total": summary["total"],
        "bySkill": summary["by_skill"],
        "byProject": summary["by_project"],
    })


@app.post("/api/time-entries/start", status_code=201, tags=["Time Entries"])
def start_timer(data: TimerStart, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if _running_entry(db, user):
        raise ConflictError("Ya hay un timer en marcha. Páralo primero.")
    check_refs(db, user, data.skill_id, data.project_id)

    entry = TimeEntry(
        user_id=user.id,
        description=data.description,
        skill_id=data.skill_id,
        project_id=data.project_id,
        start_time=utcnow(),
        is_running=True,
    )
    entry.tags = resolve_owned(db, user, Tag, data.tag_ids)
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        # Otra petición arrancó un timer entre la comprobación y el insert
        db.rollback()
        raise ConflictError("Ya hay un timer en marcha. Páralo primero.")
    db.refresh(entry)

    logger.info(f"⏱️ Timer arrancado (user: {user.id})")
    return ok(dump(TimeEntryResponse, entry))


@app.post("/api/time-entries/stop", tags=["Time Entries"])
def stop_timer(
    data: Optional[TimerStop] = None,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """Para el timer, calcula la duración y registra la actividad"""
    entry = _running_entry(db, user)
    if entry is None:
        raise NotFoundError("Timer en marcha")

    end = utcnow()
    entry.end_time = end
    entry.duration_seconds = max(0, int((end - entry.start_time).total_seconds()))
    entry.is_running = False
    if data and data.notes is not None:
        entry.notes = data.notes

    log_activity(
        db, user,
        ActivityType.project if entry.project_id else ActivityType.coding,
        entry.description or "Sesión de trabajo completada",
        skill_id=entry.skill_id,
        project_id=entry.project_id,
        duration_minutes=entry.duration_seconds // 60,
        commit=False,
    )
    db.commit()
    db.refresh(entry)

    logger.info(f"⏹️ Timer parado: {entry.duration_seconds}s (user: {user.id})")
    return ok(dump(TimeEntryResponse, entry))


@app.post("/api/time-entries", status_code=201, tags=["Time Entries"])
def create_time_entry(data: TimeEntryCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Entrada manual. Sin hora de fin queda como timer en marcha."""
    check_refs(db, user, data.skill_id, data.project_id)
    running = data.end_time is None
    if running and _running_entry(db, user):
        raise ConflictError("Ya hay un timer en marcha. Páralo primero.")

    entry = TimeEntry(
        user_id=user.id,
        description=data.description,
        notes=data.notes,
        skill_id=data.skill_id,
        project_id=data.project_id,
        start_time=data.start_time,
        end_time=data.end_time,
        duration_seconds=None if running else int((data.end_time - data.start_time).total_seconds()),
        is_running=running,
    )
    entry.tags = resolve_owned(db, user, Tag, data.tag_ids)
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Ya hay un timer en marcha. Páralo primero.")
    db.refresh(entry)
    return ok(dump(TimeEntryResponse, entry))


@app.put("/api/time-entries/{entry_id}", tags=["Time Entries"])
def update_time_entry(
    entry_id: int, data: TimeEntryUpdate,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    entry = get_owned(db, user, TimeEntry, entry_id, "Entrada de tiempo")
    fields = data.model_dump(exclude_unset=True)
    tag_ids = fields.pop("tag_ids", None)
    if entry.is_running and fields.get("end_time") is not None:
        # Un timer en marcha solo se cierra con /time-entries/stop
        raise ValidationError("El timer sigue en marcha: páralo con /time-entries/stop",
                              [{"field": "endTime", "message": "No se puede fijar con el timer en marcha"}])
    check_refs(db, user, fields.get("skill_id"), fields.get("project_id"))

    for key, value in fields.items():
        if value is None and key in ("start_time",):
            continue
        setattr(entry, key, value)
    if tag_ids is not None:
        entry.tags = resolve_owned(db, user, Tag, tag_ids)

    if entry.end_time is not None:
        if entry.end_time < entry.start_time:
            raise ValidationError("La hora de fin debe ser posterior a la de inicio",
                                  [{"field": "endTime", "message": "Anterior a la hora de inicio"}])
        if not entry.is_running:
            entry.duration_seconds = int((entry.end_time - entry.start_time).total_seconds())
    entry.updated_at = utcnow()

    db.commit()
    db.refresh(entry)
    return ok(dump(TimeEntryResponse, entry))


@app.delete("/api/time-entries/{entry_id}", tags=["Time Entries"])
def delete_time_entry(entry_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    entry = get_owned(db, user, TimeEntry, entry_id, "Entrada de tiempo")
    db.delete(entry)
    db.commit()
    return {"success": True, "message": "Entrada de tiempo eliminada"}


# =============================================================================
# ===================== SECCIÓN 6: TAGS =======================================
# =============================================================================

def _tag_name_taken(db: Session, user: User, name: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(Tag).filter(Tag.user_id == user.id, Tag.name == name)
    if exclude_id is not None:
        query = query.filter(Tag.id != exclude_id)
    return query.first() is not None


@app.get("/api/tags", tags=["Tags"])
def list_tags(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    tags = db.query(Tag).filter(Tag.user_id == user.id).order_by(Tag.name).all()
    return ok([dump(TagResponse, t) for t in tags])


@app.get("/api/tags/{tag_id}", tags=["Tags"])
def get_tag(tag_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(dump(TagResponse, get_owned(db, user, Tag, tag_id, "Tag")))


@app.get("/api/tags/{tag_id}/items", tags=["Tags"])
def get_tag_items(tag_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Todo lo que lleva esta etiqueta"""
    tag = get_owned(db, user, Tag, tag_id, "Tag")
    return ok({
        "tag": dump(TagResponse, tag),
        "skills": [dump(SkillBrief, s) for s in tag.skills],
        "projects": [{"id": p.id, "name": p.name, "status": p.status} for p in tag.projects],
        "resources": [{"id": r.id, "title": r.title, "type": r.type} for r in tag.resources],
        "timeEntries": [dump(TimeEntryResponse, e) for e in tag.time_entries],
    })


@app.post("/api/tags", status_code=201, tags=["Tags"])
def create_tag(data: TagCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if _tag_name_taken(db, user, data.name):
        raise ConflictError(f"Ya existe una etiqueta llamada '{data.name}'")

    tag = Tag(user_id=user.id, name=data.name, color=data.color)
    db.add(tag)
    db.commit()
    db.refresh(tag)
    return ok(dump(TagResponse, tag))


@app.put("/api/tags/{tag_id}", tags=["Tags"])
def update_tag(
    tag_id: int, data: TagUpdate,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    tag = get_owned(db, user, Tag, tag_id, "Tag")
    if data.name is not None:
        name = data.name.strip()
        if _tag_name_taken(db, user, name, exclude_id=tag.id):
            raise ConflictError(f"Ya existe una etiqueta llamada '{name}'")
        tag.name = name
    if data.color is not None:
        tag.color = data.color

    db.commit()
    db.refresh(tag)
    return ok(dump(TagResponse, tag))


@app.delete("/api/tags/{tag_id}", tags=["Tags"])
def delete_tag(tag_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Borra la etiqueta y la quita de todo lo que la llevaba"""
    tag = get_owned(db, user, Tag, tag_id, "Tag")
    db.delete(tag)
    db.commit()
    return {"success": True, "message": "Etiqueta eliminada"}


# =============================================================================
# ===================== SECCIÓN 7: ACTIVITIES =================================
# =============================================================================

@app.get("/api/activities", tags=["Activities"])
def list_activities(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: Optional[ActivityType] = None,
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    skill_id: Optional[int] = Query(None, alias="skillId"),
    project_id: Optional[int] = Query(None, alias="projectId"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = db.query(Activity).filter(Activity.user_id == user.id)
    if type:
        query = query.filter(Activity.type == type.value)
    if start_date:
        query = query.filter(Activity.date >= start_date)
    if end_date:
        query = query.filter(Activity.date <= end_date)
    if skill_id is not None:
        query = query.filter(Activity.skill_id == skill_id)
    if project_id is not None:
        query = query.filter(Activity.project_id == project_id)

    query = query.order_by(Activity.date.desc(), Activity.id.desc())
    return paginate(query, page, limit, ActivityResponse)


@app.post("/api/activities", status_code=201, tags=["Activities"])
def create_activity(data: ActivityCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Registro manual (estudio, lectura...). Los hitos solo los genera el sistema."""
    if data.type == ActivityType.milestone:
        raise ValidationError("Los hitos se registran solos", [{"field": "type", "message": "Tipo no permitido"}])
    check_refs(db, user, data.skill_id, data.project_id)

    activity = log_activity(
        db, user, data.type, data.description,
        skill_id=data.skill_id,
        project_id=data.project_id,
        duration_minutes=data.duration_minutes,
        day=data.date or local_today(user),
    )
    return ok(dump(ActivityResponse, activity))


@app.get("/api/activities/heatmap", tags=["Activities"])
def activity_heatmap(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok([dump(HeatmapDay, day) for day in stats_engine.get_heatmap(db, user)])


@app.get("/api/activities/breakdown", tags=["Activities"])
def activity_breakdown(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(stats_engine.get_breakdown(db, user))


# =============================================================================
# ===================== SECCIÓN 8: STATS ======================================
# =============================================================================

@app.get("/api/stats", tags=["Stats"])
def get_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(dump(StatsResponse, stats_engine.get_stats(db, user)))


@app.get("/api/stats/progress", tags=["Stats"])
def get_progress(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(dump(ProgressResponse, stats_engine.get_progress(db, user)))


@app.get("/api/stats/time-summary", tags=["Stats"])
def get_time_summary(
    period: Literal["week", "month", "year"] = "week",
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    summary = stats_engine.get_time_summary(db, user, period)
    return ok({
        "period": summary["period"],
        "daily": summary["daily"],
        "totalSeconds": summary["total_seconds"],
        "entriesCount": summary["entries_count"],
    })


# =============================================================================
# ===================== SECCIÓN 9: EXPORT =====================================
# =============================================================================

@app.get("/api/export/data", tags=["Export"])
def export_data(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Todos los datos del usuario en un solo JSON"""
    def owned(model, order):
        return db.query(model).filter(model.user_id == user.id).order_by(order).all()

    skills = owned(Skill, Skill.id)
    dependencies = [
        {"skillId": edge.skill_id, "prerequisiteId": edge.prerequisite_id}
        for skill in skills for edge in skill.prerequisite_links
    ]

    logger.info(f"📤 Exportación de datos (user: {user.id})")
    return ok({
        "exportedAt": utcnow().isoformat(),
        "user": dump(UserResponse, user),
        "skills": [dump(SkillResponse, s) for s in skills],
        "skillDependencies": dependencies,
        "projects": [dump(ProjectResponse, p) for p in owned(Project, Project.id)],
        "resources": [dump(ResourceResponse, r) for r in owned(Resource, Resource.id)],
        "tags": [dump(TagResponse, t) for t in owned(Tag, Tag.name)],
        "timeEntries": [dump(TimeEntryResponse, e) for e in owned(TimeEntry, TimeEntry.start_time)],
        "activities": [dump(ActivityResponse, a) for a in owned(Activity, Activity.date)],
    })


# ─────────────────────────────────────────────────────────────────────────────
# ARRANQUE DIRECTO: python main.py
# ─────────────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("main:app", host="0.0.0.0", port=port, reload=True)
