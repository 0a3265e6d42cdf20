"""
=============================================================================
BATCH.PY: Aplicar cambios a skills, proyectos y recursos
=============================================================================
Aquí vive la lógica de "aplicar un XxxUpdate a una fila", compartida por:

  - PUT /api/skills/{id}                 → un solo cambio
  - POST /api/skills/batch-update        → hasta 50 cambios de golpe

Batch update, paso a paso:
  1. Para cada {id, data}, EN ORDEN:
       - buscar la fila del usuario → si no está: error NOT_FOUND y seguir
       - comprobar el status gate con el estado PROPUESTO → si falla:
         error VALIDATION_ERROR y seguir
       - aplicar los campos, sellar updated_at (queda pendiente en la sesión)
  2. UN solo commit para todo lo pendiente. Si la BD falla → rollback y
     no se guarda NINGUNO.
  3. Después del commit (nunca antes): una actividad "milestone" por cada
     elemento que ha entrado en mastered/completed.

Los errores por elemento NO hacen fallar el lote: la respuesta es 200 con
{updated: [...], errors: [{id, error, code}]}.
"""

import logging
from typing import NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from activity import log_activity
from errors import AppError, ValidationError, DatabaseError
from links import resolve_owned, set_skill_projects, set_project_skills, reconcile_mastery, check_refs
from models import (
    User, Skill, Project, Resource, Tag,
    SkillStatus, ProjectStatus, ActivityType, utcnow
)
from schemas import SkillUpdate, ProjectUpdate, ResourceUpdate
from status_gate import check_skill, check_project

logger = logging.getLogger("devorbit.batch")

# Campos que SÍ se pueden poner a null explícitamente
NULLABLE_FIELDS = {
    "skill": {"notes"},
    "project": {"github_url", "demo_url", "due_date"},
    "resource": {"skill_id", "project_id", "rating"},
}


class StagedChange(NamedTuple):
    kind: str
    entity: object
    previous_status: Optional[str]
    new_status: Optional[str]
    downgraded: list

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.new_status

    @property
    def entered_terminal(self) -> bool:
        terminal = {"skill": SkillStatus.mastered, "project": ProjectStatus.completed}.get(self.kind)
        return terminal is not None and self.status_changed and self.new_status == terminal


def _fields(kind: str, data) -> dict:
    """Campos enviados, sin los null que la columna no admite"""
    sent = data.model_dump(exclude_unset=True)
    return {k: v for k, v in sent.items() if v is not None or k in NULLABLE_FIELDS[kind]}


# ─────────────────────────────────────────────────────────────────────────────
# APLICAR UN CAMBIO (sin commit)
# ─────────────────────────────────────────────────────────────────────────────

def stage_skill_update(db: Session, user: User, skill: Skill, data: SkillUpdate) -> StagedChange:
    fields = _fields("skill", data)
    link_ids = fields.pop("linked_project_ids", None)
    tag_ids = fields.pop("tag_ids", None)

    # Estado propuesto: los proyectos que QUEDARÍAN ligados
    if link_ids is not None:
        proposed = resolve_owned(db, user, Project, link_ids)
    else:
        proposed = list(skill.linked_projects)
    new_status = fields.get("status", skill.status)

    gate = check_skill(
        new_status,
        [p.id for p in proposed],
        [p.id for p in proposed if p.status == ProjectStatus.completed],
    )
    if not gate.valid:
        raise ValidationError(gate.reason, gate.as_details())

    previous = skill.status
    for key, value in fields.items():
        setattr(skill, key, value)
    if link_ids is not None:
        set_skill_projects(db, user, skill, link_ids)
    if tag_ids is not None:
        skill.tags = resolve_owned(db, user, Tag, tag_ids)

    if new_status == SkillStatus.mastered and previous != SkillStatus.mastered:
        skill.mastered_at = utcnow()
    elif new_status != SkillStatus.mastered:
        skill.mastered_at = None
    skill.updated_at = utcnow()

    return StagedChange("skill", skill, previous, new_status, [])


def stage_project_update(db: Session, user: User, project: Project, data: ProjectUpdate) -> StagedChange:
    fields = _fields("project", data)
    link_ids = fields.pop("linked_skill_ids", None)
    tag_ids = fields.pop("tag_ids", None)

    new_status = fields.get("status", project.status)
    gate = check_project(
        new_status,
        fields.get("github_url", project.github_url),
        fields.get("demo_url", project.demo_url),
    )
    if not gate.valid:
        raise ValidationError(gate.reason, gate.as_details())

    previous = project.status
    for key, value in fields.items():
        setattr(project, key, value)

    downgraded = []
    if link_ids is not None:
        downgraded += set_project_skills(db, user, project, link_ids)
    if tag_ids is not None:
        project.tags = resolve_owned(db, user, Tag, tag_ids)

    now = utcnow()
    if new_status == ProjectStatus.active and project.started_at is None:
        project.started_at = now
    if new_status == ProjectStatus.completed and previous != ProjectStatus.completed:
        project.completed_at = now
    elif previous == ProjectStatus.completed and new_status != ProjectStatus.completed:
        # Deja de ser prueba de dominio para sus skills
        project.completed_at = None
        downgraded += reconcile_mastery(db, project.linked_skills)
    project.updated_at = now

    return StagedChange("project", project, previous, new_status, downgraded)


def stage_resource_update(db: Session, user: User, resource: Resource, data: ResourceUpdate) -> StagedChange:
    fields = _fields("resource", data)
    tag_ids = fields.pop("tag_ids", None)

    check_refs(db, user, fields.get("skill_id"), fields.get("project_id"))

    for key, value in fields.items():
        setattr(resource, key, value)
    if tag_ids is not None:
        resource.tags = resolve_owned(db, user, Tag, tag_ids)
    resource.updated_at = utcnow()

    return StagedChange("resource", resource, None, None, [])


BATCH_KINDS = {
    # kind: (modelo, función, nombre para los mensajes)
    "skill": (Skill, stage_skill_update, "Skill"),
    "project": (Project, stage_project_update, "Proyecto"),
    "resource": (Resource, stage_resource_update, "Recurso"),
}


def log_milestone(db: Session, user: User, change: StagedChange):
    """Actividad 'milestone' para una skill dominada o un proyecto completado (sin commit)"""
    entity = change.entity
    if change.kind == "skill":
        log_activity(db, user, ActivityType.milestone, f"Skill dominada: {entity.name}",
                     skill_id=entity.id, commit=False)
    else:
        log_activity(db, user, ActivityType.milestone, f"Proyecto completado: {entity.name}",
                     project_id=entity.id, commit=False)


# ─────────────────────────────────────────────────────────────────────────────
# LOTE
# ─────────────────────────────────────────────────────────────────────────────

def apply_batch_update(db: Session, user: User, kind: str, items) -> dict:
    """
    items → lista de XxxBatchItem (id + data ya validada por Pydantic).
    Devuelve {"updated": [entidades], "errors": [{id, error, code}]}.
    """
    model, stage, label = BATCH_KINDS[kind]
    staged: list[StagedChange] = []
    errors = []

    for item in items:
        entity = db.query(model).filter(model.id == item.id, model.user_id == user.id).first()
        if entity is None:
            errors.append({"id": item.id, "error": f"{label} no encontrado", "code": "NOT_FOUND"})
            continue
        try:
            staged.append(stage(db, user, entity, item.data))
        except AppError as e:
            errors.append({"id": item.id, "error": e.message, "code": e.code})

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Lote de {kind} descartado ({len(staged)} cambios): {e}")
        raise DatabaseError("No se pudo guardar el lote")

    # Solo ahora sabemos que las escrituras existen
    milestones = [change for change in staged if change.entered_terminal]
    if milestones:
        for change in milestones:
            log_milestone(db, user, change)
        db.commit()

    logger.info(f"📦 Lote de {kind}: {len(staged)} actualizados, {len(errors)} errores (user: {user.id})")
    return {"updated": [change.entity for change in staged], "errors": errors}
