"""
=============================================================================
LINKS.PY: Vínculos entre entidades (skill ↔ proyecto, prerequisitos)
=============================================================================
Todas las relaciones cruzadas pasan por aquí, nunca por búsquedas inversas
sueltas en los endpoints:

  skill ↔ proyecto     → tabla skill_projects (una fila = las dos caras)
  skill → prerequisito → tabla skill_dependencies (grafo sin ciclos)

Regla en cascada: una skill "mastered" necesita un proyecto completado
ligado. Si ese proyecto se borra, deja de estar completado o se desvincula,
la skill vuelve a "learning". Es la misma regla que bloquea la subida
(status_gate.py), aplicada hacia abajo.

Ninguna función hace commit: todo queda en la transacción del llamante.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from errors import ValidationError
from models import Skill, SkillDependency, Project, SkillStatus, ProjectStatus, User, utcnow

logger = logging.getLogger("devorbit.links")

MAX_LINKED_IDS = 50


# ─────────────────────────────────────────────────────────────────────────────
# PROPIEDAD DE LOS IDS
# ─────────────────────────────────────────────────────────────────────────────

def resolve_owned(db: Session, user: User, model, ids: Optional[Iterable[int]]) -> list:
    """
    Devuelve las filas de `model` con esos ids que son del usuario.
    Los ids ajenos o inexistentes se descartan en silencio. Sin duplicados,
    en el orden recibido y como mucho 50.
    """
    if not ids:
        return []
    wanted = list(dict.fromkeys(ids))[:MAX_LINKED_IDS]
    rows = db.query(model).filter(model.user_id == user.id, model.id.in_(wanted)).all()
    by_id = {row.id: row for row in rows}
    return [by_id[i] for i in wanted if i in by_id]


def resolve_owned_ids(db: Session, user: User, model, ids: Optional[Iterable[int]]) -> list[int]:
    return [row.id for row in resolve_owned(db, user, model, ids)]


def completed_project_ids(db: Session, user: User) -> set[int]:
    rows = db.query(Project.id).filter(
        Project.user_id == user.id,
        Project.status == ProjectStatus.completed.value
    ).all()
    return {row[0] for row in rows}


# ─────────────────────────────────────────────────────────────────────────────
# SKILL ↔ PROYECTO
# ─────────────────────────────────────────────────────────────────────────────

def reconcile_mastery(db: Session, skills: Iterable[Skill],
                      exclude_project_id: Optional[int] = None) -> list[Skill]:
    """
    Baja a "learning" cada skill dominada que ya no tenga ningún proyecto
    completado ligado. Devuelve las skills que han bajado.
    """
    downgraded = []
    for skill in skills:
        if skill.status != SkillStatus.mastered:
            continue
        has_proof = any(
            p.status == ProjectStatus.completed and p.id != exclude_project_id
            for p in skill.linked_projects
        )
        if not has_proof:
            skill.status = SkillStatus.learning.value
            skill.mastered_at = None
            skill.updated_at = utcnow()
            downgraded.append(skill)
            logger.info(f"⬇️ Skill '{skill.name}' vuelve a learning (sin proyecto completado)")
    return downgraded


def set_skill_projects(db: Session, user: User, skill: Skill, project_ids: Iterable[int]) -> list[int]:
    """Reescribe los proyectos ligados a una skill (desde el lado skill)"""
    skill.linked_projects = resolve_owned(db, user, Project, project_ids)
    return skill.linked_project_ids


def set_project_skills(db: Session, user: User, project: Project, skill_ids: Iterable[int]) -> list[Skill]:
    """
    Reescribe las skills ligadas a un proyecto (desde el lado proyecto).
    Las skills que pierden el vínculo se revisan: pueden quedarse sin prueba.
    """
    before = list(project.linked_skills)
    project.linked_skills = resolve_owned(db, user, Skill, skill_ids)
    removed = [s for s in before if s not in project.linked_skills]
    return reconcile_mastery(db, removed)


def unlink_project(db: Session, project: Project) -> list[Skill]:
    """Antes de borrar un proyecto: quitarlo de sus skills y revisar su dominio"""
    skills = list(project.linked_skills)
    project.linked_skills = []
    return reconcile_mastery(db, skills, exclude_project_id=project.id)


def unlink_skill(db: Session, skill: Skill):
    """Antes de borrar una skill: quitarla de sus proyectos y del grafo"""
    skill.linked_projects = []
    for edge in list(skill.prerequisite_links) + list(skill.dependent_links):
        db.delete(edge)


# ─────────────────────────────────────────────────────────────────────────────
# PREREQUISITOS (grafo dirigido sin ciclos)
# ─────────────────────────────────────────────────────────────────────────────
# Arista skill → prerequisite = "para aprender skill antes hay que saber
# prerequisite". No afecta a los estados: solo se limpia al borrar.

def _prerequisite_graph(db: Session, user: User) -> dict[int, set[int]]:
    edges = db.query(SkillDependency.skill_id, SkillDependency.prerequisite_id).join(
        Skill, Skill.id == SkillDependency.skill_id
    ).filter(Skill.user_id == user.id).all()
    graph: dict[int, set[int]] = {}
    for skill_id, prerequisite_id in edges:
        graph.setdefault(skill_id, set()).add(prerequisite_id)
    return graph


def _reaches(graph: dict[int, set[int]], start: int, target: int) -> bool:
    stack, seen = [start], set()
    while stack:
        node = stack.pop()
        if node == target:
            return True
        if node in seen:
            continue
        seen.add(node)
        stack.extend(graph.get(node, ()))
    return False


def add_prerequisite(db: Session, user: User, skill: Skill, prerequisite: Skill) -> SkillDependency:
    if skill.id == prerequisite.id:
        raise ValidationError(
            "Una skill no puede ser prerequisito de sí misma",
            [{"field": "prerequisiteId", "message": "Debe ser otra skill"}],
        )

    existing = db.query(SkillDependency).filter(
        SkillDependency.skill_id == skill.id,
        SkillDependency.prerequisite_id == prerequisite.id
    ).first()
    if existing:
        return existing

    # Si el prerequisito ya depende (aunque sea indirectamente) de la skill,
    # la nueva arista cerraría un ciclo
    if _reaches(_prerequisite_graph(db, user), prerequisite.id, skill.id):
        raise ValidationError(
            "Dependencia circular detectada",
            [{"field": "prerequisiteId", "message": f"'{prerequisite.name}' ya depende de '{skill.name}'"}],
        )

    edge = SkillDependency(skill_id=skill.id, prerequisite_id=prerequisite.id)
    db.add(edge)
    return edge


def remove_prerequisite(db: Session, skill: Skill, prerequisite_id: int) -> bool:
    edge = db.query(SkillDependency).filter(
        SkillDependency.skill_id == skill.id,
        SkillDependency.prerequisite_id == prerequisite_id
    ).first()
    if edge is None:
        return False
    db.delete(edge)
    return True


def get_prerequisites(skill: Skill) -> list[Skill]:
    return sorted((edge.prerequisite for edge in skill.prerequisite_links), key=lambda s: s.id)


def get_dependents(skill: Skill) -> list[Skill]:
    return sorted((edge.skill for edge in skill.dependent_links), key=lambda s: s.id)


def check_refs(db: Session, user: User, skill_id: Optional[int] = None, project_id: Optional[int] = None):
    """skill_id / project_id opcionales de recursos, actividades y timers: deben ser del usuario"""
    if skill_id is not None and not resolve_owned(db, user, Skill, [skill_id]):
        raise ValidationError("Skill no encontrada", [{"field": "skillId", "message": "Skill no encontrada"}])
    if project_id is not None and not resolve_owned(db, user, Project, [project_id]):
        raise ValidationError("Proyecto no encontrado", [{"field": "projectId", "message": "Proyecto no encontrado"}])
