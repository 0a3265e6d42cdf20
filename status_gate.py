"""
=============================================================================
STATUS_GATE.PY: Reglas para entrar en un estado terminal
=============================================================================
  - Una skill solo puede estar "mastered" si tiene al menos un proyecto
    ligado con status "completed".
  - Un proyecto solo puede estar "completed" si tiene github_url o demo_url.

Funciones puras: no tocan la BD ni la red. Las usa el servidor (como
barrera real, en main.py y batch.py) y el cliente (controller.py) para
rechazar al instante sin hacer la petición. Misma función, mismo veredicto.
"""

from typing import Iterable, NamedTuple, Optional

from models import SkillStatus, ProjectStatus


class GateResult(NamedTuple):
    valid: bool
    reason: Optional[str] = None
    field: Optional[str] = None

    def as_details(self) -> list[dict]:
        return [{"field": self.field, "message": self.reason}]


VALID = GateResult(True)


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def check_skill(status: str, linked_project_ids: Iterable[int],
                completed_project_ids: Iterable[int]) -> GateResult:
    """
    mastered ⇒ linked_project_ids ∩ completed_project_ids ≠ ∅

    completed_project_ids puede ser el conjunto de TODOS los proyectos
    completados del usuario: solo cuenta la intersección.
    """
    if status != SkillStatus.mastered:
        return VALID
    if set(linked_project_ids) & set(completed_project_ids):
        return VALID
    return GateResult(
        False,
        "Para marcar una skill como dominada necesitas al menos un proyecto completado vinculado",
        "status",
    )


def check_project(status: str, github_url: Optional[str], demo_url: Optional[str]) -> GateResult:
    """completed ⇒ github_url o demo_url no vacío"""
    if status != ProjectStatus.completed:
        return VALID
    if not _blank(github_url) or not _blank(demo_url):
        return VALID
    return GateResult(
        False,
        "Para completar un proyecto necesitas un enlace de GitHub o una demo",
        "githubUrl",
    )
