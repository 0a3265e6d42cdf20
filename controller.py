"""
=============================================================================
CONTROLLER.PY: Cambios optimistas del cliente
=============================================================================
Cada colección (skills, proyectos, recursos) tiene su controlador:

  load()          → caché si está fresca, si no la API (y se cachea)
  change(id, {})  → se aplica YA en memoria y en caché, y se encola
  create(data)    → directo a la API (necesitamos el id del servidor)
  delete(id)      → se quita YA de la lista y luego se llama a la API

La cola (sync.SyncQueue) agrupa los cambios y los manda a batch-update.
Si el envío falla, o el servidor rechaza algún elemento del lote, no se
intenta arreglar a mano: se avisa, se borra la caché y se recarga todo.

Las reglas de status (status_gate) se comprueban ANTES de tocar nada,
con la misma función que usa el servidor.
"""

import logging
from typing import Callable, Optional

from api_client import ApiClient, ApiError, NetworkError
from cache import CACHE_KEYS, LocalCache
from status_gate import VALID, GateResult, check_project, check_skill
from sync import DEFAULT_DEBOUNCE_SECONDS, PendingSyncState, SyncQueue

logger = logging.getLogger("devorbit.controller")

# notify(tipo, mensaje) con tipo en "success" | "error" | "info"
Notify = Callable[[str, str], None]


def log_notify(kind: str, message: str):
    level = logging.ERROR if kind == "error" else logging.INFO
    logger.log(level, message)


class StatusGateError(Exception):
    """Cambio rechazado en local: no se ha hecho ninguna petición"""

    def __init__(self, result: GateResult):
        super().__init__(result.reason)
        self.reason = result.reason
        self.field = result.field


class BatchRejectedError(Exception):
    """El servidor rechazó uno o más elementos del lote"""

    def __init__(self, errors: list[dict]):
        super().__init__(f"{len(errors)} cambios rechazados por el servidor")
        self.errors = errors


class CollectionController:
    def __init__(self, collection: str, api: ApiClient, cache: LocalCache,
                 debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
                 notify: Optional[Notify] = None, scheduler=None):
        self.collection = collection
        self.api = api
        self.cache = cache
        self.notify = notify or log_notify
        self.items: list[dict] = []
        self.queue = SyncQueue(
            self._send,
            debounce_seconds=debounce_seconds,
            on_flushed=self._on_flushed,
            on_error=self._on_error,
            scheduler=scheduler,
            job_id=f"devorbit-sync-{collection}",
        )

    @property
    def cache_key(self) -> str:
        return CACHE_KEYS[self.collection]

    @property
    def sync_state(self) -> PendingSyncState:
        return self.queue.state

    def start(self):
        self.queue.start()

    async def close(self):
        """Envía lo pendiente y para el timer"""
        await self.queue.on_unload()

    def find(self, entity_id: int) -> Optional[dict]:
        for item in self.items:
            if item["id"] == entity_id:
                return item
        return None

    def check_gate(self, entity: dict) -> GateResult:
        return VALID

    def _enforce_gate(self, entity: dict):
        result = self.check_gate(entity)
        if not result.valid:
            self.notify("error", result.reason)
            raise StatusGateError(result)

    def _save(self):
        self.cache.save(self.cache_key, self.items)

    # ─────────────────────────────────────────────────────────────────────
    # LECTURA
    # ─────────────────────────────────────────────────────────────────────

    async def load(self, force: bool = False) -> list[dict]:
        if not force:
            cached = self.cache.load(self.cache_key)
            if cached is not None:
                self.items = cached.data
                if not cached.is_stale:
                    return self.items

        try:
            self.items = await self.api.list_all(self.collection)
        except (ApiError, NetworkError) as e:
            self.notify("error", f"No se pudieron cargar los datos: {e}")
            raise
        self._save()
        return self.items

    async def _reload(self):
        self.cache.clear(self.cache_key)
        try:
            await self.load(force=True)
        except (ApiError, NetworkError) as e:
            logger.error(f"❌ Recarga de {self.collection} fallida: {e}")

    # ─────────────────────────────────────────────────────────────────────
    # ESCRITURA
    # ─────────────────────────────────────────────────────────────────────

    def change(self, entity_id: int, fields: dict) -> dict:
        entity = self.find(entity_id)
        if entity is None:
            raise KeyError(entity_id)

        self._enforce_gate({**entity, **fields})

        entity.update(fields)
        self._save()
        self.queue.record(entity_id, fields)
        return entity

    async def create(self, data: dict) -> dict:
        self._enforce_gate(data)
        entity = await self.api.create(self.collection, data)
        self.items.append(entity)
        self._save()
        return entity

    async def delete(self, entity_id: int) -> bool:
        self.items = [item for item in self.items if item["id"] != entity_id]
        self.queue.discard(entity_id)
        self._save()

        try:
            await self.api.delete(self.collection, entity_id)
        except (ApiError, NetworkError) as e:
            self.notify("error", f"No se pudo borrar: {e}")
            await self._reload()
            return False
        return True

    # ─────────────────────────────────────────────────────────────────────
    # SINCRONIZACIÓN (callbacks de la cola)
    # ─────────────────────────────────────────────────────────────────────

    async def _send(self, chunk: list[tuple]) -> dict:
        result = await self.api.batch_update(self.collection, chunk)
        if result.get("errors"):
            raise BatchRejectedError(result["errors"])

        # La versión del servidor manda, salvo lo que se ha tocado mientras tanto
        for updated in result.get("updated", []):
            for i, item in enumerate(self.items):
                if item["id"] == updated["id"]:
                    self.items[i] = {**updated, **self.queue.changes.get(updated["id"])}
                    break
        return result

    async def _on_flushed(self, batch: list[tuple], results: list):
        self._save()
        self.notify("success", f"{len(batch)} cambios sincronizados")

    async def _on_error(self, error: Exception, batch: list[tuple]):
        self.notify("error", f"Error al sincronizar: {error}")
        await self._reload()


class SkillsController(CollectionController):
    def __init__(self, api: ApiClient, cache: LocalCache, **kwargs):
        super().__init__("skills", api, cache, **kwargs)
        self.projects: Optional["ProjectsController"] = None

    def _completed_project_ids(self) -> set[int]:
        if self.projects is None:
            return set()
        return {p["id"] for p in self.projects.items if p.get("status") == "completed"}

    def check_gate(self, entity: dict) -> GateResult:
        return check_skill(
            entity.get("status", "want_to_learn"),
            entity.get("linkedProjectIds") or [],
            self._completed_project_ids(),
        )

    def unlink_project(self, project_id: int) -> list[int]:
        """
        Refleja en local lo que hace el servidor al borrar un proyecto:
        se quita de las skills y las "mastered" que se quedan sin proyecto
        completado vuelven a "learning". Devuelve los ids degradados.
        """
        completed = self._completed_project_ids() - {project_id}
        downgraded = []
        for skill in self.items:
            linked = skill.get("linkedProjectIds") or []
            if project_id not in linked:
                continue
            skill["linkedProjectIds"] = [pid for pid in linked if pid != project_id]
            if skill.get("status") == "mastered" and not set(skill["linkedProjectIds"]) & completed:
                skill["status"] = "learning"
                skill["masteredAt"] = None
                downgraded.append(skill["id"])

        self._save()
        if downgraded:
            logger.info(f"⬇️ Skills {downgraded} vuelven a learning")
        return downgraded


class ProjectsController(CollectionController):
    def __init__(self, api: ApiClient, cache: LocalCache, **kwargs):
        super().__init__("projects", api, cache, **kwargs)
        self.skills: Optional[SkillsController] = None

    def check_gate(self, entity: dict) -> GateResult:
        return check_project(entity.get("status", "idea"), entity.get("githubUrl"), entity.get("demoUrl"))

    async def delete(self, entity_id: int) -> bool:
        deleted = await super().delete(entity_id)
        if deleted and self.skills is not None:
            self.skills.unlink_project(entity_id)
        return deleted


def build_controllers(api: ApiClient, cache: LocalCache,
                      debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
                      notify: Optional[Notify] = None) -> dict[str, CollectionController]:
    """Los tres controladores de una sesión, con skills ↔ projects enlazados"""
    options = {"debounce_seconds": debounce_seconds, "notify": notify}
    skills = SkillsController(api, cache, **options)
    projects = ProjectsController(api, cache, **options)
    skills.projects = projects
    projects.skills = skills
    resources = CollectionController("resources", api, cache, **options)
    return {"skills": skills, "projects": projects, "resources": resources}
