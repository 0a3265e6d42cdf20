"""
=============================================================================
SYNC.PY: Cambios pendientes y envío agrupado (debounce)
=============================================================================
Cuando el usuario cambia algo (mover una skill a "learning", marcar un
recurso como leído...) NO se llama a la API en ese momento:

  1. El cambio se guarda en PendingChanges (uno por id; si llegan varios
     para el mismo id se mezclan: {**anterior, **nuevo})
  2. Se (re)programa un job de APScheduler para dentro de 2 segundos.
     Cada cambio nuevo lo vuelve a empujar → un solo envío tras la ráfaga.
  3. Al dispararse: drain() vacía el mapa y se manda todo en lotes de 50
     al endpoint batch-update.

También se envía al momento si la app pasa a segundo plano (on_hidden)
o se cierra (on_unload). Como pueden coincidir con el timer, flush() es
idempotente: vaciar un mapa vacío no hace nada.

Si el envío falla NO se re-encola nada: el controlador recarga del
servidor y el usuario vuelve a hacer el cambio si quiere.

Estado visible (uno solo, no flags sueltos): PendingSyncState
  IDLE → PENDING (hay cambios esperando) → SYNCING → IDLE | ERROR
"""

import enum
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

import pytz
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger("devorbit.sync")

DEFAULT_DEBOUNCE_SECONDS = 2.0
DEFAULT_BATCH_SIZE = 50


class PendingSyncState(str, enum.Enum):
    idle = "idle"
    pending = "pending"
    syncing = "syncing"
    error = "error"


class PendingChanges:
    """Mapa id → cambios parciales pendientes de enviar"""

    def __init__(self):
        self._changes: dict = {}

    def record(self, entity_id, partial: dict):
        self._changes[entity_id] = {**self._changes.get(entity_id, {}), **partial}

    def discard(self, entity_id):
        self._changes.pop(entity_id, None)

    def get(self, entity_id) -> dict:
        return dict(self._changes.get(entity_id, {}))

    def drain(self) -> list[tuple]:
        """Devuelve todo lo pendiente y deja el mapa vacío"""
        drained = list(self._changes.items())
        self._changes = {}
        return drained

    def __len__(self):
        return len(self._changes)

    def __contains__(self, entity_id):
        return entity_id in self._changes


Sender = Callable[[list[tuple]], Awaitable[object]]


class SyncQueue:
    """
    Un PendingChanges + su timer. Una instancia por colección y sesión:
    nada de estado global, los tests crean las suyas.

      queue = SyncQueue(sender, debounce_seconds=2.0)
      queue.start()
      queue.record(5, {"status": "learning"})
      ...
      await queue.on_unload()
    """

    def __init__(
        self,
        sender: Sender,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        on_flushed: Optional[Callable[[list[tuple], list], Awaitable[None]]] = None,
        on_error: Optional[Callable[[Exception, list[tuple]], Awaitable[None]]] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
        job_id: str = "devorbit-sync",
    ):
        self.changes = PendingChanges()
        self.sender = sender
        self.debounce_seconds = debounce_seconds
        self.batch_size = batch_size
        self.on_flushed = on_flushed
        self.on_error = on_error
        self.job_id = job_id
        self.state = PendingSyncState.idle
        self._in_flight = 0

        # Scheduler propio salvo que nos pasen uno compartido
        self.scheduler = scheduler or AsyncIOScheduler(timezone=pytz.utc)
        self._owns_scheduler = scheduler is None

    # ─────────────────────────────────────────────────────────────────────
    # CICLO DE VIDA
    # ─────────────────────────────────────────────────────────────────────

    def start(self):
        """Arranca el scheduler. Llamar desde dentro del event loop."""
        if self._owns_scheduler and not self.scheduler.running:
            self.scheduler.start()

    def shutdown(self):
        self._cancel_timer()
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    # ─────────────────────────────────────────────────────────────────────
    # COLA
    # ─────────────────────────────────────────────────────────────────────

    def record(self, entity_id, partial: dict):
        """Guarda el cambio y reinicia el timer"""
        self.changes.record(entity_id, partial)
        if self.state != PendingSyncState.syncing:
            self.state = PendingSyncState.pending
        self._schedule()

    def discard(self, entity_id):
        self.changes.discard(entity_id)
        if not self.changes and self.state == PendingSyncState.pending:
            self.state = PendingSyncState.idle
            self._cancel_timer()

    @property
    def pending_count(self) -> int:
        return len(self.changes)

    def _schedule(self):
        run_at = datetime.now(pytz.utc) + timedelta(seconds=self.debounce_seconds)
        self.scheduler.add_job(
            self.flush,
            "date",
            run_date=run_at,
            id=self.job_id,
            replace_existing=True,
            misfire_grace_time=None,
            coalesce=True,
        )

    def _cancel_timer(self):
        try:
            self.scheduler.remove_job(self.job_id)
        except JobLookupError:
            pass

    # ─────────────────────────────────────────────────────────────────────
    # ENVÍO
    # ─────────────────────────────────────────────────────────────────────

    async def flush(self) -> Optional[bool]:
        """
        Envía todo lo pendiente.
        None → no había nada. True → enviado. False → falló (ya notificado).

        Puede haber dos envíos a la vez (timer + on_hidden): el estado no
        sale de SYNCING hasta que termina el último.
        """
        self._cancel_timer()
        batch = self.changes.drain()
        if not batch:
            return None

        self.state = PendingSyncState.syncing
        self._in_flight += 1
        results = []
        try:
            for start in range(0, len(batch), self.batch_size):
                results.append(await self.sender(batch[start:start + self.batch_size]))
        except Exception as e:
            self.state = PendingSyncState.error
            logger.error(f"❌ Sincronización fallida ({len(batch)} cambios): {e}")
            if self.on_error:
                await self.on_error(e, batch)
            return False
        finally:
            self._in_flight -= 1

        # Lo que llegó mientras enviábamos va en el siguiente ciclo
        if self._in_flight == 0 and self.state == PendingSyncState.syncing:
            self.state = PendingSyncState.pending if self.changes else PendingSyncState.idle
        logger.info(f"🔄 {len(batch)} cambios sincronizados")
        if self.on_flushed:
            await self.on_flushed(batch, results)
        return True

    async def on_hidden(self) -> Optional[bool]:
        """La app pasa a segundo plano: enviar ya"""
        return await self.flush()

    async def on_unload(self) -> Optional[bool]:
        """Último intento antes de cerrar. Sin garantía de entrega."""
        try:
            return await self.flush()
        finally:
            self.shutdown()
