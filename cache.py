"""
=============================================================================
CACHE.PY: Caché local del cliente (un JSON por clave)
=============================================================================
Guarda la última copia de cada colección (skills, proyectos...) en disco
para pintar al instante y refrescar luego desde el servidor.

  load(key)        → CacheResult(data, is_stale) o None
  save(key, data)
  clear(key) / clear_all()

Stale = han pasado más de ttl_seconds (5 min por defecto) desde que se
guardó. Un dato stale se puede enseñar, pero hay que pedir uno nuevo.

La caché NUNCA es necesaria para que algo funcione: cualquier fallo de
disco o JSON corrupto se registra como warning y cuenta como "no hay".
"""

import json
import logging
import os
import time
from typing import Any, Callable, NamedTuple, Optional

logger = logging.getLogger("devorbit.cache")

DEFAULT_TTL_SECONDS = 5 * 60

CACHE_KEYS = {
    "skills": "devorbit_cache_skills",
    "projects": "devorbit_cache_projects",
    "resources": "devorbit_cache_resources",
    "stats": "devorbit_cache_stats",
}


class CacheResult(NamedTuple):
    data: Any
    is_stale: bool


class LocalCache:
    def __init__(self, directory: str, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.directory = directory
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def load(self, key: str) -> Optional[CacheResult]:
        try:
            with open(self._path(key), "r", encoding="utf-8") as f:
                stored = json.load(f)
            timestamp = float(stored["timestamp"])
            data = stored["data"]
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            # JSON corrupto, estructura rara, permisos...
            logger.warning(f"⚠️ Caché ilegible para '{key}': {e}")
            return None

        return CacheResult(data, self.clock() - timestamp > self.ttl_seconds)

    def save(self, key: str, data: Any):
        path = self._path(key)
        tmp = f"{path}.tmp"
        try:
            os.makedirs(self.directory, exist_ok=True)
            payload = json.dumps({"timestamp": self.clock(), "data": data})
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            # Disco lleno, permisos, datos no serializables
            logger.warning(f"⚠️ No se pudo guardar la caché '{key}': {e}")

    def clear(self, key: str):
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"⚠️ No se pudo borrar la caché '{key}': {e}")

    def clear_all(self):
        for key in CACHE_KEYS.values():
            self.clear(key)
