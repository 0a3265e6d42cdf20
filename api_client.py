"""
=============================================================================
API_CLIENT.PY: Cliente HTTP de la API de DevOrbit
=============================================================================
Lo usan el controlador optimista (controller.py) y cualquier script que
quiera hablar con la API.

Dos tipos de error, para poder ofrecer "reintentar" solo cuando tiene
sentido:
  - NetworkError → no hubo respuesta (sin conexión, timeout, DNS...)
  - ApiError     → el servidor respondió {"success": false, ...}
"""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger("devorbit.client")

PAGE_LIMIT = 100


class NetworkError(Exception):
    """La petición no llegó a tener respuesta"""


class ApiError(Exception):
    """El servidor contestó con un error de aplicación"""

    def __init__(self, status: int, code: str, message: str, details: Optional[list] = None):
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message
        self.details = details or []


class ApiClient:
    def __init__(self, base_url: str = "http://localhost:8000", token: Optional[str] = None,
                 http: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self.token = token
        self.http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self.http.aclose()

    # ─────────────────────────────────────────────────────────────────────
    # PETICIÓN BASE
    # ─────────────────────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            response = await self.http.request(method, f"/api{path}", headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"🌐 Sin respuesta en {method} {path}: {e}")
            raise NetworkError(str(e)) from e

        try:
            body = response.json()
        except ValueError:
            raise ApiError(response.status_code, "INTERNAL_ERROR", response.text or "Respuesta no válida")

        if response.is_error or not body.get("success", False):
            raise ApiError(
                response.status_code,
                body.get("code", "INTERNAL_ERROR"),
                body.get("error", "Error desconocido"),
                body.get("details"),
            )
        return body

    # ─────────────────────────────────────────────────────────────────────
    # COLECCIONES (skills, projects, resources)
    # ─────────────────────────────────────────────────────────────────────

    async def list_page(self, collection: str, **params) -> tuple[list[dict], dict]:
        body = await self._request("GET", f"/{collection}", params=params)
        return body["data"], body.get("pagination", {})

    async def list_all(self, collection: str, **params) -> list[dict]:
        """Todas las páginas seguidas"""
        items, page = [], 1
        while True:
            data, pagination = await self.list_page(collection, page=page, limit=PAGE_LIMIT, **params)
            items.extend(data)
            if page >= pagination.get("totalPages", 1):
                return items
            page += 1

    async def get(self, collection: str, entity_id: int) -> dict:
        return (await self._request("GET", f"/{collection}/{entity_id}"))["data"]

    async def create(self, collection: str, data: dict) -> dict:
        return (await self._request("POST", f"/{collection}", json=data))["data"]

    async def update(self, collection: str, entity_id: int, data: dict) -> dict:
        return (await self._request("PUT", f"/{collection}/{entity_id}", json=data))["data"]

    async def delete(self, collection: str, entity_id: int) -> dict:
        return await self._request("DELETE", f"/{collection}/{entity_id}")

    async def batch_update(self, collection: str, items: list[tuple]) -> dict:
        """items → [(id, {campos}), ...] (como mucho 50)"""
        payload = {"updates": [{"id": entity_id, "data": data} for entity_id, data in items]}
        return (await self._request("POST", f"/{collection}/batch-update", json=payload))["data"]

    # ─────────────────────────────────────────────────────────────────────
    # TIMER, STATS, PERFIL
    # ─────────────────────────────────────────────────────────────────────

    async def running_timer(self) -> Optional[dict]:
        return (await self._request("GET", "/time-entries/running"))["data"]

    async def start_timer(self, **data) -> dict:
        return (await self._request("POST", "/time-entries/start", json=data))["data"]

    async def stop_timer(self, notes: Optional[str] = None) -> dict:
        payload = {"notes": notes} if notes is not None else None
        return (await self._request("POST", "/time-entries/stop", json=payload))["data"]

    async def stats(self) -> dict:
        return (await self._request("GET", "/stats"))["data"]

    async def progress(self) -> dict:
        return (await self._request("GET", "/stats/progress"))["data"]

    async def heatmap(self) -> list[dict]:
        return (await self._request("GET", "/activities/heatmap"))["data"]

    async def me(self) -> dict[str, Any]:
        return (await self._request("GET", "/auth/me"))["data"]
