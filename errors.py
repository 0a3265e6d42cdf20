"""
=============================================================================
ERRORS.PY: Errores de la API y sus manejadores
=============================================================================
Todas las respuestas de error tienen la misma forma:

  {"success": false, "error": "mensaje", "code": "NOT_FOUND", "details": [...]}

Códigos:
  VALIDATION_ERROR    → 400 (datos mal formados o regla de negocio violada)
  UNAUTHORIZED        → 401 (token ausente o inválido)
  NOT_FOUND           → 404 (no existe O no es tuyo: no se distingue)
  CONFLICT            → 409 (ej: arrancar un timer con otro corriendo)
  RATE_LIMIT_EXCEEDED → 429
  DATABASE_ERROR      → 500
  INTERNAL_ERROR      → 500 (mensaje oculto en producción)
"""

import os
import logging
import traceback
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("devorbit.errors")

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


# ─────────────────────────────────────────────────────────────────────────────
# JERARQUÍA DE ERRORES
# ─────────────────────────────────────────────────────────────────────────────

class AppError(Exception):
    """Error de aplicación con código HTTP y código de negocio"""

    def __init__(self, message: str, status_code: int = 500,
                 code: str = "INTERNAL_ERROR", details: Optional[list] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details


class ValidationError(AppError):
    def __init__(self, message: str = "Datos no válidos", details: Optional[list] = None):
        super().__init__(message, 400, "VALIDATION_ERROR", details)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "No autorizado"):
        super().__init__(message, 401, "UNAUTHORIZED")


class NotFoundError(AppError):
    def __init__(self, resource: str = "Recurso"):
        super().__init__(f"{resource} no encontrado", 404, "NOT_FOUND")


class ConflictError(AppError):
    def __init__(self, message: str = "El recurso ya existe"):
        super().__init__(message, 409, "CONFLICT")


class RateLimitError(AppError):
    def __init__(self, message: str = "Demasiadas peticiones, inténtalo más tarde"):
        super().__init__(message, 429, "RATE_LIMIT_EXCEEDED")


class DatabaseError(AppError):
    def __init__(self, message: str = "Error de base de datos"):
        super().__init__(message, 500, "DATABASE_ERROR")


def error_body(message: str, code: str, details: Optional[list] = None) -> dict:
    body = {"success": False, "error": message, "code": code}
    if details:
        body["details"] = details
    return body


# ─────────────────────────────────────────────────────────────────────────────
# MANEJADORES
# ─────────────────────────────────────────────────────────────────────────────

async def app_error_handler(request: Request, exc: AppError):
    message = exc.message
    if exc.status_code >= 500:
        logger.error(f"❌ {exc.code} en {request.url.path}: {exc.message}")
        if ENVIRONMENT == "production":
            message = "Error interno del servidor"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message, exc.code, exc.details),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Errores de Pydantic → 400 con un detalle por campo"""
    details = []
    for err in exc.errors():
        # loc = ("body", "githubUrl") → "githubUrl"
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"field": ".".join(loc), "message": err.get("msg", "")})
    return JSONResponse(
        status_code=400,
        content=error_body("Datos no válidos", "VALIDATION_ERROR", details),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    codes = {
        401: "UNAUTHORIZED",
        403: "UNAUTHORIZED",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        429: "RATE_LIMIT_EXCEEDED",
    }
    code = codes.get(exc.status_code, "INTERNAL_ERROR" if exc.status_code >= 500 else "HTTP_ERROR")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), code),
        headers=getattr(exc, "headers", None),
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"🚦 Límite alcanzado en {request.url.path}: {exc.detail}")
    return await app_error_handler(request, RateLimitError())


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"❌ Error de BD en {request.url.path}: {exc}\n{traceback.format_exc()}")
    message = "Error de base de datos" if ENVIRONMENT == "production" else str(exc)
    return JSONResponse(status_code=500, content=error_body(message, "DATABASE_ERROR"))


async def global_exception_handler(request: Request, exc: Exception):
    """Captura errores no manejados. En producción no se enseña el mensaje real."""
    logger.error(f"❌ Error no manejado en {request.url}: {exc}\n{traceback.format_exc()}")
    message = "Error interno del servidor" if ENVIRONMENT == "production" else str(exc)
    return JSONResponse(status_code=500, content=error_body(message, "INTERNAL_ERROR"))


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
