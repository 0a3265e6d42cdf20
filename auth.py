"""
=============================================================================
AUTH.PY: Identidad del usuario
=============================================================================
La autenticación (login, contraseñas, OAuth) la hace el proveedor de
identidad externo. Aquí solo cumplimos el contrato:

    token Bearer → verificar firma → "sub" del proveedor → User

Flujo de cada petición protegida:
  1. Leer "Authorization: Bearer eyJ..."
  2. Verificar el JWT con IDENTITY_JWT_SECRET (python-jose)
  3. Buscar el usuario por provider_id (= "sub")
  4. Si no existe → se crea en ese momento (creación perezosa)
  5. Refrescar last_active

create_access_token() emite tokens con el mismo formato que el proveedor.
Solo se usa en desarrollo y en los tests.
"""

import os
import logging
from datetime import timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pydantic import BaseModel, EmailStr, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from database import get_db
from errors import UnauthorizedError
from models import User, utcnow

logger = logging.getLogger("devorbit.auth")

# ─────────────────────────────────────────────────────────────────────────────
# CONFIGURACIÓN
# ─────────────────────────────────────────────────────────────────────────────

SECRET_KEY = os.getenv("IDENTITY_JWT_SECRET", "devorbit-dev-secret-cambiar-en-produccion")
# SECRET_KEY → la clave con la que firma el proveedor (HS256)

ALGORITHM = os.getenv("IDENTITY_JWT_ALGORITHM", "HS256")

AUDIENCE = os.getenv("IDENTITY_JWT_AUDIENCE")
# AUDIENCE → si está definida, el "aud" del token debe coincidir

ACCESS_TOKEN_EXPIRE_HOURS = 1


# ─────────────────────────────────────────────────────────────────────────────
# TOKENS JWT
# ─────────────────────────────────────────────────────────────────────────────

class TokenClaims(BaseModel):
    """Lo que nos interesa del token. El resto de claims se ignora."""
    sub: str
    email: Optional[EmailStr] = None
    user_metadata: dict = {}

    @property
    def display_name(self) -> Optional[str]:
        return self.user_metadata.get("full_name") or self.user_metadata.get("name")

    @property
    def avatar_url(self) -> Optional[str]:
        return self.user_metadata.get("avatar_url")


def create_access_token(subject: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
    """
    Crea un token como los del proveedor:
      - sub: identificador del usuario en el proveedor
      - email
      - user_metadata.full_name
      - exp
    """
    payload = {
        "sub": str(subject),
        "email": email,
        "user_metadata": {"full_name": name} if name else {},
        "exp": utcnow() + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS),
    }
    if AUDIENCE:
        payload["aud"] = AUDIENCE
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[TokenClaims]:
    """
    Verifica y decodifica un token.
    Si la firma no vale, ha caducado o le falta "sub", devuelve None.
    """
    options = {"verify_aud": AUDIENCE is not None}
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM], audience=AUDIENCE, options=options)
    except JWTError:
        return None
    try:
        return TokenClaims.model_validate(payload)
    except PydanticValidationError:
        return None


def unverified_subject(token: str) -> Optional[str]:
    """
    "sub" del token SIN verificar la firma.
    Solo sirve como clave del rate limiter: nunca para autorizar.
    """
    try:
        return jwt.get_unverified_claims(token).get("sub")
    except JWTError:
        return None


# ─────────────────────────────────────────────────────────────────────────────
# DEPENDENCIA: OBTENER USUARIO ACTUAL
# ─────────────────────────────────────────────────────────────────────────────

security = HTTPBearer(auto_error=False)
# auto_error=False → sin cabecera devolvemos NUESTRO 401 con el sobre de error


def get_or_create_user(db: Session, claims: TokenClaims) -> User:
    user = db.query(User).filter(User.provider_id == claims.sub).first()

    if user is None and claims.email:
        # Cuenta creada antes con el mismo email verificado por el proveedor
        user = db.query(User).filter(User.email == claims.email).first()
        if user is not None:
            user.provider_id = claims.sub

    if user is None:
        user = User(
            provider_id=claims.sub,
            email=claims.email,
            name=claims.display_name,
            avatar_url=claims.avatar_url,
        )
        db.add(user)
        db.flush()
        logger.info(f"👤 Usuario nuevo: {user.email or claims.sub} (id: {user.id})")

    user.last_active = utcnow()
    db.commit()
    db.refresh(user)
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Extrae el usuario del token.

      @app.get("/api/skills")
      def list_skills(user: User = Depends(get_current_user)):
          ...

    Sin token o con token inválido → 401 UNAUTHORIZED.
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Falta el token de autorización")

    claims = decode_token(credentials.credentials)
    if claims is None:
        logger.warning("🔒 Token rechazado")
        raise UnauthorizedError("Token inválido o expirado")

    return get_or_create_user(db, claims)
