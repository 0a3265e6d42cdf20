"""
=============================================================================
DATABASE.PY: Configuración de la Base de Datos
=============================================================================
Conexión a la base de datos de DevOrbit.

En DESARROLLO: SQLite (un archivo devorbit.db junto al código)
En PRODUCCIÓN: PostgreSQL, indicado con la variable DATABASE_URL

Toda la consistencia del servidor se delega aquí: no hay estado mutable
compartido entre peticiones salvo la propia base de datos. Cada petición
abre su sesión, hace su lectura-modificación-escritura y hace commit.
"""

import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

# ─────────────────────────────────────────────────────────────────────────────
# CONEXIÓN
# ─────────────────────────────────────────────────────────────────────────────

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./devorbit.db")

# Los proveedores suelen dar "postgres://" y SQLAlchemy quiere el driver explícito.
# Usamos psycopg (v3), así que la URL debe ser "postgresql+psycopg://"
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+psycopg://", 1)
elif DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+psycopg://", 1)

# ─────────────────────────────────────────────────────────────────────────────
# ENGINE
# ─────────────────────────────────────────────────────────────────────────────
# check_same_thread=False → solo para SQLite: FastAPI ejecuta los endpoints
# síncronos en un pool de hilos.

engine_args = {}
if DATABASE_URL.startswith("sqlite"):
    engine_args["connect_args"] = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, echo=False, **engine_args)

# ─────────────────────────────────────────────────────────────────────────────
# SESSION + BASE
# ─────────────────────────────────────────────────────────────────────────────

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    Dependencia de FastAPI: una sesión por petición.

      @app.get("/algo")
      def mi_endpoint(db: Session = Depends(get_db)):
          ...

    La sesión se cierra siempre al terminar, aunque el endpoint falle.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Crea las tablas que falten. Se llama al arrancar la aplicación."""
    # Importar los modelos registra sus tablas en Base.metadata
    import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
