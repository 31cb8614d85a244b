# barberia_core/db/conexion.py
import logging
from typing import Generator

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, Session, create_engine

from barberia_core.config import DB_URL
from barberia_core.errores import PersistenceError

logger = logging.getLogger(__name__)

# Necesario para SQLite en modo multi-hilo (FastAPI sirve en un threadpool)
connect_args = {"check_same_thread": False} if DB_URL.startswith("sqlite") else {}

engine = create_engine(DB_URL, echo=False, connect_args=connect_args)


def init_db() -> None:
    """
    Crea todas las tablas definidas en db.modelos si no existen,
    incluidos los índices únicos parciales de citas.
    """
    # Import tardío para registrar los modelos antes de create_all
    from barberia_core.db import modelos  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Generator[Session, None, None]:
    """
    Devuelve una sesión de SQLModel para usar con Depends() en FastAPI.
    expire_on_commit=False para poder serializar después del commit.
    """
    with Session(engine, expire_on_commit=False) as session:
        yield session


def confirmar(session: Session, mensaje: str) -> None:
    """
    Commit de la sesión. Si la base falla se hace rollback y se lanza
    PersistenceError con `mensaje`, que es lo que ve el usuario.
    """
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception(mensaje)
        raise PersistenceError(mensaje)
