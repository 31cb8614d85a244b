# barberia_core/servicios/clientes.py
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import or_
from sqlmodel import Session, select

from barberia_core.db.conexion import get_session
from barberia_core.db.modelos import Barbero, Cliente
from barberia_core.errores import ValidationError
from barberia_core.security import get_current_barbero

router = APIRouter()


def buscar_clientes(session: Session, texto: str, limite: int = 10) -> List[Cliente]:
    """Por nombre, teléfono o email, para agendar a un cliente que llega sin cita."""
    texto = (texto or "").strip()
    if len(texto) < 2:
        raise ValidationError("La búsqueda necesita al menos 2 caracteres.")
    patron = f"%{texto}%"
    q = (
        select(Cliente)
        .where(
            or_(
                Cliente.nombre.ilike(patron),
                Cliente.telefono.ilike(patron),
                Cliente.email.ilike(patron),
            )
        )
        .order_by(Cliente.nombre.asc())
        .limit(limite)
    )
    return list(session.exec(q).all())


@router.get("/buscar", response_model=List[Cliente])
def buscar_endpoint(
    q: str,
    session: Session = Depends(get_session),
    _barbero: Barbero = Depends(get_current_barbero),
):
    return buscar_clientes(session, q)
