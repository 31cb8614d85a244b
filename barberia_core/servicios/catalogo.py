# barberia_core/servicios/catalogo.py
from typing import Dict, Iterable, List

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from barberia_core.db.conexion import get_session
from barberia_core.db.modelos import Servicio, Producto
from barberia_core.errores import NotFoundError

router = APIRouter()


# --------- Consultas (usadas por citas y ventas) ---------

def obtener_servicio(session: Session, servicio_id: int) -> Servicio:
    servicio = session.get(Servicio, servicio_id)
    if not servicio:
        raise NotFoundError(f"Servicio no encontrado (id={servicio_id})")
    return servicio


def buscar_servicios(session: Session, ids: Iterable[int]) -> Dict[int, Servicio]:
    """Los ids desconocidos simplemente no aparecen en el resultado."""
    unicos = sorted(set(ids))
    if not unicos:
        return {}
    servicios = session.exec(select(Servicio).where(Servicio.id.in_(unicos))).all()
    return {s.id: s for s in servicios}


def buscar_productos(session: Session, ids: Iterable[int]) -> Dict[int, Producto]:
    unicos = sorted(set(ids))
    if not unicos:
        return {}
    productos = session.exec(select(Producto).where(Producto.id.in_(unicos))).all()
    return {p.id: p for p in productos}


# --------- Endpoints ---------

@router.get("/servicios", response_model=List[Servicio])
def listar_servicios(
    session: Session = Depends(get_session),
):
    q = select(Servicio).where(Servicio.activo == True)  # noqa: E712
    return session.exec(q.order_by(Servicio.nombre.asc())).all()


@router.get("/productos", response_model=List[Producto])
def listar_productos(
    con_stock: bool = False,
    session: Session = Depends(get_session),
):
    q = select(Producto).where(Producto.activo == True)  # noqa: E712
    if con_stock:
        q = q.where(Producto.stock_actual > 0)
    return session.exec(q.order_by(Producto.nombre.asc())).all()
