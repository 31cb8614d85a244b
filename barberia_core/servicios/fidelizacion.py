# barberia_core/servicios/fidelizacion.py
"""
Programa de fidelización: cada CORTES_POR_CORTE_GRATIS cortes pagados dan un
corte gratis, que se redime como un bono de monto fijo sobre la venta.

El cálculo (calcular_resultado) es una función pura sobre los contadores
previos. La persistencia agrega un movimiento al libro
movimientos_fidelizacion y aplica los deltas con UPDATE atómicos; los
contadores de Cliente son la proyección de ese libro (recalcular_perfil).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, update
from sqlmodel import Session, select

from barberia_core.config import (
    BONO_CORTE_GRATIS,
    CORTES_POR_CORTE_GRATIS,
    XP_MINIMO_POR_VISITA,
    XP_POR_NIVEL,
    XP_POR_SERVICIO,
)
from barberia_core.db.conexion import confirmar, get_session
from barberia_core.db.modelos import (
    Barbero,
    Cliente,
    CorteRedimido,
    MovimientoFidelizacion,
    TipoMovimiento,
    ahora_utc,
)
from barberia_core.errores import NotFoundError
from barberia_core.security import get_current_barbero

logger = logging.getLogger(__name__)

router = APIRouter()


class PerfilFidelizacion(BaseModel):
    cortes_realizados: int = 0
    cortes_gratis_disponibles: int = 0
    puntos_experiencia: int = 0
    nivel_actual: int = 1
    visitas_totales: int = 0
    dinero_gastado_total: float = 0.0
    ultima_visita: Optional[datetime] = None

    @classmethod
    def de_cliente(cls, cliente: Cliente) -> "PerfilFidelizacion":
        return cls(
            cortes_realizados=cliente.cortes_realizados or 0,
            cortes_gratis_disponibles=cliente.cortes_gratis_disponibles or 0,
            puntos_experiencia=cliente.puntos_experiencia or 0,
            nivel_actual=cliente.nivel_actual or 1,
            visitas_totales=cliente.visitas_totales or 0,
            dinero_gastado_total=cliente.dinero_gastado_total or 0.0,
            ultima_visita=cliente.ultima_visita,
        )


class ResultadoFidelizacion(BaseModel):
    subtotal: float
    descuento: float = 0.0
    total_final: float
    corte_gratis_redimido: bool = False

    # Deltas sobre los contadores; todos en cero si no hay cliente
    delta_cortes: int = 0
    delta_cortes_gratis: int = 0
    nuevos_cortes_gratis: int = 0
    experiencia_ganada: int = 0
    delta_visitas: int = 0

    perfil: Optional[PerfilFidelizacion] = None


def nivel_para(puntos_experiencia: int) -> int:
    return max(1, puntos_experiencia // XP_POR_NIVEL + 1)


def calcular_resultado(
    perfil: Optional[PerfilFidelizacion],
    quiere_redimir: bool,
    subtotal: float,
    servicios_en_visita: int,
    ahora: Optional[datetime] = None,
) -> ResultadoFidelizacion:
    """
    Pura: no toca la base. `perfil` None = walk-in anónimo, sin fidelización.
    Si se pidió redimir pero no quedan créditos, la visita se cobra completa
    y cuenta como pagada.
    """
    if perfil is None:
        return ResultadoFidelizacion(subtotal=subtotal, total_final=subtotal)

    redime = bool(quiere_redimir) and perfil.cortes_gratis_disponibles > 0

    if redime:
        descuento = min(subtotal, BONO_CORTE_GRATIS)
        delta_cortes = 0
        delta_cortes_gratis = -1
    else:
        descuento = 0.0
        delta_cortes = 1
        delta_cortes_gratis = 0

    total_final = subtotal - descuento

    cortes_despues = perfil.cortes_realizados + delta_cortes
    nuevos = max(
        0,
        cortes_despues // CORTES_POR_CORTE_GRATIS
        - perfil.cortes_realizados // CORTES_POR_CORTE_GRATIS,
    )
    delta_cortes_gratis += nuevos

    xp = max(XP_MINIMO_POR_VISITA, servicios_en_visita * XP_POR_SERVICIO)
    xp_total = perfil.puntos_experiencia + xp

    nuevo_perfil = PerfilFidelizacion(
        cortes_realizados=cortes_despues,
        cortes_gratis_disponibles=perfil.cortes_gratis_disponibles + delta_cortes_gratis,
        puntos_experiencia=xp_total,
        nivel_actual=nivel_para(xp_total),
        visitas_totales=perfil.visitas_totales + 1,
        dinero_gastado_total=perfil.dinero_gastado_total + total_final,
        ultima_visita=ahora,
    )

    return ResultadoFidelizacion(
        subtotal=subtotal,
        descuento=descuento,
        total_final=total_final,
        corte_gratis_redimido=redime,
        delta_cortes=delta_cortes,
        delta_cortes_gratis=delta_cortes_gratis,
        nuevos_cortes_gratis=nuevos,
        experiencia_ganada=xp,
        delta_visitas=1,
        perfil=nuevo_perfil,
    )


def _registrar_apertura(session: Session, cliente: Cliente) -> None:
    """
    Primer movimiento de un cliente: deja en el libro los contadores que ya
    traía, así recalcular_perfil no los pierde.
    """
    hay_movimientos = session.exec(
        select(MovimientoFidelizacion.id)
        .where(MovimientoFidelizacion.cliente_id == cliente.id)
        .limit(1)
    ).first()
    if hay_movimientos is not None:
        return
    session.add(
        MovimientoFidelizacion(
            cliente_id=cliente.id,
            tipo=TipoMovimiento.apertura,
            delta_cortes=cliente.cortes_realizados or 0,
            delta_cortes_gratis=cliente.cortes_gratis_disponibles or 0,
            delta_experiencia=cliente.puntos_experiencia or 0,
            delta_visitas=cliente.visitas_totales or 0,
            delta_gasto=cliente.dinero_gastado_total or 0.0,
            creado_en=cliente.ultima_visita or ahora_utc(),
        )
    )


def aplicar_resultado(
    session: Session,
    cliente: Cliente,
    resultado: ResultadoFidelizacion,
    cita_id: Optional[int] = None,
    venta_id: Optional[int] = None,
    ahora: Optional[datetime] = None,
) -> Optional[MovimientoFidelizacion]:
    """
    Aplica los deltas con un UPDATE atómico (x = x + delta) y agrega el
    movimiento al libro. Una redención solo se aplica si el cliente todavía
    tiene créditos; si no, devuelve None y no escribe nada.
    """
    ahora = ahora or ahora_utc()
    _registrar_apertura(session, cliente)

    xp_nuevo = Cliente.puntos_experiencia + resultado.experiencia_ganada
    stmt = (
        update(Cliente)
        .where(Cliente.id == cliente.id)
        .values(
            cortes_realizados=Cliente.cortes_realizados + resultado.delta_cortes,
            cortes_gratis_disponibles=Cliente.cortes_gratis_disponibles
            + resultado.delta_cortes_gratis,
            puntos_experiencia=xp_nuevo,
            nivel_actual=xp_nuevo // XP_POR_NIVEL + 1,
            visitas_totales=Cliente.visitas_totales + resultado.delta_visitas,
            dinero_gastado_total=Cliente.dinero_gastado_total + resultado.total_final,
            ultima_visita=ahora,
        )
        .execution_options(synchronize_session=False)
    )
    if resultado.corte_gratis_redimido:
        stmt = stmt.where(Cliente.cortes_gratis_disponibles > 0)

    filas = session.exec(stmt).rowcount
    if filas != 1:
        logger.warning(
            "Cliente %s sin créditos al aplicar la redención (cita #%s)", cliente.id, cita_id
        )
        return None

    movimiento = MovimientoFidelizacion(
        cliente_id=cliente.id,
        venta_id=venta_id,
        cita_id=cita_id,
        tipo=(
            TipoMovimiento.redencion
            if resultado.corte_gratis_redimido
            else TipoMovimiento.acumulacion
        ),
        delta_cortes=resultado.delta_cortes,
        delta_cortes_gratis=resultado.delta_cortes_gratis,
        delta_experiencia=resultado.experiencia_ganada,
        delta_visitas=resultado.delta_visitas,
        delta_gasto=resultado.total_final,
        creado_en=ahora,
    )
    session.add(movimiento)
    session.flush()
    session.refresh(cliente)

    if resultado.nuevos_cortes_gratis:
        logger.info(
            "Cliente %s ganó %s corte(s) gratis", cliente.id, resultado.nuevos_cortes_gratis
        )
    return movimiento


def recalcular_perfil(session: Session, cliente_id: int) -> Cliente:
    """
    Reconstruye los contadores de un cliente sumando su libro de movimientos.
    """
    cliente = session.get(Cliente, cliente_id)
    if not cliente:
        raise NotFoundError("Cliente no encontrado")

    fila = session.exec(
        select(
            func.coalesce(func.sum(MovimientoFidelizacion.delta_cortes), 0),
            func.coalesce(func.sum(MovimientoFidelizacion.delta_cortes_gratis), 0),
            func.coalesce(func.sum(MovimientoFidelizacion.delta_experiencia), 0),
            func.coalesce(func.sum(MovimientoFidelizacion.delta_visitas), 0),
            func.coalesce(func.sum(MovimientoFidelizacion.delta_gasto), 0.0),
            func.count(MovimientoFidelizacion.id),
        ).where(MovimientoFidelizacion.cliente_id == cliente_id)
    ).one()
    cortes, gratis, xp, visitas, gasto, cantidad = fila

    if not cantidad:
        # Sin libro: los contadores actuales son la única fuente
        return cliente

    ultima = session.exec(
        select(func.max(MovimientoFidelizacion.creado_en))
        .where(MovimientoFidelizacion.cliente_id == cliente_id)
        .where(MovimientoFidelizacion.tipo != TipoMovimiento.apertura)
    ).one()

    cliente.cortes_realizados = int(cortes)
    cliente.cortes_gratis_disponibles = max(0, int(gratis))
    cliente.puntos_experiencia = int(xp)
    cliente.nivel_actual = nivel_para(int(xp))
    cliente.visitas_totales = int(visitas)
    cliente.dinero_gastado_total = float(gasto)
    if ultima is not None:
        cliente.ultima_visita = ultima
    session.add(cliente)
    confirmar(session, "No se pudo recalcular el perfil de fidelización.")
    session.refresh(cliente)
    logger.info("Perfil de fidelización del cliente %s recalculado", cliente_id)
    return cliente


def resumen_fidelizacion(session: Session, cliente_id: int) -> Dict[str, Any]:
    cliente = session.get(Cliente, cliente_id)
    if not cliente:
        raise NotFoundError("Cliente no encontrado")

    redenciones: List[CorteRedimido] = session.exec(
        select(CorteRedimido)
        .where(CorteRedimido.cliente_id == cliente_id)
        .order_by(CorteRedimido.creado_en.desc(), CorteRedimido.id.desc())
    ).all()

    progreso = cliente.cortes_realizados % CORTES_POR_CORTE_GRATIS
    return {
        "cliente_id": cliente.id,
        "nombre": cliente.nombre,
        "perfil": PerfilFidelizacion.de_cliente(cliente),
        "progreso": {
            "cortes_en_ciclo": progreso,
            "cortes_para_siguiente_gratis": CORTES_POR_CORTE_GRATIS - progreso,
            "cortes_por_corte_gratis": CORTES_POR_CORTE_GRATIS,
        },
        "bono_corte_gratis": BONO_CORTE_GRATIS,
        "redenciones": redenciones,
    }


# --------- Endpoints ---------

@router.get("/clientes/{cliente_id}/fidelizacion")
def fidelizacion_endpoint(
    cliente_id: int,
    session: Session = Depends(get_session),
):
    return resumen_fidelizacion(session, cliente_id)


@router.post("/clientes/{cliente_id}/fidelizacion/recalcular")
def recalcular_endpoint(
    cliente_id: int,
    session: Session = Depends(get_session),
    _barbero: Barbero = Depends(get_current_barbero),
):
    cliente = recalcular_perfil(session, cliente_id)
    return PerfilFidelizacion.de_cliente(cliente)
