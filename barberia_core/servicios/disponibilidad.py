# barberia_core/servicios/disponibilidad.py
from __future__ import annotations

import logging
from typing import List, Optional, Tuple
from datetime import date, datetime, time, timedelta, timezone

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from barberia_core.db.conexion import get_session
from barberia_core.db.modelos import Cita, ESTADOS_ACTIVOS
from barberia_core.errores import ConflictError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter()


# --------- Helpers de fecha ---------
# El día siempre se corta en UTC (medianoche a medianoche), sin importar
# la zona horaria de quien llama.

def a_utc(valor: datetime) -> datetime:
    """Normaliza a UTC sin tzinfo. Las fechas naive se asumen ya en UTC."""
    if valor.tzinfo is not None:
        return valor.astimezone(timezone.utc).replace(tzinfo=None)
    return valor


def dia_utc(valor: date | datetime | str) -> date:
    if isinstance(valor, datetime):
        return a_utc(valor).date()
    if isinstance(valor, date):
        return valor
    texto = str(valor).strip()
    try:
        if len(texto) <= 10:
            return date.fromisoformat(texto)
        return a_utc(datetime.fromisoformat(texto.replace("Z", "+00:00"))).date()
    except ValueError:
        raise ValidationError("Fecha inválida. Usa un formato ISO 8601 (YYYY-MM-DD).")


def rango_dia_utc(valor: date | datetime | str) -> Tuple[datetime, datetime]:
    inicio = datetime.combine(dia_utc(valor), time.min)
    return inicio, inicio + timedelta(days=1)


# --------- Guardas ---------

def listar_horarios_reservados(
    session: Session, barbero_id: int, fecha: date | datetime | str
) -> List[datetime]:
    inicio, fin = rango_dia_utc(fecha)
    q = (
        select(Cita.fecha_hora)
        .where(Cita.barbero_id == barbero_id)
        .where(Cita.fecha_hora >= inicio)
        .where(Cita.fecha_hora < fin)
        .where(Cita.estado.in_(ESTADOS_ACTIVOS))
        .order_by(Cita.fecha_hora.asc())
    )
    return list(session.exec(q).all())


def verificar_sin_cita_duplicada(
    session: Session, cliente_id: Optional[int], fecha: date | datetime | str
) -> None:
    """
    Un cliente identificado no puede tener dos citas activas el mismo día.
    Es un chequeo previo para dar un buen mensaje; la garantía real es el
    índice único parcial uq_citas_cliente_dia_activa.
    """
    if cliente_id is None:
        return
    inicio, fin = rango_dia_utc(fecha)
    existente = session.exec(
        select(Cita.id)
        .where(Cita.cliente_id == cliente_id)
        .where(Cita.fecha_hora >= inicio)
        .where(Cita.fecha_hora < fin)
        .where(Cita.estado.in_(ESTADOS_ACTIVOS))
        .limit(1)
    ).first()
    if existente is not None:
        logger.warning("Cliente %s ya tiene la cita activa #%s ese día", cliente_id, existente)
        raise ConflictError("Ya tienes una cita activa para este día.")


def verificar_sin_bono_pendiente(session: Session, cliente_id: Optional[int]) -> None:
    if cliente_id is None:
        return
    existente = session.exec(
        select(Cita.id)
        .where(Cita.cliente_id == cliente_id)
        .where(Cita.usar_bono_fidelizacion == True)  # noqa: E712
        .where(Cita.estado.in_(ESTADOS_ACTIVOS))
        .limit(1)
    ).first()
    if existente is not None:
        logger.warning("Cliente %s ya tiene un corte gratis agendado (cita #%s)", cliente_id, existente)
        raise ConflictError("Ya tienes un corte gratis agendado. Úsalo antes de redimir otro.")


# --------- Endpoints ---------

@router.get("/citas/horarios-reservados", response_model=List[datetime])
def horarios_reservados(
    barbero_id: int,
    fecha: str,
    session: Session = Depends(get_session),
):
    return listar_horarios_reservados(session, barbero_id, fecha)
