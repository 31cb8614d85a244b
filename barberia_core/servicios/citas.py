# barberia_core/servicios/citas.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from barberia_core.db.conexion import confirmar, get_session
from barberia_core.db.modelos import (
    Barbero,
    Cita,
    Cliente,
    EstadoCita,
    EtapaCola,
    Servicio,
    Venta,
    ahora_utc,
)
from barberia_core.errores import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from barberia_core.security import get_current_barbero
from barberia_core.servicios.catalogo import obtener_servicio
from barberia_core.servicios.disponibilidad import (
    a_utc,
    dia_utc,
    rango_dia_utc,
    verificar_sin_bono_pendiente,
    verificar_sin_cita_duplicada,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# --------- Esquemas de entrada ---------

class ClienteCita(BaseModel):
    id: Optional[int] = None
    nombre: Optional[str] = None
    telefono: Optional[str] = None
    email: Optional[str] = None


class CitaCreate(BaseModel):
    barbero_id: int
    servicio_id: int
    fecha_hora: datetime
    cliente: ClienteCita
    notas: Optional[str] = None
    usar_bono_fidelizacion: bool = False


class CancelarBody(BaseModel):
    motivo: Optional[str] = None


# --------- Helpers ---------

def _limpiar(texto: Optional[str]) -> Optional[str]:
    if texto is None:
        return None
    texto = texto.strip()
    return texto or None


def cargar_cita_propia(session: Session, cita_id: int, barbero_id: int) -> Cita:
    """
    Toda operación que modifica una cita pasa primero por acá.
    """
    cita = session.get(Cita, cita_id)
    if not cita:
        raise NotFoundError("Cita no encontrada")
    if cita.barbero_id != barbero_id:
        logger.warning(
            "Barbero %s intentó operar la cita #%s del barbero %s",
            barbero_id, cita_id, cita.barbero_id,
        )
        raise AuthorizationError("La cita no pertenece al barbero autenticado.")
    return cita


def _transicion(
    session: Session, cita_id: int, desde: Tuple[EstadoCita, ...], **cambios: Any
) -> bool:
    """
    Compare-and-swap sobre el estado: solo actualiza si la cita sigue en
    alguno de los estados `desde`. Devuelve False si otro request ganó.
    """
    try:
        resultado = session.exec(
            update(Cita)
            .where(Cita.id == cita_id)
            .where(Cita.estado.in_(desde))
            .values(**cambios)
        )
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Error actualizando la cita #%s", cita_id)
        raise PersistenceError("No se pudo actualizar la cita.")
    return resultado.rowcount == 1


# --------- Operaciones del ciclo de vida ---------

def crear_cita(session: Session, datos: CitaCreate) -> Cita:
    nombre = _limpiar(datos.cliente.nombre)
    if not nombre:
        raise ValidationError("El nombre del cliente es obligatorio.")

    servicio = obtener_servicio(session, datos.servicio_id)
    if not servicio.activo:
        raise NotFoundError(f"Servicio no disponible (id={datos.servicio_id})")

    barbero = session.get(Barbero, datos.barbero_id)
    if not barbero or not barbero.activo:
        raise NotFoundError(f"Barbero no encontrado (id={datos.barbero_id})")

    cliente_id = datos.cliente.id
    if cliente_id is not None and session.get(Cliente, cliente_id) is None:
        raise NotFoundError(f"Cliente no encontrado (id={cliente_id})")

    fecha_hora = a_utc(datos.fecha_hora)

    # Chequeos previos: dan el mensaje claro. Los índices únicos parciales
    # cubren la carrera entre dos requests simultáneos.
    verificar_sin_cita_duplicada(session, cliente_id, fecha_hora)
    if datos.usar_bono_fidelizacion:
        verificar_sin_bono_pendiente(session, cliente_id)

    cita = Cita(
        barbero_id=barbero.id,
        servicio_id=servicio.id,
        cliente_id=cliente_id,
        cliente_nombre=nombre,
        cliente_telefono=_limpiar(datos.cliente.telefono),
        cliente_email=_limpiar(datos.cliente.email),
        fecha_hora=fecha_hora,
        dia=dia_utc(fecha_hora),
        duracion_estimada=servicio.duracion_minutos,
        precio_cobrado=servicio.precio,
        notas=_limpiar(datos.notas),
        estado=EstadoCita.scheduled,
        etapa_cola=EtapaCola.cola,
        usar_bono_fidelizacion=datos.usar_bono_fidelizacion,
    )
    session.add(cita)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.warning("Carrera perdida al agendar para cliente %s el %s", cliente_id, fecha_hora)
        raise ConflictError(
            "Ya existe una cita activa para este día o un corte gratis pendiente para este cliente."
        )
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Error guardando la cita del cliente %s", cliente_id)
        raise PersistenceError("No se pudo agendar la cita.")
    session.refresh(cita)

    logger.info(
        "Cita #%s agendada: barbero=%s servicio=%s cliente=%s bono=%s",
        cita.id, cita.barbero_id, cita.servicio_id, cita.cliente_id, cita.usar_bono_fidelizacion,
    )
    return cita


def agregar_a_cola(session: Session, cita_id: int, barbero_id: int) -> Cita:
    cita = cargar_cita_propia(session, cita_id, barbero_id)

    # Doble click en la UI: devolvemos la cita tal cual
    if cita.estado in (EstadoCita.waiting, EstadoCita.in_chair):
        return cita
    if cita.estado != EstadoCita.scheduled:
        raise InvalidStateError(
            f"No se puede agregar a la cola una cita en estado {cita.estado.value}."
        )

    # Bloqueo de la fila del barbero: serializa los cálculos de posición en
    # PostgreSQL. SQLite no compila FOR UPDATE; ahí la escritura de la base
    # es de un solo escritor y la posición puede repetirse entre dos llegadas
    # simultáneas.
    session.exec(
        select(Barbero).where(Barbero.id == barbero_id).with_for_update()
    ).first()
    en_espera = session.exec(
        select(func.count())
        .select_from(Cita)
        .where(Cita.barbero_id == barbero_id)
        .where(Cita.estado == EstadoCita.waiting)
    ).one()

    ok = _transicion(
        session,
        cita.id,
        (EstadoCita.scheduled,),
        estado=EstadoCita.waiting,
        etapa_cola=EtapaCola.cola,
        hora_llegada=ahora_utc(),
        posicion_cola=en_espera + 1,
    )
    if not ok:
        session.rollback()
        session.refresh(cita)
        if cita.estado in (EstadoCita.waiting, EstadoCita.in_chair):
            return cita
        raise InvalidStateError(
            f"No se puede agregar a la cola una cita en estado {cita.estado.value}."
        )

    confirmar(session, "No se pudo actualizar la cola.")
    session.refresh(cita)
    logger.info("Cita #%s en cola, posición %s", cita.id, cita.posicion_cola)
    return cita


def iniciar_atencion(session: Session, cita_id: int, barbero_id: int) -> Cita:
    cita = cargar_cita_propia(session, cita_id, barbero_id)

    if cita.estado == EstadoCita.in_chair:
        return cita
    if cita.estado != EstadoCita.waiting:
        raise InvalidStateError(
            f"Solo se puede iniciar la atención de una cita en cola (estado actual: {cita.estado.value})."
        )

    ok = _transicion(
        session,
        cita.id,
        (EstadoCita.waiting,),
        estado=EstadoCita.in_chair,
        etapa_cola=EtapaCola.atendiendo,
        hora_inicio_atencion=ahora_utc(),
    )
    if not ok:
        session.rollback()
        session.refresh(cita)
        if cita.estado == EstadoCita.in_chair:
            return cita
        raise InvalidStateError(
            f"Solo se puede iniciar la atención de una cita en cola (estado actual: {cita.estado.value})."
        )

    confirmar(session, "No se pudo iniciar la atención.")
    session.refresh(cita)
    logger.info("Cita #%s en silla", cita.id)
    return cita


def _cerrar_sin_venta(
    session: Session,
    cita_id: int,
    barbero_id: int,
    destino: EstadoCita,
    accion: str,
    motivo: Optional[str] = None,
) -> Cita:
    cita = cargar_cita_propia(session, cita_id, barbero_id)

    if cita.estado == destino:
        return cita
    if cita.estado not in (EstadoCita.scheduled, EstadoCita.waiting):
        raise InvalidStateError(
            f"No se puede {accion} una cita en estado {cita.estado.value}."
        )

    cambios: Dict[str, Any] = {
        "estado": destino,
        "etapa_cola": EtapaCola.finalizado,
        "hora_finalizacion": ahora_utc(),
    }
    motivo = _limpiar(motivo)
    if motivo:
        cambios["notas"] = f"{cita.notas}\n{motivo}" if cita.notas else motivo

    ok = _transicion(
        session, cita.id, (EstadoCita.scheduled, EstadoCita.waiting), **cambios
    )
    if not ok:
        session.rollback()
        session.refresh(cita)
        if cita.estado == destino:
            return cita
        raise InvalidStateError(
            f"No se puede {accion} una cita en estado {cita.estado.value}."
        )

    confirmar(session, f"No se pudo {accion} la cita.")
    session.refresh(cita)
    logger.info("Cita #%s -> %s", cita.id, destino.value)
    return cita


def cancelar_cita(
    session: Session, cita_id: int, barbero_id: int, motivo: Optional[str] = None
) -> Cita:
    return _cerrar_sin_venta(
        session, cita_id, barbero_id, EstadoCita.cancelled, "cancelar", motivo
    )


def marcar_no_show(session: Session, cita_id: int, barbero_id: int) -> Cita:
    return _cerrar_sin_venta(
        session, cita_id, barbero_id, EstadoCita.no_show, "marcar como inasistencia"
    )


def agenda_barbero(session: Session, barbero_id: int, fecha) -> List[Dict[str, Any]]:
    inicio, fin = rango_dia_utc(fecha)
    citas = session.exec(
        select(Cita)
        .where(Cita.barbero_id == barbero_id)
        .where(Cita.fecha_hora >= inicio)
        .where(Cita.fecha_hora < fin)
        .order_by(Cita.fecha_hora.asc())
    ).all()

    # Prefetch de servicios y ventas
    servicio_ids = sorted({c.servicio_id for c in citas})
    servicios = {}
    if servicio_ids:
        ss = session.exec(select(Servicio).where(Servicio.id.in_(servicio_ids))).all()
        servicios = {s.id: s for s in ss}

    cita_ids = [c.id for c in citas]
    ventas = {}
    if cita_ids:
        vv = session.exec(select(Venta).where(Venta.cita_id.in_(cita_ids))).all()
        ventas = {v.cita_id: v for v in vv}

    agenda = []
    for c in citas:
        item = c.model_dump()
        srv = servicios.get(c.servicio_id)
        item["servicio"] = (
            {
                "id": srv.id,
                "nombre": srv.nombre,
                "precio": srv.precio,
                "duracion_minutos": srv.duracion_minutos,
            }
            if srv
            else None
        )
        venta = ventas.get(c.id)
        item["venta"] = (
            {
                "id": venta.id,
                "total_final": venta.total_final,
                "medio_pago": venta.medio_pago,
            }
            if venta
            else None
        )
        agenda.append(item)
    return agenda


# --------- Endpoints ---------

@router.post("/citas", status_code=status.HTTP_201_CREATED)
def crear_cita_endpoint(
    body: CitaCreate,
    session: Session = Depends(get_session),
):
    cita = crear_cita(session, body)
    return {
        "id": cita.id,
        "estado": cita.estado,
        "fecha_hora": cita.fecha_hora,
        "barbero_id": cita.barbero_id,
    }


@router.get("/citas/agenda")
def agenda_endpoint(
    fecha: Optional[str] = None,
    session: Session = Depends(get_session),
    barbero: Barbero = Depends(get_current_barbero),
):
    return agenda_barbero(session, barbero.id, fecha or ahora_utc().date())


@router.post("/citas/{cita_id}/cola", response_model=Cita)
def cola_endpoint(
    cita_id: int,
    session: Session = Depends(get_session),
    barbero: Barbero = Depends(get_current_barbero),
):
    return agregar_a_cola(session, cita_id, barbero.id)


@router.post("/citas/{cita_id}/iniciar", response_model=Cita)
def iniciar_endpoint(
    cita_id: int,
    session: Session = Depends(get_session),
    barbero: Barbero = Depends(get_current_barbero),
):
    return iniciar_atencion(session, cita_id, barbero.id)


@router.post("/citas/{cita_id}/cancelar", response_model=Cita)
def cancelar_endpoint(
    cita_id: int,
    body: Optional[CancelarBody] = None,
    session: Session = Depends(get_session),
    barbero: Barbero = Depends(get_current_barbero),
):
    motivo = body.motivo if body else None
    return cancelar_cita(session, cita_id, barbero.id, motivo)


@router.post("/citas/{cita_id}/no-show", response_model=Cita)
def no_show_endpoint(
    cita_id: int,
    session: Session = Depends(get_session),
    barbero: Barbero = Depends(get_current_barbero),
):
    return marcar_no_show(session, cita_id, barbero.id)
