# barberia_core/servicios/ventas.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy import case, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from barberia_core.db.conexion import get_session
from barberia_core.db.modelos import (
    Barbero,
    Cita,
    Cliente,
    CorteRedimido,
    ESTADOS_ACTIVOS,
    EstadoCita,
    EtapaCola,
    ItemVenta,
    MedioPago,
    Producto,
    TipoItem,
    Venta,
    ahora_utc,
)
from barberia_core.errores import (
    AuthorizationError,
    ConflictError,
    CoreError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from barberia_core.security import get_current_barbero
from barberia_core.servicios.catalogo import (
    buscar_productos,
    buscar_servicios,
    obtener_servicio,
)
from barberia_core.servicios.citas import cargar_cita_propia
from barberia_core.servicios.disponibilidad import rango_dia_utc
from barberia_core.servicios.fidelizacion import (
    PerfilFidelizacion,
    aplicar_resultado,
    calcular_resultado,
)

logger = logging.getLogger(__name__)

router = APIRouter()

MOTIVO_REDENCION = "fidelizacion_corte_gratis"


# --------- Esquemas de entrada ---------

class ServicioExtra(BaseModel):
    servicio_id: int
    cantidad: Optional[int] = 1


class ProductoVenta(BaseModel):
    producto_id: int
    cantidad: Optional[int] = 1


class FinalizarBody(BaseModel):
    medio_pago: MedioPago
    notas: Optional[str] = None
    servicios_extra: List[ServicioExtra] = Field(default_factory=list)
    productos: List[ProductoVenta] = Field(default_factory=list)


class VentaDirectaBody(BaseModel):
    medio_pago: MedioPago
    cliente_nombre: str
    notas: Optional[str] = None
    servicios: List[ServicioExtra] = Field(default_factory=list)
    productos: List[ProductoVenta] = Field(default_factory=list)


# --------- Helpers ---------

def _cantidad(x: Optional[int]) -> int:
    return max(1, int(x or 1))


def _armar_items(
    session: Session,
    servicio_principal_id: int,
    servicios_extra: List[ServicioExtra],
    productos: List[ProductoVenta],
) -> List[Dict[str, Any]]:
    principal = obtener_servicio(session, servicio_principal_id)
    items: List[Dict[str, Any]] = [
        {
            "tipo": TipoItem.servicio,
            "servicio_id": principal.id,
            "producto_id": None,
            "nombre": principal.nombre or "Servicio",
            "cantidad": 1,
            "precio_unitario": principal.precio or 0.0,
            "subtotal": principal.precio or 0.0,
        }
    ]
    items.extend(_items_adicionales(session, servicios_extra, productos))
    return items


def _items_adicionales(
    session: Session,
    servicios_extra: List[ServicioExtra],
    productos: List[ProductoVenta],
) -> List[Dict[str, Any]]:
    """Precios siempre del catálogo, nunca del cliente."""
    items: List[Dict[str, Any]] = []

    # Ids desconocidos se saltan, no cortan la venta
    servicios = buscar_servicios(session, [e.servicio_id for e in servicios_extra])
    for extra in servicios_extra:
        srv = servicios.get(extra.servicio_id)
        if not srv:
            logger.warning("Servicio extra desconocido (id=%s), se omite", extra.servicio_id)
            continue
        cantidad = _cantidad(extra.cantidad)
        precio = srv.precio or 0.0
        items.append({
            "tipo": TipoItem.servicio,
            "servicio_id": srv.id,
            "producto_id": None,
            "nombre": srv.nombre or "Servicio adicional",
            "cantidad": cantidad,
            "precio_unitario": precio,
            "subtotal": precio * cantidad,
        })

    catalogo = buscar_productos(session, [p.producto_id for p in productos])
    for prod in productos:
        record = catalogo.get(prod.producto_id)
        if not record:
            logger.warning("Producto desconocido (id=%s), se omite", prod.producto_id)
            continue
        cantidad = _cantidad(prod.cantidad)
        precio = record.precio or 0.0
        items.append({
            "tipo": TipoItem.producto,
            "servicio_id": None,
            "producto_id": record.id,
            "nombre": record.nombre or "Producto",
            "cantidad": cantidad,
            "precio_unitario": precio,
            "subtotal": precio * cantidad,
        })

    return items


def _descontar_stock(session: Session, producto_id: int, cantidad: int) -> None:
    """
    stock = max(0, stock - cantidad) en un solo UPDATE. Los productos sin
    inventario (stock_actual NULL) no se tocan.
    """
    restante = Producto.stock_actual - cantidad
    session.exec(
        update(Producto)
        .where(Producto.id == producto_id)
        .where(Producto.stock_actual.is_not(None))
        .values(stock_actual=case((restante < 0, 0), else_=restante))
        .execution_options(synchronize_session=False)
    )


def _actualizar_stock(session: Session, items: List[Dict[str, Any]]) -> None:
    """
    Un UPDATE por producto, cada uno en su savepoint: si falla se registra
    el error y la venta sigue.
    """
    por_producto: Dict[int, int] = {}
    for item in items:
        if item["tipo"] == TipoItem.producto:
            por_producto[item["producto_id"]] = (
                por_producto.get(item["producto_id"], 0) + item["cantidad"]
            )
    for producto_id, cantidad in por_producto.items():
        try:
            with session.begin_nested():
                _descontar_stock(session, producto_id, cantidad)
        except SQLAlchemyError:
            logger.exception("Error actualizando stock del producto %s", producto_id)


# --------- Finalización ---------

def finalizar_cita(
    session: Session,
    cita_id: int,
    barbero_id: int,
    medio_pago: MedioPago,
    notas: Optional[str] = None,
    servicios_extra: Optional[List[ServicioExtra]] = None,
    productos: Optional[List[ProductoVenta]] = None,
) -> Dict[str, Any]:
    """
    Cierra una cita convirtiéndola en venta, en una sola transacción:
    items -> fidelización -> venta + items -> auditoría de redención ->
    stock -> cita completada.

    Los contadores de fidelización y el stock van en savepoints: si fallan
    se registra el error y la venta sigue.
    """
    servicios_extra = servicios_extra or []
    productos = productos or []

    cita = cargar_cita_propia(session, cita_id, barbero_id)
    if cita.venta_generada or cita.estado == EstadoCita.completed:
        raise ConflictError("La cita ya tiene una venta registrada.")
    if cita.estado not in ESTADOS_ACTIVOS:
        raise InvalidStateError(
            f"No se puede finalizar una cita en estado {cita.estado.value}."
        )

    # Compare-and-swap sobre venta_generada: solo un request gana
    reclamada = session.exec(
        update(Cita)
        .where(Cita.id == cita.id)
        .where(Cita.venta_generada == False)  # noqa: E712
        .where(Cita.estado.in_(ESTADOS_ACTIVOS))
        .values(venta_generada=True)
        .execution_options(synchronize_session=False)
    ).rowcount
    if reclamada != 1:
        session.rollback()
        logger.warning("Doble finalización rechazada para cita #%s", cita.id)
        raise ConflictError("La cita ya tiene una venta registrada.")

    try:
        resultado = _registrar_venta(
            session, cita, medio_pago, notas, servicios_extra, productos
        )
        session.commit()
    except CoreError:
        session.rollback()
        raise
    except SQLAlchemyError:
        session.rollback()
        logger.exception("No fue posible registrar la venta de la cita #%s", cita.id)
        raise PersistenceError("No fue posible registrar la venta.")

    session.refresh(cita)
    resultado["cita"] = cita
    logger.info(
        "Venta #%s registrada para cita #%s: subtotal=%.2f descuento=%.2f total=%.2f",
        resultado["venta_id"], cita.id, resultado["subtotal"],
        resultado["descuento"], resultado["total_final"],
    )
    return resultado


def _registrar_venta(
    session: Session,
    cita: Cita,
    medio_pago: MedioPago,
    notas: Optional[str],
    servicios_extra: List[ServicioExtra],
    productos: List[ProductoVenta],
) -> Dict[str, Any]:
    ahora = ahora_utc()

    items = _armar_items(session, cita.servicio_id, servicios_extra, productos)
    subtotal = sum(i["subtotal"] for i in items)
    servicios_en_visita = sum(
        i["cantidad"] for i in items if i["tipo"] == TipoItem.servicio
    )

    # Programa de fidelización del cliente
    cliente = session.get(Cliente, cita.cliente_id) if cita.cliente_id else None
    perfil = PerfilFidelizacion.de_cliente(cliente) if cliente else None
    fidelizacion = calcular_resultado(
        perfil, cita.usar_bono_fidelizacion, subtotal, servicios_en_visita, ahora
    )

    movimiento = None
    if cliente is not None:
        try:
            with session.begin_nested():
                movimiento = aplicar_resultado(
                    session, cliente, fidelizacion, cita_id=cita.id, ahora=ahora
                )
                if movimiento is None and fidelizacion.corte_gratis_redimido:
                    # Se quedó sin créditos entre la lectura y la escritura
                    fidelizacion = calcular_resultado(
                        perfil, False, subtotal, servicios_en_visita, ahora
                    )
                    movimiento = aplicar_resultado(
                        session, cliente, fidelizacion, cita_id=cita.id, ahora=ahora
                    )
        except SQLAlchemyError:
            # No bloqueamos la venta si falla la fidelización, solo registramos el error
            logger.exception(
                "Error actualizando datos de fidelización del cliente %s", cliente.id
            )
            movimiento = None
            if fidelizacion.corte_gratis_redimido:
                # Sin crédito consumido no hay descuento
                fidelizacion = calcular_resultado(
                    perfil, False, subtotal, servicios_en_visita, ahora
                )

    venta = Venta(
        cita_id=cita.id,
        barbero_id=cita.barbero_id,
        cliente_id=cita.cliente_id,
        subtotal=subtotal,
        descuento=fidelizacion.descuento,
        total_final=fidelizacion.total_final,
        es_corte_gratis=fidelizacion.corte_gratis_redimido,
        motivo_redencion=MOTIVO_REDENCION if fidelizacion.corte_gratis_redimido else None,
        medio_pago=medio_pago,
        notas=(notas or "").strip() or None,
        fecha_hora=ahora,
    )
    session.add(venta)
    session.flush()  # para tener venta.id

    for item in items:
        session.add(ItemVenta(venta_id=venta.id, **item))

    if movimiento is not None:
        movimiento.venta_id = venta.id
        session.add(movimiento)

    # Registrar historial de cortes redimidos para auditoría
    if fidelizacion.corte_gratis_redimido:
        session.add(
            CorteRedimido(
                cliente_id=cita.cliente_id,
                venta_id=venta.id,
                cita_id=cita.id,
                monto_original=subtotal,
                monto_descuento=fidelizacion.descuento,
                total_final=fidelizacion.total_final,
                creado_en=ahora,
            )
        )
    session.flush()

    _actualizar_stock(session, items)

    completada = session.exec(
        update(Cita)
        .where(Cita.id == cita.id)
        .where(Cita.estado.in_(ESTADOS_ACTIVOS))
        .values(
            estado=EstadoCita.completed,
            etapa_cola=EtapaCola.finalizado,
            hora_inicio_atencion=cita.hora_inicio_atencion or ahora,
            hora_finalizacion=ahora,
            venta_generada=True,
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    if completada != 1:
        raise ConflictError("La cita cambió de estado mientras se registraba la venta.")

    return {
        "venta_id": venta.id,
        "subtotal": subtotal,
        "total_final": fidelizacion.total_final,
        "descuento": fidelizacion.descuento,
        "corte_gratis_redimido": fidelizacion.corte_gratis_redimido,
    }


# --------- Venta directa (mostrador, sin cita) ---------

def registrar_venta_directa(
    session: Session,
    barbero_id: int,
    medio_pago: MedioPago,
    cliente_nombre: str,
    servicios: Optional[List[ServicioExtra]] = None,
    productos: Optional[List[ProductoVenta]] = None,
    notas: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Venta de mostrador sin cita. No pasa por fidelización, así que nunca
    lleva descuento; el stock se descuenta igual que al finalizar una cita.
    """
    nombre = (cliente_nombre or "").strip()
    if not nombre:
        raise ValidationError("El nombre del cliente es obligatorio.")

    items = _items_adicionales(session, servicios or [], productos or [])
    subtotal = sum(i["subtotal"] for i in items)
    if not items or subtotal <= 0:
        raise ValidationError("La venta debe tener al menos un servicio o producto con precio.")

    try:
        venta = Venta(
            cita_id=None,
            barbero_id=barbero_id,
            cliente_nombre=nombre,
            subtotal=subtotal,
            descuento=0.0,
            total_final=subtotal,
            medio_pago=medio_pago,
            notas=(notas or "").strip() or None,
            fecha_hora=ahora_utc(),
        )
        session.add(venta)
        session.flush()

        for item in items:
            session.add(ItemVenta(venta_id=venta.id, **item))
        session.flush()

        _actualizar_stock(session, items)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("No fue posible registrar la venta directa de %s", nombre)
        raise PersistenceError("No fue posible registrar la venta.")

    logger.info(
        "Venta directa #%s registrada por barbero %s: total=%.2f",
        venta.id, barbero_id, subtotal,
    )
    return {
        "venta_id": venta.id,
        "subtotal": subtotal,
        "descuento": 0.0,
        "total_final": subtotal,
        "venta": venta,
    }


def ventas_del_dia(session: Session, barbero_id: int, fecha) -> List[Venta]:
    inicio, fin = rango_dia_utc(fecha)
    q = (
        select(Venta)
        .where(Venta.barbero_id == barbero_id)
        .where(Venta.fecha_hora >= inicio)
        .where(Venta.fecha_hora < fin)
        .order_by(Venta.fecha_hora.desc(), Venta.id.desc())
    )
    return list(session.exec(q).all())


def obtener_venta(session: Session, venta_id: int, barbero_id: int) -> Dict[str, Any]:
    venta = session.get(Venta, venta_id)
    if not venta:
        raise NotFoundError("Venta no encontrada")
    if venta.barbero_id != barbero_id:
        raise AuthorizationError("La venta no pertenece al barbero autenticado.")
    items = session.exec(
        select(ItemVenta).where(ItemVenta.venta_id == venta.id).order_by(ItemVenta.id)
    ).all()
    return {"venta": venta, "items": items}


# --------- Endpoints ---------

@router.post("/citas/{cita_id}/finalizar")
def finalizar_endpoint(
    cita_id: int,
    body: FinalizarBody,
    session: Session = Depends(get_session),
    barbero: Barbero = Depends(get_current_barbero),
):
    return finalizar_cita(
        session,
        cita_id,
        barbero.id,
        body.medio_pago,
        body.notas,
        body.servicios_extra,
        body.productos,
    )


@router.post("/ventas", status_code=status.HTTP_201_CREATED)
def crear_venta_directa(
    body: VentaDirectaBody,
    session: Session = Depends(get_session),
    barbero: Barbero = Depends(get_current_barbero),
):
    return registrar_venta_directa(
        session,
        barbero.id,
        body.medio_pago,
        body.cliente_nombre,
        body.servicios,
        body.productos,
        body.notas,
    )


@router.get("/ventas", response_model=List[Venta])
def listar_ventas(
    fecha: Optional[str] = None,
    session: Session = Depends(get_session),
    barbero: Barbero = Depends(get_current_barbero),
):
    return ventas_del_dia(session, barbero.id, fecha or ahora_utc().date())


@router.get("/ventas/{venta_id}")
def detalle_venta(
    venta_id: int,
    session: Session = Depends(get_session),
    barbero: Barbero = Depends(get_current_barbero),
):
    return obtener_venta(session, venta_id, barbero.id)
