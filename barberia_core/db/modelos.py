# barberia_core/db/modelos.py
from typing import Optional
from datetime import datetime, date, timezone
from enum import Enum

from sqlalchemy import Date, DateTime, Index, text
from sqlmodel import SQLModel, Field


def ahora_utc() -> datetime:
    """
    Momento actual en UTC, sin tzinfo. Todas las columnas datetime son
    DateTime() naive explícito, sin depender del tipo por defecto de SQLModel.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =========================
# Enums base
# =========================

class EstadoCita(str, Enum):
    """
    Estados de la cita. Solo avanzan hacia adelante:
    scheduled -> waiting -> in_chair -> completed,
    y scheduled/waiting -> cancelled | no_show.
    """
    scheduled = "scheduled"
    waiting = "waiting"
    in_chair = "in_chair"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"


# Estados que todavía ocupan agenda (no terminales)
ESTADOS_ACTIVOS = (EstadoCita.scheduled, EstadoCita.waiting, EstadoCita.in_chair)
ESTADOS_TERMINALES = (EstadoCita.completed, EstadoCita.cancelled, EstadoCita.no_show)

_SQL_ESTADOS_ACTIVOS = "estado IN ('scheduled', 'waiting', 'in_chair')"


class EtapaCola(str, Enum):
    """
    Proyección gruesa del estado, la que muestra la pantalla de la sala de espera.
    """
    cola = "cola"
    atendiendo = "atendiendo"
    finalizado = "finalizado"


class MedioPago(str, Enum):
    efectivo = "efectivo"
    transferencia = "transferencia"
    fiado = "fiado"


class TipoItem(str, Enum):
    servicio = "servicio"
    producto = "producto"


class TipoMovimiento(str, Enum):
    apertura = "apertura"  # contadores que el cliente ya traía
    acumulacion = "acumulacion"
    redencion = "redencion"


# =========================
# Barberos
# =========================

class Barbero(SQLModel, table=True):
    """
    Barbero del local (para login y para ser dueño de sus citas).
    """
    __tablename__ = "barberos"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    nombre: Optional[str] = Field(
        default=None,
        description="Nombre visible del barbero"
    )
    password_hash: str = Field(description="Hash de la contraseña")
    activo: bool = Field(default=True)


# =========================
# Catálogo
# =========================

class Servicio(SQLModel, table=True):
    __tablename__ = "servicios"

    id: Optional[int] = Field(default=None, primary_key=True)
    nombre: str
    precio: float = Field(ge=0)
    duracion_minutos: int = Field(default=30, description="Duración típica en minutos")
    activo: bool = Field(default=True)


class Producto(SQLModel, table=True):
    __tablename__ = "productos"

    id: Optional[int] = Field(default=None, primary_key=True)
    nombre: str = Field(index=True)
    precio: float = Field(ge=0)
    stock_actual: Optional[int] = Field(
        default=None,
        description="None = no se lleva inventario de este producto"
    )
    stock_minimo: int = Field(default=0)
    activo: bool = Field(
        default=True,
        description="Permite dar de baja lógica sin perder histórico"
    )


# =========================
# Clientes (perfil de fidelización)
# =========================

class Cliente(SQLModel, table=True):
    """
    Perfil de fidelización. Los contadores son una proyección de
    movimientos_fidelizacion y solo se tocan con UPDATE atómicos.
    """
    __tablename__ = "clientes"

    id: Optional[int] = Field(default=None, primary_key=True)
    nombre: str
    telefono: Optional[str] = Field(default=None, index=True)
    email: Optional[str] = Field(default=None, index=True)

    cortes_realizados: int = Field(default=0, description="Cortes pagados")
    cortes_gratis_disponibles: int = Field(default=0, ge=0)
    puntos_experiencia: int = Field(default=0)
    nivel_actual: int = Field(default=1, ge=1)
    visitas_totales: int = Field(default=0)
    dinero_gastado_total: float = Field(default=0.0)
    ultima_visita: Optional[datetime] = Field(default=None, sa_type=DateTime())


# =========================
# Citas
# =========================

class Cita(SQLModel, table=True):
    """
    Una visita de un cliente a un barbero por un servicio.
    Nunca se borra: los estados terminales son definitivos.
    """
    __tablename__ = "citas"
    __table_args__ = (
        # Un cliente identificado no puede tener dos citas activas el mismo día
        Index(
            "uq_citas_cliente_dia_activa",
            "cliente_id",
            "dia",
            unique=True,
            sqlite_where=text(_SQL_ESTADOS_ACTIVOS),
            postgresql_where=text(_SQL_ESTADOS_ACTIVOS),
        ),
        # Ni dos cortes gratis pendientes a la vez
        Index(
            "uq_citas_cliente_bono_activo",
            "cliente_id",
            unique=True,
            sqlite_where=text(f"usar_bono_fidelizacion AND {_SQL_ESTADOS_ACTIVOS}"),
            postgresql_where=text(f"usar_bono_fidelizacion AND {_SQL_ESTADOS_ACTIVOS}"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    barbero_id: int = Field(foreign_key="barberos.id", index=True)
    servicio_id: int = Field(foreign_key="servicios.id")
    cliente_id: Optional[int] = Field(
        default=None,
        foreign_key="clientes.id",
        index=True,
        description="None para walk-ins anónimos"
    )

    cliente_nombre: str
    cliente_telefono: Optional[str] = None
    cliente_email: Optional[str] = None

    fecha_hora: datetime = Field(
        sa_type=DateTime(), index=True, description="Inicio agendado (UTC)"
    )
    dia: date = Field(sa_type=Date(), index=True, description="Día UTC de fecha_hora")
    duracion_estimada: Optional[int] = None
    precio_cobrado: Optional[float] = Field(
        default=None,
        description="Precio del servicio al momento de agendar"
    )
    notas: Optional[str] = None

    estado: EstadoCita = Field(default=EstadoCita.scheduled, index=True)
    etapa_cola: EtapaCola = Field(default=EtapaCola.cola)
    posicion_cola: Optional[int] = None
    hora_llegada: Optional[datetime] = Field(default=None, sa_type=DateTime())
    hora_inicio_atencion: Optional[datetime] = Field(default=None, sa_type=DateTime())
    hora_finalizacion: Optional[datetime] = Field(default=None, sa_type=DateTime())

    usar_bono_fidelizacion: bool = Field(default=False)
    venta_generada: bool = Field(default=False)

    creada_en: datetime = Field(default_factory=ahora_utc, sa_type=DateTime())


# =========================
# Ventas e items de venta
# =========================

class Venta(SQLModel, table=True):
    """
    Encabezado de una venta. Registro de auditoría, no se edita.
    """
    __tablename__ = "ventas"

    id: Optional[int] = Field(default=None, primary_key=True)
    cita_id: Optional[int] = Field(
        default=None,
        foreign_key="citas.id",
        unique=True,
        description="Cita que originó la venta (1:1)"
    )
    barbero_id: int = Field(foreign_key="barberos.id", index=True)
    cliente_id: Optional[int] = Field(default=None, foreign_key="clientes.id", index=True)
    cliente_nombre: Optional[str] = Field(
        default=None,
        description="Solo en ventas directas, sin cita"
    )

    subtotal: float = Field(ge=0, description="Suma de items")
    descuento: float = Field(default=0.0, ge=0)
    total_final: float = Field(ge=0, description="subtotal - descuento")
    es_corte_gratis: bool = Field(default=False)
    motivo_redencion: Optional[str] = None

    medio_pago: MedioPago = Field(default=MedioPago.efectivo)
    notas: Optional[str] = None
    fecha_hora: datetime = Field(
        default_factory=ahora_utc,
        sa_type=DateTime(),
        index=True,
        description="Momento de la venta"
    )


class ItemVenta(SQLModel, table=True):
    """
    Detalle de cada servicio o producto cobrado en una venta.
    """
    __tablename__ = "items_venta"

    id: Optional[int] = Field(default=None, primary_key=True)

    venta_id: int = Field(
        foreign_key="ventas.id",
        index=True,
        description="Venta a la que pertenece este item"
    )
    tipo: TipoItem
    servicio_id: Optional[int] = Field(default=None, foreign_key="servicios.id")
    producto_id: Optional[int] = Field(default=None, foreign_key="productos.id")

    nombre: str = Field(description="Nombre al momento de la venta")
    cantidad: int = Field(gt=0)
    precio_unitario: float = Field(ge=0)
    subtotal: float = Field(
        ge=0,
        description="cantidad * precio_unitario (guardado para histórico)"
    )


# =========================
# Fidelización: auditoría y libro de movimientos
# =========================

class CorteRedimido(SQLModel, table=True):
    """
    Prueba de que se consumió un corte gratis y cuánto descontó.
    Solo se inserta, nunca se modifica.
    """
    __tablename__ = "cortes_redimidos"

    id: Optional[int] = Field(default=None, primary_key=True)
    cliente_id: int = Field(foreign_key="clientes.id", index=True)
    venta_id: int = Field(foreign_key="ventas.id")
    cita_id: int = Field(foreign_key="citas.id")
    monto_original: float
    monto_descuento: float
    total_final: float
    creado_en: datetime = Field(default_factory=ahora_utc, sa_type=DateTime())


class MovimientoFidelizacion(SQLModel, table=True):
    """
    Delta aplicado a los contadores de un cliente por una visita.
    Los contadores de Cliente se pueden reconstruir sumando estas filas.
    """
    __tablename__ = "movimientos_fidelizacion"

    id: Optional[int] = Field(default=None, primary_key=True)
    cliente_id: int = Field(foreign_key="clientes.id", index=True)
    venta_id: Optional[int] = Field(default=None, foreign_key="ventas.id")
    cita_id: Optional[int] = Field(default=None, foreign_key="citas.id")
    tipo: TipoMovimiento

    delta_cortes: int = 0
    delta_cortes_gratis: int = 0
    delta_experiencia: int = 0
    delta_visitas: int = 0
    delta_gasto: float = 0.0
    creado_en: datetime = Field(default_factory=ahora_utc, sa_type=DateTime(), index=True)
