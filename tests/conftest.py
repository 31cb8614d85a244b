# tests/conftest.py
from datetime import datetime
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from barberia_core.core_app import app
from barberia_core.db import modelos  # noqa: F401
from barberia_core.db.conexion import get_session
from barberia_core.db.modelos import Barbero, Cliente, Producto, Servicio
from barberia_core.security import create_access_token, get_password_hash
from barberia_core.servicios.citas import CitaCreate, ClienteCita, crear_cita

PASSWORD = "secreto123"
DIA = datetime(2026, 11, 2, 15, 0)


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture(name="datos")
def datos_fixture(session):
    barbero = Barbero(
        email="juan@barberia.test",
        nombre="Juan",
        password_hash=get_password_hash(PASSWORD),
    )
    otro = Barbero(
        email="pedro@barberia.test",
        nombre="Pedro",
        password_hash=get_password_hash(PASSWORD),
    )
    corte = Servicio(nombre="Corte clásico", precio=20000, duracion_minutos=30)
    barba = Servicio(nombre="Barba", precio=10000, duracion_minutos=15)
    retirado = Servicio(nombre="Tinte", precio=40000, duracion_minutos=60, activo=False)
    cera = Producto(nombre="Cera mate", precio=25000, stock_actual=5)
    shampoo = Producto(nombre="Shampoo", precio=18000, stock_actual=None)
    agotado = Producto(nombre="Aceite para barba", precio=30000, stock_actual=0)
    c1 = Cliente(nombre="Carlos Pérez", telefono="3001234567", email="carlos@mail.test")
    c2 = Cliente(
        nombre="Andrés Gómez",
        telefono="3109876543",
        cortes_realizados=10,
        cortes_gratis_disponibles=1,
        puntos_experiencia=95,
        visitas_totales=10,
        dinero_gastado_total=200000,
    )
    for obj in (barbero, otro, corte, barba, retirado, cera, shampoo, agotado, c1, c2):
        session.add(obj)
    session.commit()

    return SimpleNamespace(
        barbero=barbero,
        otro=otro,
        corte=corte,
        barba=barba,
        retirado=retirado,
        cera=cera,
        shampoo=shampoo,
        agotado=agotado,
        c1=c1,
        c2=c2,
    )


@pytest.fixture(name="agendar")
def agendar_fixture(session, datos):
    """Agenda una cita con valores por defecto razonables."""

    def _agendar(
        cliente=None,
        fecha_hora=DIA,
        servicio=None,
        barbero=None,
        nombre="Carlos Pérez",
        usar_bono=False,
    ):
        datos_cita = CitaCreate(
            barbero_id=(barbero or datos.barbero).id,
            servicio_id=(servicio or datos.corte).id,
            fecha_hora=fecha_hora,
            cliente=ClienteCita(
                id=cliente.id if cliente else None,
                nombre=cliente.nombre if cliente else nombre,
            ),
            usar_bono_fidelizacion=usar_bono,
        )
        return crear_cita(session, datos_cita)

    return _agendar


@pytest.fixture(name="client")
def client_fixture(engine, datos):
    def get_session_override():
        with Session(engine, expire_on_commit=False) as session:
            yield session

    app.dependency_overrides[get_session] = get_session_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="auth")
def auth_fixture(datos):
    token = create_access_token(datos.barbero.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(name="auth_otro")
def auth_otro_fixture(datos):
    token = create_access_token(datos.otro.email)
    return {"Authorization": f"Bearer {token}"}
