# tests/test_crear_barbero.py
from crear_barbero import crear_o_actualizar_barbero
from barberia_core.security import verify_password


def test_crea_barbero_nuevo(session):
    barbero = crear_o_actualizar_barbero(session, "nuevo@barberia.test", "Nuevo", "clave1")

    assert barbero.id is not None
    assert barbero.activo is True
    assert verify_password("clave1", barbero.password_hash)


def test_resetea_clave_y_reactiva(session, datos):
    datos.barbero.activo = False
    session.add(datos.barbero)
    session.commit()

    barbero = crear_o_actualizar_barbero(session, datos.barbero.email, "", "nueva-clave")

    assert barbero.id == datos.barbero.id
    assert barbero.activo is True
    assert barbero.nombre == "Juan"
    assert verify_password("nueva-clave", barbero.password_hash)
