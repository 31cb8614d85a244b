# tests/test_api.py
from datetime import datetime, timezone

PASSWORD = "secreto123"


def _cita_json(datos, cliente=None, fecha="2026-11-02T15:00:00", **extra):
    body = {
        "barbero_id": datos.barbero.id,
        "servicio_id": datos.corte.id,
        "fecha_hora": fecha,
        "cliente": {"id": cliente.id, "nombre": cliente.nombre} if cliente else {"nombre": "Walk-in"},
    }
    body.update(extra)
    return body


def _agendar(client, datos, **kwargs):
    r = client.post("/api/citas", json=_cita_json(datos, **kwargs))
    assert r.status_code == 201, r.text
    return r.json()["id"]


def test_salud(client):
    r = client.get("/api/salud")
    assert r.status_code == 200
    assert r.json()["estado"] == "ok"


# --------- Autenticación ---------

def test_login_y_perfil(client, datos):
    r = client.post(
        "/api/auth/login",
        data={"username": datos.barbero.email, "password": PASSWORD},
    )
    assert r.status_code == 200
    token = r.json()["access_token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "juan@barberia.test"


def test_login_con_clave_incorrecta(client, datos):
    r = client.post(
        "/api/auth/login",
        data={"username": datos.barbero.email, "password": "otra"},
    )
    assert r.status_code == 400


def test_rutas_protegidas_sin_token(client, datos):
    assert client.get("/api/citas/agenda").status_code == 401
    r = client.get("/api/ventas", headers={"Authorization": "Bearer basura"})
    assert r.status_code == 401


# --------- Catálogo ---------

def test_catalogo(client):
    servicios = [s["nombre"] for s in client.get("/api/servicios").json()]
    assert servicios == ["Barba", "Corte clásico"]

    con_stock = [p["nombre"] for p in client.get("/api/productos?con_stock=true").json()]
    assert con_stock == ["Cera mate"]
    assert len(client.get("/api/productos").json()) == 3


# --------- Citas ---------

def test_agendar_y_consultar_horarios(client, datos):
    r = client.post("/api/citas", json=_cita_json(datos, cliente=datos.c1))
    assert r.status_code == 201
    assert r.json()["estado"] == "scheduled"

    r = client.get(
        "/api/citas/horarios-reservados",
        params={"barbero_id": datos.barbero.id, "fecha": "2026-11-02"},
    )
    assert r.status_code == 200
    assert r.json() == ["2026-11-02T15:00:00"]


def test_fecha_con_zona_horaria_de_punta_a_punta(client, datos, auth):
    cita_id = _agendar(client, datos, cliente=datos.c1, fecha="2026-11-02T10:00:00-05:00")

    r = client.get(
        "/api/citas/horarios-reservados",
        params={"barbero_id": datos.barbero.id, "fecha": "2026-11-02"},
    )
    assert r.json() == ["2026-11-02T15:00:00"]

    r = client.post(
        f"/api/citas/{cita_id}/finalizar", headers=auth, json={"medio_pago": "efectivo"}
    )
    assert r.status_code == 200, r.text
    assert r.json()["cita"]["fecha_hora"] == "2026-11-02T15:00:00"
    assert r.json()["cita"]["estado"] == "completed"


def test_agendar_con_datos_incompletos(client, datos):
    body = _cita_json(datos)
    del body["servicio_id"]

    r = client.post("/api/citas", json=body)
    assert r.status_code == 400
    assert "servicio_id" in r.json()["detail"]


def test_agendar_duplicado_y_servicio_inexistente(client, datos):
    _agendar(client, datos, cliente=datos.c1)

    r = client.post(
        "/api/citas", json=_cita_json(datos, cliente=datos.c1, fecha="2026-11-02T18:00:00")
    )
    assert r.status_code == 409
    assert r.json()["detail"] == "Ya tienes una cita activa para este día."

    r = client.post("/api/citas", json=_cita_json(datos, servicio_id=999))
    assert r.status_code == 404


def test_ciclo_completo(client, datos, auth):
    cita_id = _agendar(client, datos, cliente=datos.c1)

    r = client.post(f"/api/citas/{cita_id}/cola", headers=auth)
    assert r.status_code == 200
    assert r.json()["estado"] == "waiting"
    assert r.json()["posicion_cola"] == 1

    r = client.post(f"/api/citas/{cita_id}/iniciar", headers=auth)
    assert r.json()["estado"] == "in_chair"

    r = client.post(
        f"/api/citas/{cita_id}/finalizar",
        headers=auth,
        json={
            "medio_pago": "efectivo",
            "servicios_extra": [{"servicio_id": datos.barba.id}],
            "productos": [{"producto_id": datos.cera.id, "cantidad": 1}],
        },
    )
    assert r.status_code == 200, r.text
    venta = r.json()
    assert venta["subtotal"] == 55000
    assert venta["total_final"] == 55000
    assert venta["cita"]["estado"] == "completed"

    r = client.get(f"/api/ventas/{venta['venta_id']}", headers=auth)
    assert r.status_code == 200
    assert len(r.json()["items"]) == 3

    # Segunda finalización rechazada
    r = client.post(
        f"/api/citas/{cita_id}/finalizar", headers=auth, json={"medio_pago": "efectivo"}
    )
    assert r.status_code == 409

    # No se cancela una cita completada
    r = client.post(f"/api/citas/{cita_id}/cancelar", headers=auth)
    assert r.status_code == 409

    hoy = datetime.now(timezone.utc).date().isoformat()
    ventas = client.get("/api/ventas", params={"fecha": hoy}, headers=auth).json()
    assert [v["id"] for v in ventas] == [venta["venta_id"]]

    resumen = client.get("/api/reportes/resumen", params={"fecha": hoy}, headers=auth).json()
    assert resumen["totales"]["monto_total"] == 55000
    assert resumen["totales"]["cantidad_ventas"] == 1

    agenda = client.get(
        "/api/citas/agenda", params={"fecha": "2026-11-02"}, headers=auth
    ).json()
    assert agenda[0]["venta"]["id"] == venta["venta_id"]


def test_corte_gratis_por_api(client, datos, auth):
    cita_id = _agendar(client, datos, cliente=datos.c2, usar_bono_fidelizacion=True)

    r = client.post(
        f"/api/citas/{cita_id}/finalizar", headers=auth, json={"medio_pago": "transferencia"}
    )
    assert r.status_code == 200
    assert r.json()["descuento"] == 15000
    assert r.json()["corte_gratis_redimido"] is True

    fid = client.get(f"/api/clientes/{datos.c2.id}/fidelizacion").json()
    assert fid["perfil"]["cortes_gratis_disponibles"] == 0
    assert len(fid["redenciones"]) == 1


def test_medio_de_pago_invalido(client, datos, auth):
    cita_id = _agendar(client, datos, cliente=datos.c1)

    r = client.post(
        f"/api/citas/{cita_id}/finalizar", headers=auth, json={"medio_pago": "cheque"}
    )
    assert r.status_code == 400


def test_cita_de_otro_barbero(client, datos, auth_otro):
    cita_id = _agendar(client, datos, cliente=datos.c1)

    r = client.post(f"/api/citas/{cita_id}/cola", headers=auth_otro)
    assert r.status_code == 403
    r = client.post(
        f"/api/citas/{cita_id}/finalizar", headers=auth_otro, json={"medio_pago": "efectivo"}
    )
    assert r.status_code == 403


def test_cita_inexistente(client, auth):
    assert client.post("/api/citas/9999/cola", headers=auth).status_code == 404


def test_cancelar_y_no_show(client, datos, auth):
    a = _agendar(client, datos, cliente=datos.c1)
    b = _agendar(client, datos, fecha="2026-11-02T17:00:00")

    r = client.post(f"/api/citas/{a}/cancelar", headers=auth, json={"motivo": "Viaje"})
    assert r.status_code == 200
    assert r.json()["estado"] == "cancelled"
    assert r.json()["notas"] == "Viaje"

    r = client.post(f"/api/citas/{b}/no-show", headers=auth)
    assert r.json()["estado"] == "no_show"

    r = client.post(f"/api/citas/{b}/iniciar", headers=auth)
    assert r.status_code == 409


def test_agenda_con_fecha_invalida(client, auth):
    r = client.get("/api/citas/agenda", params={"fecha": "ayer"}, headers=auth)
    assert r.status_code == 400


# --------- Clientes y fidelización ---------

def test_buscar_clientes(client, auth):
    r = client.get("/api/clientes/buscar", params={"q": "carl"}, headers=auth)
    assert r.status_code == 200
    assert [c["nombre"] for c in r.json()] == ["Carlos Pérez"]

    r = client.get("/api/clientes/buscar", params={"q": "c"}, headers=auth)
    assert r.status_code == 400


def test_fidelizacion_de_cliente(client, datos, auth):
    r = client.get(f"/api/clientes/{datos.c2.id}/fidelizacion")
    assert r.status_code == 200
    assert r.json()["perfil"]["cortes_gratis_disponibles"] == 1
    assert r.json()["bono_corte_gratis"] == 15000

    assert client.get("/api/clientes/999/fidelizacion").status_code == 404

    r = client.post(f"/api/clientes/{datos.c2.id}/fidelizacion/recalcular")
    assert r.status_code == 401
    r = client.post(f"/api/clientes/{datos.c2.id}/fidelizacion/recalcular", headers=auth)
    assert r.status_code == 200
    assert r.json()["cortes_realizados"] == 10


# --------- Venta directa ---------

def test_venta_directa_por_api(client, datos, auth):
    r = client.post(
        "/api/ventas",
        headers=auth,
        json={
            "medio_pago": "efectivo",
            "cliente_nombre": "Luis Mora",
            "servicios": [{"servicio_id": datos.barba.id}],
            "productos": [{"producto_id": datos.cera.id, "cantidad": 2}],
        },
    )
    assert r.status_code == 201, r.text
    venta = r.json()
    assert venta["total_final"] == 60000
    assert venta["descuento"] == 0
    assert venta["venta"]["cita_id"] is None
    assert venta["venta"]["cliente_nombre"] == "Luis Mora"

    detalle = client.get(f"/api/ventas/{venta['venta_id']}", headers=auth).json()
    assert len(detalle["items"]) == 2

    stock = {p["id"]: p["stock_actual"] for p in client.get("/api/productos").json()}
    assert stock[datos.cera.id] == 3


def test_venta_directa_invalida(client, datos, auth):
    r = client.post(
        "/api/ventas",
        headers=auth,
        json={
            "medio_pago": "efectivo",
            "cliente_nombre": "  ",
            "servicios": [{"servicio_id": datos.corte.id}],
        },
    )
    assert r.status_code == 400

    r = client.post(
        "/api/ventas", headers=auth, json={"medio_pago": "efectivo", "cliente_nombre": "Luis"}
    )
    assert r.status_code == 400

    r = client.post(
        "/api/ventas", json={"medio_pago": "efectivo", "cliente_nombre": "Luis"}
    )
    assert r.status_code == 401
