import pytest

from circuitos_common import (
    _get, _post, comprar, crear_avion, crear_usuario, crear_vuelo, obtener_vuelo, pasajero,
    ticket_inscrito,
)
from utils.fixtures import PASAJERO_ADULTO, PASAJERO_INFANTE


@pytest.fixture
def vuelo(client):
    avion = crear_avion(client, capacidad=3)
    return crear_vuelo(client, avion["_id"], 3)


def _reservar(client, usuario, flight_id, cantidad):
    return _post(
        client, "/reservations", {"flightId": flight_id, "cantidadPasajeros": cantidad},
        headers=pasajero(usuario["_id"]),
    )


# -----------------------------
# Reconciliación
# -----------------------------
def test_reconciliar_corrige_deriva(client, servicios, vuelo):
    ticket_inscrito(client, vuelo["_id"])
    ticket_inscrito(client, vuelo["_id"])
    servicios.store.update("flights", vuelo["_id"], {"asientos_ocupados": 0})

    r = _post(client, "/maintenance/reconcile-seats")
    assert r.status_code == 200
    reporte = r.get_json()
    assert reporte["corregidos"] == 1
    fila = next(f for f in reporte["resultados"] if f["flightId"] == vuelo["_id"])
    assert fila["antes"] == 0
    assert fila["despues"] == 2
    assert fila["corregido"] is True
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 2


def test_reconciliar_sin_deriva_no_cambia_nada(client, vuelo):
    usuario = crear_usuario(client)
    comprar(client, usuario["_id"], flight_id=vuelo["_id"], pasajeros=[PASAJERO_ADULTO, PASAJERO_INFANTE])
    _reservar(client, usuario, vuelo["_id"], 1)

    reporte = _post(client, "/maintenance/reconcile-seats").get_json()
    fila = reporte["resultados"][0]
    assert (fila["normales"], fila["infantes"], fila["reservados"]) == (1, 1, 1)
    assert fila["despues"] == 2
    assert reporte["corregidos"] == 0


def test_reconciliar_vuelo_sobrevendido_queda_en_capacidad(client, servicios, vuelo):
    for _ in range(3):
        ticket_inscrito(client, vuelo["_id"])
    usuario = crear_usuario(client)
    extra = comprar(client, usuario["_id"])[0]
    servicios.store.update("tickets", extra["_id"], {"flightId": vuelo["_id"], "estado": "inscrito"})

    reporte = _post(client, "/maintenance/reconcile-seats").get_json()
    assert reporte["resultados"][0]["despues"] == 3


def test_reconciliar_requiere_staff(client, vuelo):
    usuario = crear_usuario(client)
    r = _post(client, "/maintenance/reconcile-seats", headers=pasajero(usuario["_id"]))
    assert r.status_code == 403


# -----------------------------
# Reservas
# -----------------------------
def test_reserva_descuenta_cupos(client, vuelo):
    usuario = crear_usuario(client)
    r = _reservar(client, usuario, vuelo["_id"], 2)
    assert r.status_code == 201
    reserva = r.get_json()["reservation"]
    assert reserva["status"] == "active"
    assert reserva["expiresAt"].startswith("2025-03-30T14:05")
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 2

    otro = crear_usuario(client)
    r = _reservar(client, otro, vuelo["_id"], 2)
    assert r.status_code == 409
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 2


def test_liberar_reserva(client, vuelo):
    usuario = crear_usuario(client)
    reserva = _reservar(client, usuario, vuelo["_id"], 2).get_json()["reservation"]

    otro = crear_usuario(client)
    r = _post(client, f"/reservations/{reserva['_id']}/release", headers=pasajero(otro["_id"]))
    assert r.status_code == 403

    r = _post(client, f"/reservations/{reserva['_id']}/release", headers=pasajero(usuario["_id"]))
    assert r.status_code == 200
    assert r.get_json()["reservation"]["status"] == "cancelled"
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 0

    r = _post(client, f"/reservations/{reserva['_id']}/release", headers=pasajero(usuario["_id"]))
    assert r.status_code == 409


def test_reserva_vencida_devuelve_cupos_en_sweep(client, reloj, vuelo):
    usuario = crear_usuario(client)
    reserva = _reservar(client, usuario, vuelo["_id"], 3).get_json()["reservation"]

    reloj.avanzar(minutes=6)
    r = _post(client, "/maintenance/sweep")
    assert r.get_json()["reservas_expiradas"] == 1
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 0
    assert _get(client, f"/reservations/{reserva['_id']}").get_json()["status"] == "expired"


# -----------------------------
# Compras
# -----------------------------
def test_compra_directa_inscribe_y_registra_pago(client, servicios, vuelo):
    usuario = crear_usuario(client)
    r = _post(client, "/purchases", {
        "userId": usuario["_id"],
        "flightId": vuelo["_id"],
        "pasajeros": [PASAJERO_ADULTO, {"nombre": "Luis Rojas", "esMenor": True}],
        "metodo": "transbank",
    })
    assert r.status_code == 201
    body = r.get_json()
    assert len(body["tickets"]) == 2
    assert all(t["estado"] == "inscrito" for t in body["tickets"])
    assert body["payment"]["monto"] == 30000
    assert body["payment"]["tipo"] == "compra"
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 2


def test_compra_sin_vuelo_deja_tickets_disponibles(client, vuelo):
    usuario = crear_usuario(client)
    tickets = comprar(client, usuario["_id"])
    assert tickets[0]["estado"] == "disponible"
    assert tickets[0]["flightId"] is None
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 0


def test_compra_con_reserva_e_infante(client, servicios, vuelo):
    usuario = crear_usuario(client)
    reserva = _reservar(client, usuario, vuelo["_id"], 2).get_json()["reservation"]
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 2

    tickets = comprar(
        client, usuario["_id"], pasajeros=[PASAJERO_ADULTO, PASAJERO_INFANTE], reservation_id=reserva["_id"],
    )
    assert [t["flightId"] for t in tickets] == [vuelo["_id"], vuelo["_id"]]
    # El infante no ocupa asiento: su cupo reservado vuelve al vuelo
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 1
    assert servicios.store.get("reservations", reserva["_id"])["status"] == "confirmed"


def test_compra_con_reserva_vencida(client, reloj, vuelo):
    usuario = crear_usuario(client)
    reserva = _reservar(client, usuario, vuelo["_id"], 1).get_json()["reservation"]
    reloj.avanzar(minutes=5)
    r = _post(client, "/purchases", {
        "userId": usuario["_id"], "reservationId": reserva["_id"], "pasajeros": [PASAJERO_ADULTO],
    })
    assert r.status_code == 410


def test_compra_con_reserva_de_otro_tamano(client, vuelo):
    usuario = crear_usuario(client)
    reserva = _reservar(client, usuario, vuelo["_id"], 2).get_json()["reservation"]
    r = _post(client, "/purchases", {
        "userId": usuario["_id"], "reservationId": reserva["_id"], "pasajeros": [PASAJERO_ADULTO],
    })
    assert r.status_code == 400
    assert "pasajeros" in r.get_json()["errors"]


def test_compra_con_reserva_ajena(client, vuelo):
    usuario = crear_usuario(client)
    otro = crear_usuario(client)
    reserva = _reservar(client, usuario, vuelo["_id"], 1).get_json()["reservation"]
    r = _post(client, "/purchases", {
        "userId": otro["_id"], "reservationId": reserva["_id"], "pasajeros": [PASAJERO_ADULTO],
    })
    assert r.status_code == 403


def test_compra_con_reserva_de_vuelo_ya_no_abierto(client, servicios, vuelo):
    usuario = crear_usuario(client)
    reserva = _reservar(client, usuario, vuelo["_id"], 1).get_json()["reservation"]
    assert _post(client, f"/flights/{vuelo['_id']}/boarding").status_code == 200

    r = _post(client, "/purchases", {
        "userId": usuario["_id"], "reservationId": reserva["_id"], "pasajeros": [PASAJERO_ADULTO],
    })
    assert r.status_code == 409
    assert r.get_json()["errors"]["estado"] == ["boarding"]
    assert servicios.store.count("tickets", userId=usuario["_id"]) == 0
    assert servicios.store.get("reservations", reserva["_id"])["status"] == "active"


@pytest.mark.parametrize(
    "case_id, cambios, status",
    [
        ("USUARIO_INEXISTENTE", {"userId": "no-existe"}, 404),
        ("SIN_PASAJEROS", {"pasajeros": []}, 400),
        ("METODO_INVALIDO", {"metodo": "cheque"}, 400),
        ("PASAJERO_SIN_NOMBRE", {"pasajeros": [{"nombre": "  "}]}, 400),
        ("VUELO_Y_RESERVA", {"flightId": "f-1", "reservationId": "r-1"}, 400),
    ],
)
def test_compra_invalida(client, case_id, cambios, status):
    usuario = crear_usuario(client)
    payload = dict({"userId": usuario["_id"], "pasajeros": [PASAJERO_ADULTO]}, **cambios)
    r = _post(client, "/purchases", payload)
    assert r.status_code == status, case_id


def test_pasajero_no_registra_compras(client, servicios, vuelo):
    usuario = crear_usuario(client)
    r = _post(client, "/purchases", {
        "userId": usuario["_id"], "flightId": vuelo["_id"], "pasajeros": [PASAJERO_ADULTO], "monto": 1,
    }, headers=pasajero(usuario["_id"]))
    assert r.status_code == 403
    assert servicios.store.count("payments") == 0
    assert servicios.store.count("tickets", userId=usuario["_id"]) == 0
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 0
