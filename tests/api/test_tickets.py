import pytest

from circuitos_common import (
    _get, _patch, _post, _delete, comprar, crear_avion, crear_usuario, crear_vuelo,
    obtener_vuelo, pasajero, ticket_inscrito,
)
from utils.fixtures import FECHA_CIRCUITO_4, PASAJERO_ADULTO, PASAJERO_INFANTE


@pytest.fixture
def vuelo(client):
    avion = crear_avion(client, capacidad=3)
    return crear_vuelo(client, avion["_id"], 3)


@pytest.fixture
def vuelo_reprogramado(client):
    """Vuelo del circuito 3 con dos tickets, reprogramado al circuito 4."""
    avion = crear_avion(client, capacidad=3)
    otro_avion = crear_avion(client, capacidad=3)
    f1 = crear_vuelo(client, avion["_id"], 3)
    crear_vuelo(client, otro_avion["_id"], 4, fecha=FECHA_CIRCUITO_4)
    usuario_1, ticket_1 = ticket_inscrito(client, f1["_id"])
    usuario_2, ticket_2 = ticket_inscrito(client, f1["_id"])
    r = _post(client, f"/flights/{f1['_id']}/reschedule", {"razon": "meteorologia"})
    assert r.status_code == 200, r.get_json()
    return {
        "resultado": r.get_json()["resultado"],
        "pasajeros": [(usuario_1, ticket_1), (usuario_2, ticket_2)],
    }


# -----------------------------
# Inscripción
# -----------------------------
def test_staff_registra_pasajero_con_tickets(client):
    r = _post(client, "/staff/passengers", {"nombre": "Eva Soto", "email": "eva@club.test", "cantidad_tickets": 3})
    assert r.status_code == 201
    body = r.get_json()
    assert len(body["tickets"]) == 3
    assert all(t["estado"] == "disponible" for t in body["tickets"])
    assert len({t["codigo_ticket"] for t in body["tickets"]}) == 3


def test_inscribir_requiere_pasajero_con_nombre(client, vuelo):
    r = _post(client, "/staff/passengers", {"nombre": "Eva Soto", "email": "eva@club.test", "cantidad_tickets": 1})
    ticket = r.get_json()["tickets"][0]

    r = _post(client, f"/tickets/{ticket['_id']}/inscribe", {"flightId": vuelo["_id"]})
    assert r.status_code == 400
    assert "pasajeros" in r.get_json()["errors"]

    r = _patch(client, f"/tickets/{ticket['_id']}", {"pasajeros": [PASAJERO_ADULTO]})
    assert r.status_code == 200
    r = _post(client, f"/tickets/{ticket['_id']}/inscribe", {"flightId": vuelo["_id"]})
    assert r.status_code == 200
    assert r.get_json()["ticket"]["estado"] == "inscrito"
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 1


def test_inscribir_ticket_ya_inscrito_es_conflicto(client, vuelo):
    _, ticket = ticket_inscrito(client, vuelo["_id"])
    r = _post(client, f"/tickets/{ticket['_id']}/inscribe", {"flightId": vuelo["_id"]})
    assert r.status_code == 409


def test_infante_entra_a_vuelo_lleno(client):
    avion = crear_avion(client, capacidad=1)
    lleno = crear_vuelo(client, avion["_id"], 3)
    ticket_inscrito(client, lleno["_id"])
    assert obtener_vuelo(client, lleno["_id"])["asientos_ocupados"] == 1

    usuario = crear_usuario(client)
    adulto, infante = comprar(client, usuario["_id"], pasajeros=[PASAJERO_ADULTO, PASAJERO_INFANTE])

    r = _post(client, f"/tickets/{adulto['_id']}/inscribe", {"flightId": lleno["_id"]}, headers=pasajero(usuario["_id"]))
    assert r.status_code == 409
    assert "asientos_ocupados" in r.get_json()["errors"]

    r = _post(client, f"/tickets/{infante['_id']}/inscribe", {"flightId": lleno["_id"]}, headers=pasajero(usuario["_id"]))
    assert r.status_code == 200
    assert obtener_vuelo(client, lleno["_id"])["asientos_ocupados"] == 1


def test_inscribir_en_vuelo_que_no_esta_abierto(client, vuelo):
    usuario = crear_usuario(client)
    ticket = comprar(client, usuario["_id"])[0]
    assert _post(client, f"/flights/{vuelo['_id']}/boarding").status_code == 200
    r = _post(client, f"/tickets/{ticket['_id']}/inscribe", {"flightId": vuelo["_id"]})
    assert r.status_code == 409


def test_pasajero_no_ve_ticket_ajeno(client, vuelo):
    _, ticket = ticket_inscrito(client, vuelo["_id"])
    otro = crear_usuario(client)
    r = _get(client, f"/tickets/{ticket['_id']}", headers=pasajero(otro["_id"]))
    assert r.status_code == 403


def test_listar_tickets_propios(client, vuelo):
    usuario, _ = ticket_inscrito(client, vuelo["_id"])
    ticket_inscrito(client, vuelo["_id"])
    r = _get(client, "/tickets", headers=pasajero(usuario["_id"]))
    assert r.status_code == 200
    assert [t["userId"] for t in r.get_json()] == [usuario["_id"]]


# -----------------------------
# Retiro y reasignación
# -----------------------------
def test_retirar_del_vuelo_libera_cupo_y_asiento(client, vuelo):
    usuario, ticket = ticket_inscrito(client, vuelo["_id"])
    headers = pasajero(usuario["_id"])
    r = _post(client, f"/flights/{vuelo['_id']}/seats/hold", {"seatNumber": "1A", "ticketId": ticket["_id"]}, headers=headers)
    assert r.status_code == 200

    r = _delete(client, f"/tickets/{ticket['_id']}/flight", headers=headers)
    assert r.status_code == 200
    body = r.get_json()["ticket"]
    assert body["estado"] == "disponible"
    assert body["flightId"] is None

    actualizado = obtener_vuelo(client, vuelo["_id"])
    assert actualizado["asientos_ocupados"] == 0
    assert all(s["status"] == "libre" for s in actualizado["seats"])


def test_retirar_ticket_disponible_es_conflicto(client):
    usuario = crear_usuario(client)
    ticket = comprar(client, usuario["_id"])[0]
    assert _delete(client, f"/tickets/{ticket['_id']}/flight").status_code == 409


def test_retirar_infante_descuenta_un_asiento(client, servicios, vuelo):
    usuario = crear_usuario(client)
    _, infante = comprar(client, usuario["_id"], flight_id=vuelo["_id"], pasajeros=[PASAJERO_ADULTO, PASAJERO_INFANTE])
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 1

    assert _delete(client, f"/tickets/{infante['_id']}/flight").status_code == 200
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 0


def test_retirar_infante_sin_descuento(client, servicios, vuelo):
    servicios.capacidad.descontar_infantes = False
    usuario = crear_usuario(client)
    _, infante = comprar(client, usuario["_id"], flight_id=vuelo["_id"], pasajeros=[PASAJERO_ADULTO, PASAJERO_INFANTE])

    assert _delete(client, f"/tickets/{infante['_id']}/flight").status_code == 200
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 1


def test_patch_mueve_ticket_entre_vuelos(client, vuelo):
    avion = crear_avion(client, capacidad=2)
    destino = crear_vuelo(client, avion["_id"], 4, fecha=FECHA_CIRCUITO_4)
    usuario, ticket = ticket_inscrito(client, vuelo["_id"])

    r = _patch(client, f"/tickets/{ticket['_id']}", {"flightId": destino["_id"]}, headers=pasajero(usuario["_id"]))
    assert r.status_code == 200
    assert r.get_json()["ticket"]["flightId"] == destino["_id"]
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 0
    assert obtener_vuelo(client, destino["_id"])["asientos_ocupados"] == 1


def test_patch_a_vuelo_lleno_no_toca_contadores(client, vuelo):
    avion = crear_avion(client, capacidad=1)
    lleno = crear_vuelo(client, avion["_id"], 4, fecha=FECHA_CIRCUITO_4)
    ticket_inscrito(client, lleno["_id"])
    _, ticket = ticket_inscrito(client, vuelo["_id"])

    r = _patch(client, f"/tickets/{ticket['_id']}", {"flightId": lleno["_id"]})
    assert r.status_code == 409
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 1
    assert obtener_vuelo(client, lleno["_id"])["asientos_ocupados"] == 1


def test_patch_convertir_en_infante_libera_asiento(client, vuelo):
    _, ticket = ticket_inscrito(client, vuelo["_id"])
    r = _patch(client, f"/tickets/{ticket['_id']}", {"pasajeros": [PASAJERO_INFANTE]})
    assert r.status_code == 200
    assert r.get_json()["ticket"]["pasajeros"][0]["esMenor"] is True
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 0


def test_patch_sin_cambios_es_invalido(client, vuelo):
    _, ticket = ticket_inscrito(client, vuelo["_id"])
    r = _patch(client, f"/tickets/{ticket['_id']}", {})
    assert r.status_code == 400
    assert "_schema" in r.get_json()["errors"]


# -----------------------------
# Ofertas de reprogramación
# -----------------------------
def test_aceptar_reprogramacion(client, vuelo_reprogramado):
    usuario, ticket = vuelo_reprogramado["pasajeros"][0]
    nuevo = vuelo_reprogramado["resultado"]["nuevoFlightId"]

    r = _post(client, f"/tickets/{ticket['_id']}/reschedule/accept", headers=pasajero(usuario["_id"]))
    assert r.status_code == 200
    body = r.get_json()["ticket"]
    assert body["flightId"] == nuevo
    assert body["estado"] == "inscrito"
    assert body["reprogramacion_pendiente"] is None
    # Los contadores ya se movieron al reprogramar
    assert obtener_vuelo(client, nuevo)["asientos_ocupados"] == 2


def test_rechazar_reprogramacion_con_devolucion(client, servicios, vuelo_reprogramado):
    usuario, ticket = vuelo_reprogramado["pasajeros"][0]
    nuevo = vuelo_reprogramado["resultado"]["nuevoFlightId"]

    r = _post(client, f"/tickets/{ticket['_id']}/reschedule/reject", {"monto": 15000}, headers=pasajero(usuario["_id"]))
    assert r.status_code == 200
    body = r.get_json()
    assert body["ticket"]["estado"] == "cancelado"
    assert body["ticket"]["flightId"] is None
    assert body["payment"]["monto"] == -15000
    assert body["payment"]["tipo"] == "devolucion"
    assert obtener_vuelo(client, nuevo)["asientos_ocupados"] == 1

    tipos = [n["tipo"] for n in servicios.store.find("notifications", userId=usuario["_id"])]
    assert "reprogramacion" in tipos and "cancelacion" in tipos


@pytest.mark.parametrize("monto", [0, -10])
def test_rechazo_con_monto_invalido(client, vuelo_reprogramado, monto):
    _, ticket = vuelo_reprogramado["pasajeros"][0]
    r = _post(client, f"/tickets/{ticket['_id']}/reschedule/reject", {"monto": monto})
    assert r.status_code == 400
    assert "monto" in r.get_json()["errors"]


def test_rechazo_sin_reprogramacion_pendiente(client, vuelo):
    _, ticket = ticket_inscrito(client, vuelo["_id"])
    r = _post(client, f"/tickets/{ticket['_id']}/reschedule/reject", {"monto": 15000})
    assert r.status_code == 409


def test_elegir_circuito(client, vuelo):
    avion = crear_avion(client, capacidad=2)
    destino = crear_vuelo(client, avion["_id"], 5, fecha=FECHA_CIRCUITO_4)
    _, ticket = ticket_inscrito(client, vuelo["_id"])

    r = _post(client, f"/tickets/{ticket['_id']}/reschedule/choose", {"numero_circuito": 5})
    assert r.status_code == 200
    assert r.get_json()["ticket"]["flightId"] == destino["_id"]
    assert obtener_vuelo(client, destino["_id"])["asientos_ocupados"] == 1
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 0


def test_elegir_circuito_sin_cupo(client, vuelo):
    _, ticket = ticket_inscrito(client, vuelo["_id"])
    r = _post(client, f"/tickets/{ticket['_id']}/reschedule/choose", {"numero_circuito": 9})
    assert r.status_code == 404
    assert r.get_json()["errors"]["numero_circuito"] == ["9"]


# -----------------------------
# Ofertas de cambio de hora
# -----------------------------
@pytest.fixture
def con_cambio_hora(client):
    avion = crear_avion(client, capacidad=3)
    vuelo = crear_vuelo(client, avion["_id"], 3, hora_prevista="2025-03-30T15:00:00Z")
    usuario, ticket = ticket_inscrito(client, vuelo["_id"])
    r = _patch(client, f"/flights/{vuelo['_id']}/hora-prevista", {"hora_prevista_salida": "2025-03-30T15:40:00Z"})
    assert r.status_code == 200
    assert r.get_json()["ofertas"] == 1
    return vuelo, usuario, ticket


def test_cambio_hora_crea_oferta(client, servicios, con_cambio_hora):
    _, usuario, ticket = con_cambio_hora
    guardado = _get(client, f"/tickets/{ticket['_id']}").get_json()
    assert guardado["cambio_hora_pendiente"]["hora_anterior"].startswith("2025-03-30T15:00")
    assert guardado["cambio_hora_pendiente"]["hora_nueva"].startswith("2025-03-30T15:40")
    notificaciones = servicios.store.find("notifications", userId=usuario["_id"], tipo="cambio_hora")
    assert len(notificaciones) == 1


def test_primera_hora_prevista_no_genera_oferta(client):
    avion = crear_avion(client)
    vuelo = crear_vuelo(client, avion["_id"], 3)
    ticket_inscrito(client, vuelo["_id"])
    r = _patch(client, f"/flights/{vuelo['_id']}/hora-prevista", {"hora_prevista_salida": "2025-03-30T15:40:00Z"})
    assert r.get_json()["ofertas"] == 0


def test_aceptar_cambio_hora(client, con_cambio_hora):
    _, usuario, ticket = con_cambio_hora
    r = _post(client, f"/tickets/{ticket['_id']}/timechange/accept", headers=pasajero(usuario["_id"]))
    assert r.status_code == 200
    assert r.get_json()["ticket"]["cambio_hora_pendiente"] is None
    assert r.get_json()["ticket"]["estado"] == "inscrito"


def test_rechazar_cambio_hora_con_devolucion(client, con_cambio_hora):
    vuelo, usuario, ticket = con_cambio_hora
    r = _post(
        client, f"/tickets/{ticket['_id']}/timechange/reject",
        {"accion": "devolucion", "monto": 15000}, headers=pasajero(usuario["_id"]),
    )
    assert r.status_code == 200
    assert r.get_json()["ticket"]["estado"] == "cancelado"
    assert r.get_json()["payment"]["monto"] == -15000
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 0


def test_rechazar_cambio_hora_reprogramando(client, con_cambio_hora):
    vuelo, usuario, ticket = con_cambio_hora
    avion = crear_avion(client, capacidad=2)
    destino = crear_vuelo(client, avion["_id"], 4, fecha=FECHA_CIRCUITO_4)

    r = _post(
        client, f"/tickets/{ticket['_id']}/timechange/reject",
        {"accion": "reprogramar", "numero_circuito": 4}, headers=pasajero(usuario["_id"]),
    )
    assert r.status_code == 200
    body = r.get_json()
    assert body["ticket"]["flightId"] == destino["_id"]
    assert body["ticket"]["cambio_hora_pendiente"] is None
    assert body["payment"] is None
    assert obtener_vuelo(client, vuelo["_id"])["asientos_ocupados"] == 0


@pytest.mark.parametrize(
    "payload, campo",
    [
        ({"accion": "devolucion"}, "monto"),
        ({"accion": "reprogramar"}, "numero_circuito"),
        ({"accion": "esperar"}, "accion"),
    ],
)
def test_rechazo_cambio_hora_validacion(client, con_cambio_hora, payload, campo):
    _, _, ticket = con_cambio_hora
    r = _post(client, f"/tickets/{ticket['_id']}/timechange/reject", payload)
    assert r.status_code == 400
    assert campo in r.get_json()["errors"]
