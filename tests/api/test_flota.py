from circuitos_common import (
    _get, _patch, _post, crear_avion, crear_usuario, crear_vuelo, obtener_vuelo, pasajero,
    ticket_inscrito,
)
from utils.fixtures import ADMIN, FECHA_CIRCUITO_4


def test_crear_avion_normaliza_matricula(client):
    avion = crear_avion(client, capacidad=4, matricula="cc-lmn")
    assert avion["matricula"] == "CC-LMN"
    assert avion["habilitado"] is True
    assert avion["max_circuitos_sin_reabastecimiento"] == 4


def test_matricula_duplicada(client):
    crear_avion(client, matricula="CC-DUP")
    r = _post(client, "/aircraft", {"matricula": "cc-dup", "modelo": "Piper PA-28", "capacidad": 4})
    assert r.status_code == 409
    assert "matricula" in r.get_json()["errors"]


def test_listar_flota_ordenada(client):
    crear_avion(client, matricula="CC-ZZZ")
    crear_avion(client, matricula="CC-AAA")
    matriculas = [a["matricula"] for a in _get(client, "/aircraft").get_json()]
    assert matriculas == ["CC-AAA", "CC-ZZZ"]


def test_capacidad_se_propaga_a_vuelos_abiertos(client):
    avion = crear_avion(client, capacidad=3)
    abierto = crear_vuelo(client, avion["_id"], 3)
    embarcando = crear_vuelo(client, avion["_id"], 4, fecha=FECHA_CIRCUITO_4)
    assert _post(client, f"/flights/{embarcando['_id']}/boarding").status_code == 200

    r = _patch(client, f"/aircraft/{avion['_id']}/capacity", {"capacidad": 5})
    assert r.status_code == 200
    body = r.get_json()
    assert body["aircraft"]["capacidad"] == 5
    assert body["vuelos_actualizados"] == [abierto["_id"]]

    vuelo = obtener_vuelo(client, abierto["_id"])
    assert vuelo["capacidad_total"] == 5
    assert sorted(s["seatNumber"] for s in vuelo["seats"]) == ["1A", "1B", "2A", "2B", "3A"]
    assert obtener_vuelo(client, embarcando["_id"])["capacidad_total"] == 3


def test_reducir_capacidad_omite_vuelos_con_mas_ocupados(client):
    avion = crear_avion(client, capacidad=3)
    lleno = crear_vuelo(client, avion["_id"], 3)
    vacio = crear_vuelo(client, avion["_id"], 4, fecha=FECHA_CIRCUITO_4)
    for _ in range(3):
        ticket_inscrito(client, lleno["_id"])

    r = _patch(client, f"/aircraft/{avion['_id']}/capacity", {"capacidad": 2})
    assert r.status_code == 200
    body = r.get_json()
    assert body["vuelos_omitidos"] == [lleno["_id"]]
    assert body["vuelos_actualizados"] == [vacio["_id"]]
    assert obtener_vuelo(client, lleno["_id"])["capacidad_total"] == 3
    assert len(obtener_vuelo(client, vacio["_id"])["seats"]) == 2


def test_reducir_capacidad_respeta_asientos_tomados(client):
    avion = crear_avion(client, capacidad=3)
    vuelo = crear_vuelo(client, avion["_id"], 3)
    usuario, ticket = ticket_inscrito(client, vuelo["_id"])
    r = _post(client, f"/flights/{vuelo['_id']}/seats/hold", {"seatNumber": "2A", "ticketId": ticket["_id"]},
              headers=pasajero(usuario["_id"]))
    assert r.status_code == 200

    r = _patch(client, f"/aircraft/{avion['_id']}/capacity", {"capacidad": 2})
    assert r.get_json()["vuelos_omitidos"] == [vuelo["_id"]]


def test_toggle_avion(client):
    avion = crear_avion(client)
    r = _patch(client, f"/aircraft/{avion['_id']}/toggle")
    assert r.status_code == 200
    assert r.get_json()["aircraft"]["habilitado"] is False
    r = _patch(client, f"/aircraft/{avion['_id']}/toggle")
    assert r.get_json()["aircraft"]["habilitado"] is True


def test_toggle_bloqueado_con_vuelo_en_operacion(client):
    avion = crear_avion(client)
    vuelo = crear_vuelo(client, avion["_id"], 3)
    assert _post(client, f"/flights/{vuelo['_id']}/start").status_code == 200

    r = _patch(client, f"/aircraft/{avion['_id']}/toggle")
    assert r.status_code == 409
    assert r.get_json()["errors"]["vuelos"] == ["1"]


def test_reabastecimiento_de_avion_inexistente(client):
    r = _post(client, "/refuelings", {"aircraftId": "no-existe", "litros": 50})
    assert r.status_code == 404


def test_solo_admin_crea_admin(client):
    r = _post(client, "/users", {"nombre": "Root", "email": "root@club.test", "rol": "admin"})
    assert r.status_code == 403
    r = _post(client, "/users", {"nombre": "Root", "email": "root@club.test", "rol": "admin"}, headers=ADMIN)
    assert r.status_code == 201


def test_email_de_usuario_duplicado(client):
    usuario = crear_usuario(client)
    r = _post(client, "/users", {"nombre": "Otra", "email": usuario["email"].upper()})
    assert r.status_code == 409


def test_notificaciones_propias(client, servicios):
    usuario = crear_usuario(client)
    servicios.notificador.notify(usuario["_id"], "info", "Hola", "Bienvenido al club")
    r = _get(client, "/notifications", headers=pasajero(usuario["_id"]))
    assert r.status_code == 200
    notificaciones = r.get_json()
    assert len(notificaciones) == 1
    assert notificaciones[0]["status"] == "pendiente"
    assert notificaciones[0]["leido"] is False
