# Standard Library
import json
import logging
from collections import Counter

# Flask
from flask import Blueprint, current_app, jsonify, request

from .errores import Forbidden, InvalidInput
from .modelos import ROL_ADMIN, ROL_PASAJERO, ROL_STAFF, ROLES_STAFF, a_json
from .schemas import (
    asiento_schema, avion_schema, capacidad_schema, compra_schema, elegir_circuito_schema,
    escanear_pase_schema, hora_prevista_schema, inscribir_schema, liberar_asiento_schema,
    razon_schema, reabastecimiento_schema, rechazo_cambio_hora_schema, rechazo_schema,
    registro_pasajero_schema, reserva_schema, tanda_schema, ticket_patch_schema,
    usuario_schema, vuelo_patch_schema, vuelo_schema,
)

bp = Blueprint("fila_aerea", __name__)

TODOS = (ROL_PASAJERO, ROL_STAFF, ROL_ADMIN)
STAFF = (ROL_STAFF, ROL_ADMIN)


# -----------------------------
# Utilidades
# -----------------------------
def detectar_claves_duplicadas(raw_data):
    if not raw_data or not raw_data.strip():
        return []
    try:
        duplicadas = []
        def hook(pairs):
            # Solo cuenta repeticiones dentro del mismo objeto
            for clave, count in Counter(k for k, _ in pairs).items():
                if count > 1 and clave not in duplicadas:
                    duplicadas.append(clave)
            return dict(pairs)
        json.loads(raw_data, object_pairs_hook=hook)
        return duplicadas
    except ValueError as e:
        logging.warning("No se pudo analizar duplicados en el JSON: %s", str(e))
        return []


def _leer_json(schema):
    raw_json = request.get_data(as_text=True)
    duplicadas = detectar_claves_duplicadas(raw_json)
    if duplicadas:
        raise InvalidInput(
            f"Se detectaron campos duplicados: {', '.join(duplicadas)}",
            {"json": [f"Duplicada(s): {', '.join(duplicadas)}"]},
        )
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput("No se recibió ningún cuerpo JSON.", {"body": ["Body vacío o mal formado"]})
    return schema.load(data)


def _servicios():
    return current_app.extensions["fila_aerea"]


def _principal(*roles):
    """Usuario autenticado por el gateway externo (cabeceras X-User-Id / X-User-Role)."""
    user_id = request.headers.get("X-User-Id")
    rol = request.headers.get("X-User-Role")
    if not user_id or not rol:
        raise Forbidden("Falta el usuario autenticado.", {"headers": ["X-User-Id y X-User-Role son obligatorios"]})
    if roles and rol not in roles:
        raise Forbidden("No tienes permisos para esta operación.", {"rol": [rol]})
    return {"userId": user_id, "rol": rol}


def _es_staff(principal):
    return principal["rol"] in ROLES_STAFF


def _ticket_propio(ticket_id, principal):
    ticket = _servicios().tickets.obtener(ticket_id)
    if not _es_staff(principal) and ticket["userId"] != principal["userId"]:
        raise Forbidden("El ticket no te pertenece.", {"ticketId": [ticket_id]})
    return ticket


def _ok(payload, status=200):
    return jsonify(a_json(payload)), status


# -----------------------------
# Vuelos
# -----------------------------
@bp.route("/flights", methods=["GET"])
def list_flights():
    """
    Summary: Lista los vuelos
    ---
    tags: [Flights]
    parameters:
      - name: estado
        in: query
        type: string
      - name: numero_circuito
        in: query
        type: integer
      - name: aircraftId
        in: query
        type: string
    responses:
      200:
        description: Vuelos ordenados por circuito
      403:
        description: Sin usuario autenticado
        schema:
          $ref: '#/definitions/ErrorSchema'
    """
    _principal(*TODOS)
    numero = request.args.get("numero_circuito", type=int)
    vuelos = _servicios().circuitos.listar(
        estado=request.args.get("estado"),
        numero_circuito=numero,
        aircraft_id=request.args.get("aircraftId"),
    )
    return _ok(vuelos)


@bp.route("/flights/<flight_id>", methods=["GET"])
def get_flight(flight_id):
    """
    Summary: Obtiene un vuelo con sus asientos
    ---
    tags: [Flights]
    parameters:
      - name: flight_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: Vuelo encontrado
      404:
        description: Vuelo no encontrado
        schema:
          $ref: '#/definitions/ErrorSchema'
    """
    _principal(*TODOS)
    servicios = _servicios()
    vuelo = servicios.circuitos.obtener(flight_id)
    vuelo["seats"] = servicios.asientos.asientos_del_vuelo(flight_id)
    return _ok(vuelo)


@bp.route("/flights", methods=["POST"])
def create_flight():
    """
    Summary: Crea un vuelo para un avión en un circuito
    Description:
      Crea también un documento de asiento por cada asiento físico del avión.
      Un avión no puede tener dos vuelos vivos en el mismo circuito.
    ---
    tags: [Flights]
    parameters:
      - name: body
        in: body
        required: true
        schema:
          $ref: '#/definitions/VueloSchema'
    responses:
      201:
        description: Vuelo creado
      400:
        description: Datos inválidos
        schema:
          $ref: '#/definitions/ErrorSchema'
      409:
        description: El avión ya tiene vuelo en ese circuito o está deshabilitado
        schema:
          $ref: '#/definitions/ErrorSchema'
    """
    principal = _principal(*STAFF)
    data = _leer_json(vuelo_schema)
    vuelo = _servicios().circuitos.create_flight(
        data["aircraftId"], data["numero_circuito"], data["fecha_hora"],
        pilot_id=data.get("pilotId"), hora_prevista_salida=data.get("hora_prevista_salida"),
        turno_max_permitido=data.get("turno_max_permitido"),
        user_id=principal["userId"],
    )
    return _ok({"message": "Vuelo creado con éxito", "flight": vuelo}, 201)


@bp.route("/flights/<flight_id>", methods=["PATCH"])
def update_flight(flight_id):
    """
    Summary: Ajusta el tope de turno de un vuelo
    Description:
      Solo los tickets con turno_global menor o igual al tope pueden elegir
      asiento. Un tope null deja el vuelo sin restricción de turno.
    ---
    tags: [Flights]
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            turno_max_permitido: {type: integer, example: 12}
    responses:
      200:
        description: Vuelo actualizado
      409:
        description: El vuelo ya no admite cambios
        schema:
          $ref: '#/definitions/ErrorSchema'
    """
    principal = _principal(*STAFF)
    data = _leer_json(vuelo_patch_schema)
    vuelo = _servicios().circuitos.update_flight(flight_id, data["turno_max_permitido"], principal["userId"])
    return _ok({"message": "Vuelo actualizado", "flight": vuelo})


@bp.route("/flights/<flight_id>", methods=["DELETE"])
def delete_flight(flight_id):
    """
    Summary: Borra un vuelo sin pasajeros
    ---
    tags: [Flights]
    parameters:
      - name: flight_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: Vuelo borrado
      409:
        description: El vuelo tiene pasajeros, reservas o ya está operando
        schema:
          $ref: '#/definitions/ErrorSchema'
    """
    principal = _principal(*STAFF)
    vuelo = _servicios().circuitos.delete_flight(flight_id, principal["userId"])
    return _ok({"message": f"Vuelo {flight_id} borrado", "flight": vuelo})


@bp.route("/flights/tandas", methods=["POST"])
def create_tanda():
    """
    Summary: Crea la tanda de un circuito (un vuelo por avión habilitado)
    ---
    tags: [Flights]
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            numero_circuito: {type: integer, example: 3}
            fecha_hora: {type: string, example: "2025-03-30T10:00:00Z"}
            aircraftIds: {type: array, items: {type: string}}
    responses:
      201:
        description: Tanda creada
      409:
        description: Conflicto con vuelos existentes
    """
    principal = _principal(*STAFF)
    data = _leer_json(tanda_schema)
    vuelos = _servicios().circuitos.create_tanda(
        data["numero_circuito"], data["fecha_hora"], data.get("aircraftIds"), user_id=principal["userId"],
    )
    return _ok({"message": f"Tanda creada con {len(vuelos)} vuelos", "flights": vuelos}, 201)


@bp.route("/flights/<flight_id>/boarding", methods=["POST"])
def open_boarding(flight_id):
    """
    Summary: Abre el embarque (abierto → boarding)
    ---
    tags: [Flights]
    responses:
      200:
        description: Embarque abierto
      409:
        description: El vuelo no está abierto
    """
    principal = _principal(*STAFF)
    return _ok(_servicios().circuitos.open_boarding(flight_id, principal["userId"]))


@bp.route("/flights/<flight_id>/start", methods=["POST"])
def start_flight(flight_id):
    """
    Summary: Inicia el vuelo
    Description:
      Los asientos confirmados que no embarcaron quedan como no_show y su
      ticket recibe un cooldown.
    ---
    tags: [Flights]
    responses:
      200:
        description: Vuelo en vuelo
      409:
        description: Estado no válido
    """
    principal = _principal(*STAFF)
    return _ok(_servicios().circuitos.start_flight(flight_id, principal["userId"]))


@bp.route("/flights/<flight_id>/finish", methods=["POST"])
def finish_flight(flight_id):
    """
    Summary: Finaliza el vuelo y recalcula las horas de los circuitos siguientes
    ---
    tags: [Flights]
    responses:
      200:
        description: Vuelo finalizado
      409:
        description: El vuelo no está en vuelo
    """
    principal = _principal(*STAFF)
    return _ok(_servicios().circuitos.finish_flight(flight_id, principal["userId"]))


@bp.route("/flights/<flight_id>/hora-prevista", methods=["PATCH"])
def update_hora_prevista(flight_id):
    """
    Summary: Cambia la hora prevista de salida
    Description:
      Si el vuelo ya tenía hora prevista, cada ticket inscrito recibe una
      oferta de cambio de hora.
    ---
    tags: [Flights]
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            hora_prevista_salida: {type: string, example: "2025-03-30T10:20:00Z"}
    responses:
      200:
        description: Hora actualizada
    """
    principal = _principal(*STAFF)
    data = _leer_json(hora_prevista_schema)
    vuelo, ofertas = _servicios().circuitos.update_hora_prevista(
        flight_id, data["hora_prevista_salida"], principal["userId"],
    )
    return _ok({"message": "Hora prevista actualizada", "flight": vuelo, "ofertas": ofertas})


@bp.route("/flights/<flight_id>/reschedule", methods=["POST"])
def reschedule_flight(flight_id):
    """
    Summary: Reprograma un vuelo abierto al siguiente circuito activo
    Description:
      Los tickets inscritos pasan al vuelo destino con una reprogramación
      pendiente. Si el avión ya tiene vuelo en ese circuito, ese vuelo se
      desplaza primero al siguiente circuito libre del avión.
    ---
    tags: [Circuits]
    parameters:
      - name: flight_id
        in: path
        type: string
        required: true
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            razon:
              type: string
              enum: [combustible, meteorologia, mantenimiento]
    responses:
      200:
        description: Resumen de la reprogramación
      400:
        description: Razón inválida
        schema:
          $ref: '#/definitions/ErrorSchema'
      409:
        description: El vuelo no está abierto
        schema:
          $ref: '#/definitions/ErrorSchema'
    """
    principal = _principal(*STAFF)
    data = _leer_json(razon_schema)
    resumen = _servicios().circuitos.reschedule_flight_to_next_circuito(
        flight_id, data["razon"], principal["userId"],
    )
    return _ok({"message": "Vuelo reprogramado", "resultado": resumen})


@bp.route("/flights/<flight_id>/cancel-for-day", methods=["POST"])
def cancel_for_day(flight_id):
    """
    Summary: Cancela por el día los vuelos abiertos del avión desde este circuito
    ---
    tags: [Circuits]
    responses:
      200:
        description: Resumen de la cancelación
      409:
        description: El vuelo no está abierto
    """
    principal = _principal(*STAFF)
    resumen = _servicios().circuitos.cancel_aircraft_for_day(flight_id, principal["userId"])
    return _ok({"message": "Avión cancelado por el día", "resultado": resumen})


@bp.route("/flights/<flight_id>/seats", methods=["GET"])
def list_seats(flight_id):
    _principal(*TODOS)
    servicios = _servicios()
    servicios.circuitos.obtener(flight_id)
    return _ok(servicios.asientos.asientos_del_vuelo(flight_id))


# -----------------------------
# Asientos
# -----------------------------
@bp.route("/flights/<flight_id>/seats/hold", methods=["POST"])
def hold_seat(flight_id):
    """
    Summary: Toma un asiento libre por 5 minutos
    ---
    tags: [Seats]
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            seatNumber: {type: string, example: "3A"}
            ticketId: {type: string}
    responses:
      200:
        description: Asiento en hold
      404:
        description: Asiento o ticket no encontrado
      409:
        description: El asiento no está libre
      429:
        description: Límite de cambios, cooldown o turno no habilitado
    """
    principal = _principal(*TODOS)
    data = _leer_json(asiento_schema)
    _ticket_propio(data["ticketId"], principal)
    seat = _servicios().asientos.hold_seat(flight_id, data["seatNumber"], data["ticketId"], principal["userId"])
    return _ok({"message": "Asiento reservado temporalmente", "seat": seat})


@bp.route("/flights/<flight_id>/seats/confirm", methods=["POST"])
def confirm_seat(flight_id):
    """
    Summary: Confirma un asiento en hold y emite el pase de abordar
    ---
    tags: [Seats]
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            seatNumber: {type: string, example: "3A"}
            ticketId: {type: string}
    responses:
      200:
        description: Asiento confirmado con pase de abordar
      409:
        description: El asiento no está en hold
      410:
        description: El hold expiró, el asiento vuelve a estar libre
    """
    principal = _principal(*TODOS)
    data = _leer_json(asiento_schema)
    _ticket_propio(data["ticketId"], principal)
    seat, pase = _servicios().asientos.confirm_seat(
        flight_id, data["seatNumber"], data["ticketId"], principal["userId"],
    )
    return _ok({"message": "Asiento confirmado", "seat": seat, "boardingPass": pase})


@bp.route("/flights/<flight_id>/seats/release", methods=["POST"])
def release_seat(flight_id):
    """
    Summary: Libera un asiento
    ---
    tags: [Seats]
    responses:
      200:
        description: Asiento libre
      403:
        description: El asiento pertenece a otro pasajero
      409:
        description: El asiento ya estaba libre
    """
    principal = _principal(*TODOS)
    data = _leer_json(liberar_asiento_schema)
    servicios = _servicios()
    if not _es_staff(principal):
        seat = servicios.asientos.buscar_asiento(flight_id, data["seatNumber"])
        if not seat.get("ticketId"):
            raise Forbidden("Solo staff puede liberar este asiento.", {"seatNumber": [data["seatNumber"]]})
        _ticket_propio(seat["ticketId"], principal)
    seat = servicios.asientos.release_seat(flight_id, data["seatNumber"], principal["userId"])
    return _ok({"message": "Asiento liberado", "seat": seat})


@bp.route("/boarding-passes/scan", methods=["POST"])
def scan_boarding_pass():
    """
    Summary: Escanea el QR de un pase de abordar
    ---
    tags: [Seats]
    responses:
      200:
        description: Pasajero embarcado
      400:
        description: QR con firma inválida
      409:
        description: Pase ya escaneado o vuelo fuera de embarque
      410:
        description: QR expirado
    """
    principal = _principal(*STAFF)
    data = _leer_json(escanear_pase_schema)
    pase = _servicios().asientos.scan_boarding_pass(data["qr_token"], principal["userId"])
    return _ok({"message": "Pasajero embarcado", "boardingPass": pase})


# -----------------------------
# Tickets
# -----------------------------
@bp.route("/tickets", methods=["GET"])
def list_tickets():
    principal = _principal(*TODOS)
    user_id = request.args.get("userId") if _es_staff(principal) else principal["userId"]
    return _ok(_servicios().tickets.listar(user_id=user_id, estado=request.args.get("estado")))


@bp.route("/tickets/<ticket_id>", methods=["GET"])
def get_ticket(ticket_id):
    principal = _principal(*TODOS)
    return _ok(_ticket_propio(ticket_id, principal))


@bp.route("/tickets/<ticket_id>", methods=["PATCH"])
def update_ticket(ticket_id):
    """
    Summary: Cambia el vuelo y/o los pasajeros de un ticket
    ---
    tags: [Tickets]
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            flightId: {type: string}
            pasajeros:
              type: array
              items:
                $ref: '#/definitions/PasajeroSchema'
    responses:
      200:
        description: Ticket actualizado
      409:
        description: Estado del ticket o del vuelo no válido
    """
    principal = _principal(*TODOS)
    data = _leer_json(ticket_patch_schema)
    _ticket_propio(ticket_id, principal)
    ticket = _servicios().tickets.reassign(
        ticket_id, flight_id=data.get("flightId"), pasajeros=data.get("pasajeros"), user_id=principal["userId"],
    )
    return _ok({"message": "Ticket actualizado", "ticket": ticket})


@bp.route("/tickets/<ticket_id>/flight", methods=["DELETE"])
def remove_from_flight(ticket_id):
    """
    Summary: Retira el ticket de su vuelo
    ---
    tags: [Tickets]
    responses:
      200:
        description: Ticket disponible nuevamente
      409:
        description: El ticket no está inscrito
    """
    principal = _principal(*TODOS)
    _ticket_propio(ticket_id, principal)
    ticket = _servicios().tickets.remove_from_flight(ticket_id, principal["userId"])
    return _ok({"message": "Pasajero retirado del vuelo", "ticket": ticket})


@bp.route("/tickets/<ticket_id>/inscribe", methods=["POST"])
def inscribe_ticket(ticket_id):
    """
    Summary: Inscribe un ticket disponible en un vuelo abierto
    Description:
      Los infantes no consumen asiento, así que pueden inscribirse en un
      vuelo lleno.
    ---
    tags: [Tickets]
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            flightId: {type: string}
    responses:
      200:
        description: Ticket inscrito
      409:
        description: Ticket no disponible, vuelo no abierto o sin cupo
    """
    principal = _principal(*TODOS)
    data = _leer_json(inscribir_schema)
    _ticket_propio(ticket_id, principal)
    ticket = _servicios().tickets.inscribe(ticket_id, data["flightId"], principal["userId"])
    return _ok({"message": "Ticket inscrito", "ticket": ticket})


@bp.route("/tickets/<ticket_id>/reschedule/accept", methods=["POST"])
def accept_rescheduling(ticket_id):
    principal = _principal(*TODOS)
    _ticket_propio(ticket_id, principal)
    ticket = _servicios().tickets.accept_rescheduling(ticket_id, principal["userId"])
    return _ok({"message": "Reprogramación aceptada", "ticket": ticket})


@bp.route("/tickets/<ticket_id>/reschedule/reject", methods=["POST"])
def reject_rescheduling(ticket_id):
    """
    Summary: Rechaza la reprogramación y pide devolución
    ---
    tags: [Tickets]
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            monto: {type: number, example: 15000}
    responses:
      200:
        description: Ticket cancelado con devolución registrada
      400:
        description: Monto no válido
      409:
        description: Sin reprogramación pendiente
    """
    principal = _principal(*TODOS)
    data = _leer_json(rechazo_schema)
    _ticket_propio(ticket_id, principal)
    ticket, pago = _servicios().tickets.reject_rescheduling(ticket_id, data["monto"], principal["userId"])
    return _ok({"message": "Reprogramación rechazada, devolución registrada", "ticket": ticket, "payment": pago})


@bp.route("/tickets/<ticket_id>/reschedule/choose", methods=["POST"])
def choose_circuit(ticket_id):
    """
    Summary: Mueve el ticket a un vuelo abierto con cupo en el circuito elegido
    ---
    tags: [Tickets]
    responses:
      200:
        description: Ticket movido
      404:
        description: No hay vuelos con cupo en ese circuito
    """
    principal = _principal(*TODOS)
    data = _leer_json(elegir_circuito_schema)
    _ticket_propio(ticket_id, principal)
    ticket = _servicios().tickets.reschedule_to_chosen_circuito(
        ticket_id, data["numero_circuito"], principal["userId"],
    )
    return _ok({"message": "Circuito cambiado", "ticket": ticket})


@bp.route("/tickets/<ticket_id>/timechange/accept", methods=["POST"])
def accept_time_change(ticket_id):
    principal = _principal(*TODOS)
    _ticket_propio(ticket_id, principal)
    ticket = _servicios().tickets.accept_time_change(ticket_id, principal["userId"])
    return _ok({"message": "Cambio de hora aceptado", "ticket": ticket})


@bp.route("/tickets/<ticket_id>/timechange/reject", methods=["POST"])
def reject_time_change(ticket_id):
    """
    Summary: Rechaza el cambio de hora con devolución o cambio de circuito
    ---
    tags: [Tickets]
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            accion: {type: string, enum: [devolucion, reprogramar]}
            monto: {type: number}
            numero_circuito: {type: integer}
    responses:
      200:
        description: Cambio de hora rechazado
      404:
        description: No hay vuelo con cupo en el circuito pedido
    """
    principal = _principal(*TODOS)
    data = _leer_json(rechazo_cambio_hora_schema)
    _ticket_propio(ticket_id, principal)
    ticket, pago = _servicios().tickets.reject_time_change(
        ticket_id, data["accion"], monto=data.get("monto"),
        numero_circuito=data.get("numero_circuito"), user_id=principal["userId"],
    )
    return _ok({"message": "Cambio de hora rechazado", "ticket": ticket, "payment": pago})


# -----------------------------
# Flota
# -----------------------------
@bp.route("/aircraft", methods=["GET"])
def list_aircraft():
    _principal(*STAFF)
    return _ok(_servicios().flota.listar())


@bp.route("/aircraft", methods=["POST"])
def create_aircraft():
    """
    Summary: Agrega un avión a la flota
    ---
    tags: [Fleet]
    parameters:
      - name: body
        in: body
        required: true
        schema:
          $ref: '#/definitions/AvionSchema'
    responses:
      201:
        description: Avión creado
      409:
        description: Matrícula duplicada
    """
    principal = _principal(*STAFF)
    data = _leer_json(avion_schema)
    avion = _servicios().flota.create_aircraft(
        data["matricula"], data["modelo"], data["capacidad"],
        data.get("max_circuitos_sin_reabastecimiento"), user_id=principal["userId"],
    )
    return _ok({"message": "Avión agregado con éxito", "aircraft": avion}, 201)


@bp.route("/aircraft/<aircraft_id>/capacity", methods=["PATCH"])
def update_capacity(aircraft_id):
    """
    Summary: Cambia la capacidad del avión y la propaga a sus vuelos abiertos
    ---
    tags: [Fleet]
    responses:
      200:
        description: Capacidad actualizada con el detalle de vuelos omitidos
    """
    principal = _principal(*STAFF)
    data = _leer_json(capacidad_schema)
    resultado = _servicios().flota.update_capacity(aircraft_id, data["capacidad"], principal["userId"])
    return _ok({"message": "Capacidad actualizada", **resultado})


@bp.route("/aircraft/<aircraft_id>/toggle", methods=["PATCH"])
def toggle_aircraft(aircraft_id):
    principal = _principal(*STAFF)
    avion = _servicios().flota.toggle_aircraft(aircraft_id, principal["userId"])
    return _ok({"message": "Avión actualizado", "aircraft": avion})


@bp.route("/refuelings", methods=["POST"])
def create_refueling():
    """
    Summary: Registra un reabastecimiento
    Description:
      Marca como leídas las notificaciones de reabastecimiento pendiente del avión.
    ---
    tags: [Fleet]
    responses:
      201:
        description: Reabastecimiento registrado
    """
    principal = _principal(*STAFF)
    data = _leer_json(reabastecimiento_schema)
    registro, resueltas = _servicios().flota.create_refueling(
        data["aircraftId"], data["litros"], data.get("costo"), principal["userId"],
    )
    return _ok({"message": "Reabastecimiento registrado", "refueling": registro, "notificaciones_resueltas": resueltas}, 201)


# -----------------------------
# Reservas y compras
# -----------------------------
@bp.route("/reservations", methods=["POST"])
def create_reservation():
    """
    Summary: Reserva cupos en un vuelo antes del pago
    ---
    tags: [Reservations]
    responses:
      201:
        description: Reserva activa por unos minutos
      409:
        description: Sin cupo o vuelo no abierto
    """
    principal = _principal(*TODOS)
    data = _leer_json(reserva_schema)
    reserva = _servicios().reservas.create_reservation(
        principal["userId"], data["flightId"], data["cantidadPasajeros"],
    )
    return _ok({"message": "Reserva creada", "reservation": reserva}, 201)


@bp.route("/reservations/<reservation_id>", methods=["GET"])
def get_reservation(reservation_id):
    principal = _principal(*TODOS)
    reserva = _servicios().reservas.obtener(reservation_id)
    if not _es_staff(principal) and reserva["userId"] != principal["userId"]:
        raise Forbidden("La reserva no te pertenece.", {"reservationId": [reservation_id]})
    return _ok(reserva)


@bp.route("/reservations/<reservation_id>/release", methods=["POST"])
def release_reservation(reservation_id):
    principal = _principal(*TODOS)
    dueno = None if _es_staff(principal) else principal["userId"]
    reserva = _servicios().reservas.release_reservation(reservation_id, dueno)
    return _ok({"message": "Reserva liberada", "reservation": reserva})


@bp.route("/purchases", methods=["POST"])
def register_purchase():
    """
    Summary: Registra una compra confirmada por la pasarela de pago
    ---
    tags: [Purchases]
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            userId: {type: string}
            flightId: {type: string}
            reservationId: {type: string}
            monto: {type: number}
            metodo: {type: string, enum: [transbank, mercadopago, efectivo]}
            pasajeros:
              type: array
              items:
                $ref: '#/definitions/PasajeroSchema'
    responses:
      201:
        description: Tickets creados
      403:
        description: Solo la pasarela de pago (rol staff) registra compras
      410:
        description: La reserva expiró
    """
    _principal(*STAFF)
    data = _leer_json(compra_schema)
    tickets, pago = _servicios().reservas.register_purchase(
        data["userId"], data["pasajeros"], flight_id=data.get("flightId"),
        reservation_id=data.get("reservationId"), monto=data.get("monto"), metodo=data.get("metodo"),
    )
    return _ok({"message": f"{len(tickets)} tickets creados", "tickets": tickets, "payment": pago}, 201)


# -----------------------------
# Manifiestos
# -----------------------------
@bp.route("/manifests", methods=["GET"])
def list_manifests():
    """
    Summary: Lista los circuitos con sus aviones y cantidad de pasajeros
    ---
    tags: [Manifests]
    responses:
      200:
        description: Circuitos del más reciente al más antiguo
    """
    _principal(*STAFF)
    return _ok(_servicios().circuitos.manifiestos())


@bp.route("/manifests/<int:numero_circuito>", methods=["GET"])
def get_manifest(numero_circuito):
    """
    Summary: Manifiesto de pasajeros de un circuito
    Description:
      Por cada avión del circuito entrega los pasajeros inscritos o
      embarcados con nombre, rut y si son menores.
    ---
    tags: [Manifests]
    parameters:
      - name: numero_circuito
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Manifiesto del circuito
      404:
        description: No hay vuelos en ese circuito
        schema:
          $ref: '#/definitions/ErrorSchema'
    """
    _principal(*STAFF)
    return _ok(_servicios().circuitos.manifiesto(numero_circuito))


# -----------------------------
# Usuarios
# -----------------------------
@bp.route("/users", methods=["POST"])
def create_user():
    principal = _principal(*STAFF)
    data = _leer_json(usuario_schema)
    if data["rol"] == ROL_ADMIN and principal["rol"] != ROL_ADMIN:
        raise Forbidden("Solo un admin puede crear otro admin.", {"rol": [data["rol"]]})
    usuario = _servicios().tickets.crear_usuario(data["nombre"], data["email"], data["rol"], data["activo"])
    return _ok({"message": "Usuario creado", "user": usuario}, 201)


@bp.route("/staff/passengers", methods=["POST"])
def register_passenger():
    """
    Summary: Registra un pasajero con N tickets disponibles
    ---
    tags: [Users]
    responses:
      201:
        description: Pasajero y tickets creados
    """
    principal = _principal(*STAFF)
    data = _leer_json(registro_pasajero_schema)
    usuario, tickets = _servicios().tickets.register_passenger(
        data["nombre"], data["email"], data["cantidad_tickets"], principal["userId"],
    )
    return _ok({"message": "Pasajero registrado", "user": usuario, "tickets": tickets}, 201)


@bp.route("/notifications", methods=["GET"])
def list_notifications():
    principal = _principal(*TODOS)
    user_id = principal["userId"]
    if _es_staff(principal) and request.args.get("userId"):
        user_id = request.args["userId"]
    notificaciones = _servicios().store.find("notifications", userId=user_id, orden="-createdAt")
    return _ok(notificaciones)


# -----------------------------
# Mantenimiento
# -----------------------------
@bp.route("/maintenance/reconcile-seats", methods=["POST"])
def reconcile_seats():
    """
    Summary: Recalcula los asientos ocupados desde los tickets y las reservas activas
    ---
    tags: [Maintenance]
    responses:
      200:
        description: Reporte por vuelo
    """
    _principal(*STAFF)
    return _ok(_servicios().capacidad.reconciliar())


@bp.route("/maintenance/sweep", methods=["POST"])
def sweep():
    _principal(*STAFF)
    holds, reservas = _servicios().limpiar()
    return _ok({"holds_expirados": holds, "reservas_expiradas": reservas})


@bp.route("/maintenance/migrate-ticket-states", methods=["POST"])
def migrate_ticket_states():
    _principal(*STAFF)
    return _ok({"migrados": _servicios().tickets.migrar_estados()})
