# Standard Library
import logging

from .capacidad import asientos_libres
from .colaboradores import Efectos
from .errores import Conflict, InvalidInput, NotFound
from .modelos import (
    ROL_PASAJERO, TICKET_CANCELADO, TICKET_DISPONIBLE, TICKET_INSCRITO, VUELO_ABIERTO,
    ahora_utc, mapear_estado_ticket, nuevo_ticket, peso_asiento,
    tiene_pasajero_con_nombre,
)
from .store import DuplicateKey


class TicketLifecycle:
    """
    Relación de cada ticket con (a lo más) un vuelo: inscripción, retiro,
    reasignación y respuesta a las ofertas de reprogramación y cambio de hora.
    """

    def __init__(self, store, capacidad, asientos, broadcaster, notificador, auditoria, reloj=ahora_utc):
        self.store = store
        self.capacidad = capacidad
        self.asientos = asientos
        self.broadcaster = broadcaster
        self.notificador = notificador
        self.auditoria = auditoria
        self.reloj = reloj

    def _efectos(self):
        return Efectos(self.broadcaster, self.notificador, self.auditoria)

    def _ticket(self, ticket_id):
        ticket = self.store.get("tickets", ticket_id)
        if not ticket:
            raise NotFound(f"Ticket {ticket_id} no encontrado.", {"ticketId": [ticket_id]})
        return ticket

    def _vuelo_abierto(self, flight_id):
        flight = self.store.get("flights", flight_id)
        if not flight:
            raise NotFound(f"Vuelo {flight_id} no encontrado.", {"flightId": [flight_id]})
        if flight["estado"] != VUELO_ABIERTO:
            raise Conflict("El vuelo no está abierto.", {"estado": [flight["estado"]]})
        return flight

    def _emitir_vuelo(self, efectos, flight):
        if flight is None:
            return
        efectos.emitir("flights", "flightUpdated", {
            "flightId": flight["_id"],
            "numero_circuito": flight["numero_circuito"],
            "asientos_ocupados": flight["asientos_ocupados"],
            "capacidad_total": flight["capacidad_total"],
            "estado": flight["estado"],
        })

    def obtener(self, ticket_id):
        return self._ticket(ticket_id)

    def listar(self, user_id=None, estado=None):
        filtros = {}
        if user_id:
            filtros["userId"] = user_id
        if estado:
            filtros["estado"] = estado
        return self.store.find("tickets", orden="createdAt", **filtros)

    # -----------------------------
    # Inscripción y retiro
    # -----------------------------
    def inscribe(self, ticket_id, flight_id, user_id=None):
        efectos = self._efectos()
        with self.store.transaction():
            ticket = self._ticket(ticket_id)
            if ticket["estado"] != TICKET_DISPONIBLE:
                raise Conflict(
                    f"El ticket está en estado '{ticket['estado']}', debe estar disponible.",
                    {"estado": [ticket["estado"]]},
                )
            if not tiene_pasajero_con_nombre(ticket):
                raise InvalidInput(
                    "El ticket debe tener al menos un pasajero con nombre.",
                    {"pasajeros": ["Falta el nombre del pasajero"]},
                )
            flight = self._vuelo_abierto(flight_id)

            # Los infantes viajan en brazos y no consumen asiento
            flight = self.capacidad.ocupar(flight_id, peso_asiento(ticket))
            ticket = self.store.update("tickets", ticket_id, {"estado": TICKET_INSCRITO, "flightId": flight_id})

            efectos.correo_pase(ticket, flight)
            efectos.auditar("ticket_inscribed", "ticket", ticket_id, user_id, {
                "flightId": flight_id, "numero_circuito": flight["numero_circuito"],
            })
            self._emitir_vuelo(efectos, flight)

        efectos.despachar()
        logging.info(f"✅ Ticket {ticket['codigo_ticket']} inscrito en el circuito {flight['numero_circuito']}")
        return ticket

    def remove_from_flight(self, ticket_id, user_id=None):
        efectos = self._efectos()
        with self.store.transaction():
            ticket = self._ticket(ticket_id)
            if ticket["estado"] != TICKET_INSCRITO or not ticket.get("flightId"):
                raise Conflict("El ticket no está inscrito en un vuelo.", {"estado": [ticket["estado"]]})

            flight_id = ticket["flightId"]
            self.asientos.liberar_asientos_del_ticket(flight_id, ticket_id, efectos)
            flight = self.capacidad.liberar(flight_id, self.capacidad.asientos_al_remover(ticket))
            ticket = self.store.update("tickets", ticket_id, {
                "estado": TICKET_DISPONIBLE,
                "flightId": None,
                "reprogramacion_pendiente": None,
                "cambio_hora_pendiente": None,
            })

            efectos.auditar("ticket_removed", "ticket", ticket_id, user_id, {"flightId": flight_id})
            self._emitir_vuelo(efectos, flight)

        efectos.despachar()
        logging.info(f"🚪 Ticket {ticket['codigo_ticket']} retirado del vuelo {flight_id}")
        return ticket

    def _mover(self, ticket, destino_id, efectos):
        """Mueve un ticket inscrito a otro vuelo ajustando ambos contadores juntos."""
        origen_id = ticket.get("flightId")
        peso = peso_asiento(ticket)
        if origen_id:
            self.asientos.liberar_asientos_del_ticket(origen_id, ticket["_id"], efectos)
        origen, destino = self.capacidad.mover(origen_id, destino_id, peso)
        self._emitir_vuelo(efectos, origen)
        self._emitir_vuelo(efectos, destino)
        return destino

    def reassign(self, ticket_id, flight_id=None, pasajeros=None, user_id=None):
        """Cambia el vuelo y/o los pasajeros de un ticket."""
        efectos = self._efectos()
        with self.store.transaction():
            ticket = self._ticket(ticket_id)
            if ticket["estado"] not in (TICKET_DISPONIBLE, TICKET_INSCRITO):
                raise Conflict(
                    f"El ticket está en estado '{ticket['estado']}' y no se puede modificar.",
                    {"estado": [ticket["estado"]]},
                )

            if pasajeros is not None:
                peso_anterior = peso_asiento(ticket)
                ticket = self.store.update("tickets", ticket_id, {"pasajeros": pasajeros})
                delta = peso_asiento(ticket) - peso_anterior
                if ticket["estado"] == TICKET_INSCRITO and delta:
                    if delta > 0:
                        flight = self.capacidad.ocupar(ticket["flightId"], delta)
                    else:
                        flight = self.capacidad.liberar(ticket["flightId"], -delta)
                    self._emitir_vuelo(efectos, flight)

            if flight_id is not None and flight_id != ticket.get("flightId"):
                flight = self._vuelo_abierto(flight_id)
                if ticket["estado"] == TICKET_DISPONIBLE:
                    if not tiene_pasajero_con_nombre(ticket):
                        raise InvalidInput(
                            "El ticket debe tener al menos un pasajero con nombre.",
                            {"pasajeros": ["Falta el nombre del pasajero"]},
                        )
                    flight = self.capacidad.ocupar(flight_id, peso_asiento(ticket))
                    self._emitir_vuelo(efectos, flight)
                else:
                    flight = self._mover(ticket, flight_id, efectos)
                ticket = self.store.update("tickets", ticket_id, {
                    "flightId": flight_id,
                    "estado": TICKET_INSCRITO,
                    "reprogramacion_pendiente": None,
                })
                efectos.correo_pase(ticket, flight)

            efectos.auditar("ticket_updated", "ticket", ticket_id, user_id, {
                "flightId": ticket.get("flightId"), "pasajeros": len(ticket.get("pasajeros") or []),
            })

        efectos.despachar()
        logging.info(f"✏️ Ticket {ticket['codigo_ticket']} actualizado")
        return ticket

    # -----------------------------
    # Reembolsos
    # -----------------------------
    def _reembolsar(self, ticket, monto, motivo, efectos, user_id=None):
        """Devuelve el dinero, libera el cupo y deja el ticket cancelado."""
        if monto is None or monto <= 0:
            raise InvalidInput("El monto de devolución debe ser mayor a 0.", {"monto": ["Debe ser mayor a 0"]})

        flight_id = ticket.get("flightId")
        if flight_id and ticket["estado"] == TICKET_INSCRITO:
            self.asientos.liberar_asientos_del_ticket(flight_id, ticket["_id"], efectos)
            flight = self.capacidad.liberar(flight_id, self.capacidad.asientos_al_remover(ticket))
            self._emitir_vuelo(efectos, flight)

        pago = self.store.insert("payments", {
            "userId": ticket["userId"],
            "ticketId": ticket["_id"],
            "flightId": flight_id,
            "monto": -abs(monto),
            "tipo": "devolucion",
            "motivo": motivo,
            "createdAt": self.reloj(),
        })
        ticket = self.store.update("tickets", ticket["_id"], {
            "estado": TICKET_CANCELADO,
            "flightId": None,
            "reprogramacion_pendiente": None,
            "cambio_hora_pendiente": None,
        })
        efectos.notificar(
            ticket["userId"], "cancelacion", "Devolución registrada",
            f"Se registró la devolución de ${abs(monto)} del ticket {ticket['codigo_ticket']}.",
            {"ticketId": ticket["_id"], "paymentId": pago["_id"]},
        )
        efectos.auditar("ticket_refunded", "ticket", ticket["_id"], user_id, {
            "monto": -abs(monto), "motivo": motivo, "flightId": flight_id,
        })
        return ticket, pago

    # -----------------------------
    # Reprogramación pendiente
    # -----------------------------
    def _con_reprogramacion(self, ticket_id):
        ticket = self._ticket(ticket_id)
        if not ticket.get("reprogramacion_pendiente"):
            raise Conflict("El ticket no tiene una reprogramación pendiente.", {"reprogramacion_pendiente": [None]})
        return ticket

    def accept_rescheduling(self, ticket_id, user_id=None):
        efectos = self._efectos()
        with self.store.transaction():
            ticket = self._con_reprogramacion(ticket_id)
            pendiente = ticket["reprogramacion_pendiente"]
            nuevo_id = pendiente["nuevo_flightId"]
            if ticket.get("flightId") != nuevo_id:
                self._vuelo_abierto(nuevo_id)
                self._mover(ticket, nuevo_id, efectos)
            ticket = self.store.update("tickets", ticket_id, {
                "flightId": nuevo_id,
                "estado": TICKET_INSCRITO,
                "reprogramacion_pendiente": None,
            })
            efectos.auditar("rescheduling_accepted", "ticket", ticket_id, user_id, {
                "flightId": nuevo_id, "numero_circuito": pendiente.get("numero_circuito_nuevo"),
            })

        efectos.despachar()
        logging.info(f"👍 Reprogramación aceptada para ticket {ticket['codigo_ticket']}")
        return ticket

    def reject_rescheduling(self, ticket_id, monto, user_id=None):
        efectos = self._efectos()
        with self.store.transaction():
            ticket = self._con_reprogramacion(ticket_id)
            ticket, pago = self._reembolsar(ticket, monto, "reprogramacion_rechazada", efectos, user_id)

        efectos.despachar()
        logging.info(f"💸 Reprogramación rechazada, ticket {ticket['codigo_ticket']} cancelado con devolución")
        return ticket, pago

    # -----------------------------
    # Cambio de hora pendiente
    # -----------------------------
    def _con_cambio_hora(self, ticket_id):
        ticket = self._ticket(ticket_id)
        if not ticket.get("cambio_hora_pendiente"):
            raise Conflict("El ticket no tiene un cambio de hora pendiente.", {"cambio_hora_pendiente": [None]})
        return ticket

    def accept_time_change(self, ticket_id, user_id=None):
        ticket = self._con_cambio_hora(ticket_id)
        ticket = self.store.update("tickets", ticket_id, {"cambio_hora_pendiente": None})
        self.auditoria.record("time_change_accepted", "ticket", ticket_id, user_id, {})
        logging.info(f"👍 Cambio de hora aceptado para ticket {ticket['codigo_ticket']}")
        return ticket

    def reject_time_change(self, ticket_id, accion, monto=None, numero_circuito=None, user_id=None):
        efectos = self._efectos()
        pago = None
        with self.store.transaction():
            ticket = self._con_cambio_hora(ticket_id)
            if accion == "devolucion":
                ticket, pago = self._reembolsar(ticket, monto, "cambio_hora_rechazado", efectos, user_id)
            elif accion == "reprogramar":
                if numero_circuito is None:
                    raise InvalidInput("Debe indicar el circuito destino.", {"numero_circuito": ["Requerido"]})
                ticket = self._mover_a_circuito(ticket, numero_circuito, efectos, user_id)
                ticket = self.store.update("tickets", ticket_id, {"cambio_hora_pendiente": None})
            else:
                raise InvalidInput("Acción no válida.", {"accion": ["Debe ser 'devolucion' o 'reprogramar'"]})

        efectos.despachar()
        logging.info(f"🔁 Cambio de hora rechazado ({accion}) para ticket {ticket['codigo_ticket']}")
        return ticket, pago

    # -----------------------------
    # Cambio voluntario de circuito
    # -----------------------------
    def _mover_a_circuito(self, ticket, numero_circuito, efectos, user_id=None):
        if ticket["estado"] != TICKET_INSCRITO or not ticket.get("flightId"):
            raise Conflict("El ticket no está inscrito en un vuelo.", {"estado": [ticket["estado"]]})

        necesarios = peso_asiento(ticket)
        candidatos = self.store.find(
            "flights",
            numero_circuito=numero_circuito,
            estado=VUELO_ABIERTO,
            filtro=lambda f: f["_id"] != ticket["flightId"] and asientos_libres(f) >= necesarios,
            orden="createdAt",
        )
        if not candidatos:
            raise NotFound(
                f"No hay vuelos abiertos con cupo en el circuito {numero_circuito}.",
                {"numero_circuito": [str(numero_circuito)]},
            )
        destino = candidatos[0]
        anterior = self.store.get("flights", ticket["flightId"])
        self._mover(ticket, destino["_id"], efectos)
        ticket = self.store.update("tickets", ticket["_id"], {
            "flightId": destino["_id"],
            "reprogramacion_pendiente": None,
        })
        efectos.notificar(
            ticket["userId"], "cambio", "Cambio de circuito",
            f"Tu ticket {ticket['codigo_ticket']} ahora vuela en el circuito {numero_circuito}.",
            {"ticketId": ticket["_id"], "flightId": destino["_id"]},
        )
        efectos.auditar("ticket_circuit_changed", "ticket", ticket["_id"], user_id, {
            "de": anterior["numero_circuito"] if anterior else None, "a": numero_circuito,
        })
        return ticket

    def reschedule_to_chosen_circuito(self, ticket_id, numero_circuito, user_id=None):
        efectos = self._efectos()
        with self.store.transaction():
            ticket = self._ticket(ticket_id)
            ticket = self._mover_a_circuito(ticket, numero_circuito, efectos, user_id)

        efectos.despachar()
        logging.info(f"🔀 Ticket {ticket['codigo_ticket']} movido al circuito {numero_circuito}")
        return ticket

    # -----------------------------
    # Usuarios y registro por staff
    # -----------------------------
    def crear_usuario(self, nombre, email, rol=ROL_PASAJERO, activo=True):
        try:
            usuario = self.store.insert("users", {
                "nombre": nombre,
                "email": email.lower(),
                "rol": rol,
                "activo": activo,
                "createdAt": self.reloj(),
            })
        except DuplicateKey:
            raise Conflict("Ya existe un usuario con ese email.", {"email": [email]})
        logging.info(f"👤 Usuario {usuario['email']} creado con rol {rol}")
        return usuario

    def register_passenger(self, nombre, email, cantidad_tickets, user_id=None):
        """Alta de un pasajero por staff con N tickets disponibles."""
        with self.store.transaction():
            usuario = self.store.find_one("users", email=email.lower())
            if usuario is None:
                usuario = self.crear_usuario(nombre, email)
            tickets = [
                self.store.insert("tickets", nuevo_ticket(
                    usuario["_id"], turno_global=self.store.next_sequence("turno_global"),
                ))
                for _ in range(cantidad_tickets)
            ]
            self.auditoria.record("passenger_registered", "user", usuario["_id"], user_id, {
                "cantidad_tickets": cantidad_tickets,
            })
        logging.info(f"🎟️ {cantidad_tickets} tickets registrados para {usuario['email']}")
        return usuario, tickets

    # -----------------------------
    # Migración de estados
    # -----------------------------
    def migrar_estados(self):
        """Reescribe los estados heredados al vocabulario canónico."""
        migrados = {}
        with self.store.transaction():
            for ticket in self.store.find("tickets"):
                nuevo = mapear_estado_ticket(ticket["estado"], ticket.get("flightId"))
                if nuevo == ticket["estado"]:
                    continue
                self.store.update("tickets", ticket["_id"], {"estado": nuevo})
                clave = f"{ticket['estado']}->{nuevo}"
                migrados[clave] = migrados.get(clave, 0) + 1
        logging.info(f"🔧 Migración de estados de tickets: {migrados or 'sin cambios'}")
        return migrados
