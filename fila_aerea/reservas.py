# Standard Library
import logging
from datetime import timedelta

from . import config
from .colaboradores import Efectos
from .errores import Conflict, Forbidden, Gone, InvalidInput, NotFound
from .modelos import (
    RESERVA_ACTIVA, RESERVA_CANCELADA, RESERVA_CONFIRMADA, RESERVA_EXPIRADA, VUELO_ABIERTO,
    ahora_utc, nuevo_ticket,
)


class ReservationBook:
    """
    Reservas previas al pago y registro de compras confirmadas.

    Una reserva activa ya descontó sus cupos del vuelo; al confirmarla con la
    compra no se vuelven a descontar.
    """

    def __init__(self, store, capacidad, broadcaster, notificador, auditoria, reloj=ahora_utc, minutos=None):
        self.store = store
        self.capacidad = capacidad
        self.broadcaster = broadcaster
        self.notificador = notificador
        self.auditoria = auditoria
        self.reloj = reloj
        self.minutos = minutos or config.RESERVA_MINUTOS

    def _efectos(self):
        return Efectos(self.broadcaster, self.notificador, self.auditoria)

    def _reserva(self, reservation_id):
        reserva = self.store.get("reservations", reservation_id)
        if not reserva:
            raise NotFound(f"Reserva {reservation_id} no encontrada.", {"reservationId": [reservation_id]})
        return reserva

    def obtener(self, reservation_id):
        return self._reserva(reservation_id)

    def create_reservation(self, user_id, flight_id, cantidad_pasajeros):
        with self.store.transaction():
            flight = self.store.get("flights", flight_id)
            if not flight:
                raise NotFound(f"Vuelo {flight_id} no encontrado.", {"flightId": [flight_id]})
            if flight["estado"] != VUELO_ABIERTO:
                raise Conflict("El vuelo no está abierto.", {"estado": [flight["estado"]]})
            self.capacidad.ocupar(flight_id, cantidad_pasajeros)
            ahora = self.reloj()
            reserva = self.store.insert("reservations", {
                "userId": user_id,
                "flightId": flight_id,
                "cantidadPasajeros": cantidad_pasajeros,
                "status": RESERVA_ACTIVA,
                "expiresAt": ahora + timedelta(minutes=self.minutos),
                "createdAt": ahora,
            })
        logging.info(f"📌 Reserva {reserva['_id']} de {cantidad_pasajeros} cupos en vuelo {flight_id}")
        return reserva

    def release_reservation(self, reservation_id, user_id=None):
        with self.store.transaction():
            reserva = self._reserva(reservation_id)
            if user_id is not None and reserva["userId"] != user_id:
                raise Forbidden("La reserva no te pertenece.", {"reservationId": [reservation_id]})
            if reserva["status"] != RESERVA_ACTIVA:
                raise Conflict("La reserva no está activa.", {"status": [reserva["status"]]})
            self.capacidad.liberar(reserva["flightId"], reserva["cantidadPasajeros"])
            reserva = self.store.update("reservations", reservation_id, {"status": RESERVA_CANCELADA})
        logging.info(f"🗑️ Reserva {reservation_id} liberada")
        return reserva

    def expire_reservations(self):
        ahora = self.reloj()
        expiradas = 0
        with self.store.transaction():
            for reserva in self.store.find(
                "reservations", status=RESERVA_ACTIVA, filtro=lambda r: r["expiresAt"] <= ahora,
            ):
                self.capacidad.liberar(reserva["flightId"], reserva["cantidadPasajeros"])
                self.store.update("reservations", reserva["_id"], {"status": RESERVA_EXPIRADA})
                expiradas += 1
        if expiradas:
            logging.info(f"⌛ {expiradas} reservas expiradas, cupos devueltos")
        return expiradas

    def register_purchase(self, user_id, pasajeros, flight_id=None, reservation_id=None, monto=None, metodo=None):
        """Compra confirmada por la pasarela de pago: crea un ticket por pasajero."""
        if not pasajeros:
            raise InvalidInput("La compra debe incluir al menos un pasajero.", {"pasajeros": ["Requerido"]})

        efectos = self._efectos()
        with self.store.transaction():
            if not self.store.get("users", user_id):
                raise NotFound(f"Usuario {user_id} no encontrado.", {"userId": [user_id]})

            infantes = sum(1 for p in pasajeros if p.get("esInfante"))
            flight = None
            if reservation_id:
                reserva = self._reserva(reservation_id)
                if reserva["userId"] != user_id:
                    raise Forbidden("La reserva no pertenece al comprador.", {"reservationId": [reservation_id]})
                if reserva["status"] != RESERVA_ACTIVA:
                    raise Conflict("La reserva no está activa.", {"status": [reserva["status"]]})
                if reserva["expiresAt"] <= self.reloj():
                    raise Gone("La reserva expiró.", {"expiresAt": [reserva["expiresAt"].isoformat()]})
                if reserva["cantidadPasajeros"] != len(pasajeros):
                    raise InvalidInput(
                        "La cantidad de pasajeros no coincide con la reserva.",
                        {"pasajeros": [f"Se esperaban {reserva['cantidadPasajeros']}"]},
                    )
                flight_id = reserva["flightId"]
                vuelo = self.store.get("flights", flight_id)
                if not vuelo or vuelo["estado"] != VUELO_ABIERTO:
                    raise Conflict(
                        "El vuelo de la reserva ya no está abierto.",
                        {"estado": [vuelo["estado"] if vuelo else "borrado"]},
                    )
                # La reserva contó a los infantes como asientos
                flight = self.capacidad.liberar(flight_id, infantes)
                self.store.update("reservations", reservation_id, {"status": RESERVA_CONFIRMADA})
            elif flight_id:
                flight = self.store.get("flights", flight_id)
                if not flight:
                    raise NotFound(f"Vuelo {flight_id} no encontrado.", {"flightId": [flight_id]})
                if flight["estado"] != VUELO_ABIERTO:
                    raise Conflict("El vuelo no está abierto.", {"estado": [flight["estado"]]})
                flight = self.capacidad.ocupar(flight_id, len(pasajeros) - infantes)

            tickets = [
                self.store.insert("tickets", nuevo_ticket(
                    user_id, [pasajero], flight_id=flight_id,
                    turno_global=self.store.next_sequence("turno_global"),
                ))
                for pasajero in pasajeros
            ]
            pago = self.store.insert("payments", {
                "userId": user_id,
                "monto": monto if monto is not None else config.PRECIO_TICKET * len(pasajeros),
                "tipo": "compra",
                "metodo": metodo,
                "ticketIds": [t["_id"] for t in tickets],
                "flightId": flight_id,
                "reservationId": reservation_id,
                "createdAt": self.reloj(),
            })

            if flight is not None:
                for ticket in tickets:
                    efectos.correo_pase(ticket, flight)
                efectos.emitir("flights", "flightUpdated", {
                    "flightId": flight["_id"],
                    "asientos_ocupados": flight["asientos_ocupados"],
                    "capacidad_total": flight["capacidad_total"],
                })
            efectos.auditar("purchase_registered", "payment", pago["_id"], user_id, {
                "tickets": len(tickets), "flightId": flight_id, "reservationId": reservation_id,
            })

        efectos.despachar()
        logging.info(f"💳 Compra registrada: {len(tickets)} tickets para usuario {user_id}")
        return tickets, pago
