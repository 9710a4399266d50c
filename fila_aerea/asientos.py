# Standard Library
import logging
from datetime import timedelta

# Third-party Libraries
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from . import config
from .colaboradores import Efectos
from .errores import Conflict, Forbidden, Gone, InvalidInput, NotFound, RateLimited
from .modelos import (
    ASIENTO_CONFIRMADO, ASIENTO_EMBARCADO, ASIENTO_HOLD, ASIENTO_LIBRE, ASIENTO_NO_SHOW,
    ASIENTOS_VIVOS, PASE_EMITIDO, PASE_ESCANEADO, TICKET_DISPONIBLE, TICKET_EMBARCADO,
    TICKET_INSCRITO, VUELO_ABIERTO, VUELO_BOARDING, ahora_utc, peso_asiento, tiene_pasajero_con_nombre,
)
from .store import nuevo_id


class FirmadorQR:
    """Firma y verifica los tokens QR de los pases de abordar."""

    def __init__(self, secret=None, minutos=None):
        self._serializer = URLSafeTimedSerializer(secret or config.SECRET_KEY, salt="pase-abordar")
        self.max_age = (minutos or config.PASE_QR_MINUTOS) * 60

    def firmar(self, payload):
        return self._serializer.dumps(payload)

    def verificar(self, token):
        try:
            return self._serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            raise Gone("El código QR del pase de abordar expiró.", {"qr_token": ["Expirado"]})
        except BadSignature:
            raise InvalidInput("El código QR no es válido.", {"qr_token": ["Firma inválida"]})


class SeatLedger:
    """Asientos de cada vuelo: hold temporal, confirmación con pase de abordar y liberación."""

    def __init__(self, store, capacidad, firmador, broadcaster, notificador, auditoria,
                 reloj=ahora_utc, hold_minutos=None, max_cambios_hora=None, cooldown_minutos=None):
        self.store = store
        self.capacidad = capacidad
        self.firmador = firmador
        self.broadcaster = broadcaster
        self.notificador = notificador
        self.auditoria = auditoria
        self.reloj = reloj
        self.hold_minutos = hold_minutos or config.HOLD_MINUTOS
        self.max_cambios_hora = max_cambios_hora or config.MAX_CAMBIOS_ASIENTO_HORA
        self.cooldown_minutos = cooldown_minutos or config.COOLDOWN_NO_SHOW_MINUTOS

    def _efectos(self):
        return Efectos(self.broadcaster, self.notificador, self.auditoria)

    def _emitir_asiento(self, efectos, seat):
        efectos.emitir(f"flight:{seat['flightId']}", "seatUpdated", {
            "flightId": seat["flightId"],
            "seatNumber": seat["seatNumber"],
            "status": seat["status"],
        })

    # -----------------------------
    # Consultas
    # -----------------------------
    def buscar_asiento(self, flight_id, seat_number):
        seat = self.store.find_one("seats", flightId=flight_id, seatNumber=seat_number.upper())
        if not seat:
            raise NotFound(
                f"Asiento {seat_number} no encontrado en el vuelo {flight_id}.",
                {"seatNumber": [seat_number]},
            )
        return seat

    def asientos_del_vuelo(self, flight_id):
        return self.store.find("seats", flightId=flight_id, orden="seatNumber")

    def _ticket(self, ticket_id):
        ticket = self.store.get("tickets", ticket_id)
        if not ticket:
            raise NotFound(f"Ticket {ticket_id} no encontrado.", {"ticketId": [ticket_id]})
        return ticket

    def _liberar_si_expirado(self, seat, ahora):
        expira = seat.get("hold_expires_at")
        if seat["status"] == ASIENTO_HOLD and expira is not None and expira <= ahora:
            return self.store.find_one_and_update(
                "seats", {"status": ASIENTO_LIBRE}, unset=("ticketId", "hold_expires_at"),
                _id=seat["_id"], status=ASIENTO_HOLD,
            )
        return None

    # -----------------------------
    # Hold
    # -----------------------------
    def hold_seat(self, flight_id, seat_number, ticket_id, user_id=None):
        ahora = self.reloj()
        hace_una_hora = ahora - timedelta(hours=1)
        efectos = self._efectos()

        with self.store.transaction():
            ticket = self._ticket(ticket_id)
            if ticket["estado"] not in (TICKET_DISPONIBLE, TICKET_INSCRITO):
                raise Conflict(
                    f"El ticket está en estado '{ticket['estado']}' y no puede elegir asiento.",
                    {"estado": [ticket["estado"]]},
                )

            cooldown = ticket.get("cooldownUntil")
            if cooldown and cooldown > ahora:
                raise RateLimited(
                    "Tienes un cooldown activo por no-show.",
                    {"cooldownUntil": [cooldown.isoformat()]},
                )

            ultimo_cambio = ticket.get("lastSeatChangeAt")
            cambios = ticket.get("seatChanges", 0)
            if cambios >= self.max_cambios_hora and ultimo_cambio and ultimo_cambio > hace_una_hora:
                raise RateLimited(
                    "Has alcanzado el límite de cambios de asiento por hora.",
                    {"retryAfter": [(ultimo_cambio + timedelta(hours=1)).isoformat()]},
                )

            flight = self.store.get("flights", flight_id)
            if not flight:
                raise NotFound(f"Vuelo {flight_id} no encontrado.", {"flightId": [flight_id]})
            if flight["estado"] != VUELO_ABIERTO:
                raise Conflict("El vuelo no está abierto para elegir asiento.", {"estado": [flight["estado"]]})

            # Sin tope de turno el vuelo admite a cualquiera
            tope = flight.get("turno_max_permitido")
            if tope is not None and ticket.get("turno_global", 0) > tope:
                raise RateLimited(
                    "Tu turno aún no está habilitado para este vuelo.",
                    {
                        "turno_global": [str(ticket.get("turno_global", 0))],
                        "turno_max_permitido": [str(tope)],
                    },
                )

            if ticket.get("flightId") and ticket["flightId"] != flight_id:
                raise Conflict("El ticket está inscrito en otro vuelo.", {"flightId": [ticket["flightId"]]})

            existente = self.store.find_one(
                "seats", flightId=flight_id, ticketId=ticket_id, status=ASIENTOS_VIVOS,
                filtro=lambda s: not (s["status"] == ASIENTO_HOLD and s.get("hold_expires_at") and s["hold_expires_at"] <= ahora),
            )
            if existente:
                raise Conflict(
                    "Ya tienes un asiento en este vuelo.",
                    {"seatNumber": [existente["seatNumber"]]},
                )

            seat = self.buscar_asiento(flight_id, seat_number)
            if self._liberar_si_expirado(seat, ahora):
                logging.info(f"⌛ Hold expirado del asiento {seat['seatNumber']} liberado antes de reasignar")

            seat = self.store.find_one_and_update(
                "seats",
                {
                    "status": ASIENTO_HOLD,
                    "ticketId": ticket_id,
                    "hold_expires_at": ahora + timedelta(minutes=self.hold_minutos),
                },
                _id=seat["_id"],
                status=ASIENTO_LIBRE,
            )
            if seat is None:
                raise Conflict(f"El asiento {seat_number.upper()} no está disponible.", {"seatNumber": [seat_number]})

            if not ultimo_cambio or ultimo_cambio < hace_una_hora:
                cambios = 1
            else:
                cambios += 1
            self.store.update("tickets", ticket_id, {"seatChanges": cambios, "lastSeatChangeAt": ahora})

            efectos.auditar("seat_hold", "seat", seat["_id"], user_id, {
                "flightId": flight_id, "seatNumber": seat["seatNumber"], "ticketId": ticket_id,
            })
            self._emitir_asiento(efectos, seat)

        efectos.despachar()
        logging.info(f"🪑 Asiento {seat['seatNumber']} del vuelo {flight_id} en hold para ticket {ticket_id}")
        return seat

    # -----------------------------
    # Confirmación
    # -----------------------------
    def _emitir_pase(self, ticket, flight, seat):
        pase_id = nuevo_id()
        qr_token = self.firmador.firmar({
            "boarding_pass_id": pase_id,
            "ticket_id": ticket["_id"],
            "flight_id": flight["_id"],
            "seatNumber": seat["seatNumber"],
        })
        return self.store.insert("boarding_passes", {
            "_id": pase_id,
            "ticketId": ticket["_id"],
            "flightId": flight["_id"],
            "seatNumber": seat["seatNumber"],
            "qr_token": qr_token,
            "estado": PASE_EMITIDO,
            "createdAt": self.reloj(),
        })

    def confirm_seat(self, flight_id, seat_number, ticket_id, user_id=None):
        ahora = self.reloj()
        efectos = self._efectos()

        seat = self.buscar_asiento(flight_id, seat_number)
        if seat["status"] != ASIENTO_HOLD:
            raise Conflict("El asiento debe estar en estado hold.", {"status": [seat["status"]]})
        if seat.get("ticketId") != ticket_id:
            raise Forbidden("Este asiento no está reservado para tu ticket.", {"ticketId": [ticket_id]})

        liberado = self._liberar_si_expirado(seat, ahora)
        if liberado:
            self._emitir_asiento(efectos, liberado)
            efectos.auditar("seat_hold_expired", "seat", seat["_id"], user_id, {"flightId": flight_id})
            efectos.despachar()
            raise Gone("La reserva del asiento ha expirado.", {"hold_expires_at": [seat["hold_expires_at"].isoformat()]})

        with self.store.transaction():
            ticket = self._ticket(ticket_id)
            flight = self.store.get("flights", flight_id)
            if not flight:
                raise NotFound(f"Vuelo {flight_id} no encontrado.", {"flightId": [flight_id]})

            if ticket.get("flightId") != flight_id:
                if ticket.get("flightId") or ticket["estado"] != TICKET_DISPONIBLE:
                    raise Conflict("El ticket no puede inscribirse en este vuelo.", {"estado": [ticket["estado"]]})
                if not tiene_pasajero_con_nombre(ticket):
                    raise InvalidInput(
                        "El ticket debe tener al menos un pasajero con nombre.",
                        {"pasajeros": ["Falta el nombre del pasajero"]},
                    )
                self.capacidad.ocupar(flight_id, peso_asiento(ticket))
                ticket = self.store.update("tickets", ticket_id, {"flightId": flight_id, "estado": TICKET_INSCRITO})

            otro = self.store.find_one(
                "seats", flightId=flight_id, ticketId=ticket_id,
                status={ASIENTO_CONFIRMADO, ASIENTO_EMBARCADO},
            )
            if otro:
                raise Conflict("Este ticket ya tiene un asiento confirmado en este vuelo.", {"seatNumber": [otro["seatNumber"]]})

            seat = self.store.find_one_and_update(
                "seats", {"status": ASIENTO_CONFIRMADO}, unset=("hold_expires_at",),
                _id=seat["_id"], status=ASIENTO_HOLD, ticketId=ticket_id,
            )
            if seat is None:
                raise Conflict("El asiento cambió de estado durante la confirmación.", {})

            pase = self._emitir_pase(ticket, flight, seat)

            efectos.auditar("seat_confirmed", "seat", seat["_id"], user_id, {
                "flightId": flight_id,
                "seatNumber": seat["seatNumber"],
                "ticketId": ticket_id,
                "boardingPassId": pase["_id"],
            })
            self._emitir_asiento(efectos, seat)

        efectos.despachar()
        logging.info(f"✅ Asiento {seat['seatNumber']} confirmado; pase {pase['_id']} emitido")
        return seat, pase

    # -----------------------------
    # Liberación
    # -----------------------------
    def release_seat(self, flight_id, seat_number, user_id=None):
        efectos = self._efectos()
        seat = self.buscar_asiento(flight_id, seat_number)
        if seat["status"] == ASIENTO_LIBRE:
            raise Conflict(f"El asiento {seat['seatNumber']} ya estaba libre.", {"status": [seat["status"]]})

        ticket_anterior = seat.get("ticketId")
        liberado = self.store.find_one_and_update(
            "seats", {"status": ASIENTO_LIBRE}, unset=("ticketId", "hold_expires_at"),
            _id=seat["_id"], status=seat["status"],
        )
        if liberado is None:
            raise Conflict("El asiento cambió de estado mientras se liberaba.", {})

        efectos.auditar("seat_released", "seat", seat["_id"], user_id, {
            "flightId": flight_id, "seatNumber": seat["seatNumber"], "oldTicketId": ticket_anterior,
        })
        self._emitir_asiento(efectos, liberado)
        efectos.despachar()
        logging.info(f"🟢 Asiento {seat['seatNumber']} del vuelo {flight_id} liberado")
        return liberado

    def liberar_asientos_del_ticket(self, flight_id, ticket_id, efectos=None):
        """Devuelve a `libre` todo asiento que el ticket ocupe en el vuelo."""
        liberados = []
        for seat in self.store.find("seats", flightId=flight_id, ticketId=ticket_id):
            if seat["status"] == ASIENTO_LIBRE:
                continue
            seat = self.store.update("seats", seat["_id"], {"status": ASIENTO_LIBRE}, unset=("ticketId", "hold_expires_at"))
            liberados.append(seat)
            if efectos is not None:
                self._emitir_asiento(efectos, seat)
        return liberados

    def expire_holds(self):
        ahora = self.reloj()
        efectos = self._efectos()
        liberados = 0
        expirados = self.store.find(
            "seats", status=ASIENTO_HOLD,
            filtro=lambda s: s.get("hold_expires_at") is not None and s["hold_expires_at"] <= ahora,
        )
        for seat in expirados:
            seat = self._liberar_si_expirado(seat, ahora)
            if seat:
                liberados += 1
                self._emitir_asiento(efectos, seat)
        efectos.despachar()
        if liberados:
            logging.info(f"⌛ {liberados} holds expirados devueltos a libre")
        return liberados

    # -----------------------------
    # Embarque
    # -----------------------------
    def marcar_no_show(self, flight_id):
        """Confirmados sin escanear pasan a no_show y su ticket recibe cooldown."""
        cooldown = self.reloj() + timedelta(minutes=self.cooldown_minutos)
        marcados = 0
        for seat in self.store.find("seats", flightId=flight_id, status=ASIENTO_CONFIRMADO):
            self.store.update("seats", seat["_id"], {"status": ASIENTO_NO_SHOW})
            if seat.get("ticketId"):
                self.store.update("tickets", seat["ticketId"], {"cooldownUntil": cooldown})
            marcados += 1
        return marcados

    def scan_boarding_pass(self, qr_token, user_id=None):
        datos = self.firmador.verificar(qr_token)
        efectos = self._efectos()

        with self.store.transaction():
            pase = self.store.find_one("boarding_passes", qr_token=qr_token)
            if not pase:
                raise NotFound("Pase de abordar no encontrado.", {"boarding_pass_id": [datos.get("boarding_pass_id")]})
            if pase["estado"] == PASE_ESCANEADO:
                raise Conflict("El pase de abordar ya fue escaneado.", {"estado": [pase["estado"]]})

            flight = self.store.get("flights", pase["flightId"])
            if not flight or flight["estado"] != VUELO_BOARDING:
                raise Conflict("El vuelo no está en embarque.", {"estado": [flight["estado"] if flight else None]})

            seat = self.buscar_asiento(pase["flightId"], pase["seatNumber"])
            if seat["status"] != ASIENTO_CONFIRMADO or seat.get("ticketId") != pase["ticketId"]:
                raise Conflict("El asiento del pase ya no está confirmado.", {"status": [seat["status"]]})

            pase = self.store.update("boarding_passes", pase["_id"], {
                "estado": PASE_ESCANEADO, "scannedAt": self.reloj(), "scannedBy": user_id,
            })
            seat = self.store.update("seats", seat["_id"], {"status": ASIENTO_EMBARCADO})
            self.store.update("tickets", pase["ticketId"], {"estado": TICKET_EMBARCADO})

            efectos.auditar("boarding_pass_scanned", "boarding_pass", pase["_id"], user_id, {
                "flightId": pase["flightId"], "seatNumber": pase["seatNumber"],
            })
            self._emitir_asiento(efectos, seat)

        efectos.despachar()
        logging.info(f"🛫 Pase {pase['_id']} escaneado, asiento {seat['seatNumber']} embarcado")
        return pase
