# Standard Library
import logging
from datetime import timedelta

from . import config
from .colaboradores import Efectos
from .errores import Conflict, InvalidInput, NotFound
from .modelos import (
    ASIENTO_LIBRE, RAZON_CANCELACION_DIA, RAZONES_REPROGRAMACION, RESERVA_ACTIVA,
    RESERVA_CANCELADA, ROLES_STAFF, TICKET_DISPONIBLE, TICKET_EMBARCADO, TICKET_INSCRITO,
    TICKET_VOLADO, VUELO_ABIERTO, VUELO_BOARDING, VUELO_CANCELADO, VUELO_EN_VUELO,
    VUELO_FINALIZADO, VUELO_REPROGRAMADO, ahora_utc, generar_asientos_para_vuelo, nuevo_vuelo,
    peso_asiento,
)
from .store import DuplicateKey


def _vivo(flight):
    return flight.get("estado") not in (VUELO_REPROGRAMADO, VUELO_CANCELADO)


class CircuitScheduler:
    """
    Secuencia de circuitos por avión.

    Un avión tiene a lo más un vuelo vivo por número de circuito. Cuando un
    vuelo abierto sale de servicio sus pasajeros pasan al siguiente circuito
    activo; si el avión ya ocupa ese circuito, ese vuelo se desplaza primero
    al primer circuito libre del avión.
    """

    def __init__(self, store, capacidad, asientos, broadcaster, notificador, auditoria,
                 reloj=ahora_utc, duracion_circuito=None):
        self.store = store
        self.capacidad = capacidad
        self.asientos = asientos
        self.broadcaster = broadcaster
        self.notificador = notificador
        self.auditoria = auditoria
        self.reloj = reloj
        self.duracion_circuito = duracion_circuito or config.DURACION_CIRCUITO_MINUTOS

    def _efectos(self):
        return Efectos(self.broadcaster, self.notificador, self.auditoria)

    def _vuelo(self, flight_id):
        flight = self.store.get("flights", flight_id)
        if not flight:
            raise NotFound(f"Vuelo {flight_id} no encontrado.", {"flightId": [flight_id]})
        return flight

    def _avion(self, aircraft_id):
        aircraft = self.store.get("aircraft", aircraft_id)
        if not aircraft:
            raise NotFound(f"Avión {aircraft_id} no encontrado.", {"aircraftId": [aircraft_id]})
        return aircraft

    def _emitir_vuelo(self, efectos, flight, evento="flightUpdated"):
        efectos.emitir("flights", evento, {
            "flightId": flight["_id"],
            "aircraftId": flight["aircraftId"],
            "numero_circuito": flight["numero_circuito"],
            "estado": flight["estado"],
            "asientos_ocupados": flight["asientos_ocupados"],
            "capacidad_total": flight["capacidad_total"],
        })

    # -----------------------------
    # Consultas
    # -----------------------------
    def listar(self, estado=None, numero_circuito=None, aircraft_id=None):
        filtros = {}
        if estado:
            filtros["estado"] = estado
        if numero_circuito is not None:
            filtros["numero_circuito"] = numero_circuito
        if aircraft_id:
            filtros["aircraftId"] = aircraft_id
        return self.store.find("flights", orden="numero_circuito", **filtros)

    def obtener(self, flight_id):
        return self._vuelo(flight_id)

    # -----------------------------
    # Creación
    # -----------------------------
    def _crear_vuelo(self, aircraft, numero_circuito, fecha_hora, capacidad=None, **extra):
        try:
            flight = self.store.insert("flights", nuevo_vuelo(aircraft, numero_circuito, fecha_hora, capacidad, **extra))
        except DuplicateKey:
            raise Conflict(
                f"El avión {aircraft['matricula']} ya tiene un vuelo en el circuito {numero_circuito}.",
                {"numero_circuito": [str(numero_circuito)]},
            )
        for seat in generar_asientos_para_vuelo(flight["_id"], flight["capacidad_total"]):
            self.store.insert("seats", seat)
        return flight

    def create_flight(self, aircraft_id, numero_circuito, fecha_hora, pilot_id=None,
                      hora_prevista_salida=None, turno_max_permitido=None, user_id=None):
        efectos = self._efectos()
        with self.store.transaction():
            aircraft = self._avion(aircraft_id)
            if not aircraft.get("habilitado", True):
                raise Conflict(f"El avión {aircraft['matricula']} está deshabilitado.", {"aircraftId": [aircraft_id]})
            flight = self._crear_vuelo(
                aircraft, numero_circuito, fecha_hora,
                pilotId=pilot_id, hora_prevista_salida=hora_prevista_salida,
                turno_max_permitido=turno_max_permitido,
            )
            efectos.auditar("flight_created", "flight", flight["_id"], user_id, {
                "aircraftId": aircraft_id, "numero_circuito": numero_circuito,
            })
            self._emitir_vuelo(efectos, flight)
        efectos.despachar()
        logging.info(f"🛩️ Vuelo creado: {aircraft['matricula']} circuito {numero_circuito}")
        return flight

    def create_tanda(self, numero_circuito, fecha_hora, aircraft_ids=None, user_id=None):
        """Un vuelo por avión habilitado (o por los aviones indicados) para un circuito."""
        efectos = self._efectos()
        with self.store.transaction():
            if aircraft_ids:
                aviones = [self._avion(a) for a in aircraft_ids]
            else:
                aviones = self.store.find("aircraft", habilitado=True, orden="matricula")
            if not aviones:
                raise Conflict("No hay aviones habilitados para la tanda.", {"aircraftIds": []})

            vuelos = []
            for aircraft in aviones:
                if not aircraft.get("habilitado", True):
                    raise Conflict(
                        f"El avión {aircraft['matricula']} está deshabilitado.",
                        {"aircraftId": [aircraft["_id"]]},
                    )
                flight = self._crear_vuelo(aircraft, numero_circuito, fecha_hora)
                vuelos.append(flight)
                self._emitir_vuelo(efectos, flight)
            efectos.auditar("tanda_created", "circuit", str(numero_circuito), user_id, {
                "vuelos": [v["_id"] for v in vuelos],
            })
        efectos.despachar()
        logging.info(f"📋 Tanda del circuito {numero_circuito} creada con {len(vuelos)} vuelos")
        return vuelos

    def delete_flight(self, flight_id, user_id=None):
        """Borra un vuelo sin pasajeros junto con sus asientos."""
        efectos = self._efectos()
        with self.store.transaction():
            flight = self._vuelo(flight_id)
            if flight["estado"] in (VUELO_BOARDING, VUELO_EN_VUELO, VUELO_FINALIZADO):
                raise Conflict(f"No se puede borrar un vuelo en '{flight['estado']}'.", {"estado": [flight["estado"]]})
            inscritos = self.store.count("tickets", flightId=flight_id, estado={TICKET_INSCRITO, TICKET_EMBARCADO})
            reservas = self.store.count("reservations", flightId=flight_id, status=RESERVA_ACTIVA)
            if inscritos or reservas:
                raise Conflict(
                    "El vuelo tiene pasajeros o reservas activas.",
                    {"tickets": [str(inscritos)], "reservas": [str(reservas)]},
                )
            self.store.delete_many("seats", flightId=flight_id)
            self.store.delete("flights", flight_id)
            efectos.emitir("flights", "flightDeleted", {
                "flightId": flight_id,
                "aircraftId": flight["aircraftId"],
                "numero_circuito": flight["numero_circuito"],
            })
            efectos.auditar("flight_deleted", "flight", flight_id, user_id, {
                "aircraftId": flight["aircraftId"], "numero_circuito": flight["numero_circuito"],
            })
        efectos.despachar()
        logging.info(f"🗑️ Vuelo {flight_id} del circuito {flight['numero_circuito']} borrado")
        return flight

    # -----------------------------
    # Búsqueda de circuitos
    # -----------------------------
    def _primer_circuito_libre(self, aircraft_id, desde):
        numero = desde
        while self.store.count("flights", filtro=_vivo, aircraftId=aircraft_id, numero_circuito=numero):
            numero += 1
        return numero

    def _fecha_para_circuito(self, numero):
        existente = self.store.find_one("flights", filtro=_vivo, numero_circuito=numero)
        if existente:
            return existente["fecha_hora"]
        ultimo = self.store.find_one("flights", filtro=_vivo, orden="-numero_circuito")
        if ultimo:
            return ultimo["fecha_hora"] + timedelta(hours=1)
        return self.reloj()

    def _marcar_reprogramacion(self, ticket, destino, numero_anterior, efectos, razon):
        pendiente = {
            "nuevo_flightId": destino["_id"],
            "flightId_anterior": ticket.get("flightId"),
            "numero_circuito_anterior": numero_anterior,
            "numero_circuito_nuevo": destino["numero_circuito"],
            "fecha": self.reloj(),
        }
        ticket = self.store.update("tickets", ticket["_id"], {
            "flightId": destino["_id"],
            "reprogramacion_pendiente": pendiente,
        })
        efectos.notificar(
            ticket["userId"], "reprogramacion", "Tu vuelo fue reprogramado",
            f"Por {razon}, tu vuelo del circuito {numero_anterior} pasó al circuito "
            f"{destino['numero_circuito']}. Puedes aceptar o solicitar devolución.",
            {
                "ticketId": ticket["_id"],
                "flightId": destino["_id"],
                "numero_circuito_anterior": numero_anterior,
                "numero_circuito_nuevo": destino["numero_circuito"],
            },
        )
        return ticket

    def _desplazar(self, colision, razon, efectos):
        """Mueve el vuelo que ocupa el circuito destino al primer circuito libre del avión."""
        if colision["estado"] != VUELO_ABIERTO:
            raise Conflict(
                f"El vuelo del circuito {colision['numero_circuito']} ya está en '{colision['estado']}' "
                "y no se puede desplazar.",
                {"estado": [colision["estado"]]},
            )
        anterior = colision["numero_circuito"]
        nuevo_numero = self._primer_circuito_libre(colision["aircraftId"], anterior + 1)
        fecha = self._fecha_para_circuito(nuevo_numero)
        movido = self.store.update("flights", colision["_id"], {
            "numero_circuito": nuevo_numero,
            "fecha_hora": fecha,
        })
        tickets = self.store.find("tickets", flightId=colision["_id"], estado=TICKET_INSCRITO)
        for ticket in tickets:
            self._marcar_reprogramacion(ticket, movido, anterior, efectos, razon)
        self._emitir_vuelo(efectos, movido)
        logging.info(f"↪️ Vuelo {movido['_id']} desplazado del circuito {anterior} al {nuevo_numero}")
        return {
            "flightId": movido["_id"],
            "numero_circuito_anterior": anterior,
            "numero_circuito_nuevo": nuevo_numero,
            "tickets": len(tickets),
        }

    def _avisar_reabastecimiento(self, aircraft, efectos, mensaje, metadata):
        """Avisa a todo el staff activo; el registro de reabastecimiento marca estos avisos como leídos."""
        staff = self.store.find("users", rol=set(ROLES_STAFF), filtro=lambda u: u.get("activo", True))
        for usuario in staff:
            efectos.notificar(
                usuario["_id"], "reabastecimiento_pendiente", "Reabastecimiento pendiente", mensaje, metadata,
            )
        logging.warning(f"⛽ Reabastecimiento pendiente para {aircraft['matricula']}")

    # -----------------------------
    # Reprogramación
    # -----------------------------
    def reschedule_flight_to_next_circuito(self, flight_id, razon, user_id=None):
        if razon not in RAZONES_REPROGRAMACION:
            raise InvalidInput(
                "Razón de reprogramación no válida.",
                {"razon": [f"Debe ser una de: {', '.join(RAZONES_REPROGRAMACION)}"]},
            )

        efectos = self._efectos()
        with self.store.transaction():
            flight = self._vuelo(flight_id)
            if flight["estado"] != VUELO_ABIERTO:
                raise Conflict("Solo se pueden reprogramar vuelos abiertos.", {"estado": [flight["estado"]]})
            aircraft = self._avion(flight["aircraftId"])
            actual = flight["numero_circuito"]

            siguiente = self.store.find_one(
                "flights", estado=VUELO_ABIERTO, orden="numero_circuito",
                filtro=lambda f: f["numero_circuito"] > actual,
            )
            desplazamiento = None
            if siguiente:
                destino_numero = siguiente["numero_circuito"]
                fecha_destino = siguiente["fecha_hora"]
                hora_prevista = siguiente.get("hora_prevista_salida")
                colision = self.store.find_one(
                    "flights", filtro=_vivo, aircraftId=aircraft["_id"], numero_circuito=destino_numero,
                )
                if colision:
                    desplazamiento = self._desplazar(colision, razon, efectos)
            else:
                destino_numero = self._primer_circuito_libre(aircraft["_id"], actual + 1)
                fecha_destino = self._fecha_para_circuito(destino_numero)
                hora_prevista = None

            destino = self._crear_vuelo(
                aircraft, destino_numero, fecha_destino, capacidad=flight["capacidad_total"],
                pilotId=flight.get("pilotId"), hora_prevista_salida=hora_prevista,
                turno_max_permitido=flight.get("turno_max_permitido"),
            )

            tickets = self.store.find("tickets", flightId=flight_id, estado=TICKET_INSCRITO)
            asientos = 0
            for ticket in tickets:
                self._marcar_reprogramacion(ticket, destino, actual, efectos, razon)
                asientos += peso_asiento(ticket)
            # Las reservas activas viajan con sus cupos
            reservas = self.store.find("reservations", flightId=flight_id, status=RESERVA_ACTIVA)
            for reserva in reservas:
                self.store.update("reservations", reserva["_id"], {"flightId": destino["_id"]})
                asientos += reserva["cantidadPasajeros"]
            destino = self.capacidad.ocupar(destino["_id"], asientos)

            for seat in self.store.find("seats", flightId=flight_id):
                if seat["status"] != ASIENTO_LIBRE:
                    self.store.update("seats", seat["_id"], {"status": ASIENTO_LIBRE}, unset=("ticketId", "hold_expires_at"))
            flight = self.store.update("flights", flight_id, {
                "asientos_ocupados": 0,
                "estado": VUELO_REPROGRAMADO,
                "razon_reprogramacion": razon,
                "reprogramadoA": destino["_id"],
            })

            if razon == "combustible":
                self._avisar_reabastecimiento(
                    aircraft, efectos,
                    f"El avión {aircraft['matricula']} necesita reabastecimiento antes del "
                    f"circuito {destino_numero}.",
                    {"aircraftId": aircraft["_id"], "flightId": destino["_id"], "numero_circuito": destino_numero},
                )

            resumen = {
                "flightId": flight_id,
                "nuevoFlightId": destino["_id"],
                "aircraftId": aircraft["_id"],
                "numero_circuito_anterior": actual,
                "numero_circuito_nuevo": destino_numero,
                "razon": razon,
                "tickets_migrados": len(tickets),
                "reservas_migradas": len(reservas),
                "desplazamiento": desplazamiento,
            }
            efectos.emitir("flights", "flightRescheduled", resumen)
            self._emitir_vuelo(efectos, flight)
            self._emitir_vuelo(efectos, destino)
            efectos.auditar("flight_rescheduled", "flight", flight_id, user_id, resumen)

        efectos.despachar()
        logging.info(
            f"🔁 Vuelo {aircraft['matricula']} reprogramado del circuito {actual} al {destino_numero} "
            f"({razon}), {len(tickets)} tickets migrados"
        )
        return resumen

    def cancel_aircraft_for_day(self, flight_id, user_id=None):
        efectos = self._efectos()
        with self.store.transaction():
            flight = self._vuelo(flight_id)
            if flight["estado"] != VUELO_ABIERTO:
                raise Conflict("Solo se puede cancelar desde un vuelo abierto.", {"estado": [flight["estado"]]})
            aircraft = self._avion(flight["aircraftId"])

            vuelos = self.store.find(
                "flights", aircraftId=aircraft["_id"], estado=VUELO_ABIERTO, orden="numero_circuito",
                filtro=lambda f: f["numero_circuito"] >= flight["numero_circuito"],
            )
            tickets_liberados = 0
            for vuelo in vuelos:
                for ticket in self.store.find("tickets", flightId=vuelo["_id"], estado=TICKET_INSCRITO):
                    self.store.update("tickets", ticket["_id"], {
                        "estado": TICKET_DISPONIBLE,
                        "flightId": None,
                        "reprogramacion_pendiente": None,
                        "cambio_hora_pendiente": None,
                    })
                    efectos.notificar(
                        ticket["userId"], "cancelacion", "Vuelo cancelado",
                        f"El vuelo del circuito {vuelo['numero_circuito']} fue cancelado por hoy. "
                        "Tu ticket quedó disponible para inscribirte en otro vuelo.",
                        {"ticketId": ticket["_id"], "flightId": vuelo["_id"]},
                    )
                    tickets_liberados += 1
                for seat in self.store.find("seats", flightId=vuelo["_id"]):
                    if seat["status"] != ASIENTO_LIBRE:
                        self.store.update("seats", seat["_id"], {"status": ASIENTO_LIBRE}, unset=("ticketId", "hold_expires_at"))
                for reserva in self.store.find("reservations", flightId=vuelo["_id"], status=RESERVA_ACTIVA):
                    self.store.update("reservations", reserva["_id"], {"status": RESERVA_CANCELADA})
                self.store.update("flights", vuelo["_id"], {
                    "estado": VUELO_CANCELADO,
                    "asientos_ocupados": 0,
                    "razon_reprogramacion": RAZON_CANCELACION_DIA,
                })

            resumen = {
                "aircraftId": aircraft["_id"],
                "vuelos_cancelados": [v["_id"] for v in vuelos],
                "circuitos": [v["numero_circuito"] for v in vuelos],
                "tickets_liberados": tickets_liberados,
            }
            efectos.emitir("flights", "aircraftCancelledForDay", resumen)
            efectos.auditar("aircraft_cancelled_for_day", "aircraft", aircraft["_id"], user_id, resumen)

        efectos.despachar()
        logging.info(
            f"🛑 Avión {aircraft['matricula']} cancelado por el día: {len(vuelos)} vuelos, "
            f"{tickets_liberados} tickets liberados"
        )
        return resumen

    # -----------------------------
    # Estados del vuelo
    # -----------------------------
    def open_boarding(self, flight_id, user_id=None):
        efectos = self._efectos()
        with self.store.transaction():
            flight = self._vuelo(flight_id)
            if flight["estado"] != VUELO_ABIERTO:
                raise Conflict("El vuelo no está abierto.", {"estado": [flight["estado"]]})
            flight = self.store.update("flights", flight_id, {"estado": VUELO_BOARDING})
            efectos.auditar("flight_boarding", "flight", flight_id, user_id, {})
            self._emitir_vuelo(efectos, flight)
        efectos.despachar()
        logging.info(f"🛂 Embarque abierto para el vuelo {flight_id}")
        return flight

    def start_flight(self, flight_id, user_id=None):
        efectos = self._efectos()
        with self.store.transaction():
            flight = self._vuelo(flight_id)
            if flight["estado"] not in (VUELO_ABIERTO, VUELO_BOARDING):
                raise Conflict("El vuelo no puede iniciar desde este estado.", {"estado": [flight["estado"]]})
            no_show = self.asientos.marcar_no_show(flight_id)
            flight = self.store.update("flights", flight_id, {
                "estado": VUELO_EN_VUELO,
                "hora_inicio_vuelo": self.reloj(),
            })
            efectos.auditar("flight_started", "flight", flight_id, user_id, {"no_show": no_show})
            self._emitir_vuelo(efectos, flight)
        efectos.despachar()
        logging.info(f"🛫 Vuelo {flight_id} en vuelo ({no_show} no-show)")
        return flight

    def finish_flight(self, flight_id, user_id=None):
        efectos = self._efectos()
        with self.store.transaction():
            flight = self._vuelo(flight_id)
            if flight["estado"] != VUELO_EN_VUELO:
                raise Conflict("El vuelo no está en vuelo.", {"estado": [flight["estado"]]})
            arribo = self.reloj()
            flight = self.store.update("flights", flight_id, {"estado": VUELO_FINALIZADO, "hora_arribo": arribo})

            volados = 0
            for ticket in self.store.find("tickets", flightId=flight_id, estado={TICKET_INSCRITO, TICKET_EMBARCADO}):
                self.store.update("tickets", ticket["_id"], {"estado": TICKET_VOLADO})
                volados += 1

            aircraft = self.store.inc("aircraft", flight["aircraftId"], "circuitos_desde_reabastecimiento", 1)
            if aircraft and aircraft["circuitos_desde_reabastecimiento"] == aircraft.get(
                "max_circuitos_sin_reabastecimiento", config.MAX_CIRCUITOS_SIN_REABASTECIMIENTO,
            ):
                self._avisar_reabastecimiento(
                    aircraft, efectos,
                    f"El avión {aircraft['matricula']} completó {aircraft['circuitos_desde_reabastecimiento']} "
                    "circuitos sin reabastecer.",
                    {"aircraftId": aircraft["_id"], "flightId": flight_id, "numero_circuito": flight["numero_circuito"]},
                )

            pendientes = self.store.count(
                "flights", numero_circuito=flight["numero_circuito"],
                estado={VUELO_ABIERTO, VUELO_BOARDING, VUELO_EN_VUELO},
            )
            recalculados = 0
            if not pendientes:
                recalculados = self._recalcular_horas(flight["numero_circuito"], arribo, efectos)

            efectos.auditar("flight_finished", "flight", flight_id, user_id, {
                "tickets_volados": volados, "vuelos_recalculados": recalculados,
            })
            self._emitir_vuelo(efectos, flight)
        efectos.despachar()
        logging.info(f"🛬 Vuelo {flight_id} finalizado, {volados} tickets volados")
        return flight

    # -----------------------------
    # Hora prevista de salida
    # -----------------------------
    def _recalcular_horas(self, circuito_finalizado, arribo, efectos):
        """El circuito siguiente sale al arribo; cada circuito posterior suma la duración de un circuito."""
        siguientes = self.store.find(
            "flights", estado=VUELO_ABIERTO, orden="numero_circuito",
            filtro=lambda f: f["numero_circuito"] > circuito_finalizado,
        )
        for vuelo in siguientes:
            salto = vuelo["numero_circuito"] - circuito_finalizado
            hora = arribo + timedelta(minutes=self.duracion_circuito * (salto - 1))
            self._cambiar_hora(vuelo, hora, efectos)
        return len(siguientes)

    def _cambiar_hora(self, flight, hora, efectos):
        anterior = flight.get("hora_prevista_salida")
        flight = self.store.update("flights", flight["_id"], {"hora_prevista_salida": hora})
        ofertas = 0
        if anterior is not None and anterior != hora:
            for ticket in self.store.find("tickets", flightId=flight["_id"], estado=TICKET_INSCRITO):
                self.store.update("tickets", ticket["_id"], {"cambio_hora_pendiente": {
                    "hora_anterior": anterior,
                    "hora_nueva": hora,
                    "fecha": self.reloj(),
                }})
                efectos.notificar(
                    ticket["userId"], "cambio_hora", "Cambio de hora de tu vuelo",
                    f"El circuito {flight['numero_circuito']} saldrá a las {hora.strftime('%H:%M')}. "
                    "Puedes aceptar, pedir devolución o cambiar de circuito.",
                    {"ticketId": ticket["_id"], "flightId": flight["_id"]},
                )
                ofertas += 1
        self._emitir_vuelo(efectos, flight)
        return flight, ofertas

    def update_hora_prevista(self, flight_id, hora, user_id=None):
        efectos = self._efectos()
        with self.store.transaction():
            flight = self._vuelo(flight_id)
            if flight["estado"] not in (VUELO_ABIERTO, VUELO_BOARDING):
                raise Conflict("Solo se cambia la hora de vuelos abiertos.", {"estado": [flight["estado"]]})
            flight, ofertas = self._cambiar_hora(flight, hora, efectos)
            efectos.auditar("flight_time_changed", "flight", flight_id, user_id, {
                "hora_prevista_salida": hora, "ofertas": ofertas,
            })
        efectos.despachar()
        logging.info(f"🕒 Hora prevista del vuelo {flight_id} actualizada ({ofertas} ofertas de cambio)")
        return flight, ofertas

    def update_flight(self, flight_id, turno_max_permitido, user_id=None):
        """Ajusta el tope de turno que puede elegir asiento; None quita el tope."""
        efectos = self._efectos()
        with self.store.transaction():
            flight = self._vuelo(flight_id)
            if flight["estado"] not in (VUELO_ABIERTO, VUELO_BOARDING):
                raise Conflict("Solo se editan vuelos abiertos o en embarque.", {"estado": [flight["estado"]]})
            anterior = flight.get("turno_max_permitido")
            flight = self.store.update("flights", flight_id, {"turno_max_permitido": turno_max_permitido})
            efectos.auditar("flight_updated", "flight", flight_id, user_id, {
                "turno_max_permitido": turno_max_permitido, "turno_anterior": anterior,
            })
            self._emitir_vuelo(efectos, flight)
        efectos.despachar()
        logging.info(f"🎚️ Vuelo {flight_id}: turno máximo {anterior} -> {turno_max_permitido}")
        return flight

    # -----------------------------
    # Manifiestos
    # -----------------------------
    def _vuelos_del_circuito(self, numero_circuito):
        vuelos = self.store.find("flights", filtro=_vivo, numero_circuito=numero_circuito)
        aviones = {v["aircraftId"]: self.store.get("aircraft", v["aircraftId"]) or {} for v in vuelos}
        vuelos.sort(key=lambda v: aviones[v["aircraftId"]].get("matricula", ""))
        return vuelos, aviones

    def manifiestos(self):
        """Resumen por circuito, del más reciente al más antiguo."""
        numeros = sorted({v["numero_circuito"] for v in self.store.find("flights", filtro=_vivo)}, reverse=True)
        resumen = []
        for numero in numeros:
            vuelos, aviones = self._vuelos_del_circuito(numero)
            resumen.append({
                "numero_circuito": numero,
                "fecha_hora": vuelos[0]["fecha_hora"],
                "vuelos": [
                    {
                        "flightId": v["_id"],
                        "matricula": aviones[v["aircraftId"]].get("matricula"),
                        "modelo": aviones[v["aircraftId"]].get("modelo"),
                        "estado": v["estado"],
                        "pasajeros": self.store.count(
                            "tickets", flightId=v["_id"], estado={TICKET_INSCRITO, TICKET_EMBARCADO},
                        ),
                    }
                    for v in vuelos
                ],
            })
        return resumen

    def manifiesto(self, numero_circuito):
        """Pasajeros de cada avión del circuito, para el control en plataforma."""
        vuelos, aviones = self._vuelos_del_circuito(numero_circuito)
        if not vuelos:
            raise NotFound(
                f"No hay vuelos en el circuito {numero_circuito}.", {"numero_circuito": [str(numero_circuito)]},
            )
        detalle = []
        for vuelo in vuelos:
            tickets = self.store.find(
                "tickets", flightId=vuelo["_id"], estado={TICKET_INSCRITO, TICKET_EMBARCADO}, orden="createdAt",
            )
            pasajeros = [
                {
                    "ticketId": t["_id"],
                    "nombre": t["pasajeros"][0].get("nombre"),
                    "rut": t["pasajeros"][0].get("rut") or "Sin RUT",
                    "esMenor": bool(t["pasajeros"][0].get("esMenor")),
                    "esInfante": bool(t["pasajeros"][0].get("esInfante")),
                    "estado": t["estado"],
                }
                for t in tickets if t.get("pasajeros")
            ]
            detalle.append({
                "flightId": vuelo["_id"],
                "matricula": aviones[vuelo["aircraftId"]].get("matricula"),
                "modelo": aviones[vuelo["aircraftId"]].get("modelo"),
                "estado": vuelo["estado"],
                "asientos_ocupados": vuelo["asientos_ocupados"],
                "capacidad_total": vuelo["capacidad_total"],
                "pasajeros": pasajeros,
            })
        return {
            "numero_circuito": numero_circuito,
            "fecha_hora": vuelos[0]["fecha_hora"],
            "vuelos": detalle,
        }
