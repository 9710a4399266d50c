# Standard Library
import logging

from . import config
from .colaboradores import Efectos
from .errores import Conflict, InvalidInput, NotFound
from .modelos import (
    ASIENTO_LIBRE, ESTADOS_VUELO_OPERANDO, VUELO_ABIERTO, ahora_utc, generar_numeros_asiento,
)
from .store import DuplicateKey


class FleetService:
    """Aviones de la flota, su capacidad y los reabastecimientos."""

    def __init__(self, store, broadcaster, notificador, auditoria, reloj=ahora_utc):
        self.store = store
        self.broadcaster = broadcaster
        self.notificador = notificador
        self.auditoria = auditoria
        self.reloj = reloj

    def _avion(self, aircraft_id):
        aircraft = self.store.get("aircraft", aircraft_id)
        if not aircraft:
            raise NotFound(f"Avión {aircraft_id} no encontrado.", {"aircraftId": [aircraft_id]})
        return aircraft

    def listar(self):
        return self.store.find("aircraft", orden="matricula")

    def create_aircraft(self, matricula, modelo, capacidad, max_circuitos_sin_reabastecimiento=None, user_id=None):
        if not 1 <= capacidad <= 10:
            raise InvalidInput("La capacidad debe estar entre 1 y 10.", {"capacidad": [str(capacidad)]})
        try:
            aircraft = self.store.insert("aircraft", {
                "matricula": matricula.upper(),
                "modelo": modelo,
                "capacidad": capacidad,
                "habilitado": True,
                "max_circuitos_sin_reabastecimiento": (
                    max_circuitos_sin_reabastecimiento or config.MAX_CIRCUITOS_SIN_REABASTECIMIENTO
                ),
                "circuitos_desde_reabastecimiento": 0,
                "createdAt": self.reloj(),
            })
        except DuplicateKey:
            raise Conflict(f"Ya existe un avión con matrícula {matricula.upper()}.", {"matricula": [matricula]})
        self.auditoria.record("aircraft_created", "aircraft", aircraft["_id"], user_id, {"matricula": aircraft["matricula"]})
        logging.info(f"✈️ Avión {aircraft['matricula']} creado con {capacidad} asientos")
        return aircraft

    def _ajustar_asientos(self, flight, capacidad):
        """Deja en el vuelo exactamente los asientos de la nueva capacidad; solo borra asientos libres."""
        deseados = set(generar_numeros_asiento(capacidad))
        actuales = {s["seatNumber"]: s for s in self.store.find("seats", flightId=flight["_id"])}
        sobrantes = [s for numero, s in actuales.items() if numero not in deseados]
        if any(s["status"] != ASIENTO_LIBRE for s in sobrantes):
            return False
        for seat in sobrantes:
            self.store.delete("seats", seat["_id"])
        for numero in sorted(deseados - set(actuales)):
            self.store.insert("seats", {"flightId": flight["_id"], "seatNumber": numero, "status": ASIENTO_LIBRE})
        return True

    def update_capacity(self, aircraft_id, capacidad, user_id=None):
        if not 1 <= capacidad <= 10:
            raise InvalidInput("La capacidad debe estar entre 1 y 10.", {"capacidad": [str(capacidad)]})
        efectos = Efectos(self.broadcaster, self.notificador, self.auditoria)
        actualizados, omitidos = [], []
        with self.store.transaction():
            aircraft = self._avion(aircraft_id)
            aircraft = self.store.update("aircraft", aircraft_id, {"capacidad": capacidad})
            for flight in self.store.find("flights", aircraftId=aircraft_id, estado=VUELO_ABIERTO):
                if capacidad < flight["asientos_ocupados"] or not self._ajustar_asientos(flight, capacidad):
                    omitidos.append(flight["_id"])
                    continue
                flight = self.store.update("flights", flight["_id"], {"capacidad_total": capacidad})
                actualizados.append(flight["_id"])
                efectos.emitir("flights", "flightUpdated", {
                    "flightId": flight["_id"],
                    "capacidad_total": capacidad,
                    "asientos_ocupados": flight["asientos_ocupados"],
                })
            efectos.auditar("aircraft_capacity_changed", "aircraft", aircraft_id, user_id, {
                "capacidad": capacidad, "actualizados": actualizados, "omitidos": omitidos,
            })
        efectos.despachar()
        if omitidos:
            logging.warning(f"⚠️ {len(omitidos)} vuelos de {aircraft['matricula']} conservan su capacidad anterior")
        logging.info(f"🔧 Capacidad de {aircraft['matricula']} actualizada a {capacidad}")
        return {"aircraft": aircraft, "vuelos_actualizados": actualizados, "vuelos_omitidos": omitidos}

    def toggle_aircraft(self, aircraft_id, user_id=None):
        with self.store.transaction():
            aircraft = self._avion(aircraft_id)
            if aircraft["habilitado"]:
                operando = self.store.count("flights", aircraftId=aircraft_id, estado=set(ESTADOS_VUELO_OPERANDO))
                if operando:
                    raise Conflict(
                        f"No se puede deshabilitar {aircraft['matricula']}: tiene vuelos en operación.",
                        {"vuelos": [str(operando)]},
                    )
            aircraft = self.store.update("aircraft", aircraft_id, {"habilitado": not aircraft["habilitado"]})
            self.auditoria.record("aircraft_toggled", "aircraft", aircraft_id, user_id, {"habilitado": aircraft["habilitado"]})
        logging.info(f"🔀 Avión {aircraft['matricula']} {'habilitado' if aircraft['habilitado'] else 'deshabilitado'}")
        return aircraft

    def create_refueling(self, aircraft_id, litros, costo=None, user_id=None):
        with self.store.transaction():
            aircraft = self._avion(aircraft_id)
            registro = self.store.insert("refuelings", {
                "aircraftId": aircraft_id,
                "litros": litros,
                "costo": costo,
                "userId": user_id,
                "createdAt": self.reloj(),
            })
            self.store.update("aircraft", aircraft_id, {
                "ultimo_reabastecimiento": registro["createdAt"],
                "circuitos_desde_reabastecimiento": 0,
            })
            pendientes = self.store.find(
                "notifications", tipo="reabastecimiento_pendiente", leido=False,
                filtro=lambda n: (n.get("metadata") or {}).get("aircraftId") == aircraft_id,
            )
            for notificacion in pendientes:
                self.store.update("notifications", notificacion["_id"], {"leido": True})
            self.auditoria.record("refueling_created", "aircraft", aircraft_id, user_id, {
                "litros": litros, "notificaciones_resueltas": len(pendientes),
            })
        logging.info(
            f"⛽ Reabastecimiento de {aircraft['matricula']} ({litros} L); "
            f"{len(pendientes)} notificaciones resueltas"
        )
        return registro, len(pendientes)
