# Standard Library
import logging

from . import config
from .errores import Conflict, NotFound
from .modelos import (
    RESERVA_ACTIVA, TICKET_EMBARCADO, TICKET_INSCRITO, VUELO_FINALIZADO,
    es_infante, peso_asiento,
)


def asientos_libres(flight):
    return flight["capacidad_total"] - flight["asientos_ocupados"]


class CapacityAccounting:
    """
    Mantiene `asientos_ocupados` dentro de [0, capacidad_total].

    Todo cambio al contador es un incremento atómico condicionado en el
    store, nunca una lectura-modificación-escritura en memoria.
    """

    def __init__(self, store, descontar_infantes=None):
        self.store = store
        self.descontar_infantes = (
            config.DESCONTAR_INFANTES_AL_REMOVER if descontar_infantes is None else descontar_infantes
        )

    def _vuelo(self, flight_id):
        flight = self.store.get("flights", flight_id)
        if not flight:
            raise NotFound(f"Vuelo {flight_id} no encontrado.", {"flightId": [flight_id]})
        return flight

    def ocupar(self, flight_id, asientos=1):
        if asientos == 0:
            return self._vuelo(flight_id)
        flight = self.store.inc(
            "flights", flight_id, "asientos_ocupados", asientos, maximo_campo="capacidad_total"
        )
        if flight is None:
            actual = self._vuelo(flight_id)
            raise Conflict(
                f"El vuelo del circuito {actual['numero_circuito']} no tiene asientos disponibles.",
                {"asientos_ocupados": [f"{actual['asientos_ocupados']}/{actual['capacidad_total']}"]},
            )
        return flight

    def liberar(self, flight_id, asientos=1):
        if asientos == 0:
            return self._vuelo(flight_id)
        flight = self.store.inc("flights", flight_id, "asientos_ocupados", -asientos, minimo=0)
        if flight is None:
            actual = self._vuelo(flight_id)
            logging.warning(
                f"⚠️ Contador de asientos del vuelo {flight_id} quedaría negativo "
                f"({actual['asientos_ocupados']} - {asientos}); se deja en 0"
            )
            flight = self.store.update("flights", flight_id, {"asientos_ocupados": 0})
        return flight

    def mover(self, origen_id, destino_id, asientos=1):
        """Descuenta del vuelo de origen y suma al de destino en una sola transacción."""
        with self.store.transaction():
            destino = self.ocupar(destino_id, asientos)
            origen = self.liberar(origen_id, asientos) if origen_id else None
        return origen, destino

    def asientos_al_remover(self, ticket):
        if self.descontar_infantes:
            return 1
        return peso_asiento(ticket)

    # -----------------------------
    # Reconciliación
    # -----------------------------
    def ocupacion_esperada(self, flight_id):
        tickets = self.store.find(
            "tickets", flightId=flight_id, estado={TICKET_INSCRITO, TICKET_EMBARCADO}
        )
        infantes = sum(1 for t in tickets if es_infante(t))
        normales = len(tickets) - infantes
        reservados = sum(
            r["cantidadPasajeros"]
            for r in self.store.find("reservations", flightId=flight_id, status=RESERVA_ACTIVA)
        )
        return normales, infantes, reservados

    def reconciliar(self):
        """Recalcula `asientos_ocupados` desde los tickets y corrige la deriva."""
        resultados = []
        corregidos = 0
        with self.store.transaction():
            vuelos = self.store.find(
                "flights", filtro=lambda f: f["estado"] != VUELO_FINALIZADO, orden="numero_circuito"
            )
            for flight in vuelos:
                normales, infantes, reservados = self.ocupacion_esperada(flight["_id"])
                esperado = normales + reservados
                if esperado > flight["capacidad_total"]:
                    logging.warning(
                        f"⚠️ Vuelo {flight['_id']} sobrevendido: {esperado} pasajeros para "
                        f"{flight['capacidad_total']} asientos"
                    )
                    esperado = flight["capacidad_total"]
                antes = flight["asientos_ocupados"]
                corregido = antes != esperado
                if corregido:
                    self.store.update("flights", flight["_id"], {"asientos_ocupados": esperado})
                    corregidos += 1
                resultados.append({
                    "flightId": flight["_id"],
                    "circuito": flight["numero_circuito"],
                    "antes": antes,
                    "despues": esperado,
                    "normales": normales,
                    "infantes": infantes,
                    "reservados": reservados,
                    "corregido": corregido,
                })
        logging.info(f"✓ Reconciliación completada. {corregidos} vuelos corregidos de {len(resultados)} revisados.")
        return {"revisados": len(resultados), "corregidos": corregidos, "resultados": resultados}
