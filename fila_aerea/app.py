# Standard Library
import logging
import os
import threading
import uuid

# Third-party Libraries
from flasgger import Swagger
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

# Flask
from flask import Flask, jsonify

from . import config
from .asientos import FirmadorQR, SeatLedger
from .capacidad import CapacityAccounting
from .circuitos import CircuitScheduler
from .colaboradores import Auditoria, MemoryBroadcaster, Notificador
from .errores import DomainError
from .flota import FleetService
from .modelos import ahora_utc
from .reservas import ReservationBook
from .rutas import bp
from .seed import sembrar_datos_demo
from .store import DuplicateKey, crear_store
from .tickets import TicketLifecycle

# === Identificador de instancia (por proceso) ===
INSTANCE_ID = f"{os.getpid()}-{uuid.uuid4().hex[:8]}"

# -----------------------------
# Swagger
# -----------------------------
swagger_template = {
    "info": {
        "title": "Fila Aérea API: circuitos, asientos y tickets",
        "version": "1.0.0",
        "description": "API del club aéreo para vuelos por circuito, asientos con hold y tickets de pasajeros.",
    },
    "tags": [
        {"name": "Flights", "description": "Vuelos y su ciclo de vida"},
        {"name": "Circuits", "description": "Reprogramación y cancelación de circuitos"},
        {"name": "Seats", "description": "Hold, confirmación y embarque de asientos"},
        {"name": "Tickets", "description": "Inscripción y ofertas de reprogramación"},
        {"name": "Fleet", "description": "Aviones y reabastecimientos"},
        {"name": "Reservations", "description": "Reservas previas al pago"},
        {"name": "Purchases", "description": "Compras confirmadas"},
        {"name": "Users", "description": "Usuarios y registro de pasajeros"},
        {"name": "Maintenance", "description": "Reconciliación y limpieza"},
    ],
    "securityDefinitions": {
        "UserId": {"type": "apiKey", "name": "X-User-Id", "in": "header"},
        "UserRole": {"type": "apiKey", "name": "X-User-Role", "in": "header"},
    },
    "security": [{"UserId": [], "UserRole": []}],
    "definitions": {
        "PasajeroSchema": {
            "type": "object",
            "properties": {
                "nombre": {"type": "string", "example": "Ana Rojas"},
                "rut": {"type": "string", "example": "12.345.678-9"},
                "esMenor": {"type": "boolean", "example": False},
                "esInfante": {"type": "boolean", "example": False},
                "autorizacionUrl": {"type": "string", "example": "https://docs.example.com/autorizacion.pdf"},
            },
            "required": ["nombre"],
        },
        "VueloSchema": {
            "type": "object",
            "properties": {
                "aircraftId": {"type": "string"},
                "numero_circuito": {"type": "integer", "example": 3},
                "fecha_hora": {"type": "string", "example": "2025-03-30T10:00:00Z"},
                "pilotId": {"type": "string"},
                "hora_prevista_salida": {"type": "string", "example": "2025-03-30T10:00:00Z"},
                "turno_max_permitido": {"type": "integer", "example": 12},
            },
            "required": ["aircraftId", "numero_circuito", "fecha_hora"],
        },
        "AvionSchema": {
            "type": "object",
            "properties": {
                "matricula": {"type": "string", "example": "CC-PZA"},
                "modelo": {"type": "string", "example": "Cessna 172"},
                "capacidad": {"type": "integer", "example": 3, "minimum": 1, "maximum": 10},
                "max_circuitos_sin_reabastecimiento": {"type": "integer", "example": 4},
            },
            "required": ["matricula", "modelo", "capacidad"],
        },
        "ErrorSchema": {
            "type": "object",
            "properties": {
                "message": {"type": "string", "example": "Descripción del error"},
                "errors": {
                    "type": "object",
                    "description": "Detalles adicionales del error",
                    "additionalProperties": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
    },
}


class Servicios:
    """Cableado de los servicios del núcleo con sus colaboradores."""

    def __init__(self, store=None, broadcaster=None, notificador=None, auditoria=None, reloj=None, firmador=None):
        self.reloj = reloj or ahora_utc
        self.store = store if store is not None else crear_store()
        self.broadcaster = broadcaster or MemoryBroadcaster()
        self.notificador = notificador or Notificador(self.store, reloj=self.reloj)
        self.auditoria = auditoria or Auditoria(self.store, reloj=self.reloj)
        self.firmador = firmador or FirmadorQR()
        colaboradores = (self.broadcaster, self.notificador, self.auditoria)

        self.capacidad = CapacityAccounting(self.store)
        self.asientos = SeatLedger(self.store, self.capacidad, self.firmador, *colaboradores, reloj=self.reloj)
        self.tickets = TicketLifecycle(self.store, self.capacidad, self.asientos, *colaboradores, reloj=self.reloj)
        self.circuitos = CircuitScheduler(self.store, self.capacidad, self.asientos, *colaboradores, reloj=self.reloj)
        self.flota = FleetService(self.store, *colaboradores, reloj=self.reloj)
        self.reservas = ReservationBook(self.store, self.capacidad, *colaboradores, reloj=self.reloj)

    def limpiar(self):
        """Expira holds de asientos y reservas vencidas."""
        return self.asientos.expire_holds(), self.reservas.expire_reservations()


def iniciar_limpieza_periodica(servicios, intervalo=None):
    intervalo = config.LIMPIEZA_INTERVALO_SEGUNDOS if intervalo is None else intervalo
    if intervalo <= 0:
        logging.info("🧹 Limpieza periódica deshabilitada")
        return None
    detener = threading.Event()

    def _loop():
        while not detener.wait(intervalo):
            try:
                servicios.limpiar()
            except Exception:
                logging.exception("❌ Error en la limpieza periódica")

    hilo = threading.Thread(target=_loop, name="limpieza-holds", daemon=True)
    hilo.start()
    logging.info(f"🧹 Limpieza periódica cada {intervalo}s")
    return detener


def registrar_manejadores(app):
    @app.errorhandler(DomainError)
    def handle_domain_error(e):
        if e.status >= 500:
            logging.error(f"❌ {e.message}")
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({"message": "Errores de validación.", "errors": e.messages}), 400

    @app.errorhandler(DuplicateKey)
    def handle_duplicate_key(e):
        return jsonify({
            "message": "El registro ya existe.",
            "errors": {campo: ["Duplicado"] for campo in e.fields},
        }), 409

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({"message": "Endpoint no encontrado.", "errors": {}}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return jsonify({"message": "Método HTTP no permitido para este endpoint.", "errors": {}}), 405

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return jsonify({"message": e.description, "errors": {}}), e.code
        logging.exception("Error inesperado")
        return jsonify({"message": "Error interno del servidor.", "errors": {}}), 500


def create_app(store=None, broadcaster=None, notificador=None, auditoria=None, reloj=None,
               firmador=None, sembrar=None, limpieza=False):
    config.configurar_logging()

    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.SECRET_KEY
    app.json.ensure_ascii = False

    servicios = Servicios(store, broadcaster, notificador, auditoria, reloj, firmador)
    app.extensions["fila_aerea"] = servicios

    @app.route("/", methods=["GET"])
    def root():
        return jsonify({"message": f"API viva en {config.PORT} - Fila Aérea"}), 200

    @app.route("/health", methods=["GET"])
    def health():
        app.logger.info(">>> /health de Fila Aérea llamado")
        return jsonify({"status": "ok", "service": "fila_aerea", "instance_id": INSTANCE_ID}), 200

    @app.after_request
    def _add_headers(resp):
        resp.headers["X-Instance-Id"] = INSTANCE_ID
        resp.headers["Cache-Control"] = "no-store"
        return resp

    app.register_blueprint(bp)
    registrar_manejadores(app)
    Swagger(app, template=swagger_template)

    if config.SEED_DEMO_DATA if sembrar is None else sembrar:
        sembrar_datos_demo(servicios)

    if limpieza:
        app.extensions["fila_aerea_limpieza"] = iniciar_limpieza_periodica(servicios)

    return app


# -----------------------------
# Arranque
# -----------------------------
if __name__ == "__main__":
    app = create_app(limpieza=True)

    print("URL MAP Fila Aérea:")
    print(app.url_map)

    app.run(
        host=config.HOST,
        port=config.PORT,
        debug=False,
        use_reloader=False,
    )
