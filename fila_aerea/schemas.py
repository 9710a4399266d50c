# Standard Library
import re
from datetime import timezone

# Third-party Libraries
from dateutil import parser  # pip install python-dateutil
from marshmallow import RAISE, Schema, ValidationError, fields, post_load, validate, validates, validates_schema

from .modelos import RAZONES_REPROGRAMACION, ROL_ADMIN, ROL_PASAJERO, ROL_STAFF


class FechaHora(fields.Field):
    """Fecha en cualquier formato que entienda dateutil; sin zona se asume UTC."""

    def _deserialize(self, value, attr, data, **kwargs):
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("Debe ser una fecha en texto.")
        try:
            fecha = parser.parse(value)
        except (ValueError, OverflowError):
            raise ValidationError("Formato de fecha inválido. Usa ISO 8601: '2025-03-30T16:46:19Z'")
        if fecha.tzinfo is None:
            fecha = fecha.replace(tzinfo=timezone.utc)
        return fecha.astimezone(timezone.utc)

    def _serialize(self, value, attr, obj, **kwargs):
        return value.isoformat() if value is not None else None


def _no_vacio(value):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Este campo no puede estar vacío.")


# -----------------------------
# Asientos y tickets
# -----------------------------
class RazonSchema(Schema):
    class Meta:
        unknown = RAISE
    razon = fields.Str(required=True, validate=validate.OneOf(RAZONES_REPROGRAMACION))


class AsientoSchema(Schema):
    class Meta:
        unknown = RAISE
    seatNumber = fields.Str(required=True)
    ticketId = fields.Str(required=True, validate=_no_vacio)

    @validates("seatNumber")
    def validar_seat_number(self, value, **kwargs):
        if not re.match(r"^\d+[A-Fa-f]$", value):
            raise ValidationError("El asiento debe tener el formato '3A'.")


class LiberarAsientoSchema(Schema):
    class Meta:
        unknown = RAISE
    seatNumber = fields.Str(required=True, validate=validate.Regexp(r"^\d+[A-Fa-f]$", error="El asiento debe tener el formato '3A'."))


class PasajeroSchema(Schema):
    class Meta:
        unknown = RAISE
    nombre = fields.Str(required=True, validate=_no_vacio)
    rut = fields.Str(load_default=None, allow_none=True)
    esMenor = fields.Bool(load_default=False)
    esInfante = fields.Bool(load_default=False)
    autorizacionUrl = fields.Url(load_default=None, allow_none=True)

    @post_load
    def marcar_menor(self, data, **kwargs):
        # Todo infante es menor de edad
        if data.get("esInfante"):
            data["esMenor"] = True
        return data


class InscribirSchema(Schema):
    class Meta:
        unknown = RAISE
    flightId = fields.Str(required=True, validate=_no_vacio)


class TicketPatchSchema(Schema):
    class Meta:
        unknown = RAISE
    flightId = fields.Str(validate=_no_vacio)
    pasajeros = fields.List(fields.Nested(PasajeroSchema), validate=validate.Length(min=1))

    @validates_schema
    def validar_algun_cambio(self, data, **kwargs):
        if "flightId" not in data and "pasajeros" not in data:
            raise ValidationError("Debe indicar 'flightId' o 'pasajeros'.", "_schema")


class RechazoSchema(Schema):
    class Meta:
        unknown = RAISE
    monto = fields.Float(required=True, validate=validate.Range(min=0, min_inclusive=False, error="Debe ser mayor a 0"))


class RechazoCambioHoraSchema(Schema):
    class Meta:
        unknown = RAISE
    accion = fields.Str(required=True, validate=validate.OneOf(["devolucion", "reprogramar"]))
    monto = fields.Float(validate=validate.Range(min=0, min_inclusive=False, error="Debe ser mayor a 0"))
    numero_circuito = fields.Int(validate=validate.Range(min=1))

    @validates_schema
    def validar_accion(self, data, **kwargs):
        if data.get("accion") == "devolucion" and "monto" not in data:
            raise ValidationError("Requerido para devolución.", "monto")
        if data.get("accion") == "reprogramar" and "numero_circuito" not in data:
            raise ValidationError("Requerido para reprogramar.", "numero_circuito")


class ElegirCircuitoSchema(Schema):
    class Meta:
        unknown = RAISE
    numero_circuito = fields.Int(required=True, validate=validate.Range(min=1))


class EscanearPaseSchema(Schema):
    class Meta:
        unknown = RAISE
    qr_token = fields.Str(required=True, validate=_no_vacio)


# -----------------------------
# Vuelos y flota
# -----------------------------
class VueloSchema(Schema):
    class Meta:
        unknown = RAISE
    aircraftId = fields.Str(required=True, validate=_no_vacio)
    numero_circuito = fields.Int(required=True, validate=validate.Range(min=1))
    fecha_hora = FechaHora(required=True)
    pilotId = fields.Str(load_default=None, allow_none=True)
    hora_prevista_salida = FechaHora(load_default=None, allow_none=True)
    turno_max_permitido = fields.Int(load_default=None, allow_none=True, validate=validate.Range(min=0))


class VueloPatchSchema(Schema):
    class Meta:
        unknown = RAISE
    turno_max_permitido = fields.Int(required=True, allow_none=True, validate=validate.Range(min=0))


class TandaSchema(Schema):
    class Meta:
        unknown = RAISE
    numero_circuito = fields.Int(required=True, validate=validate.Range(min=1))
    fecha_hora = FechaHora(required=True)
    aircraftIds = fields.List(fields.Str(), load_default=None)


class HoraPrevistaSchema(Schema):
    class Meta:
        unknown = RAISE
    hora_prevista_salida = FechaHora(required=True)


class AvionSchema(Schema):
    class Meta:
        unknown = RAISE
    matricula = fields.Str(required=True, validate=validate.Regexp(r"^[A-Za-z]{2}-[A-Za-z0-9]{2,5}$", error="La matrícula debe tener el formato 'CC-PZA'."))
    modelo = fields.Str(required=True, validate=_no_vacio)
    capacidad = fields.Int(required=True, validate=validate.Range(min=1, max=10))
    max_circuitos_sin_reabastecimiento = fields.Int(load_default=None, validate=validate.Range(min=1))


class CapacidadSchema(Schema):
    class Meta:
        unknown = RAISE
    capacidad = fields.Int(required=True, validate=validate.Range(min=1, max=10))


class ReabastecimientoSchema(Schema):
    class Meta:
        unknown = RAISE
    aircraftId = fields.Str(required=True, validate=_no_vacio)
    litros = fields.Float(required=True, validate=validate.Range(min=0, min_inclusive=False))
    costo = fields.Float(load_default=None, validate=validate.Range(min=0))


# -----------------------------
# Reservas, compras y usuarios
# -----------------------------
class ReservaSchema(Schema):
    class Meta:
        unknown = RAISE
    flightId = fields.Str(required=True, validate=_no_vacio)
    cantidadPasajeros = fields.Int(required=True, validate=validate.Range(min=1, max=10))


class CompraSchema(Schema):
    class Meta:
        unknown = RAISE
    userId = fields.Str(required=True, validate=_no_vacio)
    pasajeros = fields.List(fields.Nested(PasajeroSchema), required=True, validate=validate.Length(min=1, max=10))
    flightId = fields.Str(load_default=None, allow_none=True)
    reservationId = fields.Str(load_default=None, allow_none=True)
    monto = fields.Float(load_default=None, validate=validate.Range(min=0))
    metodo = fields.Str(load_default=None, validate=validate.OneOf(["transbank", "mercadopago", "efectivo"]))

    @validates_schema
    def validar_destino(self, data, **kwargs):
        if data.get("flightId") and data.get("reservationId"):
            raise ValidationError("Use 'flightId' o 'reservationId', no ambos.", "_schema")


class RegistroPasajeroSchema(Schema):
    class Meta:
        unknown = RAISE
    nombre = fields.Str(required=True, validate=_no_vacio)
    email = fields.Email(required=True)
    cantidad_tickets = fields.Int(required=True, validate=validate.Range(min=1, max=10))


class UsuarioSchema(Schema):
    class Meta:
        unknown = RAISE
    nombre = fields.Str(required=True, validate=_no_vacio)
    email = fields.Email(required=True)
    rol = fields.Str(load_default=ROL_PASAJERO, validate=validate.OneOf([ROL_PASAJERO, ROL_STAFF, ROL_ADMIN]))
    activo = fields.Bool(load_default=True)


razon_schema = RazonSchema()
asiento_schema = AsientoSchema()
liberar_asiento_schema = LiberarAsientoSchema()
inscribir_schema = InscribirSchema()
ticket_patch_schema = TicketPatchSchema()
rechazo_schema = RechazoSchema()
rechazo_cambio_hora_schema = RechazoCambioHoraSchema()
elegir_circuito_schema = ElegirCircuitoSchema()
escanear_pase_schema = EscanearPaseSchema()
vuelo_schema = VueloSchema()
vuelo_patch_schema = VueloPatchSchema()
tanda_schema = TandaSchema()
hora_prevista_schema = HoraPrevistaSchema()
avion_schema = AvionSchema()
capacidad_schema = CapacidadSchema()
reabastecimiento_schema = ReabastecimientoSchema()
reserva_schema = ReservaSchema()
compra_schema = CompraSchema()
registro_pasajero_schema = RegistroPasajeroSchema()
usuario_schema = UsuarioSchema()
