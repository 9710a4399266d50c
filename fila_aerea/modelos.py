# Standard Library
import random
import string
from datetime import datetime, timezone


# -----------------------------
# Estados
# -----------------------------
VUELO_ABIERTO = "abierto"
VUELO_BOARDING = "boarding"
VUELO_EN_VUELO = "en_vuelo"
VUELO_FINALIZADO = "finalizado"
VUELO_REPROGRAMADO = "reprogramado"
VUELO_CANCELADO = "cancelado"
ESTADOS_VUELO = (
    VUELO_ABIERTO, VUELO_BOARDING, VUELO_EN_VUELO,
    VUELO_FINALIZADO, VUELO_REPROGRAMADO, VUELO_CANCELADO,
)
# Estados que impiden deshabilitar el avión
ESTADOS_VUELO_OPERANDO = {VUELO_BOARDING, VUELO_EN_VUELO, VUELO_FINALIZADO}

RAZONES_REPROGRAMACION = ("combustible", "meteorologia", "mantenimiento")
RAZON_CANCELACION_DIA = "cancelacion_dia"

TICKET_DISPONIBLE = "disponible"
TICKET_INSCRITO = "inscrito"
TICKET_EMBARCADO = "embarcado"
TICKET_VOLADO = "volado"
TICKET_CANCELADO = "cancelado"
ESTADOS_TICKET = (TICKET_DISPONIBLE, TICKET_INSCRITO, TICKET_EMBARCADO, TICKET_VOLADO, TICKET_CANCELADO)

ASIENTO_LIBRE = "libre"
ASIENTO_HOLD = "hold"
ASIENTO_CONFIRMADO = "confirmado"
ASIENTO_EMBARCADO = "embarcado"
ASIENTO_NO_SHOW = "no_show"
ASIENTOS_VIVOS = {ASIENTO_HOLD, ASIENTO_CONFIRMADO, ASIENTO_EMBARCADO}

PASE_EMITIDO = "emitido"
PASE_ESCANEADO = "escaneado"

RESERVA_ACTIVA = "active"
RESERVA_EXPIRADA = "expired"
RESERVA_CONFIRMADA = "confirmed"
RESERVA_CANCELADA = "cancelled"

ROL_PASAJERO = "passenger"
ROL_STAFF = "staff"
ROL_ADMIN = "admin"
ROLES_STAFF = {ROL_STAFF, ROL_ADMIN}

# Vocabulario del flujo de fila (activo/usado/anulado) y nombres antiguos
ESTADOS_TICKET_LEGACY = {
    "asignado": TICKET_INSCRITO,
    "usado": TICKET_VOLADO,
    "anulado": TICKET_CANCELADO,
}


def ahora_utc():
    return datetime.now(timezone.utc)


def mapear_estado_ticket(estado, flight_id=None):
    """Traduce cualquier estado histórico al estado canónico del ticket."""
    if estado in ESTADOS_TICKET:
        return estado
    if estado == "activo":
        return TICKET_INSCRITO if flight_id else TICKET_DISPONIBLE
    if estado in ESTADOS_TICKET_LEGACY:
        return ESTADOS_TICKET_LEGACY[estado]
    raise ValueError(f"Estado de ticket desconocido: {estado}")


# -----------------------------
# Documentos
# -----------------------------
def generar_numeros_asiento(capacidad, columnas=("A", "B")):
    numeros = []
    fila = 1
    while len(numeros) < capacidad:
        for letra in columnas:
            if len(numeros) >= capacidad:
                break
            numeros.append(f"{fila}{letra}")
        fila += 1
    return numeros


def generar_asientos_para_vuelo(flight_id, capacidad):
    return [
        {"flightId": flight_id, "seatNumber": numero, "status": ASIENTO_LIBRE}
        for numero in generar_numeros_asiento(capacidad)
    ]


def nuevo_vuelo(aircraft, numero_circuito, fecha_hora, capacidad=None, **extra):
    vuelo = {
        "aircraftId": aircraft["_id"],
        "pilotId": extra.pop("pilotId", None),
        "numero_circuito": numero_circuito,
        "fecha_hora": fecha_hora,
        "hora_prevista_salida": extra.pop("hora_prevista_salida", None),
        "hora_inicio_vuelo": None,
        "hora_arribo": None,
        "capacidad_total": capacidad if capacidad is not None else aircraft["capacidad"],
        "asientos_ocupados": 0,
        "estado": VUELO_ABIERTO,
        "turno_max_permitido": extra.pop("turno_max_permitido", None),
        "razon_reprogramacion": None,
        "createdAt": ahora_utc(),
    }
    vuelo.update(extra)
    return vuelo


def generar_codigo_ticket():
    sufijo = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"TKT-{int(ahora_utc().timestamp() * 1000)}-{sufijo}"


def nuevo_ticket(user_id, pasajeros=None, flight_id=None, estado=None, turno_global=0):
    return {
        "userId": user_id,
        "codigo_ticket": generar_codigo_ticket(),
        "pasajeros": pasajeros or [],
        "flightId": flight_id,
        "estado": estado or (TICKET_INSCRITO if flight_id else TICKET_DISPONIBLE),
        "turno_global": turno_global,
        "seatChanges": 0,
        "lastSeatChangeAt": None,
        "cooldownUntil": None,
        "reprogramacion_pendiente": None,
        "cambio_hora_pendiente": None,
        "createdAt": ahora_utc(),
    }


def es_infante(ticket):
    pasajeros = ticket.get("pasajeros") or []
    return bool(pasajeros and pasajeros[0].get("esInfante"))


def peso_asiento(ticket):
    """Asientos que consume el ticket: los infantes viajan en brazos."""
    return 0 if es_infante(ticket) else 1


def tiene_pasajero_con_nombre(ticket):
    return any((p.get("nombre") or "").strip() for p in ticket.get("pasajeros") or [])


# -----------------------------
# Serialización
# -----------------------------
def a_json(valor):
    """Convierte documentos (con fechas) a estructuras serializables."""
    if isinstance(valor, datetime):
        return valor.isoformat()
    if isinstance(valor, dict):
        return {k: a_json(v) for k, v in valor.items()}
    if isinstance(valor, (list, tuple)):
        return [a_json(v) for v in valor]
    return valor
