# Standard Library
import logging
import os

# Third-party Libraries
from dotenv import load_dotenv


## Cargar variables de entorno desde el archivo .env
load_dotenv("config.env")


def _env_bool(nombre, default):
    valor = os.getenv(nombre)
    if valor is None or valor == "":
        return default
    return valor.strip().lower() in ("1", "true", "yes", "si", "sí")


def _env_int(nombre, default):
    valor = os.getenv(nombre)
    if valor is None or valor == "":
        return default
    return int(valor)


# -----------------------------
# Seguridad
# -----------------------------
SECRET_KEY = os.getenv("SECRET_KEY", "secret_dev_cambiar")

# -----------------------------
# Ventanas de tiempo
# -----------------------------
HOLD_MINUTOS = _env_int("HOLD_MINUTOS", 5)
PASE_QR_MINUTOS = _env_int("PASE_QR_MINUTOS", 15)
RESERVA_MINUTOS = _env_int("RESERVA_MINUTOS", 5)
COOLDOWN_NO_SHOW_MINUTOS = _env_int("COOLDOWN_NO_SHOW_MINUTOS", 30)
MAX_CAMBIOS_ASIENTO_HORA = _env_int("MAX_CAMBIOS_ASIENTO_HORA", 2)

# -----------------------------
# Circuitos
# -----------------------------
DURACION_CIRCUITO_MINUTOS = _env_int("DURACION_CIRCUITO_MINUTOS", 20)
MAX_CIRCUITOS_SIN_REABASTECIMIENTO = _env_int("MAX_CIRCUITOS_SIN_REABASTECIMIENTO", 4)
PRECIO_TICKET = _env_int("PRECIO_TICKET", 15000)

# Remover un infante descuenta un asiento igual que un adulto (comportamiento histórico).
DESCONTAR_INFANTES_AL_REMOVER = _env_bool("DESCONTAR_INFANTES_AL_REMOVER", True)

# -----------------------------
# Colaboradores externos
# -----------------------------
PUSH_WEBHOOK_URL = os.getenv("PUSH_WEBHOOK_URL", "")
EMAIL_WEBHOOK_URL = os.getenv("EMAIL_WEBHOOK_URL", "")
COLABORADOR_TIMEOUT = _env_int("COLABORADOR_TIMEOUT", 3)

# -----------------------------
# Servicio
# -----------------------------
LIMPIEZA_INTERVALO_SEGUNDOS = _env_int("LIMPIEZA_INTERVALO_SEGUNDOS", 60)
SEED_DEMO_DATA = _env_bool("SEED_DEMO_DATA", False)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
HOST = os.getenv("HOST", "0.0.0.0")
PORT = _env_int("PORT", 5004)


def configurar_logging():
    ## Configuración de logging
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[
            # logging.FileHandler("app.log"),
            logging.StreamHandler()
        ]
    )
