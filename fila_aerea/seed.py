# Standard Library
import logging
import random
import string
from datetime import timedelta

# Third-party Libraries
from faker import Faker
from faker_airtravel import AirTravelProvider

from .modelos import ROL_PASAJERO, ROL_STAFF

fake = Faker()
fake_airplane = Faker()
fake_airplane.add_provider(AirTravelProvider)

modelos_avion = [
    "Cessna 172", "Cessna 182", "Cessna 206", "Piper PA-28", "Piper PA-32",
    "Beechcraft Bonanza", "Cirrus SR22", "Britten-Norman Islander",
]


def generar_matricula():
    return "CC-" + "".join(random.choices(string.ascii_uppercase, k=3))


def sembrar_datos_demo(servicios, cantidad_aviones=3, circuitos=3, pasajeros=5):
    """Flota, tandas, staff y pasajeros de prueba para levantar la API en local."""
    staff = servicios.tickets.crear_usuario(fake.name(), fake.unique.email(), ROL_STAFF)

    aviones = []
    while len(aviones) < cantidad_aviones:
        matricula = generar_matricula()
        if servicios.store.find_one("aircraft", matricula=matricula):
            continue
        avion = servicios.flota.create_aircraft(
            matricula, random.choice(modelos_avion), random.randint(3, 10), user_id=staff["_id"],
        )
        servicios.store.update("aircraft", avion["_id"], {"base": fake_airplane.airport_name()})
        aviones.append(avion)

    inicio = servicios.reloj().replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    duracion = servicios.circuitos.duracion_circuito
    for numero in range(1, circuitos + 1):
        servicios.circuitos.create_tanda(
            numero, inicio + timedelta(minutes=duracion * (numero - 1)), user_id=staff["_id"],
        )

    for _ in range(pasajeros):
        usuario, tickets = servicios.tickets.register_passenger(
            fake.name(), fake.unique.email(), random.randint(1, 3), staff["_id"],
        )
        for ticket in tickets:
            servicios.store.update("tickets", ticket["_id"], {"pasajeros": [{
                "nombre": usuario["nombre"],
                "rut": None,
                "esMenor": False,
                "esInfante": False,
                "autorizacionUrl": None,
            }]})

    logging.info(
        f"✅ Datos demo generados: {len(aviones)} aviones, {circuitos} circuitos, {pasajeros} pasajeros"
    )
    return {"staff": staff, "aircraft": aviones}
