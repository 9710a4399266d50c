import random
from datetime import datetime, timedelta, timezone

import pytest

from fila_aerea.app import create_app
from fila_aerea.colaboradores import Notificador
from fila_aerea.store import crear_store

random.seed(42)


class RelojFijo:
    """Reloj controlable para probar expiraciones sin dormir."""

    def __init__(self, inicio):
        self.ahora = inicio

    def __call__(self):
        return self.ahora

    def avanzar(self, **kwargs):
        self.ahora += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _stable_env(monkeypatch):
    monkeypatch.setenv("TZ", "UTC")


@pytest.fixture
def reloj():
    return RelojFijo(datetime(2025, 3, 30, 14, 0, tzinfo=timezone.utc))


@pytest.fixture
def app(reloj):
    store = crear_store()
    notificador = Notificador(store, push_url="", email_url="", reloj=reloj)
    app = create_app(store=store, notificador=notificador, reloj=reloj, sembrar=False)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def servicios(app):
    return app.extensions["fila_aerea"]
