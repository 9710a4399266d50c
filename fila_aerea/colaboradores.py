"""
Colaboradores externos del núcleo: difusión en tiempo real, notificaciones
(push / email) y auditoría.

Todos son de mejor esfuerzo: una falla se registra en el log y nunca
revierte la transición de estado que la originó.
"""
# Standard Library
import logging

# Third-party Libraries
import requests

from . import config
from .modelos import a_json, ahora_utc


# -----------------------------
# Difusión en tiempo real
# -----------------------------
class Broadcaster:
    def emit(self, room, event, payload):
        raise NotImplementedError


class MemoryBroadcaster(Broadcaster):
    """Guarda los eventos emitidos; los clientes los leen como pistas y vuelven a consultar."""

    def __init__(self):
        self.eventos = []

    def emit(self, room, event, payload):
        self.eventos.append({"room": room, "event": event, "payload": a_json(payload)})
        logging.info(f"📡 Evento '{event}' emitido a {room}")


# -----------------------------
# Auditoría
# -----------------------------
class Auditoria:
    def __init__(self, store, reloj=ahora_utc):
        self.store = store
        self.reloj = reloj

    def record(self, tipo, entity, entity_id, user_id=None, payload=None):
        return self.store.insert("event_logs", {
            "type": tipo,
            "entity": entity,
            "entityId": entity_id,
            "userId": user_id,
            "payload": payload or {},
            "createdAt": self.reloj(),
        })


# -----------------------------
# Notificaciones
# -----------------------------
class Notificador:
    def __init__(self, store, push_url=None, email_url=None, timeout=None, reloj=ahora_utc):
        self.store = store
        self.push_url = config.PUSH_WEBHOOK_URL if push_url is None else push_url
        self.email_url = config.EMAIL_WEBHOOK_URL if email_url is None else email_url
        self.timeout = timeout or config.COLABORADOR_TIMEOUT
        self.reloj = reloj

    def notify(self, user_id, tipo, titulo, mensaje, metadata=None, push=True):
        notificacion = self.store.insert("notifications", {
            "userId": user_id,
            "tipo": tipo,
            "titulo": titulo,
            "mensaje": mensaje,
            "metadata": metadata or {},
            "leido": False,
            "status": "pendiente",
            "createdAt": self.reloj(),
        })
        if push and self.push_url:
            enviado = self.push(user_id, titulo, mensaje, metadata)
            notificacion = self.store.update("notifications", notificacion["_id"], {
                "status": "enviado" if enviado else "error",
                "sentAt": self.reloj() if enviado else None,
            })
        return notificacion

    def push(self, user_id, titulo, mensaje, data=None):
        if not self.push_url:
            logging.info(f"🔕 Push sin destino configurado para usuario {user_id}: {titulo}")
            return False
        return self._post(self.push_url, {
            "userId": user_id,
            "title": titulo,
            "body": mensaje,
            "data": a_json(data or {}),
        })

    def enviar_pase_abordar(self, ticket, flight):
        if not self.email_url:
            logging.info(f"📭 Email de pase de abordar sin destino configurado (ticket {ticket['_id']})")
            return False
        return self._post(self.email_url, {
            "template": "pase_abordar",
            "userId": ticket["userId"],
            "codigo_ticket": ticket["codigo_ticket"],
            "pasajeros": ticket.get("pasajeros", []),
            "numero_circuito": flight["numero_circuito"],
            "fecha_hora": a_json(flight["fecha_hora"]),
        })

    def _post(self, url, payload):
        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logging.error(f"⏰ Timeout al contactar {url}")
            return False
        except requests.exceptions.RequestException as exc:
            logging.error(f"❌ No se pudo contactar {url}: {exc}")
            return False
        if response.status_code >= 400:
            logging.warning(f"⚠️ {url} devolvió {response.status_code}")
            return False
        return True


# -----------------------------
# Efectos diferidos
# -----------------------------
class Efectos:
    """
    Acumula eventos, notificaciones y auditoría durante una operación y los
    despacha cuando la transacción ya confirmó.
    """

    def __init__(self, broadcaster, notificador, auditoria):
        self.broadcaster = broadcaster
        self.notificador = notificador
        self.auditoria = auditoria
        self._pendientes = []

    def emitir(self, room, event, payload):
        self._pendientes.append(("emit", lambda: self.broadcaster.emit(room, event, payload)))

    def notificar(self, user_id, tipo, titulo, mensaje, metadata=None):
        self._pendientes.append((
            "notify",
            lambda: self.notificador.notify(user_id, tipo, titulo, mensaje, metadata),
        ))

    def auditar(self, tipo, entity, entity_id, user_id=None, payload=None):
        self._pendientes.append((
            "audit",
            lambda: self.auditoria.record(tipo, entity, entity_id, user_id, payload),
        ))

    def correo_pase(self, ticket, flight):
        self._pendientes.append(("email", lambda: self.notificador.enviar_pase_abordar(ticket, flight)))

    def despachar(self):
        pendientes, self._pendientes = self._pendientes, []
        for tipo, accion in pendientes:
            try:
                accion()
            except Exception:
                logging.exception(f"❌ Falló efecto secundario '{tipo}'")
        return len(pendientes)
