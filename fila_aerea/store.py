# Standard Library
import copy
import logging
import threading
import uuid
from contextlib import contextmanager


class DuplicateKey(Exception):
    """Violación de un índice único de una colección."""

    def __init__(self, collection, fields, values):
        super().__init__(f"Clave duplicada en {collection}{tuple(fields)}: {values}")
        self.collection = collection
        self.fields = tuple(fields)
        self.values = values


def nuevo_id():
    return uuid.uuid4().hex


def _coincide(doc, filtro, iguales):
    for campo, esperado in iguales.items():
        valor = doc.get(campo)
        if isinstance(esperado, (set, frozenset)):
            if valor not in esperado:
                return False
        elif valor != esperado:
            return False
    return filtro is None or bool(filtro(doc))


class DocumentStore:
    """
    Colecciones de documentos en memoria protegidas por un RLock.

    Los documentos se entregan siempre como copias; solo se modifican a
    través de los métodos del store. En los filtros por igualdad un `set`
    significa "el valor está en el conjunto".

    `transaction()` toma una foto de todas las colecciones y la restaura si
    el bloque lanza una excepción, de modo que las escrituras sobre varios
    documentos se aplican todas o ninguna.
    """

    COLLECTIONS = (
        "aircraft",
        "flights",
        "seats",
        "tickets",
        "boarding_passes",
        "reservations",
        "payments",
        "users",
        "notifications",
        "refuelings",
        "event_logs",
        "sequences",
    )

    def __init__(self):
        self._lock = threading.RLock()
        self._data = {nombre: {} for nombre in self.COLLECTIONS}
        self._indexes = {nombre: [] for nombre in self.COLLECTIONS}
        self._tx_depth = 0

    # -----------------------------
    # Índices
    # -----------------------------
    def create_unique_index(self, collection, fields, partial=None):
        """Registra un índice único; `partial` limita los documentos que cubre."""
        with self._lock:
            self._indexes[collection].append((tuple(fields), partial))

    def _check_unique(self, collection, doc):
        for fields, partial in self._indexes[collection]:
            if partial is not None and not partial(doc):
                continue
            if any(doc.get(f) is None for f in fields):
                continue
            clave = tuple(doc.get(f) for f in fields)
            for otro in self._data[collection].values():
                if otro["_id"] == doc["_id"]:
                    continue
                if partial is not None and not partial(otro):
                    continue
                if tuple(otro.get(f) for f in fields) == clave:
                    raise DuplicateKey(collection, fields, clave)

    # -----------------------------
    # Lectura
    # -----------------------------
    def get(self, collection, doc_id):
        with self._lock:
            doc = self._data[collection].get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def find(self, collection, filtro=None, orden=None, **iguales):
        with self._lock:
            resultado = [
                copy.deepcopy(doc)
                for doc in self._data[collection].values()
                if _coincide(doc, filtro, iguales)
            ]
        if orden:
            campo = orden.lstrip("-")
            resultado.sort(
                key=lambda d: (d.get(campo) is None, d.get(campo)),
                reverse=orden.startswith("-"),
            )
        return resultado

    def find_one(self, collection, filtro=None, orden=None, **iguales):
        encontrados = self.find(collection, filtro=filtro, orden=orden, **iguales)
        return encontrados[0] if encontrados else None

    def count(self, collection, filtro=None, **iguales):
        with self._lock:
            return sum(1 for doc in self._data[collection].values() if _coincide(doc, filtro, iguales))

    # -----------------------------
    # Escritura
    # -----------------------------
    def insert(self, collection, doc):
        with self._lock:
            nuevo = copy.deepcopy(doc)
            nuevo.setdefault("_id", nuevo_id())
            if nuevo["_id"] in self._data[collection]:
                raise DuplicateKey(collection, ("_id",), (nuevo["_id"],))
            self._check_unique(collection, nuevo)
            self._data[collection][nuevo["_id"]] = nuevo
            return copy.deepcopy(nuevo)

    def update(self, collection, doc_id, cambios=None, unset=()):
        with self._lock:
            actual = self._data[collection].get(doc_id)
            if actual is None:
                return None
            nuevo = copy.deepcopy(actual)
            nuevo.update(copy.deepcopy(cambios or {}))
            for campo in unset:
                nuevo.pop(campo, None)
            self._check_unique(collection, nuevo)
            self._data[collection][doc_id] = nuevo
            return copy.deepcopy(nuevo)

    def find_one_and_update(self, collection, cambios=None, unset=(), filtro=None, **iguales):
        """Actualiza el primer documento que cumple el filtro, en un solo paso."""
        with self._lock:
            for doc_id, doc in self._data[collection].items():
                if _coincide(doc, filtro, iguales):
                    return self.update(collection, doc_id, cambios, unset)
            return None

    def inc(self, collection, doc_id, campo, delta, maximo_campo=None, minimo=0):
        """
        Incremento atómico condicionado.

        Devuelve None (sin tocar el documento) si el documento no existe o si
        el nuevo valor queda bajo `minimo` o sobre el valor de `maximo_campo`.
        """
        with self._lock:
            doc = self._data[collection].get(doc_id)
            if doc is None:
                return None
            valor = doc.get(campo, 0) + delta
            if minimo is not None and valor < minimo:
                return None
            if maximo_campo is not None and valor > doc.get(maximo_campo, 0):
                return None
            doc[campo] = valor
            return copy.deepcopy(doc)

    def next_sequence(self, scope):
        """Siguiente valor de una secuencia global; la crea en 0 si no existe."""
        with self._lock:
            seq = self._data["sequences"].setdefault(scope, {"_id": scope, "current_value": 0})
            seq["current_value"] += 1
            return seq["current_value"]

    def delete(self, collection, doc_id):
        with self._lock:
            return self._data[collection].pop(doc_id, None) is not None

    def delete_many(self, collection, filtro=None, **iguales):
        with self._lock:
            ids = [i for i, doc in self._data[collection].items() if _coincide(doc, filtro, iguales)]
            for doc_id in ids:
                del self._data[collection][doc_id]
            return len(ids)

    # -----------------------------
    # Transacciones
    # -----------------------------
    @contextmanager
    def transaction(self):
        with self._lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield self
                finally:
                    self._tx_depth -= 1
                return

            foto = copy.deepcopy(self._data)
            self._tx_depth = 1
            try:
                yield self
            except BaseException:
                self._data = foto
                logging.warning("↩️ Transacción revertida")
                raise
            finally:
                self._tx_depth = 0

    def clear(self):
        with self._lock:
            self._data = {nombre: {} for nombre in self.COLLECTIONS}


def crear_store():
    """Store con los índices únicos del dominio."""
    store = DocumentStore()
    store.create_unique_index("aircraft", ["matricula"])
    store.create_unique_index("seats", ["flightId", "seatNumber"])
    store.create_unique_index("tickets", ["codigo_ticket"])
    store.create_unique_index("boarding_passes", ["qr_token"])
    store.create_unique_index("users", ["email"])
    store.create_unique_index(
        "flights",
        ["aircraftId", "numero_circuito"],
        partial=lambda f: f.get("estado") not in ("reprogramado", "cancelado"),
    )
    return store
