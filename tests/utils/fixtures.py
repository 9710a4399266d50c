STAFF = {"X-User-Id": "staff-qa", "X-User-Role": "staff"}
ADMIN = {"X-User-Id": "admin-qa", "X-User-Role": "admin"}

FECHA_CIRCUITO_3 = "2025-03-30T15:00:00Z"
FECHA_CIRCUITO_4 = "2025-03-30T15:20:00Z"

PASAJERO_ADULTO = {"nombre": "Ana Rojas", "rut": "12.345.678-9"}
PASAJERO_INFANTE = {"nombre": "Tomás Rojas", "esInfante": True}

AVION_VALIDO = {"matricula": "CC-PZA", "modelo": "Cessna 172", "capacidad": 3}
