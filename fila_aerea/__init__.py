"""Fila Aérea: vuelos por circuito, asientos con hold y tickets de pasajeros."""
