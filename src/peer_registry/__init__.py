"""Peer registry — aggregates bootnode peer tables into one geolocated directory."""

__version__ = "0.1.0"
