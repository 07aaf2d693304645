"""Tunnelward: time-limited SSH accounts behind a TLS tunnel"""

__version__ = "1.0.0"
