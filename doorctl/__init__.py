"""Bluetooth LE door opener control over the Nordic UART Service."""

__version__ = "0.1.0"
