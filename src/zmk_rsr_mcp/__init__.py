"""Configure ZMK runtime sensor-rotate encoder bindings over studio RPC."""

__version__ = "0.1.0"
