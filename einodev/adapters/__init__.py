"""Bridges between host callbacks and the debug data model."""

from einodev.adapters.debug_callback import DebugCallbackHandler, to_json

__all__ = ["DebugCallbackHandler", "to_json"]
