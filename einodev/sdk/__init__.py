"""Devops SDK - process-wide entry points."""

from einodev.sdk.devops import (
    DevopsContext,
    add_graph,
    append_type,
    create_debug_thread,
    debug_run,
    get_canvas,
    get_context,
    init,
    list_graphs,
    shutdown,
)

__all__ = [
    "DevopsContext",
    "add_graph",
    "append_type",
    "create_debug_thread",
    "debug_run",
    "get_canvas",
    "get_context",
    "init",
    "list_graphs",
    "shutdown",
]
