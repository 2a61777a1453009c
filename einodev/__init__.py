"""einodev - visual debugging for langchain_core component graphs."""

from einodev.config import DevConfig
from einodev.errors import (
    DevopsError,
    GraphRunError,
    GraphStructureError,
    NotFoundError,
    UnmarshalError,
    UnsupportedInputError,
)
from einodev.sdk import (
    add_graph,
    append_type,
    create_debug_thread,
    debug_run,
    get_canvas,
    init,
    list_graphs,
    shutdown,
)

__version__ = "0.1.0"

__all__ = [
    "DevConfig",
    "DevopsError",
    "GraphRunError",
    "GraphStructureError",
    "NotFoundError",
    "UnmarshalError",
    "UnsupportedInputError",
    "add_graph",
    "append_type",
    "create_debug_thread",
    "debug_run",
    "get_canvas",
    "init",
    "list_graphs",
    "shutdown",
]
