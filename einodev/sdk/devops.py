"""Devops SDK - single entry point for making graphs debuggable.

Call ``init()`` once at startup, before graphs are compiled. Every graph
compiled afterwards is registered automatically and can be inspected and
run node by node.

Example:
    from einodev import sdk

    sdk.init()
    runnable = graph.compile("my_graph")

    graph_id = sdk.list_graphs()[0].id
    thread = sdk.create_debug_thread(graph_id)
    debug_id, states, errors = sdk.debug_run(graph_id, thread.id, "start", '"hello"')
    for state in states:
        print(state.node_key, state.output)
"""

from __future__ import annotations

import threading
import typing
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Callable


from einodev.compose.callbacks import add_global_compile_callback, remove_global_compile_callback
from einodev.compose.graph import CompiledGraph
from einodev.compose.types import GraphInfo
from einodev.config import DevConfig
from einodev.errors import DevopsError
from einodev.graph.options import GraphOption, NodeUnmarshalInput
from einodev.models.debug_run import DebugRunMeta, DebugThread, GraphMeta
from einodev.models.graph_schema import CanvasInfo
from einodev.reflect.registry import register_type
from einodev.service.container import ContainerService, DevGraphCompileCallback
from einodev.service.debug_run import DebugRunResult, DebugService
from einodev.utils.log import configure_logging, get_logger

logger = get_logger(__name__)


@dataclass
class DevopsContext:
    """The services behind the SDK, created by init()."""

    config: DevConfig
    container: ContainerService
    debug: DebugService
    compile_callback: DevGraphCompileCallback


# global context (set by init, cleared by shutdown)
_context: DevopsContext | None = None
_context_lock = threading.Lock()


def get_context() -> DevopsContext:
    if _context is None:
        raise DevopsError("einodev is not initialized, call init() first")
    return _context


def _is_annotation(value: Any) -> bool:
    return (
        isinstance(value, type)
        or value is Any
        or typing.get_origin(value) is not None
        or isinstance(value, typing.NewType)
    )


def append_type(value_or_type: Any) -> bool:
    """Make a type usable inside ``_eino_go_type`` envelopes.

    Accepts a type (or typing annotation) or an instance, whose type is
    registered. Returns False when it was already registered.
    """
    tp = value_or_type if _is_annotation(value_or_type) else type(value_or_type)
    return register_type(tp)


def init(
    config: DevConfig | None = None,
    *,
    types: Iterable[Any] = (),
    install_compile_callback: bool = True,
) -> DevopsContext:
    """Configure logging, register extra types and start collecting graphs.

    Calling init again replaces the previous context.
    """
    global _context

    config = config or DevConfig.from_env()
    configure_logging(json_output=config.log_json, level=config.log_level)

    for tp in types:
        append_type(tp)

    container = ContainerService(config)
    context = DevopsContext(
        config=config,
        container=container,
        debug=DebugService(container, config),
        compile_callback=DevGraphCompileCallback(container),
    )

    with _context_lock:
        if _context is not None:
            remove_global_compile_callback(_context.compile_callback)
        _context = context
        if install_compile_callback:
            add_global_compile_callback(context.compile_callback)

    logger.info("devops_initialized", max_graphs=config.max_graphs, state_buffer=config.state_buffer)
    return context


def shutdown() -> None:
    """Stop collecting graphs and drop every registered graph."""
    global _context
    with _context_lock:
        if _context is not None:
            remove_global_compile_callback(_context.compile_callback)
        _context = None


def add_graph(
    graph: CompiledGraph | GraphInfo,
    name: str | None = None,
    *,
    node_input_unmarshal: Iterable[NodeUnmarshalInput] = (),
    gen_state: Callable[[], Any] | None = None,
) -> str:
    """Register a graph explicitly; returns its graph id."""
    info = graph.graph_info if isinstance(graph, CompiledGraph) else graph
    option = GraphOption(node_input_unmarshal=tuple(node_input_unmarshal), gen_state=gen_state)
    return get_context().container.add_graph_info(info, option, name)


def list_graphs() -> list[GraphMeta]:
    return get_context().container.list_graphs()


def get_canvas(graph_id: str) -> CanvasInfo:
    return get_context().container.get_canvas(graph_id)


def create_debug_thread(graph_id: str) -> DebugThread:
    return get_context().debug.create_debug_thread(graph_id)


def debug_run(
    graph_id: str, thread_id: str, from_node: str, user_input: str, *, stream: bool = False
) -> DebugRunResult:
    """Run ``graph_id`` from ``from_node`` with JSON ``user_input`` in the background."""
    meta = DebugRunMeta(graph_id=graph_id, thread_id=thread_id, from_node=from_node)
    return get_context().debug.debug_run(meta, user_input, stream=stream)
