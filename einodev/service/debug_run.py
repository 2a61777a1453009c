"""Debug threads and debug runs over registered graphs."""

from __future__ import annotations

import threading
from typing import Any


from einodev.adapters.debug_callback import DebugCallbackHandler
from einodev.compose.graph import CompiledGraph
from einodev.config import DevConfig
from einodev.errors import NotFoundError, UnsupportedInputError
from einodev.graph.inference import infer_input_type
from einodev.models.debug_run import DebugRunMeta, DebugThread, NodeDebugState
from einodev.reflect.registry import TypeRegistry
from einodev.service.channel import Channel
from einodev.service.container import ContainerService
from einodev.utils.identifiers import epoch_millis, generate_debug_id, generate_thread_id
from einodev.utils.log import get_logger

logger = get_logger(__name__)

DebugRunResult = tuple[str, Channel[NodeDebugState], Channel[BaseException]]


class DebugService:
    def __init__(
        self,
        container: ContainerService,
        config: DevConfig | None = None,
        registry: TypeRegistry | None = None,
    ) -> None:
        self.container = container
        self.config = config or container.config
        self.registry = registry
        self._lock = threading.Lock()
        self._threads: dict[str, list[DebugThread]] = {}

    def create_debug_thread(self, graph_id: str) -> DebugThread:
        self.container.get_graph_info(graph_id)
        thread = DebugThread(id=generate_thread_id(), graph_id=graph_id, created_at=epoch_millis())
        with self._lock:
            self._threads.setdefault(graph_id, []).append(thread)
        logger.info("debug_thread_created", graph_id=graph_id, thread_id=thread.id)
        return thread

    def list_debug_threads(self, graph_id: str) -> list[DebugThread]:
        with self._lock:
            return list(self._threads.get(graph_id, ()))

    def _check_thread(self, graph_id: str, thread_id: str) -> None:
        with self._lock:
            threads = self._threads.get(graph_id, ())
            if not any(t.id == thread_id for t in threads):
                raise NotFoundError(f"thread_id={thread_id} not found in graph_id={graph_id}")

    def decode_input(self, graph_id: str, from_node: str, user_input: str) -> Any:
        """Turn raw user JSON into the value the rebuilt graph is invoked with."""
        dev_info = self.container.get_graph_info(graph_id)
        unmarshal = dev_info.option.unmarshaler_for(from_node)
        if unmarshal is not None:
            return unmarshal(user_input)

        inferred, supported = infer_input_type(dev_info.info, from_node)
        if not supported:
            raise UnsupportedInputError(f"node={from_node} is not operational")
        return inferred.unmarshal_json(user_input, registry=self.registry)

    def debug_run(self, meta: DebugRunMeta, user_input: str, *, stream: bool = False) -> DebugRunResult:
        """Start a run in the background.

        Returns the debug id, a channel of per-node states, and a channel
        that receives the invocation error, if any. Both channels close
        when the run finishes. With ``stream`` the graph runs through
        ``CompiledGraph.stream`` and chat model nodes stream their output.
        """
        dev_info = self.container.get_graph_info(meta.graph_id)
        self._check_thread(meta.graph_id, meta.thread_id)

        runnable = self.container.get_or_create_runnable(meta.graph_id, meta.from_node)
        value = self.decode_input(meta.graph_id, meta.from_node, user_input)

        debug_id = generate_debug_id()
        state_ch: Channel[NodeDebugState] = Channel(self.config.state_buffer)
        err_ch: Channel[BaseException] = Channel(1)
        handler = DebugCallbackHandler(state_ch.put, dev_info.info.nodes, debug_id=debug_id)

        worker = threading.Thread(
            target=self._drive,
            args=(meta, debug_id, runnable, value, handler, state_ch, err_ch, stream),
            name=f"einodev-debug-{debug_id[:8]}",
            daemon=True,
        )
        logger.info(
            "debug_run_started",
            debug_id=debug_id,
            graph_id=meta.graph_id,
            thread_id=meta.thread_id,
            from_node=meta.from_node,
            stream=stream,
        )
        worker.start()
        return debug_id, state_ch, err_ch

    def _drive(
        self,
        meta: DebugRunMeta,
        debug_id: str,
        runnable: CompiledGraph,
        value: Any,
        handler: DebugCallbackHandler,
        state_ch: Channel[NodeDebugState],
        err_ch: Channel[BaseException],
        stream: bool,
    ) -> None:
        config = {
            "callbacks": [handler],
            "run_name": runnable.name,
            "metadata": {"debug_id": debug_id, "thread_id": meta.thread_id},
        }
        try:
            if stream:
                for _ in runnable.stream(value, config):
                    pass
            else:
                runnable.invoke(value, config)
        except Exception as e:
            # the run's failure is reported to the caller through err_ch
            logger.error("debug_run_failed", debug_id=debug_id, from_node=meta.from_node, error=str(e))
            err_ch.put(e)
        else:
            logger.info("debug_run_finished", debug_id=debug_id, from_node=meta.from_node)
        finally:
            state_ch.close()
            err_ch.close()
