"""Registry of debuggable graphs and their compiled per-node runners."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field


from einodev.compose.graph import CompiledGraph
from einodev.compose.types import GraphInfo
from einodev.config import DevConfig
from einodev.errors import CapacityError, NotFoundError
from einodev.graph.dev_graph import build_dev_graph
from einodev.graph.options import DevGraphInfo, GraphOption
from einodev.graph.schema_builder import build_canvas
from einodev.models.debug_run import GraphMeta
from einodev.models.graph_schema import CanvasInfo
from einodev.utils.identifiers import generate_graph_id
from einodev.utils.log import get_logger

logger = get_logger(__name__)

# name prefix of graphs compiled for debug runs; these are never registered
DEV_GRAPH_PREFIX = "einodev:"


@dataclass
class GraphContainer:
    graph_id: str
    graph_name: str
    dev_info: DevGraphInfo
    canvas: CanvasInfo | None = None
    # from_node -> graph rebuilt to start at that node
    runnables: dict[str, CompiledGraph] = field(default_factory=dict)


class ContainerService:
    """Thread-safe map of graph id to container."""

    def __init__(self, config: DevConfig | None = None) -> None:
        self.config = config or DevConfig()
        self._lock = threading.RLock()
        self._containers: dict[str, GraphContainer] = {}
        self._name_counts: dict[str, int] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._containers)

    def _unique_name(self, name: str) -> str:
        count = self._name_counts.get(name, 0)
        self._name_counts[name] = count + 1
        return name if count == 0 else f"{name}_{count}"

    def add_graph_info(self, info: GraphInfo, option: GraphOption | None = None, name: str | None = None) -> str:
        """Register ``info`` and return its graph id.

        Registering the same GraphInfo again updates its option and keeps
        the existing id.
        """
        with self._lock:
            for container in self._containers.values():
                if container.dev_info.info is info:
                    if option is not None:
                        container.dev_info.option = option
                        container.canvas = None
                        container.runnables.clear()
                    return container.graph_id

            if len(self._containers) >= self.config.max_graphs:
                raise CapacityError(f"graph count exceeds the limit of {self.config.max_graphs}")

            graph_id = generate_graph_id()
            graph_name = self._unique_name(name or info.name or info.key)
            self._containers[graph_id] = GraphContainer(
                graph_id=graph_id,
                graph_name=graph_name,
                dev_info=DevGraphInfo(info=info, option=option or GraphOption()),
            )
        logger.info("graph_registered", graph_id=graph_id, graph_name=graph_name, nodes=len(info.nodes))
        return graph_id

    def _container(self, graph_id: str) -> GraphContainer:
        container = self._containers.get(graph_id)
        if container is None:
            raise NotFoundError(f"graph_id={graph_id} not found")
        return container

    def get_graph_info(self, graph_id: str) -> DevGraphInfo:
        with self._lock:
            return self._container(graph_id).dev_info

    def list_graphs(self) -> list[GraphMeta]:
        with self._lock:
            return [GraphMeta(id=c.graph_id, name=c.graph_name) for c in self._containers.values()]

    def get_runnable(self, graph_id: str, from_node: str) -> CompiledGraph | None:
        with self._lock:
            return self._container(graph_id).runnables.get(from_node)

    def create_runnable(self, graph_id: str, from_node: str) -> CompiledGraph:
        """Rebuild and compile the graph so that it starts at ``from_node``."""
        with self._lock:
            container = self._container(graph_id)
            dev_info = container.dev_info
            graph = build_dev_graph(dev_info.info, from_node, dev_info.option)
            runnable = graph.compile(f"{DEV_GRAPH_PREFIX}{container.graph_name}:{from_node}", global_callbacks=False)
            container.runnables[from_node] = runnable
        logger.debug("dev_runnable_created", graph_id=graph_id, from_node=from_node)
        return runnable

    def get_or_create_runnable(self, graph_id: str, from_node: str) -> CompiledGraph:
        with self._lock:
            runnable = self.get_runnable(graph_id, from_node)
            if runnable is None:
                runnable = self.create_runnable(graph_id, from_node)
            return runnable

    def create_canvas(self, graph_id: str) -> CanvasInfo:
        with self._lock:
            container = self._container(graph_id)
            dev_info = container.dev_info
            container.canvas = build_canvas(dev_info.info, dev_info.option, graph_id=graph_id)
            return container.canvas

    def get_canvas(self, graph_id: str) -> CanvasInfo:
        """The cached canvas, built on first request."""
        with self._lock:
            canvas = self._container(graph_id).canvas
            if canvas is None:
                canvas = self.create_canvas(graph_id)
            return canvas


class DevGraphCompileCallback:
    """Registers every compiled top-level graph with a container."""

    def __init__(self, container: ContainerService, option: GraphOption | None = None) -> None:
        self.container = container
        self.option = option

    def on_finish(self, info: GraphInfo) -> None:
        if info.name.startswith(DEV_GRAPH_PREFIX):
            return
        self.container.add_graph_info(info, self.option)
