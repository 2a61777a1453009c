"""Graph container and debug run services."""

from einodev.service.channel import Channel, ChannelClosed
from einodev.service.container import (
    DEV_GRAPH_PREFIX,
    ContainerService,
    DevGraphCompileCallback,
    GraphContainer,
)
from einodev.service.debug_run import DebugService

__all__ = [
    "Channel",
    "ChannelClosed",
    "ContainerService",
    "DEV_GRAPH_PREFIX",
    "DebugService",
    "DevGraphCompileCallback",
    "GraphContainer",
]
