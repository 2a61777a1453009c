"""ID generation and timestamp utilities."""

import time
import uuid


def generate_graph_id() -> str:
    """Generate a unique graph ID (UUID4)."""
    return str(uuid.uuid4())


def generate_thread_id() -> str:
    """Generate a unique debug thread ID (UUID4)."""
    return str(uuid.uuid4())


def generate_debug_id() -> str:
    """Generate a unique debug run ID (UUID4)."""
    return str(uuid.uuid4())


def generate_edge_id() -> str:
    """Generate a unique schema edge/branch ID (UUID4)."""
    return str(uuid.uuid4())


def epoch_millis() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000
