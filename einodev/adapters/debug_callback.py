"""LangChain callback handler that turns node runs into NodeDebugState records.

A compiled graph runs the component of every node as a child run tagged
with the ``graph_node`` metadata key. This handler opens a frame for each
such run and follows every run started beneath it (nested chains, chat
models, retrievers, tools) back to that frame, so a component called
inside a lambda does not produce a second record for the same node. A
frame emits once, when the node run itself ends or fails.

Streamed model output is collected token by token into the frame. A node
that fails mid-stream still reports the partial output it produced.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from langchain_core.callbacks import BaseCallbackHandler
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.outputs import ChatGenerationChunk, GenerationChunk, LLMResult
from pydantic_core import PydanticSerializationError, to_jsonable_python

from einodev.compose.graph import NODE_METADATA_KEY
from einodev.compose.types import GraphNodeInfo
from einodev.models.debug_run import ErrorType, NodeDebugMetrics, NodeDebugState
from einodev.utils.identifiers import epoch_millis
from einodev.utils.log import get_logger

logger = get_logger(__name__)

StateSink = Callable[[NodeDebugState], None]


def to_json(value: Any) -> str:
    """Compact JSON for a node payload; pydantic and langchain objects included."""
    return json.dumps(value, default=to_jsonable_python, ensure_ascii=False, separators=(",", ":"))


def _wrap(key: str | None, value: Any) -> Any:
    return {key: value} if key else value


@dataclass
class _NodeFrame:
    node_key: str
    node: GraphNodeInfo
    invoke_time_ms: int
    input_json: str = ""
    depth: int = 1
    prompt_tokens: int = 0
    completion_tokens: int = 0
    # streamed pieces from models running beneath the node
    chunks: list[Any] = field(default_factory=list)

    def add_usage(self, prompt: int, completion: int) -> None:
        self.prompt_tokens += prompt
        self.completion_tokens += completion

    @property
    def has_usage(self) -> bool:
        return bool(self.prompt_tokens or self.completion_tokens)

    def streamed(self) -> Any:
        """The collected chunks joined into one value, None if nothing streamed."""
        output = None
        for chunk in self.chunks:
            output = chunk if output is None else output + chunk
        return output


def _usage_from_message(message: Any) -> tuple[int, int] | None:
    usage = getattr(message, "usage_metadata", None)
    if not usage:
        return None
    return int(usage.get("input_tokens", 0)), int(usage.get("output_tokens", 0))


def _usage_from_result(response: LLMResult) -> tuple[int, int] | None:
    prompt = completion = 0
    found = False
    for generations in response.generations:
        for generation in generations:
            usage = _usage_from_message(getattr(generation, "message", None))
            if usage is not None:
                found = True
                prompt += usage[0]
                completion += usage[1]
    if found:
        return prompt, completion

    token_usage = (response.llm_output or {}).get("token_usage") or {}
    if token_usage:
        return int(token_usage.get("prompt_tokens", 0)), int(token_usage.get("completion_tokens", 0))
    return None


class DebugCallbackHandler(BaseCallbackHandler):
    """Emits one NodeDebugState per node of a debug run.

    Mapping:
    - on_chain_start (graph_node run)  -> open a frame, serialize input
    - any start beneath a frame        -> depth + 1
    - on_llm_new_token beneath a frame -> collect the streamed chunk
    - on_llm_end beneath a frame       -> accumulate token usage
    - outermost on_chain_end           -> state with output and metrics
    - outermost on_chain_error         -> state with error_type=NodeError

    A streamed run reports its real input only when it ends; ``inputs``
    given to on_chain_end/on_chain_error replaces the one seen at start.
    """

    def __init__(self, sink: StateSink, nodes: Mapping[str, GraphNodeInfo], debug_id: str = "") -> None:
        super().__init__()
        self.sink = sink
        self.nodes = nodes
        self.debug_id = debug_id
        self._lock = threading.Lock()
        self._frames: dict[UUID, _NodeFrame] = {}
        # every run beneath a node, the node run included, mapped to its frame
        self._run_frame: dict[UUID, UUID] = {}

    # --- frame bookkeeping ---

    def _enter(
        self,
        run_id: UUID,
        parent_run_id: UUID | None,
        metadata: dict[str, Any] | None,
        inputs: Any = None,
        *,
        is_chain: bool = False,
    ) -> None:
        with self._lock:
            frame_id = self._run_frame.get(parent_run_id) if parent_run_id is not None else None
            if frame_id is not None:
                self._run_frame[run_id] = frame_id
                self._frames[frame_id].depth += 1
                return

            node_key = (metadata or {}).get(NODE_METADATA_KEY)
            if not is_chain or node_key not in self.nodes:
                return
            node = self.nodes[node_key]
            frame = _NodeFrame(node_key=node_key, node=node, invoke_time_ms=epoch_millis())
            self._frames[run_id] = frame
            self._run_frame[run_id] = run_id

        self._record_input(frame, inputs)

    def _exit(self, run_id: UUID) -> _NodeFrame | None:
        """The frame if ``run_id`` closes it, else None."""
        with self._lock:
            frame_id = self._run_frame.pop(run_id, None)
            if frame_id is None:
                return None
            frame = self._frames[frame_id]
            frame.depth -= 1
            if frame.depth > 0:
                return None
            del self._frames[frame_id]
            return frame

    def _frame_of(self, run_id: UUID) -> _NodeFrame | None:
        with self._lock:
            frame_id = self._run_frame.get(run_id)
            return self._frames.get(frame_id) if frame_id is not None else None

    def _record_input(self, frame: _NodeFrame, inputs: Any) -> None:
        try:
            frame.input_json = to_json(_wrap(frame.node.input_key, inputs))
        except (TypeError, ValueError, PydanticSerializationError) as e:
            frame.input_json = ""
            self._system_error(frame, f"error serializing callback input to json, err={e}")

    # --- emission ---

    def _emit(self, state: NodeDebugState) -> None:
        logger.debug(
            "node_debug_state",
            debug_id=self.debug_id,
            node_key=state.node_key,
            error_type=state.error_type.value if state.error_type else None,
        )
        self.sink(state)

    def _metrics(self, frame: _NodeFrame, completion_time_ms: int) -> NodeDebugMetrics:
        return NodeDebugMetrics(
            prompt_tokens=frame.prompt_tokens,
            completion_tokens=frame.completion_tokens,
            invoke_time_ms=frame.invoke_time_ms,
            completion_time_ms=completion_time_ms,
        )

    def _system_error(self, frame: _NodeFrame, message: str) -> None:
        logger.warning("node_debug_system_error", debug_id=self.debug_id, node_key=frame.node_key, error=message)
        self._emit(NodeDebugState(
            node_key=frame.node_key,
            error=message,
            error_type=ErrorType.system_error,
            metrics=self._metrics(frame, epoch_millis()),
        ))

    def _finish(self, frame: _NodeFrame, outputs: Any) -> None:
        end = epoch_millis()
        if outputs is None:
            outputs = frame.streamed()
        if not frame.has_usage and isinstance(outputs, AIMessage):
            usage = _usage_from_message(outputs)
            if usage is not None:
                frame.add_usage(*usage)
        try:
            output_json = to_json(_wrap(frame.node.output_key, outputs))
        except (TypeError, ValueError, PydanticSerializationError) as e:
            self._system_error(frame, f"error serializing callback output to json, err={e}")
            return
        self._emit(NodeDebugState(
            node_key=frame.node_key,
            input=frame.input_json,
            output=output_json,
            metrics=self._metrics(frame, end),
        ))

    def _fail(self, frame: _NodeFrame, error: BaseException) -> None:
        end = epoch_millis()
        partial = frame.streamed()
        output_json = ""
        if partial is not None:
            if not frame.has_usage:
                usage = _usage_from_message(partial)
                if usage is not None:
                    frame.add_usage(*usage)
            try:
                output_json = to_json(_wrap(frame.node.output_key, partial))
            except (TypeError, ValueError, PydanticSerializationError) as e:
                self._system_error(frame, f"error serializing callback output to json, err={e}")
        self._emit(NodeDebugState(
            node_key=frame.node_key,
            input=frame.input_json,
            output=output_json,
            error=str(error),
            error_type=ErrorType.node_error,
            metrics=self._metrics(frame, end),
        ))

    # --- chain callbacks (node boundaries) ---

    def on_chain_start(
        self,
        serialized: dict[str, Any] | None,
        inputs: Any,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        self._enter(run_id, parent_run_id, metadata, inputs, is_chain=True)

    def on_chain_end(
        self,
        outputs: Any,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        frame = self._exit(run_id)
        if frame is not None:
            if "inputs" in kwargs:
                self._record_input(frame, kwargs["inputs"])
            self._finish(frame, outputs)

    def on_chain_error(
        self,
        error: BaseException,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        frame = self._exit(run_id)
        if frame is not None:
            if "inputs" in kwargs:
                self._record_input(frame, kwargs["inputs"])
            self._fail(frame, error)

    # --- nested component callbacks ---

    def on_chat_model_start(
        self,
        serialized: dict[str, Any],
        messages: list[list[BaseMessage]],
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        self._enter(run_id, parent_run_id, metadata)

    def on_llm_start(
        self,
        serialized: dict[str, Any],
        prompts: list[str],
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        self._enter(run_id, parent_run_id, metadata)

    def on_llm_new_token(
        self,
        token: str,
        *,
        chunk: GenerationChunk | ChatGenerationChunk | None = None,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        frame = self._frame_of(run_id)
        if frame is None:
            return
        piece = chunk.message if isinstance(chunk, ChatGenerationChunk) else token
        with self._lock:
            frame.chunks.append(piece)

    def on_llm_end(
        self,
        response: LLMResult,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        frame = self._frame_of(run_id)
        if frame is not None:
            usage = _usage_from_result(response)
            if usage is not None:
                frame.add_usage(*usage)
        self._exit(run_id)

    def on_llm_error(
        self,
        error: BaseException,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        self._exit(run_id)

    def on_retriever_start(
        self,
        serialized: dict[str, Any],
        query: str,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        self._enter(run_id, parent_run_id, metadata)

    def on_retriever_end(self, documents: Any, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> None:
        self._exit(run_id)

    def on_retriever_error(
        self,
        error: BaseException,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        **kwargs: Any,
    ) -> None:
        self._exit(run_id)

    def on_tool_start(
        self,
        serialized: dict[str, Any],
        input_str: str,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
        inputs: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        self._enter(run_id, parent_run_id, metadata)

    def on_tool_end(self, output: Any, *, run_id: UUID, parent_run_id: UUID | None = None, **kwargs: Any) -> None:
        self._exit(run_id)

    def on_tool_error(
        self,
        error: BaseException,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        **kwargs: Any,
    ) -> None:
        self._exit(run_id)
