"""Custom node components: user lambdas and the tool-call executor."""

from __future__ import annotations

import inspect
import typing
from typing import Any, Callable, Sequence

from langchain_core.messages import AIMessage, ToolMessage
from langchain_core.runnables import RunnableConfig, RunnableLambda
from langchain_core.tools import BaseTool

from einodev.errors import GraphRunError

_MISSING = object()


def _signature_types(func: Callable[..., Any]) -> tuple[Any, Any]:
    """Input annotation of the first parameter and the return annotation."""
    try:
        hints = typing.get_type_hints(func, include_extras=True)
    except (NameError, TypeError):
        hints = {}
    try:
        params = [
            p for p in inspect.signature(func).parameters.values()
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.name != "config"
        ]
    except (TypeError, ValueError):
        params = []
    input_type = hints.get(params[0].name, Any) if params else Any
    output_type = hints.get("return", Any)
    return input_type, output_type


class Lambda:
    """A user function wrapped as a graph node.

    Input and output types are read from the function's annotations unless
    given explicitly. A function that declares a ``config`` parameter gets
    the node's RunnableConfig, so components it calls are traced as part of
    the node.
    """

    def __init__(
        self,
        func: Callable[..., Any],
        *,
        input_type: Any = _MISSING,
        output_type: Any = _MISSING,
        name: str | None = None,
    ) -> None:
        hinted_in, hinted_out = _signature_types(func)
        self.func = func
        self.input_type = hinted_in if input_type is _MISSING else input_type
        self.output_type = hinted_out if output_type is _MISSING else output_type
        self.name = name or getattr(func, "__name__", "lambda")
        self._runnable = RunnableLambda(func, name=self.name)

    def invoke(self, value: Any, config: RunnableConfig | None = None) -> Any:
        return self._runnable.invoke(value, config)

    def __repr__(self) -> str:
        return f"Lambda({self.name}: {self.input_type!r} -> {self.output_type!r})"


class ToolsNode:
    """Runs the tool calls requested by an AIMessage.

    Input is the AIMessage, output is one ToolMessage per tool call in the
    order they were requested.
    """

    def __init__(self, tools: Sequence[BaseTool]) -> None:
        self.tools: dict[str, BaseTool] = {tool.name: tool for tool in tools}

    def invoke(self, message: AIMessage, config: RunnableConfig | None = None) -> list[ToolMessage]:
        results: list[ToolMessage] = []
        for call in message.tool_calls:
            tool = self.tools.get(call["name"])
            if tool is None:
                raise GraphRunError(f"tool {call['name']!r} not found in tools node")
            result = tool.invoke({**call, "type": "tool_call"}, config)
            if not isinstance(result, ToolMessage):
                result = ToolMessage(content=str(result), tool_call_id=call.get("id") or "", name=tool.name)
            results.append(result)
        return results
