"""Tests for the graph builder and compiled graph execution."""

from __future__ import annotations

from typing import Any, get_type_hints

import pytest
from langchain_core.callbacks import CallbackManagerForRetrieverRun
from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import FakeListChatModel, GenericFakeChatModel
from langchain_core.messages import AIMessage, AnyMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.retrievers import BaseRetriever
from langchain_core.tools import tool
from langchain_core.vectorstores import InMemoryVectorStore

from einodev.compose import (
    END,
    START,
    ComponentKind,
    Graph,
    GraphBranch,
    Lambda,
    NodeOptions,
    ToolsNode,
    add_global_compile_callback,
    remove_global_compile_callback,
)
from einodev.errors import GraphRunError, GraphStructureError

from einodev.tests.conftest import build_chain_graph


class RecordingCallback:
    def __init__(self):
        self.infos = []

    def on_finish(self, info):
        self.infos.append(info)


class LetterEmbedding(Embeddings):
    """Four counts per text: length, vowels, spaces, digits."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return [
            float(len(text)),
            float(sum(c in "aeiou" for c in text)),
            float(text.count(" ")),
            float(sum(c.isdigit() for c in text)),
        ]


class KeywordRetriever(BaseRetriever):
    docs: list[Document]

    def _get_relevant_documents(self, query: str, *, run_manager: CallbackManagerForRetrieverRun) -> list[Document]:
        return [doc for doc in self.docs if query in doc.page_content]


@tool
def add(a: int, b: int) -> int:
    """Add two integers."""
    return a + b


class TestGraphStructure:
    """Test validation while building and compiling."""

    def test_reserved_and_duplicate_keys(self):
        g = Graph()
        with pytest.raises(GraphStructureError, match="reserved"):
            g.add_passthrough_node(START)
        g.add_passthrough_node("a")
        with pytest.raises(GraphStructureError, match="already exists"):
            g.add_passthrough_node("a")

    def test_component_instance_must_match_kind(self):
        """A chat model node refuses an object that is not a chat model."""
        g = Graph()
        with pytest.raises(GraphStructureError, match="unexpected instance"):
            g.add_chat_model_node("model", object())

    def test_edges_to_unknown_nodes(self):
        g = Graph()
        with pytest.raises(GraphStructureError, match="not found"):
            g.add_edge(START, "missing")
        with pytest.raises(GraphStructureError):
            g.add_edge(END, START)

    def test_start_needs_a_successor(self):
        g = Graph()
        g.add_passthrough_node("a")
        g.add_edge("a", END)
        with pytest.raises(GraphStructureError, match="start node has no successor"):
            g.compile()

    def test_end_needs_a_predecessor(self):
        g = Graph()
        g.add_passthrough_node("a")
        g.add_edge(START, "a")
        with pytest.raises(GraphStructureError, match="end node has no predecessor"):
            g.compile()

    def test_key_characters_reserved_by_langgraph(self):
        g = Graph()
        with pytest.raises(GraphStructureError, match="must not contain"):
            g.add_passthrough_node("a:b")
        with pytest.raises(GraphStructureError, match="must not contain"):
            g.add_passthrough_node("a|b")

    def test_unreachable_nodes(self):
        g = Graph()
        g.add_passthrough_node("a")
        g.add_passthrough_node("orphan")
        g.add_edge(START, "a")
        g.add_edge("a", END)
        g.add_edge("orphan", END)
        with pytest.raises(GraphStructureError, match=r"unreachable from start: \['orphan'\]"):
            g.compile()


class TestGraphInfo:
    """Test the descriptor handed to compile callbacks."""

    def test_lambda_types_come_from_annotations(self):
        info = build_chain_graph().compile("chain").graph_info

        assert info.name == "chain"
        assert info.nodes["node_1"].input_type is str
        assert info.nodes["node_2"].input_type == list[str]
        assert info.nodes["node_1"].component == ComponentKind.lambda_
        assert info.edges[START] == ["node_1"]

    def test_unnamed_graph_is_named_after_call_site(self):
        info = build_chain_graph().compile().graph_info
        assert info.name == info.key
        assert info.key.startswith("test_compose.test_unnamed_graph_is_named_after_call_site:")

    def test_compile_callbacks(self):
        local = RecordingCallback()
        glob = RecordingCallback()
        add_global_compile_callback(glob)
        try:
            build_chain_graph().compile("a", callbacks=[local])
            build_chain_graph().compile("b", global_callbacks=False)
        finally:
            remove_global_compile_callback(glob)

        assert [i.name for i in local.infos] == ["a"]
        assert [i.name for i in glob.infos] == ["a"]

    def test_compiled_graph_is_a_langgraph_state_graph(self):
        """The wiring can be read back the same way as any langgraph application."""
        compiled = build_chain_graph().compile("chain")
        drawable = compiled.graph.get_graph()

        assert {"node_1", "node_2", "node_3"} <= set(drawable.nodes)
        assert drawable.nodes["node_2"].metadata["graph_component"] == "Lambda"
        assert ("__start__", "node_1") in {(e.source, e.target) for e in drawable.edges}
        channels = get_type_hints(compiled.graph.builder.state_schema, include_extras=True)
        assert {"inbox:node_1", "inbox:node_2", "inbox:node_3", "inbox:end"} <= set(channels)

    def test_subgraph_info_is_nested(self):
        outer = Graph(str, list[str])
        outer.add_graph_node("sub", build_chain_graph(), NodeOptions(name="inner"))
        outer.add_edge(START, "sub")
        outer.add_edge("sub", END)

        info = outer.compile("outer").graph_info
        sub_info = info.nodes["sub"].graph_info

        assert sub_info is not None
        assert sub_info.name == "inner"
        assert set(sub_info.nodes) == {"node_1", "node_2", "node_3"}


class TestExecution:
    """Test invoking compiled graphs."""

    def test_chain(self, chain_graph):
        result = chain_graph.compile().invoke("mock_input")
        assert result == ["mock_input", "out_lambda_1", "out_lambda_2", "out_lambda_3"]

    def test_input_and_output_keys_merge_at_end(self):
        """Keyed outputs of parallel nodes merge into one dict."""
        g = Graph(dict[str, Any], dict[str, Any])
        g.add_lambda_node("upper", Lambda(lambda s: s.upper(), input_type=str, output_type=str),
                          input_key="text", output_key="upper")
        g.add_lambda_node("length", Lambda(lambda s: len(s), input_type=str, output_type=int),
                          input_key="text", output_key="length")
        g.add_edge(START, "upper")
        g.add_edge(START, "length")
        g.add_edge("upper", END)
        g.add_edge("length", END)

        assert g.compile().invoke({"text": "abc"}) == {"upper": "ABC", "length": 3}

    def test_missing_input_key(self):
        g = Graph()
        g.add_passthrough_node("a", input_key="x")
        g.add_edge(START, "a")
        g.add_edge("a", END)
        with pytest.raises(GraphRunError, match="expects input key 'x'"):
            g.compile().invoke({"y": 1})

    def test_unmergeable_inputs(self):
        g = Graph()
        g.add_passthrough_node("a")
        g.add_passthrough_node("b")
        g.add_edge(START, "a")
        g.add_edge(START, "b")
        g.add_edge("a", END)
        g.add_edge("b", END)
        with pytest.raises(GraphRunError, match="cannot be merged"):
            g.compile().invoke("x")

    def test_branch_runs_only_the_chosen_node(self):
        g = Graph(int, str)
        g.add_passthrough_node("route")
        g.add_lambda_node("even", Lambda(lambda n: "even", input_type=int, output_type=str))
        g.add_lambda_node("odd", Lambda(lambda n: "odd", input_type=int, output_type=str))
        g.add_edge(START, "route")
        g.add_branch("route", GraphBranch(lambda n: "even" if n % 2 == 0 else "odd", ["even", "odd"]))
        g.add_edge("even", END)
        g.add_edge("odd", END)
        compiled = g.compile()

        assert compiled.invoke(4) == "even"
        assert compiled.invoke(3) == "odd"

    def test_branch_can_loop_back(self):
        """A branch may route to an earlier node; the loop ends once it picks END."""
        g = Graph(int, int)
        g.add_lambda_node("inc", Lambda(lambda n: n + 1, input_type=int, output_type=int))
        g.add_edge(START, "inc")
        g.add_branch("inc", GraphBranch(lambda n: "inc" if n < 3 else END, ["inc", END]))

        assert g.compile().invoke(0) == 3

    def test_any_predecessor_triggers_a_node(self):
        """Paths of different length reach a join in different steps, so it runs once per arrival."""
        calls = []

        def join(value):
            calls.append(value)
            return value

        g = Graph(str, dict[str, Any])
        g.add_lambda_node("a", Lambda(lambda s: s.upper(), input_type=str, output_type=str), output_key="a")
        g.add_passthrough_node("b1")
        g.add_lambda_node("b2", Lambda(lambda s: s * 2, input_type=str, output_type=str), output_key="b")
        g.add_lambda_node("join", Lambda(join, input_type=dict[str, Any], output_type=dict[str, Any]))
        g.add_edge(START, "a")
        g.add_edge(START, "b1")
        g.add_edge("b1", "b2")
        g.add_edge("a", "join")
        g.add_edge("b2", "join")
        g.add_edge("join", END)

        assert g.compile().invoke("x") == {"a": "X", "b": "xx"}
        assert calls == [{"a": "X"}, {"b": "xx"}]

    def test_branch_choice_outside_end_nodes(self):
        g = Graph()
        g.add_passthrough_node("a")
        g.add_passthrough_node("b")
        g.add_edge(START, "a")
        g.add_branch("a", GraphBranch(lambda v: "elsewhere", ["b"]))
        g.add_edge("b", END)
        with pytest.raises(GraphRunError, match="chose 'elsewhere'"):
            g.compile().invoke(1)

    def test_state_handlers(self):
        """Pre and post handlers see the run's local state."""

        def pre(value, state):
            state["seen"].append(value)
            return value

        def post(output, state):
            return [*output, f"seen={len(state['seen'])}"]

        g = Graph(str, list[str], gen_local_state=lambda: {"seen": []}, state_type=dict[str, list[str]])
        g.add_lambda_node("node_1", Lambda(lambda s: [s], input_type=str, output_type=list[str]),
                          state_pre_handler=pre, state_post_handler=post)
        g.add_edge(START, "node_1")
        g.add_edge("node_1", END)

        assert g.compile().invoke("x") == ["x", "seen=1"]

    def test_subgraph(self):
        outer = Graph(str, list[str])
        outer.add_graph_node("sub", build_chain_graph())
        outer.add_lambda_node("done", Lambda(lambda v: [*v, "done"], input_type=list[str], output_type=list[str]))
        outer.add_edge(START, "sub")
        outer.add_edge("sub", "done")
        outer.add_edge("done", END)

        assert outer.compile().invoke("in")[-2:] == ["out_lambda_3", "done"]


class TestComponents:
    """Test nodes backed by langchain_core components."""

    def test_prompt_and_chat_model(self):
        g = Graph(dict[str, Any], AIMessage)
        g.add_prompt_node("prompt", ChatPromptTemplate.from_messages([("human", "say {word}")]))
        g.add_chat_model_node("model", FakeListChatModel(responses=["hello"]))
        g.add_edge(START, "prompt")
        g.add_edge("prompt", "model")
        g.add_edge("model", END)

        result = g.compile().invoke({"word": "hi"})
        assert isinstance(result, AIMessage)
        assert result.content == "hello"

    def test_embedding_and_indexer(self):
        embedding = LetterEmbedding()
        g = Graph(list[Document], list[str])
        g.add_indexer_node("index", InMemoryVectorStore(embedding))
        g.add_edge(START, "index")
        g.add_edge("index", END)

        ids = g.compile().invoke([Document(page_content="a"), Document(page_content="b")])
        assert len(ids) == 2

        e = Graph(list[str], list[list[float]])
        e.add_embedding_node("embed", embedding)
        e.add_edge(START, "embed")
        e.add_edge("embed", END)
        vectors = e.compile().invoke(["a b1"])
        assert vectors == [[4.0, 1.0, 1.0, 1.0]]

    def test_retriever(self):
        retriever = KeywordRetriever(docs=[Document(page_content="apples"), Document(page_content="pears")])
        g = Graph(str, list[Document])
        g.add_retriever_node("retrieve", retriever)
        g.add_edge(START, "retrieve")
        g.add_edge("retrieve", END)

        docs = g.compile().invoke("apples")
        assert docs[0].page_content == "apples"

    def test_tools_node(self):
        g = Graph(AIMessage, list[ToolMessage])
        g.add_tools_node("tools", ToolsNode([add]))
        g.add_edge(START, "tools")
        g.add_edge("tools", END)
        call = AIMessage(content="", tool_calls=[{"name": "add", "args": {"a": 1, "b": 2}, "id": "call_1"}])

        (message,) = g.compile().invoke(call)
        assert message.content == "3"
        assert message.tool_call_id == "call_1"

    def test_tools_node_unknown_tool(self):
        call = AIMessage(content="", tool_calls=[{"name": "nope", "args": {}, "id": "call_1"}])
        with pytest.raises(GraphRunError, match="not found"):
            ToolsNode([add]).invoke(call)

    def test_lambda_receives_config(self):
        """A lambda declaring ``config`` can call components inside the node run."""
        model = FakeListChatModel(responses=["pong"])

        def ask(question: str, config) -> str:
            return model.invoke([HumanMessage(content=question)], config).content

        node = Lambda(ask)
        assert node.input_type is str
        assert node.invoke("ping") == "pong"

    def test_prompt_messages_type(self):
        g = Graph(dict[str, Any], list[BaseMessage])
        g.add_prompt_node("prompt", ChatPromptTemplate.from_messages([("system", "be {mood}")]))
        g.add_edge(START, "prompt")
        g.add_edge("prompt", END)

        (message,) = g.compile().invoke({"mood": "brief"})
        assert message.content == "be brief"

    def test_chat_model_node_accepts_any_message(self):
        g = Graph(list[AnyMessage], AIMessage)
        g.add_chat_model_node("model", FakeListChatModel(responses=["ok"]))
        g.add_edge(START, "model")
        g.add_edge("model", END)

        compiled = g.compile()
        assert compiled.graph_info.nodes["model"].input_type == list[AnyMessage]
        result = compiled.invoke([SystemMessage(content="be brief"), HumanMessage(content="hi")])
        assert type(result) is AIMessage
        assert result.content == "ok"

    def test_stream_assembles_chat_model_chunks(self):
        """Streamed chunks are joined into one message before leaving the node."""
        model = GenericFakeChatModel(messages=iter([AIMessage(content="hello streaming world")]))
        g = Graph(list[AnyMessage], AIMessage)
        g.add_chat_model_node("model", model)
        g.add_edge(START, "model")
        g.add_edge("model", END)

        (result,) = list(g.compile().stream([HumanMessage(content="hi")]))
        assert type(result) is AIMessage
        assert result.content == "hello streaming world"

    def test_stream_reaches_models_in_subgraphs(self):
        inner = Graph(list[AnyMessage], AIMessage)
        inner.add_chat_model_node("model", GenericFakeChatModel(messages=iter([AIMessage(content="a b")])))
        inner.add_edge(START, "model")
        inner.add_edge("model", END)
        outer = Graph(list[AnyMessage], str)
        outer.add_graph_node("sub", inner)
        outer.add_lambda_node("text", Lambda(lambda m: m.content, input_type=AIMessage, output_type=str))
        outer.add_edge(START, "sub")
        outer.add_edge("sub", "text")
        outer.add_edge("text", END)

        assert list(outer.compile().stream([HumanMessage(content="hi")])) == ["a b"]
