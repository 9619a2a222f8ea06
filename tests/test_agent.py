"""Tests for the ask and tool-using agents."""

import json

from research_agent.core.agent import AskAgent, ToolAgent, strip_code_fences
from research_agent.core.prompts import PromptManager
from research_agent.core.selector import ModelSelector
from research_agent.errors import ProviderErrorKind
from research_agent.tools.base import Tool, ToolCategory, ToolRegistry
from tests.fakes import FakeProvider, provider_error


class LookupTool(Tool):
    def __init__(self):
        super().__init__(
            name="lookup",
            description="Look up a term.",
            category=ToolCategory.RESEARCH,
            input_schema={
                "type": "object",
                "properties": {"term": {"type": "string"}},
                "required": ["term"],
            },
        )
        self.seen = []

    async def execute(self, params, cancel=None):
        self.seen.append(params["term"])
        return f"definition of {params['term']}"


def tool_call(name, **params):
    return json.dumps({"tool": name, "tool_input": params})


def final(answer):
    return json.dumps({"tool": None, "final_answer": answer})


def make_agent(router_with, provider, *tools, max_steps=4):
    registry = ToolRegistry()
    registry.initialize(tools)
    selector = ModelSelector(router_with(provider))
    return ToolAgent(selector, PromptManager({}), registry, max_steps=max_steps)


async def test_ask_returns_answer(router_with):
    agent = AskAgent(ModelSelector(router_with(FakeProvider("openai", reply="42"))), PromptManager({}))

    assert await agent.ask("meaning?") == "42"
    assert agent.last_response.text == "42"


async def test_ask_renders_errors_as_text(router_with):
    provider = FakeProvider(
        "openai", error=provider_error("openai", ProviderErrorKind.UNAVAILABLE, "service down")
    )
    agent = AskAgent(ModelSelector(router_with(provider)), PromptManager({}))

    answer = await agent.ask("hello")

    assert answer == "Error: [openai:unavailable] service down"


async def test_ask_keeps_history_when_enabled(router_with):
    provider = FakeProvider("openai", replies=["first", "second"])
    agent = AskAgent(ModelSelector(router_with(provider)), PromptManager({}), keep_history=True)

    await agent.ask("one")
    await agent.ask("two")

    roles = [m["role"] for m in provider.calls[-1].messages]
    assert roles == ["system", "user", "assistant", "user"]
    agent.reset()
    assert agent.history == []


async def test_ask_stream_yields_deltas(router_with):
    agent = AskAgent(
        ModelSelector(router_with(FakeProvider("openai", chunks=["a", "b"]))), PromptManager({})
    )

    deltas = [delta async for delta in agent.ask_stream("q")]

    assert deltas == ["a", "b"]


async def test_tool_agent_calls_tool_then_answers(router_with):
    tool = LookupTool()
    provider = FakeProvider("openai", replies=[tool_call("lookup", term="RAG"), final("done")])
    agent = make_agent(router_with, provider, tool)

    answer = await agent.run_task("explain RAG")

    assert answer == "done"
    assert tool.seen == ["RAG"]
    feedback = provider.calls[1].messages[-1]
    assert feedback["role"] == "user"
    assert feedback["content"] == "Tool 'lookup' succeeded. Result:\ndefinition of RAG"
    assert "lookup (v1.0.0, research)" in provider.calls[0].messages[0]["content"]


async def test_tool_agent_reports_unknown_tool_to_model(router_with):
    provider = FakeProvider("openai", replies=[tool_call("nope"), final("gave up")])
    agent = make_agent(router_with, provider, LookupTool())

    answer = await agent.run_task("task")

    assert answer == "gave up"
    assert "Tool 'nope' not found" in provider.calls[1].messages[-1]["content"]


async def test_tool_agent_accepts_fenced_json(router_with):
    provider = FakeProvider("openai", replies=["```json\n" + final("fenced") + "\n```"])
    agent = make_agent(router_with, provider)

    assert await agent.run_task("task") == "fenced"


async def test_tool_agent_gives_up_on_repeated_invalid_json(router_with):
    provider = FakeProvider("openai", replies=["not json", "still not json"])
    agent = make_agent(router_with, provider)

    answer = await agent.run_task("task")

    assert answer == "still not json"
    assert len(provider.calls) == 2


async def test_tool_agent_stops_after_max_steps(router_with):
    provider = FakeProvider("openai", reply=tool_call("lookup", term="x"))
    agent = make_agent(router_with, provider, LookupTool(), max_steps=2)

    answer = await agent.run_task("task")

    assert answer == "Maximum tool-calling steps reached without a final answer."
    assert len(provider.calls) == 2


async def test_tool_agent_returns_model_error(router_with):
    provider = FakeProvider("openai", error=provider_error("openai", ProviderErrorKind.AUTH, "bad key"))
    agent = make_agent(router_with, provider)

    assert (await agent.run_task("task")).startswith("Error: [openai:auth] bad key")


def test_strip_code_fences():
    assert strip_code_fences("```json\n{}\n```") == "{}"
    assert strip_code_fences("  {} ") == "{}"
