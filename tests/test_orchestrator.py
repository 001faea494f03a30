"""
Tests for the bounded agent loop.

The router and retriever are AsyncMock fakes; tools run against a real
tmp_path vault so tool observations are genuine.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from cortex.agent.orchestrator import (
    CONTINUE_PROMPT,
    NO_ANSWER_TEXT,
    NO_CONTEXT_PLACEHOLDER,
    Orchestrator,
    apply_citations,
    build_context,
)
from cortex.agent.tools import ToolRegistry
from cortex.models import ModelResponse, SearchResult, ToolCall


@pytest.fixture
def results(chunk_factory):
    return [
        SearchResult(chunk=chunk_factory(n, f"snippet {n}", path="Projects/Note.md"), score=1.0 - n / 10)
        for n in range(1, 8)
    ]


@pytest.fixture
def retriever(results):
    retriever = MagicMock()
    retriever.search = AsyncMock(return_value=results)
    return retriever


@pytest.fixture
def router():
    router = MagicMock()
    router.run_tool_call = AsyncMock(return_value=ModelResponse(text="", provider="openai"))
    router.run_assistant = AsyncMock(return_value=ModelResponse(text="The answer.", provider="anthropic"))
    router.run_deep_research = AsyncMock(return_value=ModelResponse(text="Research answer.", provider="gemini"))
    return router


@pytest.fixture
def orchestrator(router, retriever, vault, settings):
    return Orchestrator(router, retriever, ToolRegistry(vault), settings)


def always_call(tool="notes", arguments=None):
    counter = iter(range(1000))

    async def respond(messages, tools):
        return ModelResponse(
            tool_calls=[ToolCall(id=f"call-{next(counter)}", name=tool, arguments=arguments or {})]
        )

    return respond


class TestCitations:
    def test_context_blocks_are_cited(self, results):
        context = build_context(results[:2])

        assert context == (
            "[[Note#^block-1]]\nsnippet 1\n\n[[Note#^block-2]]\nsnippet 2"
        )

    def test_empty_context_placeholder(self):
        assert build_context([]) == NO_CONTEXT_PLACEHOLDER

    def test_self_cited_text_is_unchanged(self, results):
        text = "Done, see [[Note#^block-3]]."

        assert apply_citations(text, results) == text

    def test_sources_line_lists_top_five(self, results):
        text = apply_citations("Plain answer.", results)

        assert text == (
            "Plain answer.\n\nSources: [[Note#^block-1]] [[Note#^block-2]] "
            "[[Note#^block-3]] [[Note#^block-4]] [[Note#^block-5]]"
        )

    def test_no_results_no_sources(self):
        assert apply_citations("Plain answer.", []) == "Plain answer."


class TestLoop:
    """State transitions of run()."""

    async def test_no_tool_calls_goes_straight_to_answer(self, orchestrator, router):
        answer = await orchestrator.run("What is planned?")

        assert router.run_tool_call.await_count == 1
        assert answer.startswith("The answer.\n\nSources: [[Note#^block-1]]")
        router.run_deep_research.assert_not_awaited()

    async def test_always_calling_model_stops_at_max_steps(self, orchestrator, router, settings):
        router.run_tool_call = AsyncMock(side_effect=always_call())

        answer = await orchestrator.run("loop forever")

        assert router.run_tool_call.await_count == settings.max_steps
        assert answer
        messages = router.run_assistant.await_args.args[2]
        assert len(messages) == 2 + 3 * settings.max_steps

    async def test_tool_messages_answer_preceding_calls(self, orchestrator, router, vault):
        await vault.write("a.md", "x")
        responses = iter(
            [
                ModelResponse(
                    tool_calls=[
                        ToolCall(id="c1", name="notes", arguments={"action": "list"}),
                        ToolCall(id="c2", name="bogus", arguments={}),
                    ]
                ),
                ModelResponse(text="ready"),
            ]
        )
        router.run_tool_call = AsyncMock(side_effect=lambda m, t: next(responses))

        await orchestrator.run("list my notes")

        messages = router.run_assistant.await_args.args[2]
        assistant, first, second, follow_up = messages[2:6]
        assert [c.id for c in assistant.tool_calls] == ["c1", "c2"]
        assert (first.role, first.tool_call_id, first.content) == ("tool", "c1", "a.md")
        assert (second.tool_call_id, second.content) == ("c2", "Tool bogus is not implemented.")
        assert (follow_up.role, follow_up.content) == ("user", CONTINUE_PROMPT)

    async def test_tool_side_effects_apply_in_order(self, orchestrator, router, tmp_path):
        calls = iter(
            [
                ModelResponse(
                    tool_calls=[
                        ToolCall(id="c1", name="create_note", arguments={"path": "Plan", "content": "v1"}),
                        ToolCall(
                            id="c2",
                            name="organize_note",
                            arguments={"current_path": "Plan.md", "new_path": "Archive/Plan"},
                        ),
                    ]
                ),
                ModelResponse(),
            ]
        )
        router.run_tool_call = AsyncMock(side_effect=lambda m, t: next(calls))

        await orchestrator.run("file my plan")

        assert (tmp_path / "Archive" / "Plan.md").read_text(encoding="utf-8") == "v1"

    async def test_no_results_uses_placeholder_context(self, orchestrator, router, retriever):
        retriever.search.return_value = []

        answer = await orchestrator.run("unknown topic")

        assert router.run_assistant.await_args.args[1] == NO_CONTEXT_PLACEHOLDER
        first_user = router.run_tool_call.await_args_list[0].args[0][1]
        assert first_user.content.endswith(f"Context:\n{NO_CONTEXT_PLACEHOLDER}")
        assert answer == "The answer."

    async def test_retrieval_failure_degrades(self, orchestrator, router, retriever):
        retriever.search.side_effect = RuntimeError("index offline")

        answer = await orchestrator.run("anything")

        assert answer == "The answer."
        assert router.run_assistant.await_args.args[1] == NO_CONTEXT_PLACEHOLDER


class TestResponding:
    """Assistant answer with deep-research fallback."""

    async def test_empty_assistant_falls_back_to_research(self, orchestrator, router):
        router.run_assistant.return_value = ModelResponse(text="")

        answer = await orchestrator.run("q")

        router.run_deep_research.assert_awaited_once()
        assert answer.startswith("Research answer.\n\nSources:")

    async def test_missing_assistant_key_guidance_is_returned(self, orchestrator, router):
        router.run_assistant.return_value = ModelResponse(
            text="Anthropic API key is missing.", provider="anthropic", failed=True
        )
        router.run_deep_research.return_value = ModelResponse(text="Gemini API key is missing.", failed=True)

        answer = await orchestrator.run("q")

        router.run_deep_research.assert_not_awaited()
        assert answer.startswith("Anthropic API key is missing.")

    async def test_failed_empty_assistant_returns_research_placeholder(self, orchestrator, router):
        router.run_assistant.return_value = ModelResponse(text="", failed=True)
        router.run_deep_research.return_value = ModelResponse(text="research down", failed=True)

        answer = await orchestrator.run("q")

        router.run_deep_research.assert_awaited_once()
        assert answer.startswith("research down")

    async def test_both_empty_returns_fixed_text(self, orchestrator, router, retriever):
        retriever.search.return_value = []
        router.run_assistant.return_value = ModelResponse(text="")
        router.run_deep_research.return_value = ModelResponse(text="")

        assert await orchestrator.run("q") == NO_ANSWER_TEXT

    async def test_self_cited_answer_is_returned_verbatim(self, orchestrator, router):
        router.run_assistant.return_value = ModelResponse(text="Yes [[Note#^block-2]].")

        assert await orchestrator.run("q") == "Yes [[Note#^block-2]]."


class TestTrajectory:
    async def test_trajectory_and_status(self, router, retriever, vault, settings):
        statuses = []
        router.run_tool_call = AsyncMock(
            side_effect=[
                ModelResponse(tool_calls=[ToolCall(id="c1", name="notes", arguments={})]),
                ModelResponse(),
            ]
        )
        orchestrator = Orchestrator(
            router, retriever, ToolRegistry(vault), settings, status_callback=statuses.append
        )

        answer, trajectory = await orchestrator.run_with_trajectory("q")

        assert [step["type"] for step in trajectory] == ["retrieval", "tool", "answer"]
        assert trajectory[-1]["content"] == answer
        assert statuses[0] == "Searching the vault..."
        assert statuses[-1] == "Done."
