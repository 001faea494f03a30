"""Bounded tool-use agent loop over the vault.

The Orchestrator retrieves context for a question, lets the tool-routing
model act on the vault for at most ``max_steps`` rounds, then asks the
assistant persona for the final answer (deep research as fallback) and
makes sure the answer carries citation markers.
"""

import logging
import re
from typing import Callable

from cortex.agent.router import ModelRouter
from cortex.agent.tools import ToolRegistry
from cortex.config import Settings
from cortex.models import ChatMessage, SearchResult
from cortex.rag.retriever import HybridRetriever

logger = logging.getLogger(__name__)

NO_CONTEXT_PLACEHOLDER = "No matching notes found."
NO_ANSWER_TEXT = "No answer could be generated."
CONTINUE_PROMPT = "Continue and incorporate the new observations. Include citations if relevant."
MAX_SOURCES = 5

CITATION_PATTERN = re.compile(r"\[\[.+?\]\]")

SYSTEM_PROMPT = (
    "You are Vault Cortex, an assistant for a markdown knowledge vault. "
    "Work step by step: think, decide whether a tool is needed, observe its "
    "result, then answer concisely. Cite supporting snippets with the "
    "[[Note#^block-id]] markers shown in the context. Only cite block ids that "
    "appear in the provided context; never make one up."
)


def build_context(results: list[SearchResult]) -> str:
    """Render results as citation-annotated blocks, best first."""
    if not results:
        return NO_CONTEXT_PLACEHOLDER
    return "\n\n".join(f"{r.chunk.citation}\n{r.chunk.content}" for r in results)


def apply_citations(text: str, results: list[SearchResult]) -> str:
    """Append a Sources line unless the text already cites something."""
    if not results or CITATION_PATTERN.search(text):
        return text
    sources = " ".join(r.chunk.citation for r in results[:MAX_SOURCES])
    return f"{text}\n\nSources: {sources}"


class Orchestrator:
    """Runs the Retrieving -> tool rounds -> Responding loop.

    Args:
        router: Model backends for tool routing, assistant and research.
        retriever: Hybrid retriever used for the initial context.
        tools: Tool catalog and executor.
        settings: Supplies ``max_steps`` and ``search_limit``.
        status_callback: Optional callable receiving progress text.
    """

    def __init__(
        self,
        router: ModelRouter,
        retriever: HybridRetriever,
        tools: ToolRegistry,
        settings: Settings,
        status_callback: Callable[[str], None] | None = None,
    ) -> None:
        self.router = router
        self.retriever = retriever
        self.tools = tools
        self.settings = settings
        self.status_callback = status_callback

    def _update_status(self, text: str) -> None:
        logger.debug(text)
        if self.status_callback:
            self.status_callback(text)

    async def run(self, query: str) -> str:
        answer, _ = await self.run_with_trajectory(query)
        return answer

    async def run_with_trajectory(self, query: str) -> tuple[str, list[dict]]:
        """Answer ``query`` and return the step-by-step trajectory.

        Returns:
            Tuple of (answer, trajectory) where each trajectory entry has
            ``step``, ``type``, ``title``, ``content`` and ``details``.
        """
        trajectory: list[dict] = []

        self._update_status("Searching the vault...")
        try:
            results = await self.retriever.search(query, self.settings.search_limit)
        except Exception as e:
            logger.warning(f"Retrieval failed for '{query}': {e}")
            results = []
        context = build_context(results)
        trajectory.append(
            {
                "step": 0,
                "type": "retrieval",
                "title": "Vault Search",
                "content": f'Retrieved {len(results)} chunk(s) for "{query}"',
                "details": " ".join(r.chunk.citation for r in results) or NO_CONTEXT_PLACEHOLDER,
            }
        )

        messages = [
            ChatMessage(role="system", content=SYSTEM_PROMPT),
            ChatMessage(role="user", content=f"{query}\n\nContext:\n{context}"),
        ]
        schemas = self.tools.get_schemas()

        for step in range(self.settings.max_steps):
            self._update_status(f"Tool round {step + 1} of {self.settings.max_steps}...")
            decision = await self.router.run_tool_call(messages, schemas)
            if not decision.tool_calls:
                logger.info(f"Tool round {step + 1}: no tool calls, responding")
                break

            messages.append(
                ChatMessage(role="assistant", content=decision.text, tool_calls=decision.tool_calls)
            )
            # One at a time, in call order
            for call in decision.tool_calls:
                self._update_status(f"Running tool {call.name}...")
                result = await self.tools.run_tool(call.name, call.arguments)
                logger.info(f"Tool {call.name} -> success={result.success}")
                messages.append(
                    ChatMessage(
                        role="tool",
                        name=call.name,
                        content=result.output,
                        tool_call_id=call.id,
                    )
                )
                trajectory.append(
                    {
                        "step": step + 1,
                        "type": "tool",
                        "title": f"Step {step + 1}: {call.name}",
                        "content": str(call.arguments),
                        "details": result.output if result.success else f"Failed: {result.output}",
                    }
                )
            messages.append(ChatMessage(role="user", content=CONTINUE_PROMPT))
        else:
            logger.info(f"Reached step ceiling ({self.settings.max_steps}), responding")

        self._update_status("Composing the answer...")
        response = await self.router.run_assistant(query, context, messages)
        if response.failed:
            logger.warning(f"Assistant unavailable: {response.text}")
        if not response.text:
            self._update_status("Falling back to deep research...")
            response = await self.router.run_deep_research(query, context, messages)

        text = response.text or NO_ANSWER_TEXT
        answer = apply_citations(text, results)
        trajectory.append(
            {
                "step": len(trajectory),
                "type": "answer",
                "title": "Final Answer",
                "content": answer,
                "details": f"Answered by {response.provider or 'no provider'}",
            }
        )
        self._update_status("Done.")
        return answer, trajectory
