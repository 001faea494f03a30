"""Task-typed routing of model requests to hosted backends.

Three backends are used:

- tool routing: OpenAI chat completions with function tools
- assistant persona: Anthropic Messages API, ephemeral prompt caching on the
  persona prompt plus a local response cache keyed by request digest
- deep research: Gemini, with server-side cached context keyed by a digest
  of the retrieved-context text and reused until its TTL expires

Every request failure degrades to a placeholder response; nothing raises.
"""

import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import anthropic
from google import genai
from google.genai import types as genai_types
from openai import AsyncOpenAI

from cortex.config import Settings
from cortex.models import ChatMessage, ModelResponse, ToolCall, ToolSchema
from cortex.secrets import SecretStore, first_secret

logger = logging.getLogger(__name__)

OPENAI_SECRET_NAMES = ["openai"]
ANTHROPIC_SECRET_NAMES = ["anthropic", "claude"]
GEMINI_SECRET_NAMES = ["gemini", "google", "gemini-pro"]

PERSONA_PROMPT = (
    "You are the personal research assistant of a markdown knowledge vault. "
    "Give concise, actionable answers grounded in the supplied vault context. "
    "Cite supporting notes with the wikilink markers exactly as they appear in "
    "the context, e.g. [[Note#^block-0123456789abcdef]]. Only cite block ids "
    "present in the context; never invent one."
)

RESEARCH_PROMPT = (
    "You are a careful research analyst working over a markdown knowledge vault. "
    "Synthesize a thorough answer from the conversation and the vault context. "
    "Cite notes with the wikilink markers present in the context and never "
    "invent block ids."
)

CONTEXT_CACHE_CHARS = 20000


def digest_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def parse_tool_arguments(raw: Any) -> Dict[str, Any]:
    """Decode tool-call arguments; malformed JSON becomes an empty dict."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to parse tool call arguments {raw!r}: {e}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning(f"Tool call arguments are not an object: {raw!r}")
        return {}
    return parsed


def to_openai_messages(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for m in messages:
        if m.role == "tool":
            out.append({"role": "tool", "tool_call_id": m.tool_call_id, "content": m.content})
        elif m.role == "assistant" and m.tool_calls:
            out.append(
                {
                    "role": "assistant",
                    "content": m.content or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.name,
                                "arguments": json.dumps(call.arguments),
                            },
                        }
                        for call in m.tool_calls
                    ],
                }
            )
        else:
            out.append({"role": m.role, "content": m.content})
    return out


def to_openai_tools(tools: List[ToolSchema]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }
        for tool in tools
    ]


def flatten_message(message: ChatMessage) -> str:
    """Plain-text rendering for providers without native tool turns."""
    if message.role == "tool":
        return f"Observation from {message.name or 'tool'}: {message.content}"
    if message.tool_calls:
        actions = "\n".join(
            f"Action {call.name}: {json.dumps(call.arguments)}" for call in message.tool_calls
        )
        return f"{message.content}\n{actions}".strip()
    return message.content


def split_conversation(
    messages: List[ChatMessage], assistant_role: str = "assistant"
) -> tuple[List[str], List[Dict[str, str]]]:
    """Separate system text and merge the rest into alternating turns.

    Tool observations are folded into user turns; consecutive turns with
    the same role are joined.
    """
    system_parts: List[str] = []
    turns: List[Dict[str, str]] = []
    for m in messages:
        if m.role == "system":
            system_parts.append(m.content)
            continue
        role = assistant_role if m.role == "assistant" else "user"
        text = flatten_message(m)
        if not text:
            continue
        if turns and turns[-1]["role"] == role:
            turns[-1]["text"] += "\n\n" + text
        else:
            turns.append({"role": role, "text": text})
    return system_parts, turns


def append_user_text(turns: List[Dict[str, str]], text: str) -> None:
    if turns and turns[-1]["role"] == "user":
        turns[-1]["text"] += "\n\n" + text
    else:
        turns.append({"role": "user", "text": text})


class OpenAIToolBackend:
    """Tool-capable completions used for the ReAct rounds."""

    def __init__(self, settings: Settings, secrets: SecretStore, client: Any = None):
        self.settings = settings
        self.secrets = secrets
        self.client = client

    async def _get_client(self) -> Any:
        if self.client is None:
            api_key = await first_secret(self.secrets, OPENAI_SECRET_NAMES)
            if not api_key:
                return None
            self.client = AsyncOpenAI(api_key=api_key, timeout=self.settings.request_timeout)
        return self.client

    async def complete(self, messages: List[ChatMessage], tools: List[ToolSchema]) -> ModelResponse:
        client = await self._get_client()
        if client is None:
            return ModelResponse(
                text='OpenAI API key is missing. Please store a key labeled "openai".',
                provider="openai",
                failed=True,
            )
        kwargs: Dict[str, Any] = dict(
            model=self.settings.openai_model,
            messages=to_openai_messages(messages),
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )
        if tools:
            kwargs["tools"] = to_openai_tools(tools)
            kwargs["tool_choice"] = "auto"
        completion = await client.chat.completions.create(**kwargs)
        message = completion.choices[0].message
        tool_calls = [
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=parse_tool_arguments(call.function.arguments),
            )
            for call in (getattr(message, "tool_calls", None) or [])
        ]
        return ModelResponse(text=message.content or "", tool_calls=tool_calls, provider="openai")


class AnthropicAssistantBackend:
    """Persona-bearing assistant answers with a prompt-level response cache."""

    def __init__(self, settings: Settings, secrets: SecretStore, client: Any = None):
        self.settings = settings
        self.secrets = secrets
        self.client = client
        self.cache: "OrderedDict[str, ModelResponse]" = OrderedDict()

    async def _get_client(self) -> Any:
        if self.client is None:
            api_key = await first_secret(self.secrets, ANTHROPIC_SECRET_NAMES)
            if not api_key:
                return None
            self.client = anthropic.AsyncAnthropic(
                api_key=api_key, timeout=self.settings.request_timeout
            )
        return self.client

    def build_request(self, context: str, messages: List[ChatMessage]) -> Dict[str, Any]:
        system_parts, turns = split_conversation(messages)
        system = [
            {"type": "text", "text": PERSONA_PROMPT, "cache_control": {"type": "ephemeral"}}
        ]
        system.extend({"type": "text", "text": part} for part in system_parts if part)
        append_user_text(turns, f"Context:\n{context}" if context else "Context: (none)")
        return dict(
            model=self.settings.anthropic_model,
            max_tokens=self.settings.max_tokens,
            temperature=self.settings.temperature,
            system=system,
            messages=[
                {"role": t["role"], "content": [{"type": "text", "text": t["text"]}]}
                for t in turns
            ],
        )

    def _remember(self, key: str, response: ModelResponse) -> None:
        self.cache[key] = response
        self.cache.move_to_end(key)
        while len(self.cache) > max(0, self.settings.response_cache_size):
            self.cache.popitem(last=False)

    async def complete(self, context: str, messages: List[ChatMessage]) -> ModelResponse:
        request = self.build_request(context, messages)
        key = digest_text(json.dumps(request, sort_keys=True))
        cached = self.cache.get(key)
        if cached is not None:
            self.cache.move_to_end(key)
            logger.debug(f"Assistant response cache hit {key[:12]}")
            return cached.model_copy(update={"metadata": {**cached.metadata, "cache": "hit"}})

        client = await self._get_client()
        if client is None:
            return ModelResponse(
                text='Anthropic API key is missing. Please store a key labeled "anthropic" or "claude".',
                provider="anthropic",
                failed=True,
            )
        completion = await client.messages.create(**request)
        text = "".join(
            getattr(block, "text", "")
            for block in (completion.content or [])
            if getattr(block, "type", None) == "text"
        ).strip()
        response = ModelResponse(text=text, provider="anthropic", metadata={"cache": "ephemeral"})
        if text:
            self._remember(key, response)
        return response


@dataclass
class ContextCacheEntry:
    name: str
    digest: str
    created: float


class GeminiResearchBackend:
    """Deep-research answers over server-side cached vault context."""

    def __init__(self, settings: Settings, secrets: SecretStore, client: Any = None):
        self.settings = settings
        self.secrets = secrets
        self.client = client
        self.cache: Dict[str, ContextCacheEntry] = {}

    async def _get_client(self) -> Any:
        if self.client is None:
            api_key = await first_secret(self.secrets, GEMINI_SECRET_NAMES)
            if not api_key:
                return None
            self.client = genai.Client(api_key=api_key)
        return self.client

    async def ensure_context_cache(self, client: Any, context: str) -> Optional[ContextCacheEntry]:
        """Return a live cache entry for ``context``, creating one if needed."""
        if not context:
            return None
        digest = digest_text(context)
        entry = self.cache.get(digest)
        if entry is not None:
            if time.time() - entry.created < self.settings.context_cache_ttl:
                return entry
            del self.cache[digest]
        try:
            cached = await client.aio.caches.create(
                model=self.settings.gemini_model,
                config=genai_types.CreateCachedContentConfig(
                    display_name="vault-cortex context",
                    system_instruction=RESEARCH_PROMPT,
                    contents=[
                        genai_types.Content(
                            role="user",
                            parts=[genai_types.Part(text=context[:CONTEXT_CACHE_CHARS])],
                        )
                    ],
                    ttl=f"{self.settings.context_cache_ttl}s",
                ),
            )
        except Exception as e:
            logger.warning(f"Failed to cache Gemini context: {e}")
            return None
        entry = ContextCacheEntry(name=cached.name, digest=digest, created=time.time())
        self.cache[digest] = entry
        return entry

    async def complete(self, context: str, messages: List[ChatMessage]) -> ModelResponse:
        client = await self._get_client()
        if client is None:
            return ModelResponse(
                text='Gemini API key is missing. Please store a key labeled "gemini" or "google".',
                provider="gemini",
                failed=True,
            )
        entry = await self.ensure_context_cache(client, context)
        system_parts, turns = split_conversation(messages, assistant_role="model")
        if entry is None and context:
            append_user_text(turns, f"Context:\n{context}")
        elif entry is not None and system_parts:
            # The cache entry only carries RESEARCH_PROMPT
            instructions = "\n\n".join(system_parts)
            if turns and turns[0]["role"] == "user":
                turns[0]["text"] = f"{instructions}\n\n{turns[0]['text']}"
            else:
                turns.insert(0, {"role": "user", "text": instructions})
        if not turns or turns[-1]["role"] != "user":
            turns.append({"role": "user", "text": "Answer the question above."})
        contents = [
            genai_types.Content(role=t["role"], parts=[genai_types.Part(text=t["text"])])
            for t in turns
        ]
        if entry is not None:
            # System instruction lives in the cache entry
            config = genai_types.GenerateContentConfig(
                temperature=0.3,
                max_output_tokens=self.settings.max_tokens,
                cached_content=entry.name,
            )
        else:
            config = genai_types.GenerateContentConfig(
                temperature=0.3,
                max_output_tokens=self.settings.max_tokens,
                system_instruction="\n\n".join([RESEARCH_PROMPT, *system_parts]),
            )
        result = await client.aio.models.generate_content(
            model=self.settings.gemini_model, contents=contents, config=config
        )
        text = (getattr(result, "text", None) or "").strip()
        return ModelResponse(
            text=text,
            provider="gemini",
            metadata={"cache_id": entry.name if entry else None},
        )


class ModelRouter:
    """Dispatches tool, assistant and research requests to their backends.

    Each backend owns one SDK client for the lifetime of the router; clients
    may be injected, otherwise they are built on first use from the secret
    store.
    """

    def __init__(
        self,
        secrets: SecretStore,
        settings: Settings,
        openai_client: Any = None,
        anthropic_client: Any = None,
        gemini_client: Any = None,
    ):
        self.settings = settings
        self.tools_backend = OpenAIToolBackend(settings, secrets, openai_client)
        self.assistant_backend = AnthropicAssistantBackend(settings, secrets, anthropic_client)
        self.research_backend = GeminiResearchBackend(settings, secrets, gemini_client)

    async def run_tool_call(
        self, messages: List[ChatMessage], tools: List[ToolSchema]
    ) -> ModelResponse:
        try:
            return await self.tools_backend.complete(messages, tools)
        except Exception as e:
            logger.exception("Tool routing request failed")
            return ModelResponse(text=f"Tool routing request failed: {e}", provider="openai", failed=True)

    async def run_assistant(
        self, prompt: str, context: str, messages: List[ChatMessage]
    ) -> ModelResponse:
        try:
            return await self.assistant_backend.complete(context, messages)
        except Exception as e:
            logger.exception(f"Assistant request failed for '{prompt[:80]}'")
            return ModelResponse(text=f"Assistant request failed: {e}", provider="anthropic", failed=True)

    async def run_deep_research(
        self, prompt: str, context: str, messages: List[ChatMessage]
    ) -> ModelResponse:
        try:
            return await self.research_backend.complete(context, messages)
        except Exception as e:
            logger.exception(f"Deep research request failed for '{prompt[:80]}'")
            return ModelResponse(text=f"Deep research request failed: {e}", provider="gemini", failed=True)
