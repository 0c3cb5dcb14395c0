"""Adapters for the external retrieval and chat-completion services.

The enforcement core only depends on the two protocols below. Concrete
adapters talk HTTP through ``BaseLLMClient``; the graceful wrappers turn any
collaborator failure into an empty result so that downstream refusal and
placeholder logic takes over instead of an exception.
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from grantguard.core.config import settings
from grantguard.core.exceptions import APIClientError
from grantguard.core.llm_client import BaseLLMClient, OpenRouterClient
from grantguard.schemas.enforcement import RetrievedChunk
from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)


@runtime_checkable
class Retriever(Protocol):
    async def retrieve(self, query: str, organization_id: Optional[UUID], top_k: int) -> List[RetrievedChunk]:
        ...


@runtime_checkable
class ChatCompleter(Protocol):
    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        ...


class HttpRetriever:
    """Retriever backed by the knowledge-base search API.

    Expects ``POST {query, organization_id, top_k}`` to answer with
    ``{"chunks": [{content, score, document_id, filename, ...}]}``.
    """

    def __init__(self, client: BaseLLMClient):
        self.client = client

    async def retrieve(self, query: str, organization_id: Optional[UUID], top_k: int) -> List[RetrievedChunk]:
        payload = {
            "query": query,
            "organization_id": str(organization_id) if organization_id else None,
            "top_k": top_k,
        }
        response = await self.client.call_api(method="POST", payload=payload)
        raw_chunks = response.get("chunks", []) if isinstance(response, dict) else []

        chunks: List[RetrievedChunk] = []
        for raw in raw_chunks:
            try:
                chunks.append(RetrievedChunk(**self._normalize(raw)))
            except (PydanticValidationError, TypeError) as e:
                LOGGER.warning("Skipping malformed retrieval chunk", extra={"error": str(e)})
        return chunks

    @staticmethod
    def _normalize(raw: Dict[str, Any]) -> Dict[str, Any]:
        # Scores outside [0, 1] from some stores are clamped rather than rejected
        score = float(raw.get("score", 0.0))
        return {
            **raw,
            "score": min(1.0, max(0.0, score)),
            "document_id": str(raw.get("document_id", "")),
        }


class OpenRouterChatCompleter:
    """ChatCompleter backed by ``OpenRouterClient``."""

    def __init__(self, client: OpenRouterClient, temperature: Optional[float] = None):
        self.client = client
        self.temperature = temperature

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        config = {"temperature": self.temperature} if self.temperature is not None else None
        return await self.client.generate_content(
            contents=user_prompt,
            system_instruction=system_prompt,
            generation_config=config,
        )


class GracefulRetriever:
    """Wraps a Retriever so that failures yield no chunks."""

    def __init__(self, inner: Retriever):
        self.inner = inner

    async def retrieve(self, query: str, organization_id: Optional[UUID], top_k: int) -> List[RetrievedChunk]:
        try:
            return await self.inner.retrieve(query, organization_id, top_k)
        except Exception as e:
            LOGGER.warning(
                "Retrieval failed, continuing with no chunks",
                extra={"error": str(e), "query": query[:100], "top_k": top_k}
            )
            return []


class GracefulCompleter:
    """Wraps a ChatCompleter so that failures yield an empty completion.

    Only used for optional enhancer passes; section generation calls the
    completer directly so that its failures propagate.
    """

    def __init__(self, inner: ChatCompleter):
        self.inner = inner

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        try:
            return await self.inner.complete(system_prompt, user_prompt)
        except Exception as e:
            LOGGER.warning("Chat completion failed, enhancer skipped", extra={"error": str(e)})
            return ""


def build_retriever() -> GracefulRetriever:
    """Retriever for the configured knowledge-base API."""
    retrieval = settings.retrieval
    client = BaseLLMClient(
        api_key=retrieval.api_key,
        base_url=retrieval.api_url,
        timeout=retrieval.timeout,
        max_retries=retrieval.max_retries,
    )
    return GracefulRetriever(HttpRetriever(client))


def build_completer() -> Optional[OpenRouterChatCompleter]:
    """Chat completer for the configured provider, or None without an API key."""
    llm = settings.llm
    if not llm.openrouter_api_key:
        LOGGER.warning("No OpenRouter API key configured, chat completion unavailable")
        return None
    if llm.provider != "openrouter":
        raise APIClientError(f"Unsupported LLM provider: {llm.provider}")
    client = OpenRouterClient(
        api_key=llm.openrouter_api_key,
        model=llm.openrouter_model,
        base_url=llm.openrouter_api_url,
        timeout=llm.timeout,
        max_retries=llm.max_retries,
        temperature=llm.generation_temperature,
    )
    return OpenRouterChatCompleter(client)


def build_enhancer_completer() -> Optional[GracefulCompleter]:
    """Graceful completer for LLM enhancer passes, or None when disabled."""
    if not settings.llm.enable_llm_enhancers:
        return None
    completer = build_completer()
    return GracefulCompleter(completer) if completer else None
