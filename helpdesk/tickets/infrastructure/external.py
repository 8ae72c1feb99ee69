"""
Tickets External Service Adapters
=================================

Adapters for external services (LLM, task queue) used by the tickets module.

Implements the interfaces defined in the application layer using concrete
infrastructure implementations.
"""

from typing import Any, List, Optional

from helpdesk.infrastructure.llm import ILLMClient as InfrastructureLLMClient
from helpdesk.infrastructure.llm import build_llm_client
from helpdesk.infrastructure.queue import ArqTaskQueue
from helpdesk.tickets.application.services import ILLMClient, ITaskQueue


class LLMClientAdapter(ILLMClient):
    """
    Adapter that wraps the infrastructure LLM client.

    Implements the application layer ILLMClient interface using
    the OpenAI (or mock) client.
    """

    def __init__(self, client: InfrastructureLLMClient):
        self._client = client

    @classmethod
    def from_settings(cls) -> Optional["LLMClientAdapter"]:
        """Adapter for the configured client, or None when there is none."""
        client = build_llm_client()
        return cls(client) if client is not None else None

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.1,
        max_tokens: int = 200,
    ) -> Any:
        """Generate chat completion."""
        return await self._client.chat_completion(messages, temperature, max_tokens)

    async def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()


class TaskQueueAdapter(ITaskQueue):
    """Adapter that hands jobs to the arq queue."""

    def __init__(self, queue: ArqTaskQueue):
        self._queue = queue

    @classmethod
    async def connect(cls, redis_url: Optional[str] = None) -> "TaskQueueAdapter":
        return cls(await ArqTaskQueue.connect(redis_url))

    async def enqueue(self, task_name: str, **payload: Any) -> str:
        return await self._queue.enqueue(task_name, **payload)

    async def close(self) -> None:
        await self._queue.close()
