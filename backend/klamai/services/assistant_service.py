"""
Structured-generation service backed by OpenAI.

Two call shapes are used by the pipeline:
  - complete(): a single chat completion (extraction, manual-case summary)
  - run():      an Assistants API run, polled at a fixed interval until it
                leaves the queued/in_progress states
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from openai import AsyncOpenAI

from klamai.core.config import settings
from klamai.core.logger import logger
from klamai.utils.exceptions import AssistantRunError

_PENDING_RUN_STATUSES = ("queued", "in_progress")


class AssistantRunner:
    """Runs OpenAI chat completions and assistant threads."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._client = client
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.ASSISTANT_POLL_INTERVAL_SECONDS
        )
        self.timeout = timeout if timeout is not None else settings.ASSISTANT_RUN_TIMEOUT_SECONDS
        self.model = settings.OPENAI_EXTRACTION_MODEL

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        return self._client

    # ------------------------------------------------------------------
    # Chat completions
    # ------------------------------------------------------------------

    async def complete(
        self,
        system_prompt: str,
        prompt: str,
        temperature: float = 0.1,
        max_tokens: int = 1000,
    ) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if not response.choices or response.choices[0].message is None:
            raise AssistantRunError("Invalid chat completion response: no choices")
        return response.choices[0].message.content or ""

    # ------------------------------------------------------------------
    # Assistants API
    # ------------------------------------------------------------------

    async def run(self, assistant_id: str, content: str) -> str:
        """
        Execute *assistant_id* on a fresh thread with *content* as the only
        user message and return the assistant's text answer ("" if the answer
        has no text part).
        """
        if not assistant_id:
            raise AssistantRunError("Assistant id is not configured")

        thread = await self.client.beta.threads.create()
        await self.client.beta.threads.messages.create(
            thread.id, role="user", content=content
        )
        run = await self.client.beta.threads.runs.create(
            thread_id=thread.id, assistant_id=assistant_id
        )

        started = time.monotonic()
        run = await self.client.beta.threads.runs.retrieve(run.id, thread_id=thread.id)
        while run.status in _PENDING_RUN_STATUSES:
            if self.timeout and time.monotonic() - started > self.timeout:
                await self._cancel_quietly(thread.id, run.id)
                raise AssistantRunError(
                    f"Assistant {assistant_id} run exceeded {self.timeout:.0f}s"
                )
            await asyncio.sleep(self.poll_interval)
            run = await self.client.beta.threads.runs.retrieve(run.id, thread_id=thread.id)

        if run.status != "completed":
            raise AssistantRunError(
                f"Assistant {assistant_id} run finished with status: {run.status}"
            )

        logger.info(
            "Assistant %s run %s completed in %.1fs",
            assistant_id, run.id, time.monotonic() - started,
        )

        messages = await self.client.beta.threads.messages.list(thread.id, order="desc")
        for message in messages.data:
            if message.role != "assistant":
                continue
            if message.content and message.content[0].type == "text":
                return message.content[0].text.value
            return ""
        return ""

    async def _cancel_quietly(self, thread_id: str, run_id: str) -> None:
        try:
            await self.client.beta.threads.runs.cancel(run_id, thread_id=thread_id)
        except Exception as exc:
            logger.warning("Could not cancel run %s on thread %s: %s", run_id, thread_id, exc)


# Singleton
assistant_runner = AssistantRunner()
