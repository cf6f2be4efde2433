"""Job queue adapter (create task, then poll for the result).

Implements the kie.ai style asynchronous API: the sketch is uploaded to get a
public URL, a generation task is created, and the task is polled until it
reaches a terminal state.

    create -> (initial delay) -> poll ... poll -> success | failed | timeout

API docs: https://docs.kie.ai/market/google/nano-banana-edit

Examples:
    >>> adapter = JobQueueAdapter(node, api_key="...", uploader=S3Uploader(config))
    >>> url = await adapter.generate(GenerationRequest(sketch, "ukiyo-e woodblock"))

Tests:
    - tests/unit/test_job_adapter.py
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel

from soulcanvas.core.adapters.base import GenerationRequest, ImageAdapter
from soulcanvas.core.cancellation import CancellationToken, cancellable_sleep, run_cancellable
from soulcanvas.core.errors import (
    APIError,
    TaskTimeoutError,
    ValidationError,
    classify_status,
)
from soulcanvas.core.nodes import Node, NodeMode
from soulcanvas.storage import ImageUploader

logger = logging.getLogger(__name__)

SUCCESS_CODE = 200

DEFAULT_POLL_INITIAL_DELAY = 2.0
DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_POLL_TIMEOUT = 60.0


class TaskState(str, Enum):
    """Provider task state."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_STATES = frozenset({TaskState.SUCCESS, TaskState.FAILED})


class GenerationTask(BaseModel):
    """Snapshot of one provider generation task.

    Attributes:
        task_id: Provider task id
        state: Current task state
        result_url: First result URL (success only)
        failure_message: Provider failure message (failed only)
    """

    task_id: str
    state: TaskState = TaskState.PENDING
    result_url: str | None = None
    failure_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        """True once the task succeeded or failed."""
        return self.state in TERMINAL_STATES

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "GenerationTask":
        """Parse the data block of a recordInfo response.

        Unknown states are treated as still processing. A resultJson that
        cannot be parsed yields no result URL.
        """
        try:
            state = TaskState(data.get("state"))
        except ValueError:
            state = TaskState.PROCESSING

        result_url = None
        result_json = data.get("resultJson")
        if state == TaskState.SUCCESS and result_json:
            try:
                parsed = json.loads(result_json) if isinstance(result_json, str) else result_json
                urls = parsed.get("resultUrls") or []
                if urls:
                    result_url = urls[0]
            except (ValueError, AttributeError) as e:
                logger.warning(f"Failed to parse resultJson: {e}")

        return cls(
            task_id=str(data.get("taskId", "")),
            state=state,
            result_url=result_url,
            failure_message=data.get("failMsg") or None,
        )


class JobQueueAdapter(ImageAdapter):
    """Asynchronous job backend: create a task and poll it to completion.

    Attributes:
        uploader: Publishes the sketch so the backend can fetch it
        poll_initial_delay: Wait before the first poll (seconds)
        poll_interval: Wait between polls (seconds)
        poll_timeout: Maximum polling time before giving up (seconds)
    """

    mode = NodeMode.ASYNC_JOB

    def __init__(
        self,
        *args: Any,
        uploader: ImageUploader | None = None,
        poll_initial_delay: float = DEFAULT_POLL_INITIAL_DELAY,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
        output_format: str = "png",
        image_size: str = "1:1",
        clock: Callable[[], float] = time.monotonic,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.uploader = uploader
        self.poll_initial_delay = poll_initial_delay
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.output_format = output_format
        self.image_size = image_size
        self.clock = clock

    @classmethod
    def from_settings(
        cls, node: Node, api_key: str, settings: Any, **kwargs: Any
    ) -> "JobQueueAdapter":
        """Create the adapter with timeouts and polling bounds from settings."""
        kwargs.setdefault("poll_initial_delay", settings.POLL_INITIAL_DELAY)
        kwargs.setdefault("poll_interval", settings.POLL_INTERVAL)
        kwargs.setdefault("poll_timeout", settings.POLL_TIMEOUT)
        return super().from_settings(node, api_key, settings, **kwargs)

    async def generate(self, request: GenerationRequest) -> str:
        """Upload the sketch, create a task and poll it to completion.

        Raises:
            ValidationError: If no uploader is configured (checked before any I/O).
            APIError: If the task fails or succeeds without an image.
            TaskTimeoutError: If the task does not finish within poll_timeout.
            CancellationError: If the request token fires.
        """
        if self.uploader is None:
            raise ValidationError(
                f"{self.node.name} requires a public image URL but no sketch uploader is configured",
                node_id=self.node.id,
            )

        if request.token is not None:
            request.token.raise_if_cancelled()

        image_url = await run_cancellable(self.uploader.upload(request.sketch), request.token)
        prompt = self.build_prompt(request)

        task_id = await self.create_task(prompt, image_url, request.token)
        logger.info(f"{self.node.name} task created: {task_id}")

        return await self.poll_task(task_id, request.token)

    def _parse_body(self, response: httpx.Response, action: str) -> dict[str, Any]:
        if not response.is_success:
            raise classify_status(
                response.status_code,
                response.text,
                node_id=self.node.id,
                action=action,
            )
        try:
            body = response.json()
        except ValueError as e:
            raise APIError(f"{action}: malformed response body", node_id=self.node.id) from e
        if not isinstance(body, dict):
            raise APIError(f"{action}: malformed response body", node_id=self.node.id)
        if body.get("code") != SUCCESS_CODE:
            raise APIError(
                f"{action}: {body.get('msg') or 'unknown error'}",
                node_id=self.node.id,
                status_code=body.get("code") if isinstance(body.get("code"), int) else None,
            )
        data = body.get("data")
        if not isinstance(data, dict):
            raise APIError(f"{action}: response has no data", node_id=self.node.id)
        return data

    async def create_task(
        self,
        prompt: str,
        image_url: str,
        token: CancellationToken | None = None,
    ) -> str:
        """Create a generation task.

        Returns:
            The provider task id.

        Raises:
            NetworkError: On transport failures, timeouts, 5xx or 429.
            APIError: On other failures or a non-success response code.
        """
        payload = {
            "model": self.node.model,
            "input": {
                "prompt": prompt,
                "image_urls": [image_url],
                "output_format": self.output_format,
                "image_size": self.image_size,
            },
        }
        response = await self.send("POST", "/jobs/createTask", token, json=payload)
        data = self._parse_body(response, "Task creation failed")

        task_id = data.get("taskId")
        if not task_id:
            raise APIError("Task creation failed: no taskId returned", node_id=self.node.id)
        return str(task_id)

    async def fetch_task(
        self,
        task_id: str,
        token: CancellationToken | None = None,
    ) -> GenerationTask:
        """Fetch the current state of a task."""
        response = await self.send(
            "GET",
            "/jobs/recordInfo",
            token,
            params={"taskId": task_id},
        )
        data = self._parse_body(response, "Task query failed")
        task = GenerationTask.from_record(data)
        if not task.task_id:
            task = task.model_copy(update={"task_id": task_id})
        return task

    async def poll_task(self, task_id: str, token: CancellationToken | None = None) -> str:
        """Poll a task until it succeeds, fails or times out.

        Returns:
            The first result URL.

        Raises:
            APIError: If the task failed or succeeded without a result URL.
            TaskTimeoutError: If polling exceeds poll_timeout.
            CancellationError: If the token fires.
        """
        start_time = self.clock()
        await cancellable_sleep(self.poll_initial_delay, token)

        while True:
            if token is not None:
                token.raise_if_cancelled()

            elapsed = self.clock() - start_time
            if elapsed > self.poll_timeout:
                raise TaskTimeoutError(task_id, elapsed, node_id=self.node.id)

            task = await self.fetch_task(task_id, token)

            if task.state == TaskState.SUCCESS:
                if not task.result_url:
                    raise APIError(
                        f"Task {task_id} completed but returned no image",
                        node_id=self.node.id,
                    )
                return task.result_url

            if task.state == TaskState.FAILED:
                raise APIError(
                    f"Task failed: {task.failure_message or 'unknown error'}",
                    node_id=self.node.id,
                )

            logger.debug(f"Task {task_id} is {task.state.value}, polling again in {self.poll_interval}s")
            await cancellable_sleep(self.poll_interval, token)
