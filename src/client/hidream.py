import logging
from typing import Any, AsyncIterator, Optional

import fal_client
from pydantic_settings import BaseSettings, SettingsConfigDict

from client.models import (
    GenerationRequest,
    GenerationResult,
    QueueLog,
    QueueState,
    QueueStatus,
)

logger = logging.getLogger(__name__)


class HiDreamSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="fal_", env_file='.env', extra='ignore', frozen=True)

    key: Optional[str] = None
    application: str = "fal-ai/hidream-i1-full"
    image_dir: str = "images"


class MissingCredentialsError(RuntimeError):
    pass


class HiDream:
    def __init__(self, settings: Optional[HiDreamSettings] = None):
        self.settings = settings or HiDreamSettings()
        self.application = self.settings.application
        self._client: Optional[fal_client.AsyncClient] = None

        if self.settings.key:
            self._client = fal_client.AsyncClient(key=self.settings.key)
            logger.info(f"fal.ai client configured for {self.application}")
        else:
            # Tools report the missing key per call; the server itself keeps running
            logger.error("FAL_KEY environment variable is required")
            logger.error("Please set your fal.ai API key: export FAL_KEY=your_api_key_here")

    @property
    def configured(self) -> bool:
        return self._client is not None

    def _require_client(self) -> fal_client.AsyncClient:
        if self._client is None:
            raise MissingCredentialsError("FAL_KEY environment variable is not set")
        return self._client

    @staticmethod
    def parse_result(data: dict[str, Any], request_id: Optional[str] = None) -> GenerationResult:
        """Validate a raw fal output payload into a GenerationResult."""
        result = GenerationResult.model_validate(data)
        if request_id is not None:
            result = result.model_copy(update={"request_id": request_id})
        return result

    async def subscribe(self, request: GenerationRequest) -> GenerationResult:
        """Run a generation and wait for its output.

        The request id is captured when the request is enqueued; in-progress log
        lines from the service are forwarded to the server log.
        """
        client = self._require_client()
        enqueued: dict[str, str] = {}

        def on_enqueue(request_id: str):
            enqueued["request_id"] = request_id
            logger.info(f"Request enqueued with ID: {request_id}")

        def on_queue_update(update):
            if isinstance(update, fal_client.InProgress):
                for log in update.logs or []:
                    logger.info(log.get("message", ""))

        logger.info(f"subscribe: {self.application}, prompt='{request.prompt[:50]}'")
        data = await client.subscribe(
            self.application,
            arguments=request.to_arguments(),
            with_logs=True,
            on_enqueue=on_enqueue,
            on_queue_update=on_queue_update,
        )
        return self.parse_result(data, enqueued.get("request_id"))

    async def stream(self, request: GenerationRequest) -> AsyncIterator[dict[str, Any]]:
        """Yield raw stream events as they arrive. The last event carrying images is the output."""
        client = self._require_client()
        logger.info(f"stream: {self.application}, prompt='{request.prompt[:50]}'")
        async for event in client.stream(self.application, arguments=request.to_arguments(sync_mode=False)):
            yield event

    async def submit(self, request: GenerationRequest) -> str:
        client = self._require_client()
        logger.info(f"submit: {self.application}, prompt='{request.prompt[:50]}', webhook={request.webhook_url}")
        handle = await client.submit(
            self.application,
            arguments=request.to_arguments(sync_mode=False),
            webhook_url=request.webhook_url,
        )
        logger.info(f"Request submitted with ID: {handle.request_id}")
        return handle.request_id

    async def status(self, request_id: str, with_logs: bool = True) -> QueueStatus:
        client = self._require_client()
        logger.info(f"status: {self.application}, request_id={request_id}, logs={with_logs}")
        status = await client.status(self.application, request_id, with_logs=with_logs)

        if isinstance(status, fal_client.Queued):
            return QueueStatus(request_id=request_id, status=QueueState.queued, queue_position=status.position)

        logs = [QueueLog.model_validate(log) for log in (getattr(status, "logs", None) or [])]
        if isinstance(status, fal_client.InProgress):
            return QueueStatus(request_id=request_id, status=QueueState.in_progress, logs=logs)
        if isinstance(status, fal_client.Completed):
            error = getattr(status, "error", None)
            state = QueueState.failed if error else QueueState.completed
            return QueueStatus(request_id=request_id, status=state, logs=logs, error=error)

        raise ValueError(f"Unexpected queue status for request {request_id}: {status!r}")

    async def result(self, request_id: str) -> GenerationResult:
        client = self._require_client()
        logger.info(f"result: {self.application}, request_id={request_id}")
        data = await client.result(self.application, request_id)
        return self.parse_result(data, request_id)
