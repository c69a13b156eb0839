"""Test the fal.ai client wrapper"""
import unittest
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import fal_client

from client.hidream import HiDream, HiDreamSettings, MissingCredentialsError
from client.models import GenerationRequest, QueueState

OUTPUT = {
    "images": [{"url": "https://fal.media/1.jpg", "width": 1024, "height": 1024, "content_type": "image/jpeg"}],
    "seed": 1234,
    "prompt": "a red cube",
    "has_nsfw_concepts": [False],
    "timings": {"inference": 3.2},
}


def make_settings(key="test-key"):
    return HiDreamSettings(_env_file=None, key=key)


class TestHiDream(unittest.IsolatedAsyncioTestCase):
    """Test cases for the HiDream client"""

    def setUp(self):
        self.fal = MagicMock()
        patcher = patch("client.hidream.fal_client.AsyncClient", return_value=self.fal)
        self.async_client_cls = patcher.start()
        self.addCleanup(patcher.stop)

    def test_configured_with_key(self):
        """A key configures the underlying fal client"""
        hidream = HiDream(make_settings())
        self.assertTrue(hidream.configured)
        self.async_client_cls.assert_called_once_with(key="test-key")

    async def test_not_configured_without_key(self):
        """Without a key no fal client is created and calls fail fast"""
        hidream = HiDream(make_settings(key=None))
        self.assertFalse(hidream.configured)
        self.async_client_cls.assert_not_called()
        with self.assertRaises(MissingCredentialsError):
            await hidream.result("req-1")

    async def test_subscribe_captures_request_id(self):
        """The request id reported on enqueue is attached to the result"""
        async def fake_subscribe(application, arguments, with_logs, on_enqueue, on_queue_update):
            on_enqueue("req-123")
            on_queue_update(Mock(spec=fal_client.InProgress, logs=[{"message": "step 1"}]))
            return OUTPUT

        self.fal.subscribe = AsyncMock(side_effect=fake_subscribe)
        hidream = HiDream(make_settings())

        result = await hidream.subscribe(GenerationRequest(prompt="a red cube", seed=0))

        self.assertEqual(result.request_id, "req-123")
        self.assertEqual(result.seed, 1234)
        self.assertEqual(len(result.images), 1)
        application, = self.fal.subscribe.call_args.args
        self.assertEqual(application, "fal-ai/hidream-i1-full")
        self.assertEqual(self.fal.subscribe.call_args.kwargs["arguments"]["seed"], 0)
        self.assertTrue(self.fal.subscribe.call_args.kwargs["with_logs"])

    async def test_stream_yields_events(self):
        """Stream events are passed through in order with sync_mode off"""
        seen = {}

        async def fake_stream(application, arguments):
            seen["arguments"] = arguments
            yield {"progress": 0.5}
            yield OUTPUT

        self.fal.stream = fake_stream
        hidream = HiDream(make_settings())

        events = [event async for event in hidream.stream(GenerationRequest(prompt="a red cube"))]

        self.assertEqual(events, [{"progress": 0.5}, OUTPUT])
        self.assertFalse(seen["arguments"]["sync_mode"])

    async def test_submit_passes_webhook(self):
        """Queue submission forwards the webhook and returns the request id"""
        self.fal.submit = AsyncMock(return_value=Mock(request_id="req-42"))
        hidream = HiDream(make_settings())

        request_id = await hidream.submit(GenerationRequest(prompt="a red cube", webhook_url="https://example.com/hook"))

        self.assertEqual(request_id, "req-42")
        kwargs = self.fal.submit.call_args.kwargs
        self.assertEqual(kwargs["webhook_url"], "https://example.com/hook")
        self.assertFalse(kwargs["arguments"]["sync_mode"])
        self.assertNotIn("webhook_url", kwargs["arguments"])

    async def test_status_queued(self):
        """Queued status carries the queue position"""
        self.fal.status = AsyncMock(return_value=Mock(spec=fal_client.Queued, position=3))
        status = await HiDream(make_settings()).status("req-1")

        self.assertEqual(status.status, QueueState.queued)
        self.assertEqual(status.queue_position, 3)
        self.fal.status.assert_awaited_once_with("fal-ai/hidream-i1-full", "req-1", with_logs=True)

    async def test_status_in_progress_with_logs(self):
        """In-progress status carries the service logs"""
        logs = [{"message": "loading model", "timestamp": "2025-01-01T00:00:00", "level": "INFO"}]
        self.fal.status = AsyncMock(return_value=Mock(spec=fal_client.InProgress, logs=logs))
        status = await HiDream(make_settings()).status("req-1", with_logs=False)

        self.assertEqual(status.status, QueueState.in_progress)
        self.assertEqual(status.logs[0].message, "loading model")
        self.assertEqual(status.logs[0].timestamp, "2025-01-01T00:00:00")

    async def test_status_completed_and_failed(self):
        """Completed status is reported as failed when it carries an error"""
        hidream = HiDream(make_settings())

        self.fal.status = AsyncMock(return_value=Mock(spec=fal_client.Completed, logs=None, error=None))
        self.assertEqual((await hidream.status("req-1")).status, QueueState.completed)

        self.fal.status = AsyncMock(return_value=Mock(spec=fal_client.Completed, logs=[], error="CUDA out of memory"))
        failed = await hidream.status("req-1")
        self.assertEqual(failed.status, QueueState.failed)
        self.assertEqual(failed.error, "CUDA out of memory")

    async def test_result(self):
        """Queue results are parsed and tagged with the request id"""
        self.fal.result = AsyncMock(return_value=OUTPUT)
        result = await HiDream(make_settings()).result("req-9")

        self.assertEqual(result.request_id, "req-9")
        self.assertEqual(result.prompt, "a red cube")
        self.assertEqual(result.images[0].content_type, "image/jpeg")


if __name__ == '__main__':
    unittest.main()
