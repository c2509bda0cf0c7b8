import asyncio
import unittest
from unittest import mock

from fakes import FakeCamera, FakeChannel, FakeClock, FakeSink, MemoryStore, StaticUploader
from pipeline.channel import AudioChunk, ToolCall, ToolCallBatch
from pipeline.events import ACK_LOGGED, ACK_UNSUPPORTED, BatchEvidence, EventProcessor
from pipeline.playback import PlaybackScheduler
from pipeline.state import CancellationToken, SessionView
from violations.engine import ViolationEngine


def call(call_id, plate, *crimes, detected=True):
    return ToolCall(call_id, "report_violation", {
        "violation_detected": detected,
        "violation_type": list(crimes),
        "vehicle_number": plate,
        "vehicle_type": "bike",
    })


class EventProcessorTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.channel = FakeChannel()
        self.store = MemoryStore()
        self.uploader = StaticUploader()
        self.view = SessionView()
        self.token = CancellationToken()
        self.sink = FakeSink()
        self.tasks = []
        self.engine = ViolationEngine(
            self.store,
            clock=FakeClock(),
            is_cancelled=self.token.is_set,
            on_analyzing=lambda: self.view.update(is_analyzing=True),
            on_recorded=lambda record: self.view.update(current_violation=record),
        )
        self.processor = EventProcessor(
            channel=self.channel,
            engine=self.engine,
            scheduler=PlaybackScheduler(self.sink),
            uploader=self.uploader,
            camera=FakeCamera(),
            view=self.view,
            token=self.token,
            spawn=self._spawn,
            analyzing_clear_delay_s=0.02,
            violation_display_s=0.2,
        )

    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self.tasks.append(task)
        return task

    async def _settle(self) -> None:
        while any(not t.done() for t in self.tasks):
            await asyncio.gather(*self.tasks)

    async def test_every_call_is_acknowledged_in_order(self) -> None:
        batch = ToolCallBatch((
            call("c1", "MH12KN4567", "helmet_missing_driver"),
            call("c2", "KA01AB1234"),                                   # malformed
            call("c3", "MH12KN4567", "helmet_missing_driver"),          # duplicate
            call("c4", "DL8CAF5031", "wrong_side", detected=False),
            ToolCall("c5", "get_weather", {}),
        ))

        await self.processor.handle_batch(batch)

        self.assertEqual(self.channel.responses, [
            ("c1", "report_violation", ACK_LOGGED),
            ("c2", "report_violation", ACK_LOGGED),
            ("c3", "report_violation", ACK_LOGGED),
            ("c4", "report_violation", ACK_LOGGED),
            ("c5", "get_weather", ACK_UNSUPPORTED),
        ])
        self.assertEqual(len(self.store.records), 1)

    async def test_one_upload_per_batch(self) -> None:
        batch = ToolCallBatch((
            call("c1", "MH12KN4567", "helmet_missing_driver"),
            call("c2", "KA01AB1234", "triple_riding"),
        ))

        await self.processor.handle_batch(batch)

        self.assertEqual(len(self.store.records), 2)
        self.assertEqual(self.uploader.calls, 1)
        self.assertEqual({r.image_url for r in self.store.records}, {self.uploader.url})

    async def test_unexpected_store_error_still_acks_the_batch(self) -> None:
        batch = ToolCallBatch((
            call("c1", "MH12KN4567", "helmet_missing_driver"),
            call("c2", "KA01AB1234", "triple_riding"),
        ))

        with mock.patch.object(self.store, "append", side_effect=[RuntimeError("boom"), "V-00000002"]):
            with self.assertLogs("pipeline.events", level="ERROR"):
                await self.processor.handle_batch(batch)

        self.assertEqual(self.channel.responses, [
            ("c1", "report_violation", ACK_LOGGED),
            ("c2", "report_violation", ACK_LOGGED),
        ])
        self.assertTrue(self.view.is_analyzing)

        await self._settle()
        self.assertFalse(self.view.is_analyzing)

    async def test_unparseable_args_are_acknowledged(self) -> None:
        batch = ToolCallBatch((
            ToolCall("c1", "report_violation", {"violation_detected": True, "violation_type": 5}),
            call("c2", "KA01AB1234", "triple_riding"),
        ))

        with self.assertLogs("pipeline.events", level="ERROR"):
            await self.processor.handle_batch(batch)

        self.assertEqual([r[0] for r in self.channel.responses], ["c1", "c2"])
        self.assertEqual(len(self.store.records), 1)

    async def test_no_capture_without_report_calls(self) -> None:
        await self.processor.handle_batch(ToolCallBatch((ToolCall("c1", "get_weather", {}),)))
        self.assertEqual(self.uploader.calls, 0)

    async def test_display_timers(self) -> None:
        self.processor.dispatch(ToolCallBatch((call("c1", "MH12KN4567", "helmet_missing_driver"),)))
        await asyncio.sleep(0)
        while not self.channel.responses:
            await asyncio.sleep(0.001)

        self.assertTrue(self.view.is_analyzing)
        self.assertIsNotNone(self.view.current_violation)

        await asyncio.sleep(0.08)
        self.assertFalse(self.view.is_analyzing)
        self.assertIsNotNone(self.view.current_violation)

        await self._settle()
        self.assertIsNone(self.view.current_violation)

    async def test_audio_is_scheduled_and_bad_audio_dropped(self) -> None:
        self.processor.dispatch(AudioChunk(b"\x00\x00" * 2400))
        self.processor.dispatch(AudioChunk(b"\x00"))

        self.assertEqual(len(self.sink.played), 1)
        self.assertAlmostEqual(self.sink.played[0][1], 0.1)

    async def test_nothing_dispatched_after_cancellation(self) -> None:
        self.token.cancel()
        self.processor.dispatch(ToolCallBatch((call("c1", "MH12KN4567", "helmet_missing_driver"),)))
        self.processor.dispatch(AudioChunk(b"\x00\x00" * 10))

        self.assertEqual(self.tasks, [])
        self.assertEqual(self.sink.played, [])


class BatchEvidenceTests(unittest.IsolatedAsyncioTestCase):
    async def test_concurrent_callers_share_one_upload(self) -> None:
        uploader = StaticUploader()
        evidence = BatchEvidence(b"jpeg", uploader)

        urls = await asyncio.gather(evidence.url(), evidence.url(), evidence.url())

        self.assertEqual(set(urls), {uploader.url})
        self.assertEqual(uploader.calls, 1)


if __name__ == "__main__":
    unittest.main()
