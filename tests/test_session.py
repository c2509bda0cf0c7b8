import asyncio
import unittest

from fakes import FakeCamera, FakeChannel, FakeClock, FakeMicrophone, FakeSink, MemoryStore, StaticUploader
from pipeline.channel import ToolCall, ToolCallBatch
from pipeline.config import LiveSettings
from pipeline.errors import ConfigError, MediaAccessError, RemoteError
from pipeline.session import SessionController
from pipeline.state import SessionState


def settings(**overrides) -> LiveSettings:
    values = dict(
        gemini_api_key="test-key",
        connect_timeout_s=1.0,
        analyzing_clear_delay_s=0.01,
        violation_display_s=0.05,
    )
    values.update(overrides)
    return LiveSettings(**values)


async def wait_until(predicate, timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class SessionControllerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.channel = FakeChannel()
        self.camera = FakeCamera()
        self.mic = FakeMicrophone()
        self.store = MemoryStore()
        self.channel_opens = 0
        self.device_error = None
        self.handshake = None

    def controller(self, **overrides) -> SessionController:
        async def open_channel(api_key, model):
            self.channel_opens += 1
            if self.handshake is not None:
                await self.handshake()
            return self.channel

        def open_devices(index, rate, block):
            if self.device_error is not None:
                raise self.device_error
            return self.camera, self.mic

        return SessionController(
            settings(**overrides),
            self.store,
            StaticUploader(),
            channel_factory=open_channel,
            device_factory=open_devices,
            sink_factory=lambda rate: FakeSink(),
            clock=FakeClock(),
        )

    async def asyncTearDown(self) -> None:
        if hasattr(self, "ctl"):
            await self.ctl.disconnect()

    # ------------------------------------------------------------
    # connect
    # ------------------------------------------------------------

    async def test_connect_starts_pumps(self) -> None:
        self.ctl = self.controller()
        states = []
        self.ctl.view.subscribe(lambda view: states.append(view.status))

        await self.ctl.connect()

        self.assertEqual(self.ctl.state, SessionState.CONNECTED)
        self.assertEqual(states[0], SessionState.CONNECTING)
        self.assertEqual(states[-1], SessionState.CONNECTED)
        self.assertTrue(self.mic.started)
        await wait_until(lambda: len(self.channel.media) > 0)

    async def test_second_connect_is_ignored(self) -> None:
        self.ctl = self.controller()
        await self.ctl.connect()
        await self.ctl.connect()
        self.assertEqual(self.channel_opens, 1)

    async def test_missing_api_key(self) -> None:
        self.ctl = self.controller(gemini_api_key=None)
        with self.assertRaises(ConfigError):
            await self.ctl.connect()
        self.assertEqual(self.ctl.state, SessionState.ERROR)
        self.assertEqual(self.channel_opens, 0)

    async def test_media_access_failure(self) -> None:
        self.device_error = MediaAccessError("Cannot open camera 0")
        self.ctl = self.controller()

        with self.assertRaises(MediaAccessError):
            await self.ctl.connect()

        self.assertEqual(self.ctl.state, SessionState.ERROR)
        self.assertEqual(self.ctl.view.error_message, "Could not access camera or microphone.")
        self.assertEqual(self.channel_opens, 0)

    async def test_handshake_timeout_releases_devices(self) -> None:
        async def never():
            await asyncio.sleep(10)

        self.handshake = never
        self.ctl = self.controller(connect_timeout_s=0.05)

        with self.assertRaises(RemoteError):
            await self.ctl.connect()

        self.assertEqual(self.ctl.state, SessionState.ERROR)
        self.assertTrue(self.camera.released)
        self.assertTrue(self.mic.stopped)

    async def test_handshake_failure(self) -> None:
        async def refused():
            raise ConnectionRefusedError("refused")

        self.handshake = refused
        self.ctl = self.controller()

        with self.assertRaises(RemoteError):
            await self.ctl.connect()
        self.assertEqual(self.ctl.view.error_message, "Failed to connect to the live service.")

    async def test_disconnect_while_connecting(self) -> None:
        gate = asyncio.Event()

        async def slow():
            await gate.wait()

        self.handshake = slow
        self.ctl = self.controller()

        pending = asyncio.ensure_future(self.ctl.connect())
        await wait_until(lambda: self.channel_opens == 1)
        await self.ctl.disconnect()
        gate.set()
        await pending

        self.assertEqual(self.ctl.state, SessionState.DISCONNECTED)
        self.assertTrue(self.channel.closed)
        self.assertTrue(self.camera.released)
        self.assertFalse(self.mic.started)

    # ------------------------------------------------------------
    # disconnect / inbound notifications
    # ------------------------------------------------------------

    async def test_disconnect_releases_everything_and_is_idempotent(self) -> None:
        self.ctl = self.controller()
        await self.ctl.connect()
        session = self.ctl.session

        await self.ctl.disconnect()
        await self.ctl.disconnect()

        self.assertEqual(self.ctl.state, SessionState.DISCONNECTED)
        self.assertIsNone(self.ctl.session)
        self.assertTrue(session.token.is_set())
        self.assertTrue(self.channel.closed)
        self.assertTrue(self.camera.released)
        self.assertTrue(self.mic.stopped)
        self.assertTrue(session.scheduler._sink.closed)
        self.assertEqual(len(session.engine.cache), 0)
        self.assertEqual(session.tasks, set())

    async def test_abnormal_close(self) -> None:
        self.ctl = self.controller()
        await self.ctl.connect()

        self.channel.end(1011)
        await wait_until(lambda: self.ctl.state == SessionState.ERROR)

        self.assertEqual(self.ctl.view.error_message, "Session closed unexpectedly (Code: 1011).")
        self.assertTrue(self.camera.released)

    async def test_normal_close(self) -> None:
        self.ctl = self.controller()
        await self.ctl.connect()

        self.channel.end(1000)
        await wait_until(lambda: self.ctl.state == SessionState.DISCONNECTED)
        self.assertIsNone(self.ctl.view.error_message)

    async def test_transport_error(self) -> None:
        self.ctl = self.controller()
        await self.ctl.connect()

        self.channel.fail(ConnectionResetError("reset by peer"))
        await wait_until(lambda: self.ctl.state == SessionState.ERROR)
        self.assertEqual(self.ctl.view.error_message, "Connection error.")

    async def test_error_wins_over_later_close(self) -> None:
        self.ctl = self.controller()
        await self.ctl.connect()
        generation = self.ctl.session.generation
        session = self.ctl.session

        # keep the session current so the close reaches the errored check
        session.errored = True
        await self.ctl._on_channel_closed(generation, 1006)
        self.assertEqual(self.ctl.state, SessionState.CONNECTED)

        await self.ctl._on_channel_error(generation, ConnectionResetError("reset"))
        await self.ctl._on_channel_closed(generation, 1006)
        self.assertEqual(self.ctl.state, SessionState.ERROR)
        self.assertEqual(self.ctl.view.error_message, "Connection error.")

    async def test_stale_generation_is_ignored(self) -> None:
        self.ctl = self.controller()
        await self.ctl.connect()
        old_generation = self.ctl.session.generation
        await self.ctl.disconnect()

        self.channel = FakeChannel()
        await self.ctl.connect()
        await self.ctl._on_channel_closed(old_generation, 1006)
        await self.ctl._on_channel_error(old_generation, ConnectionResetError("late"))

        self.assertEqual(self.ctl.state, SessionState.CONNECTED)
        self.assertIsNone(self.ctl.view.error_message)

    # ------------------------------------------------------------
    # end to end
    # ------------------------------------------------------------

    async def test_tool_call_is_recorded_and_acknowledged(self) -> None:
        self.ctl = self.controller()
        await self.ctl.connect()

        self.channel.push(ToolCallBatch((ToolCall("c1", "report_violation", {
            "violation_detected": True,
            "violation_type": ["helmet_missing_driver"],
            "vehicle_number": "MH12KN4567",
            "vehicle_type": "bike",
        }),)))

        await wait_until(lambda: self.channel.responses)
        self.assertEqual(self.channel.responses, [("c1", "report_violation", "logged")])
        self.assertEqual(len(self.store.records), 1)
        self.assertEqual(self.ctl.view.current_violation.vehicle_number, "MH12KN4567")

        await wait_until(lambda: self.ctl.view.current_violation is None)

    async def test_switch_camera(self) -> None:
        self.ctl = self.controller()
        await self.ctl.connect()

        self.assertTrue(await self.ctl.switch_camera())
        self.assertEqual(self.ctl.view.camera_index, 1)
        self.assertEqual(self.camera.index, 1)

        self.camera.fail_switch = True
        self.assertFalse(await self.ctl.switch_camera())
        self.assertEqual(self.ctl.view.camera_index, 1)
        self.assertEqual(self.ctl.view.error_message, "Failed to switch camera.")
        self.assertEqual(self.ctl.state, SessionState.CONNECTED)


if __name__ == "__main__":
    unittest.main()
