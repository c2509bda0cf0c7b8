"""
channel.py
Bidirectional live session with the remote perception model (Gemini Live).

Outbound : media chunks (PCM audio, JPEG frames) and tool responses
Inbound  : a tagged stream of ToolCallBatch | AudioChunk, ending with
           ChannelClosed(code)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Protocol, Tuple, Union

import websockets
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from violations.event_schema import VEHICLE_TYPES, VIOLATION_TYPES

from .media import MediaChunk, MediaKind

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000

REPORT_VIOLATION = "report_violation"

SYSTEM_INSTRUCTION = """
You are an AI Traffic Warden using visual analysis.
Monitor the video feed frame-by-frame for traffic violations.

CRITICAL MULTI-DETECTION RULES:
1. Scan the ENTIRE frame. If multiple vehicles are committing violations simultaneously (e.g., Bike A has no helmet, Car B runs a red light), you MUST call 'report_violation' SEPARATELY for EACH vehicle.
2. Do NOT aggregate different vehicles into a single report.
3. Do NOT stop after finding the first violation. Find ALL violations in the current frame.
4. If a vehicle is detected but NO violation is being committed, DO NOT call report_violation.

Violations to detect:
1. No Helmet (Bike/Scooter)
2. Triple Riding (3+ people on bike)
3. Mobile Phone Usage while driving
4. No Seatbelt (Car)
5. Wrong Side Driving
6. Red Light Signal Break
7. Missing Number Plate

INSTRUCTIONS:
- Call the tool IMMEDIATELY upon detection.
- If the number plate is blurry, use "UNKNOWN".
- Remain silent. Use only the tool.
"""

REPORT_VIOLATION_TOOL = types.FunctionDeclaration(
    name=REPORT_VIOLATION,
    description="Report a detected traffic violation.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "violation_detected": types.Schema(
                type=types.Type.BOOLEAN,
                description="Whether a violation was detected.",
            ),
            "violation_type": types.Schema(
                type=types.Type.ARRAY,
                items=types.Schema(type=types.Type.STRING, enum=list(VIOLATION_TYPES)),
                description="List of detected violations.",
            ),
            "vehicle_number": types.Schema(
                type=types.Type.STRING,
                description="The vehicle number plate text, or empty string if unclear.",
            ),
            "vehicle_type": types.Schema(
                type=types.Type.STRING,
                enum=list(VEHICLE_TYPES),
                description="Type of the vehicle involved.",
            ),
        },
        required=["violation_detected", "violation_type", "vehicle_number", "vehicle_type"],
    ),
)


# ============================================================
# Inbound message union
# ============================================================

@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallBatch:
    calls: Tuple[ToolCall, ...]


@dataclass(frozen=True)
class AudioChunk:
    data: bytes


InboundMessage = Union[ToolCallBatch, AudioChunk]


class ChannelClosed(Exception):
    def __init__(self, code: Optional[int] = NORMAL_CLOSURE, reason: str = ""):
        super().__init__(f"channel closed (code={code}) {reason}".strip())
        self.code = code
        self.reason = reason

    @property
    def normal(self) -> bool:
        return self.code is None or self.code == NORMAL_CLOSURE


class LiveChannel(Protocol):
    async def send_media(self, chunk: MediaChunk) -> None:
        ...

    async def send_tool_response(self, call_id: str, name: str, result: str) -> None:
        ...

    def messages(self) -> AsyncIterator[InboundMessage]:
        """Yields inbound messages; always ends by raising ChannelClosed."""
        ...

    async def close(self) -> None:
        ...


def _close_code(exc: websockets.exceptions.ConnectionClosed) -> Optional[int]:
    if exc.rcvd is not None:
        return exc.rcvd.code
    return None


# ============================================================
# Gemini Live implementation
# ============================================================

def build_live_config(system_instruction: str = SYSTEM_INSTRUCTION) -> types.LiveConnectConfig:
    return types.LiveConnectConfig(
        response_modalities=[types.Modality.AUDIO],
        system_instruction=system_instruction,
        tools=[types.Tool(function_declarations=[REPORT_VIOLATION_TOOL])],
    )


class GeminiLiveChannel:
    def __init__(self, session: Any, session_cm: Any = None):
        self._session = session
        self._session_cm = session_cm
        self._closed = False

    @classmethod
    async def open(cls, api_key: str, model: str, system_instruction: str = SYSTEM_INSTRUCTION) -> "GeminiLiveChannel":
        """Handshake; errors propagate to the controller which maps them to RemoteError."""
        client = genai.Client(api_key=api_key)
        session_cm = client.aio.live.connect(model=model, config=build_live_config(system_instruction))
        session = await session_cm.__aenter__()
        logger.info("🔌 Live session connected (%s)", model)
        return cls(session, session_cm)

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_media(self, chunk: MediaChunk) -> None:
        if self._closed:
            return
        blob = types.Blob(data=chunk.data, mime_type=chunk.mime_type)
        try:
            if chunk.kind == MediaKind.AUDIO:
                await self._session.send_realtime_input(audio=blob)
            else:
                await self._session.send_realtime_input(video=blob)
        except (websockets.exceptions.WebSocketException, genai_errors.APIError, OSError) as e:
            logger.debug("Send %s failed: %s", chunk.kind.value, e)

    async def send_tool_response(self, call_id: str, name: str, result: str) -> None:
        if self._closed:
            return
        response = types.FunctionResponse(id=call_id, name=name, response={"result": result})
        try:
            await self._session.send_tool_response(function_responses=[response])
        except (websockets.exceptions.WebSocketException, genai_errors.APIError, OSError) as e:
            logger.debug("Tool response for %s failed: %s", call_id, e)

    async def messages(self) -> AsyncIterator[InboundMessage]:
        try:
            while not self._closed:
                received = False
                async for msg in self._session.receive():
                    received = True

                    tool_call = msg.tool_call
                    if tool_call is not None and tool_call.function_calls:
                        yield ToolCallBatch(tuple(
                            ToolCall(id=fc.id or "", name=fc.name or "", args=dict(fc.args or {}))
                            for fc in tool_call.function_calls
                        ))

                    data = msg.data
                    if data:
                        yield AudioChunk(data)

                # receive() returning without a single message means the socket is gone
                if not received:
                    break
        except websockets.exceptions.ConnectionClosed as e:
            raise ChannelClosed(_close_code(e), str(e.rcvd.reason if e.rcvd else "")) from e
        except genai_errors.APIError as e:
            raise ChannelClosed(e.code, e.message or "") from e

        raise ChannelClosed(NORMAL_CLOSURE)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._session_cm is None:
            return
        try:
            await self._session_cm.__aexit__(None, None, None)
        except (websockets.exceptions.WebSocketException, genai_errors.APIError, OSError) as e:
            logger.debug("Error while closing live session: %s", e)
        logger.info("🔌 Live session closed")
