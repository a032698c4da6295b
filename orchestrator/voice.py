"""Live voice call seeded with a finished analysis.

The voice backend reports its lifecycle through callbacks (connect, message,
error, disconnect, speaking). All of them are funnelled through
``VoiceSession.dispatch`` so the call state only ever changes in one place.
Dispatch runs on the event-loop thread; backends that call back from their
own threads must hop onto the loop first (see ``voice_backends``).

State flow::

    idle --start--> connecting --Connected--> connected --end--> ending --> ended
    connected --Disconnected (unsolicited)--> ended
    any non-terminal --TransportError--> idle
    any --close--> idle
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union
import json
import logging
import time

from pydantic import BaseModel

from geo_tools.config import CONFIG
from geo_tools.models import Coordinate

from .schemas import AnalysisResult, VoiceOpportunity


PRECONDITION_MESSAGE = "Run “Analyze Location” first so I can load the location context for the voice agent."
CALL_ENDED = "Call ended."


class CallState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ENDING = "ending"
    ENDED = "ended"


@dataclass(frozen=True)
class ConversationMessage:
    timestamp: str
    source: str  # "agent" | "user"
    message: str


@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class MessageReceived:
    source: str
    message: str


@dataclass(frozen=True)
class TransportError:
    message: str


@dataclass(frozen=True)
class Disconnected:
    reason: Optional[str] = None


@dataclass(frozen=True)
class SpeakingChanged:
    is_speaking: bool


VoiceEvent = Union[Connected, MessageReceived, TransportError, Disconnected, SpeakingChanged]


class MicrophoneUnavailable(Exception):
    """Audio input could not be acquired; the message is the denial reason."""


class MicrophoneProbe(Protocol):
    async def probe(self) -> None:
        """Acquire the audio input device and release it straight away."""
        ...


class VoiceTransport(Protocol):
    async def start_session(self, agent_id: str, dynamic_variables: Dict[str, str]) -> None:
        ...

    def end_session(self) -> None:
        ...


def _to_jsonable(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def safe_string(value: Any) -> str:
    """Flatten any value into text the voice backend can carry."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=_to_jsonable, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(value)


def _norm(text: str) -> str:
    return " ".join(text.split()).casefold()


def voice_payload_mismatches(result: AnalysisResult) -> List[int]:
    """Indexes where the spoken opportunity does not restate the detailed one."""
    detailed = result.top_opportunities
    spoken = result.voice_payload.top_opportunities
    bad: List[int] = []
    for i in range(max(len(detailed), len(spoken))):
        if i >= len(detailed) or i >= len(spoken):
            bad.append(i)
            continue
        d, s = detailed[i], spoken[i]
        project = _norm(d.example_project)
        if not project or project not in _norm(s.concept) or _norm(s.cost) != _norm(d.estimated_cost.total):
            bad.append(i)
    return bad


def aligned_voice_opportunities(result: AnalysisResult) -> List[VoiceOpportunity]:
    spoken = result.voice_payload.top_opportunities
    mismatched = set(voice_payload_mismatches(result))
    if not mismatched:
        return list(spoken)

    logging.warning(
        "voice_payload opportunities %s do not match the detailed entries; rebuilding them",
        sorted(mismatched),
    )
    aligned: List[VoiceOpportunity] = []
    for i, d in enumerate(result.top_opportunities):
        if i not in mismatched:
            aligned.append(spoken[i])
            continue
        concept = ". ".join(p.strip() for p in (d.example_project, d.project_description) if p.strip()) or d.name
        aligned.append(VoiceOpportunity(name=d.name, concept=concept, cost=d.estimated_cost.total))
    return aligned


def build_dynamic_variables(
    result: AnalysisResult,
    *,
    user_name: str = "User",
    safety_mode: str = "public_demo",
) -> Dict[str, str]:
    payload = result.voice_payload
    return {
        # names expected by the agent prompt on the voice backend
        "location_coords.lat": str(payload.location_coords.lat),
        "location_coords.lng": str(payload.location_coords.lng),
        "area_summary": safe_string(payload.area_summary),
        "top_opportunities": safe_string(aligned_voice_opportunities(result)),
        "land_use_suggestions": safe_string(payload.land_use_suggestions),
        "risks": safe_string(payload.risks),
        "recommendations": safe_string(payload.recommendations),
        "user_name": user_name,
        "safety_mode": safety_mode,
    }


class VoiceSession:
    def __init__(
        self,
        transport: VoiceTransport,
        microphone: MicrophoneProbe,
        agent_id: Optional[str] = None,
        user_name: str = "User",
        safety_mode: str = "public_demo",
    ) -> None:
        self._transport = transport
        self._microphone = microphone
        self.agent_id = agent_id or CONFIG.voice_agent_id
        self.user_name = user_name
        self.safety_mode = safety_mode

        self.state = CallState.IDLE
        self.error: Optional[str] = None
        self.termination: Optional[str] = None
        self.is_speaking = False
        self.location: Optional[Coordinate] = None

        self._messages: List[ConversationMessage] = []
        self._dynamic_variables: Optional[Dict[str, str]] = None
        self._call_began: Optional[float] = None
        # Set by whichever of end() or an unsolicited disconnect gets there first
        self._ending = False
        self._transport_live = False

    @property
    def messages(self) -> Tuple[ConversationMessage, ...]:
        return tuple(self._messages)

    @property
    def dynamic_variables(self) -> Optional[Dict[str, str]]:
        return dict(self._dynamic_variables) if self._dynamic_variables is not None else None

    def seed(self, result: Optional[AnalysisResult]) -> None:
        """Load (or clear) the analysis the next call talks about."""
        self.close()
        if result is None:
            self._dynamic_variables = None
            self.location = None
            return
        self._dynamic_variables = build_dynamic_variables(
            result, user_name=self.user_name, safety_mode=self.safety_mode
        )
        self.location = result.voice_payload.location_coords

    async def start(self) -> None:
        if self.state is not CallState.IDLE:
            logging.debug("start ignored in state %s", self.state.value)
            return
        if self._dynamic_variables is None:
            self.error = PRECONDITION_MESSAGE
            return

        self._set_state(CallState.CONNECTING)
        self.error = None
        self.termination = None

        try:
            await self._microphone.probe()
        except MicrophoneUnavailable as e:
            self.error = f"Microphone access required: {str(e) or 'Permission denied'}"
            self._set_state(CallState.IDLE)
            return
        if self.state is not CallState.CONNECTING:
            # ended or closed while waiting on the device
            return

        self._transport_live = True
        try:
            await self._transport.start_session(self.agent_id, dict(self._dynamic_variables))
        except Exception as e:
            self._teardown()
            self.error = f"Failed to start session: {str(e) or 'Unknown error'}"
            self._call_began = None
            self._set_state(CallState.IDLE)

    def end(self) -> None:
        if self.state not in (CallState.CONNECTING, CallState.CONNECTED) or self._ending:
            return
        self._ending = True
        self._set_state(CallState.ENDING)
        self._teardown()
        self.termination = CALL_ENDED
        self.is_speaking = False
        self._set_state(CallState.ENDED)

    def close(self) -> None:
        self._ending = True
        self._teardown()
        self._messages = []
        self.error = None
        self.termination = None
        self.is_speaking = False
        self._call_began = None
        self._ending = False
        self._set_state(CallState.IDLE)

    def dispatch(self, event: VoiceEvent) -> None:
        if isinstance(event, Connected):
            self._on_connect()
        elif isinstance(event, MessageReceived):
            self._on_message(event)
        elif isinstance(event, TransportError):
            self._on_error(event)
        elif isinstance(event, Disconnected):
            self._on_disconnect(event)
        elif isinstance(event, SpeakingChanged):
            self.is_speaking = event.is_speaking and self.state is CallState.CONNECTED
        else:
            raise TypeError(f"Unknown voice event: {event!r}")

    def status_line(self) -> str:
        if self.state is CallState.CONNECTING:
            return "Connecting…"
        if self.state is CallState.ENDING:
            return "Ending…"
        if self.error:
            return f"Error: {self.error}"
        if self.termination:
            return self.termination
        if self.state is CallState.CONNECTED:
            return "Connected - Assistant speaking…" if self.is_speaking else "Connected - Listening…"
        return "Ready. Start when you’re set."

    def _on_connect(self) -> None:
        if self.state is CallState.CONNECTED:
            return
        if self.state is not CallState.CONNECTING:
            # late ack for a call that was already ended or closed
            logging.warning("connect ack ignored in state %s; tearing down", self.state.value)
            self._transport_live = True
            self._teardown()
            return
        self._call_began = time.monotonic()
        self._messages = []
        self.error = None
        self.termination = None
        self._set_state(CallState.CONNECTED)

    def _on_message(self, event: MessageReceived) -> None:
        if self.state is not CallState.CONNECTED:
            logging.debug("message dropped in state %s", self.state.value)
            return
        if event.source not in ("agent", "user"):
            logging.warning("message with unknown source %r dropped", event.source)
            return
        self._messages.append(
            ConversationMessage(
                timestamp=datetime.now().strftime("%H:%M:%S"),
                source=event.source,
                message=event.message,
            )
        )

    def _on_error(self, event: TransportError) -> None:
        if self._ending or self.state in (CallState.ENDED, CallState.IDLE):
            # no call is live in these states
            logging.info("voice error ignored in state %s: %s", self.state.value, event.message)
            return
        self.error = event.message or "Conversation error"
        if self._call_began is not None:
            self._set_state(CallState.ENDING)
            self._teardown()
        self._call_began = None
        self.is_speaking = False
        self._set_state(CallState.IDLE)

    def _on_disconnect(self, event: Disconnected) -> None:
        self._transport_live = False
        self.is_speaking = False
        if self._ending:
            return
        if self._call_began is not None and self.state is CallState.CONNECTED:
            self._ending = True
            self.termination = CALL_ENDED
            self._set_state(CallState.ENDED)
        elif self.state is CallState.CONNECTING:
            self.error = event.reason or "Connection closed before the call started"
            self._set_state(CallState.IDLE)

    def _teardown(self) -> None:
        if not self._transport_live:
            return
        self._transport_live = False
        try:
            self._transport.end_session()
        except Exception as e:
            logging.debug("voice transport teardown failed: %s", e)

    def _set_state(self, new_state: CallState) -> None:
        if new_state is self.state:
            return
        log_data = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "tool": "voice",
            "fn": "transition",
            "from": self.state.value,
            "to": new_state.value,
        }
        logging.info(json.dumps(log_data))
        self.state = new_state
