"""Concrete voice backends: ElevenLabs conversational agents and PyAudio.

Both SDKs are optional (``pip install atlas-oracle[voice]``) and imported on
first use.
"""

from typing import Any, Callable, Dict, List, Optional, Set
import asyncio
import logging
import sys

from geo_tools.config import CONFIG

from .voice import (
    Connected,
    Disconnected,
    MessageReceived,
    MicrophoneUnavailable,
    TransportError,
    VoiceEvent,
)


SAMPLE_RATE = 16000
CHUNK_SIZE = 1024


class PyAudioMicrophoneProbe:
    """Open the default input device once and release it immediately."""

    async def probe(self) -> None:
        await asyncio.to_thread(self._acquire_and_release)

    @staticmethod
    def _acquire_and_release() -> None:
        try:
            import pyaudio
        except ImportError as e:
            raise MicrophoneUnavailable("PyAudio is not installed (install the 'voice' extra)") from e

        pya = pyaudio.PyAudio()
        try:
            mic_info = pya.get_default_input_device_info()
            stream = pya.open(
                format=pyaudio.paInt16,
                channels=1,
                rate=SAMPLE_RATE,
                input=True,
                input_device_index=int(mic_info["index"]),
                frames_per_buffer=CHUNK_SIZE,
            )
            stream.close()
        except OSError as e:
            raise MicrophoneUnavailable(str(e) or "Permission denied") from e
        finally:
            pya.terminate()


HANDSHAKE_POLL_SEC = 0.05


def _is_clean_close(exc: BaseException) -> bool:
    from websockets.exceptions import ConnectionClosedOK

    return isinstance(exc, ConnectionClosedOK)


def _sdk_conversation(
    api_key: Optional[str],
    agent_id: str,
    dynamic_variables: Dict[str, str],
    *,
    on_agent_response: Callable[[str], None],
    on_user_transcript: Callable[[str], None],
    on_end: Callable[[], None],
):
    from elevenlabs.client import ElevenLabs
    from elevenlabs.conversational_ai.conversation import Conversation, ConversationInitiationData
    from elevenlabs.conversational_ai.default_audio_interface import DefaultAudioInterface

    return Conversation(
        ElevenLabs(api_key=api_key),
        agent_id,
        requires_auth=bool(api_key),
        audio_interface=DefaultAudioInterface(),
        config=ConversationInitiationData(dynamic_variables=dynamic_variables),
        callback_agent_response=on_agent_response,
        callback_user_transcript=on_user_transcript,
        callback_end_session=on_end,
    )


class ElevenLabsTransport:
    """Voice transport backed by an ElevenLabs conversational agent.

    The SDK runs the websocket and audio on its own threads. Every callback is
    re-posted onto the asyncio loop, and anything from a conversation that is
    no longer the current one is dropped there.

    ``Connected`` is only reported once the server has sent the initiation
    metadata (the SDK then knows the conversation id). A session thread that
    finishes before that, or after a receive failure, is reported as a
    ``TransportError``; a clean close by the server is a ``Disconnected``.
    """

    def __init__(self, api_key: Optional[str] = None, conversation_factory: Optional[Callable[..., Any]] = None) -> None:
        self._api_key = api_key or CONFIG.elevenlabs_api_key
        self._factory = conversation_factory or _sdk_conversation
        self._dispatch: Optional[Callable[[VoiceEvent], None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._conversation = None
        self._announced = False
        self._watchers: Set[asyncio.Task] = set()

    def bind(self, dispatch: Callable[[VoiceEvent], None]) -> None:
        self._dispatch = dispatch

    def _post(self, conversation, event: VoiceEvent) -> None:
        # SDK threads only; hop onto the loop
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._deliver, conversation, event)

    def _deliver(self, conversation, event: VoiceEvent) -> None:
        if conversation is not self._conversation or self._dispatch is None:
            logging.debug("dropping %s from a finished voice session", type(event).__name__)
            return
        if isinstance(event, Connected):
            if not self._announced:
                self._announced = True
                self._dispatch(event)
            return
        if isinstance(event, MessageReceived) and not self._announced:
            # the agent can speak before the handshake poll notices the session id
            self._announced = True
            self._dispatch(Connected())
        if isinstance(event, (TransportError, Disconnected)):
            self._conversation = None
        self._dispatch(event)

    async def start_session(self, agent_id: str, dynamic_variables: Dict[str, str]) -> None:
        if self._dispatch is None:
            raise RuntimeError("ElevenLabsTransport.bind() must be called before starting a session")
        self._loop = asyncio.get_running_loop()

        failures: List[str] = []

        def on_end() -> None:
            # runs inside the SDK's except block when the receive loop fails
            exc = sys.exc_info()[1]
            if exc is not None and not _is_clean_close(exc):
                failures.append(str(exc) or type(exc).__name__)

        conversation = self._factory(
            self._api_key,
            agent_id,
            dynamic_variables,
            on_agent_response=lambda text: self._post(conversation, MessageReceived(source="agent", message=text)),
            on_user_transcript=lambda text: self._post(conversation, MessageReceived(source="user", message=text)),
            on_end=on_end,
        )
        self._conversation = conversation
        self._announced = False
        try:
            await asyncio.to_thread(conversation.start_session)
        except Exception:
            self._conversation = None
            raise
        watcher = asyncio.create_task(self._watch(conversation, failures))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)

    async def _watch(self, conversation, failures: List[str]) -> None:
        thread = conversation._thread
        while conversation is self._conversation and thread.is_alive():
            if conversation._conversation_id is not None:
                self._deliver(conversation, Connected())
                break
            await asyncio.sleep(HANDSHAKE_POLL_SEC)

        conversation_id = await asyncio.to_thread(conversation.wait_for_session_end)
        logging.info("ElevenLabs session %s finished", conversation_id)
        if failures:
            self._deliver(conversation, TransportError(message=failures[0]))
        elif conversation_id is None:
            self._deliver(conversation, TransportError(message="Voice session closed before it was established"))
        else:
            self._deliver(conversation, Connected())
            self._deliver(conversation, Disconnected())

    def end_session(self) -> None:
        conversation, self._conversation = self._conversation, None
        if conversation is None:
            return
        conversation.end_session()
