# voice_chat/coordinator.py
"""
TurnTakingCoordinator owns the conversation state machine.

Recognition, synthesis, playback, timers and user actions all arrive as
typed events and go through ``dispatch``. The coordinator is the only
component that starts capture or playback, which is how it keeps the
microphone and the speaker from ever being live at the same time.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple, Type

from .config import Config
from .errors import (
    ReplyError,
    ReplyNetworkError,
    ReplyUpstreamError,
    SynthesisError,
    SynthesisQuotaExceeded,
)
from .events import (
    AutoListenDue,
    CaptureStalled,
    Event,
    FinalTranscript,
    InputModeChanged,
    InterimTranscript,
    MicMuteChanged,
    OutputMuteChanged,
    PermissionChanged,
    PlaybackEnded,
    PlaybackToggled,
    RecognitionFailed,
    ReplayRequested,
    ReplyRejected,
    ReplyResolved,
    SessionStarted,
    StopRequested,
    SynthesisRejected,
    SynthesisResolved,
    TextSubmitted,
    VolumeChanged,
)
from .lifecycle import SessionLifecycleManager
from .model_providers.base import ReplyProvider
from .notifications import ERROR, INFO, WARNING, LogNotifier, Notifier
from .speech_input import SpeechInputController
from .speech_output import SpeechOutputController, clamp_volume
from .state import (
    AudioOutputState,
    ConversationSession,
    InputMode,
    Message,
    MicState,
    MutePreferences,
    PermissionState,
    Sender,
    SessionStatus,
    TurnState,
    create_assistant_message,
    create_system_message,
    create_user_message,
)

log = logging.getLogger(__name__)

BUSY_STATES = (TurnState.AWAITING_REPLY, TurnState.SYNTHESIZING, TurnState.SPEAKING)


class TurnTakingCoordinator:
    """High-level conversation FSM arbitrating microphone and speaker."""

    def __init__(
        self,
        config: Config,
        speech_input: SpeechInputController,
        speech_output: SpeechOutputController,
        reply_provider: ReplyProvider,
        notifier: Optional[Notifier] = None,
        lifecycle: Optional[SessionLifecycleManager] = None,
    ) -> None:
        self.config = config
        self.input = speech_input
        self.output = speech_output
        self.reply_provider = reply_provider
        self.notifier = notifier or LogNotifier()
        self.lifecycle = lifecycle or SessionLifecycleManager(speech_input, speech_output)
        self.input_mode = InputMode(config.input_mode)

        mute = MutePreferences(
            output_muted=False,
            input_muted=self.input_mode == InputMode.TEXT or not config.auto_start_mic,
            volume=clamp_volume(config.default_volume),
        )
        self.session: ConversationSession = self.lifecycle.create_session(mute)

        # runtime flags
        self._restarting = False
        self._end_requested = False
        self._dispatching = False
        self._backlog: Deque[Event] = deque()

        self._handlers: Dict[Type[Event], Callable[[Event], None]] = {
            SessionStarted: self._on_session_started,
            TextSubmitted: self._on_text_submitted,
            FinalTranscript: self._on_final_transcript,
            InterimTranscript: self._on_interim_transcript,
            ReplyResolved: self._on_reply_resolved,
            ReplyRejected: self._on_reply_rejected,
            SynthesisResolved: self._on_synthesis_resolved,
            SynthesisRejected: self._on_synthesis_rejected,
            PlaybackEnded: self._on_playback_ended,
            AutoListenDue: self._on_auto_listen_due,
            MicMuteChanged: self._on_mic_mute_changed,
            OutputMuteChanged: self._on_output_mute_changed,
            VolumeChanged: self._on_volume_changed,
            StopRequested: self._on_stop_requested,
            PlaybackToggled: self._on_playback_toggled,
            ReplayRequested: self._on_replay_requested,
            InputModeChanged: self._on_input_mode_changed,
            CaptureStalled: self._on_capture_stalled,
            RecognitionFailed: self._on_recognition_failed,
            PermissionChanged: self._on_permission_changed,
        }

        speech_input.bind(self.dispatch)
        speech_output.bind(self.dispatch)

    # ------------------------------------------------------------------ #
    # ------------------------  host-facing state  ---------------------- #
    # ------------------------------------------------------------------ #
    @property
    def messages(self) -> Tuple[Message, ...]:
        return self.session.messages.all()

    @property
    def turn_state(self) -> TurnState:
        return self.session.turn_state

    @property
    def status(self) -> SessionStatus:
        return self.session.status

    @property
    def is_listening(self) -> bool:
        return self.input.is_capturing

    @property
    def is_generating(self) -> bool:
        return self.output.is_generating

    @property
    def is_playing(self) -> bool:
        return self.output.is_playing

    @property
    def interim_transcript(self) -> str:
        return self.input.interim

    @property
    def permission_state(self) -> PermissionState:
        return self.input.permission_state

    @property
    def mic_muted(self) -> bool:
        return self.session.mute.input_muted

    @property
    def output_muted(self) -> bool:
        return self.session.mute.output_muted

    @property
    def volume(self) -> float:
        return self.session.mute.volume

    @property
    def is_restarting(self) -> bool:
        return self._restarting

    # ------------------------------------------------------------------ #
    # --------------------------  entry points  ------------------------- #
    # ------------------------------------------------------------------ #
    def submit_text(self, text: str) -> None:
        self.dispatch(TextSubmitted(text=text))

    def toggle_mic(self) -> None:
        self.dispatch(MicMuteChanged(muted=not self.session.mute.input_muted))

    def toggle_output_mute(self) -> None:
        self.dispatch(OutputMuteChanged(muted=not self.session.mute.output_muted))

    def set_volume(self, volume: float) -> None:
        self.dispatch(VolumeChanged(volume=volume))

    def stop_speaking(self) -> None:
        self.dispatch(StopRequested())

    def toggle_playback(self) -> None:
        self.dispatch(PlaybackToggled())

    def replay_message(self, message_id: str) -> None:
        self.dispatch(ReplayRequested(message_id=message_id))

    def set_input_mode(self, mode) -> None:
        self.dispatch(InputModeChanged(mode=InputMode(mode)))

    async def initialize(self) -> None:
        """Activate the current session and play the welcome message"""
        session = self.session
        self.lifecycle.activate(session)
        await self.input.refresh_permission()
        if session is not self.session or not session.active:
            return
        self.dispatch(SessionStarted())

    async def end(self) -> None:
        if self.session.status == SessionStatus.ENDED:
            if self._restarting:
                # Old session is mid-teardown; restart() stops before re-initializing
                log.info("End requested during restart")
                self._end_requested = True
            return
        log.info("Ending conversation and shutting down all audio services")
        await self.lifecycle.teardown(self.session, restarting=False)
        self._notify(INFO, "Conversation Ended",
                     "The conversation has been ended. You can start a new one by restarting.")

    async def restart(self) -> bool:
        """Tear down and start a fresh session; ignored if one is in flight"""
        if self._restarting:
            log.info("Restart already in progress; ignoring")
            return False

        self._restarting = True
        self._end_requested = False
        try:
            old = self.session
            await self.lifecycle.teardown(old, restarting=True)
            if self._end_requested:
                log.info("Conversation ended during restart; not starting a new session")
                self._notify(INFO, "Conversation Ended",
                             "The conversation has been ended. You can start a new one by restarting.")
                return False
            self.session = self.lifecycle.create_session(old.mute)
            self._notify(INFO, "Conversation Restarted", "Starting a new conversation.")
            await self.initialize()
        finally:
            self._restarting = False
            self._end_requested = False
        return True

    async def reconfigure(
        self,
        reply_provider: Optional[ReplyProvider] = None,
        agent_name: Optional[str] = None,
    ) -> bool:
        """Swap the agent; the conversation restarts when its identity changes"""
        current_name = getattr(self.reply_provider, "agent_name", None)
        changed = False
        if reply_provider is not None and reply_provider is not self.reply_provider:
            self.reply_provider = reply_provider
            changed = True
        if agent_name is not None and agent_name != current_name:
            self.reply_provider.agent_name = agent_name
            changed = True
        if not changed:
            return False

        log.info(f"Agent configuration changed ({current_name} -> "
                 f"{getattr(self.reply_provider, 'agent_name', None)}), restarting conversation")
        return await self.restart()

    def request_shutdown(self) -> None:
        """Synchronously silence both channels (signal handlers)"""
        self.input.stop_capture()
        self.output.stop()
        self.output.cancel_generation()

    async def __aenter__(self) -> "TurnTakingCoordinator":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.end()

    # ------------------------------------------------------------------ #
    # -----------------------  transition function  --------------------- #
    # ------------------------------------------------------------------ #
    def dispatch(self, event: Event) -> None:
        """Apply one event; events raised while applying are queued behind it"""
        if event.session_id is None:
            event = dataclasses.replace(event, session_id=self.session.id)
        self._backlog.append(event)
        if self._dispatching:
            return

        self._dispatching = True
        try:
            while self._backlog:
                current = self._backlog.popleft()
                if current.session_id != self.session.id or not self.session.active:
                    log.debug(f"Dropping stale {type(current).__name__}")
                    continue
                handler = self._handlers.get(type(current))
                if handler is None:
                    log.warning(f"No handler for {type(current).__name__}")
                    continue
                try:
                    handler(current)
                except Exception as e:
                    log.error(f"Error handling {type(current).__name__}: {e}", exc_info=True)
                self._enforce_exclusion()
                self._refresh_status()
        finally:
            self._dispatching = False

    # --- session ------------------------------------------------------- #
    def _on_session_started(self, event: SessionStarted) -> None:
        welcome = create_assistant_message(self.config.welcome_message)
        self.session.messages.append(welcome)
        log.info(f"Welcome: {welcome.text}")

        if self.session.mute.output_silenced:
            self._schedule_auto_listen(self.config.muted_listen_delay)
        else:
            self._request_synthesis(welcome.text)

    # --- user turns ---------------------------------------------------- #
    def _on_text_submitted(self, event: TextSubmitted) -> None:
        text = (event.text or "").strip()
        if not text:
            return
        self._begin_user_turn(text)

    def _on_final_transcript(self, event: FinalTranscript) -> None:
        if self.session.turn_state not in (TurnState.IDLE, TurnState.LISTENING):
            log.warning(f"Ignoring final transcript in {self.session.turn_state.value}")
            return
        text = event.text.strip()
        if not text:
            return
        self._begin_user_turn(text)

    def _on_interim_transcript(self, event: InterimTranscript) -> None:
        log.debug(f"Interim: {event.text}")

    def _begin_user_turn(self, text: str) -> None:
        session = self.session
        self._interrupt_output()
        self._cancel_auto_listen()
        self.input.stop_capture()

        session.messages.append(create_user_message(text))
        session.set_turn_state(TurnState.AWAITING_REPLY)

        request = session.next_reply_request()
        history = session.history(self.config.max_history_messages)
        self._spawn(self._fetch_reply(session.id, request, text, history))

    async def _fetch_reply(self, session_id: str, request: int, text: str, history) -> None:
        try:
            reply = await self.reply_provider.get_reply(text, history)
        except ReplyError as e:
            self.dispatch(ReplyRejected(session_id=session_id, request=request, error=e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Unexpected reply failure: {e}")
            self.dispatch(ReplyRejected(session_id=session_id, request=request,
                                        error=ReplyUpstreamError(None, str(e))))
        else:
            self.dispatch(ReplyResolved(session_id=session_id, request=request, text=reply))

    def _on_reply_resolved(self, event: ReplyResolved) -> None:
        session = self.session
        if event.request != session.reply_request or session.turn_state != TurnState.AWAITING_REPLY:
            log.info("Discarding superseded reply")
            return

        text = (event.text or "").strip()
        if not text:
            self._on_reply_rejected(ReplyRejected(
                session_id=event.session_id, request=event.request,
                error=ReplyUpstreamError(None, "Assistant returned an empty reply")))
            return

        session.messages.append(create_assistant_message(text))
        if session.mute.output_silenced:
            log.info("Audio is muted, not generating speech")
            self._schedule_auto_listen(self.config.muted_listen_delay)
        else:
            self._request_synthesis(text)

    def _on_reply_rejected(self, event: ReplyRejected) -> None:
        session = self.session
        if event.request != session.reply_request or session.turn_state != TurnState.AWAITING_REPLY:
            log.info("Discarding superseded reply failure")
            return

        error = event.error
        log.error(f"Error fetching reply: {error}")
        if isinstance(error, ReplyNetworkError):
            inline = "I couldn't reach the assistant. Please check your connection and try again."
        elif isinstance(error, ReplyUpstreamError) and error.status:
            inline = f"The assistant returned an error ({error.status}): {error.message}"
        else:
            inline = f"The assistant could not answer: {error}"

        session.messages.append(create_system_message(inline))
        self._notify(ERROR, "Error", str(error) or "Failed to send message")
        self._schedule_auto_listen(self.config.muted_listen_delay)

    # --- speech output ------------------------------------------------- #
    def _request_synthesis(self, text: str) -> None:
        session = self.session
        self.input.stop_capture()
        self._cancel_auto_listen()
        session.set_turn_state(TurnState.SYNTHESIZING)
        request = session.next_synthesis_request()
        self._spawn(self._synthesize(session.id, request, text))

    async def _synthesize(self, session_id: str, request: int, text: str) -> None:
        try:
            handle = await self.output.synthesize(text)
        except SynthesisError as e:
            self.dispatch(SynthesisRejected(session_id=session_id, request=request, error=e))
        else:
            self.dispatch(SynthesisResolved(session_id=session_id, request=request, handle=handle))

    def _on_synthesis_resolved(self, event: SynthesisResolved) -> None:
        session = self.session
        handle = event.handle
        if event.request != session.synthesis_request or session.turn_state != TurnState.SYNTHESIZING:
            log.info("Discarding superseded speech")
            handle.release()
            return

        # Microphone off before the speaker comes on
        self.input.stop_capture()
        session.speaking_handle_id = handle.id
        session.set_turn_state(TurnState.SPEAKING)
        self.output.play(handle)

    def _on_synthesis_rejected(self, event: SynthesisRejected) -> None:
        session = self.session
        if event.request != session.synthesis_request or session.turn_state != TurnState.SYNTHESIZING:
            log.info("Discarding superseded synthesis failure")
            return

        error = event.error
        if isinstance(error, SynthesisQuotaExceeded):
            log.warning(f"Speech quota exceeded: {error}")
            if not session.quota_notified:
                session.quota_notified = True
                self._notify(WARNING, "Voice Quota Exceeded",
                             "Spoken replies are unavailable for the rest of this conversation.")
            inline = "Voice reply unavailable: the speech quota has been exceeded."
        else:
            log.error(f"Speech generation failed: {error}")
            self._notify(ERROR, "Speech Generation Issue",
                         "There was a problem generating speech from the text.")
            inline = f"Voice reply unavailable: {error}"

        session.messages.append(create_system_message(inline))
        self._schedule_auto_listen(self.config.muted_listen_delay)

    def _on_playback_ended(self, event: PlaybackEnded) -> None:
        session = self.session
        if event.handle_id != session.speaking_handle_id:
            log.debug("Ignoring end of a superseded clip")
            return
        session.speaking_handle_id = None

        if session.turn_state in (TurnState.SPEAKING, TurnState.IDLE):
            log.info("Audio playback has ended, preparing to activate microphone")
            self._schedule_auto_listen(self.config.auto_listen_delay)

    def _on_stop_requested(self, event: StopRequested) -> None:
        if self.session.turn_state == TurnState.SYNTHESIZING:
            self.output.cancel_generation()
            self.session.next_synthesis_request()
            self._schedule_auto_listen(self.config.auto_listen_delay)
            return
        if self.session.turn_state == TurnState.SPEAKING:
            self._user_interrupt()

    def _on_playback_toggled(self, event: PlaybackToggled) -> None:
        if self.output.is_playing:
            self.output.pause()
        elif self.output.is_paused:
            self.input.stop_capture()
            self.output.resume()

    def _on_replay_requested(self, event: ReplayRequested) -> None:
        message = self.session.messages.find(event.message_id)
        if message is None or message.sender != Sender.ASSISTANT:
            log.warning(f"No assistant message {event.message_id} to replay")
            return
        if self.session.mute.output_silenced:
            log.info("Output muted; not replaying")
            return
        if self.session.turn_state == TurnState.AWAITING_REPLY:
            log.info("Reply in flight; not replaying")
            return

        self._interrupt_output()
        self._request_synthesis(message.text)

    def _user_interrupt(self) -> None:
        """Stop the assistant talking; the end event re-arms listening"""
        self.session.set_turn_state(TurnState.IDLE)
        self.output.stop()

    def _interrupt_output(self) -> None:
        """Silence output without letting its end event re-arm the mic"""
        session = self.session
        session.speaking_handle_id = None
        session.next_synthesis_request()
        self.output.cancel_generation()
        self.output.stop()

    # --- mute / volume / mode ------------------------------------------ #
    def _on_mic_mute_changed(self, event: MicMuteChanged) -> None:
        session = self.session
        session.mute.input_muted = event.muted
        log.info(f"Microphone mute toggled to: {'muted' if event.muted else 'unmuted'}")

        if event.muted:
            if self.input.is_capturing or self.input.has_pending_start:
                log.info("Stopping listening because mic was muted")
            self.input.stop_capture()
            return

        if session.turn_state in BUSY_STATES or self._output_active():
            # Flag only; the end of the current turn re-arms the mic
            return
        self._schedule_auto_listen(self.config.mic_unmute_delay)

    def _on_output_mute_changed(self, event: OutputMuteChanged) -> None:
        session = self.session
        session.mute.output_muted = event.muted
        self.output.set_volume(0.0 if event.muted else session.mute.volume)
        log.info(f"Output {'muted' if event.muted else 'unmuted'}")

        if not event.muted:
            return
        if session.turn_state == TurnState.SPEAKING:
            self._user_interrupt()
        elif session.turn_state == TurnState.SYNTHESIZING:
            self.output.cancel_generation()
            session.next_synthesis_request()
            self._schedule_auto_listen(self.config.muted_listen_delay)

    def _on_volume_changed(self, event: VolumeChanged) -> None:
        volume = clamp_volume(event.volume)
        self.session.mute.volume = volume
        if not self.session.mute.output_muted:
            self.output.set_volume(volume)
        log.info(f"Setting audio volume to {volume}")

    def _on_input_mode_changed(self, event: InputModeChanged) -> None:
        if event.mode == self.input_mode:
            return
        self.input_mode = event.mode
        log.info(f"Input mode: {event.mode.value}")
        self._on_mic_mute_changed(MicMuteChanged(session_id=event.session_id,
                                                 muted=event.mode == InputMode.TEXT))

    # --- listening ----------------------------------------------------- #
    def _schedule_auto_listen(self, delay: float) -> None:
        session = self.session
        self._cancel_auto_listen()
        session.set_turn_state(TurnState.LISTENING)
        session.auto_listen_task = self._spawn(self._auto_listen_after(session.id, delay))

    async def _auto_listen_after(self, session_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self.dispatch(AutoListenDue(session_id=session_id))

    def _cancel_auto_listen(self) -> None:
        task = self.session.auto_listen_task
        self.session.auto_listen_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _on_auto_listen_due(self, event: AutoListenDue) -> None:
        self.session.auto_listen_task = None
        if self.session.turn_state != TurnState.LISTENING:
            return
        self._arm_capture()

    def _arm_capture(self) -> None:
        session = self.session
        if session.mute.input_muted:
            log.info("Not activating microphone because it is muted")
            return
        if self._output_active():
            log.info("Not activating microphone while audio output is active")
            return
        log.info("Activating microphone")
        self.input.start_capture()
        if self.input.permission_state == PermissionState.DENIED and self.input.has_pending_start:
            # Re-ask; a grant retries the pending request
            self._spawn(self._recheck_permission())

    async def _recheck_permission(self) -> None:
        await self.input.refresh_permission()
        self._enforce_exclusion()
        self._refresh_status()

    def _on_capture_stalled(self, event: CaptureStalled) -> None:
        log.warning(f"Listening paused: {event.reason}")

    def _on_recognition_failed(self, event: RecognitionFailed) -> None:
        log.error(f"Speech recognition failed ({event.code}): {event.message}")

    def _on_permission_changed(self, event: PermissionChanged) -> None:
        if event.state == PermissionState.DENIED:
            log.info("Voice input disabled until microphone access is granted")

    # ------------------------------------------------------------------ #
    # ----------------------------  helpers  ---------------------------- #
    # ------------------------------------------------------------------ #
    def _output_active(self) -> bool:
        return self.output.has_active_handle or self.output.is_generating

    def _enforce_exclusion(self) -> None:
        if self.input.is_capturing and self.output.has_active_handle:
            log.error("Microphone and speaker both live; stopping capture")
            self.input.stop_capture()

    def _refresh_status(self) -> None:
        session = self.session
        if self.output.is_playing:
            session.audio_output_state = AudioOutputState.PLAYING
        elif self.output.is_paused:
            session.audio_output_state = AudioOutputState.PAUSED
        elif self.output.is_generating:
            session.audio_output_state = AudioOutputState.GENERATING
        else:
            session.audio_output_state = AudioOutputState.SILENT

        if self.input.is_capturing:
            session.mic_state = MicState.CAPTURING
        elif session.turn_state == TurnState.LISTENING and session.auto_listen_task is None:
            session.mic_state = MicState.BLOCKED
        else:
            session.mic_state = MicState.OFF

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self.session.track(task)
        task.add_done_callback(self._log_task_failure)
        return task

    @staticmethod
    def _log_task_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(f"Background task failed: {exc}", exc_info=exc)

    def _notify(self, kind: str, title: str, message: str) -> None:
        try:
            self.notifier.notify(kind, title, message)
        except Exception as e:
            log.error(f"Notifier failed: {e}")
