#!/usr/bin/env python3
"""
Turn-taking coordinator tests: full conversation turns against fake
recognition, synthesis, playback and reply collaborators.
"""

import asyncio
import sys
import unittest
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from voice_chat.errors import (
    ReplyNetworkError,
    ReplyUpstreamError,
    SynthesisFailed,
    SynthesisQuotaExceeded,
)
from voice_chat.events import ReplyResolved, SynthesisResolved
from voice_chat.speech_output import AudioHandle
from voice_chat.state import (
    AudioOutputState,
    InputMode,
    MicState,
    PermissionState,
    Sender,
    SessionStatus,
    TurnState,
)
from tests.fakes import FakeBackend, FakeReply, Devices, build_rig, make_config, until


class CoordinatorTestCase(unittest.IsolatedAsyncioTestCase):
    """Builds a coordinator wired to fakes"""

    config_overrides = {}

    async def asyncSetUp(self):
        self.rig = build_rig(make_config(**self.config_overrides))
        self.coordinator = self.rig.coordinator

    async def asyncTearDown(self):
        await self.coordinator.end()

    async def start_listening(self):
        """Initialize, let the welcome play out, wait for the mic"""
        await self.coordinator.initialize()
        await until(lambda: self.rig.player.playing)
        self.rig.player.finish()
        await until(lambda: self.coordinator.is_listening)

    async def reach_speaking(self, text="hello"):
        await self.start_listening()
        self.rig.backend.final(text)
        await until(lambda: self.rig.player.playing)

    def senders(self):
        return [m.sender for m in self.coordinator.messages]

    def texts(self):
        return [m.text for m in self.coordinator.messages]


class TestConversationFlow(CoordinatorTestCase):

    async def test_welcome_is_spoken_then_mic_armed(self):
        """Session start emits the welcome, speaks it, then listens"""
        await self.coordinator.initialize()
        self.assertEqual(self.texts(), ["Hello there"])
        self.assertEqual(self.senders(), [Sender.ASSISTANT])
        self.assertEqual(self.coordinator.status, SessionStatus.ACTIVE)

        await until(lambda: self.rig.player.playing)
        self.assertEqual(self.coordinator.turn_state, TurnState.SPEAKING)
        self.assertEqual(self.rig.tts.calls, ["Hello there"])
        self.assertFalse(self.coordinator.is_listening)

        self.rig.player.finish()
        await until(lambda: self.coordinator.is_listening)
        self.assertEqual(self.coordinator.turn_state, TurnState.LISTENING)
        self.assertEqual(self.coordinator.session.mic_state, MicState.CAPTURING)

    async def test_hello_scenario(self):
        await self.start_listening()
        gate = self.rig.reply.hold()

        self.rig.backend.final("hello")
        self.assertEqual(self.coordinator.turn_state, TurnState.AWAITING_REPLY)
        self.assertEqual(self.texts()[-1], "hello")
        self.assertFalse(self.coordinator.is_listening)

        tts_gate = asyncio.get_running_loop().create_future()
        self.rig.tts.gate = tts_gate
        gate.set_result(None)
        await until(lambda: self.coordinator.is_generating)
        self.assertEqual(self.coordinator.turn_state, TurnState.SYNTHESIZING)
        self.assertEqual(self.texts()[-1], "hi there")
        self.assertEqual(self.senders()[-1], Sender.ASSISTANT)

        tts_gate.set_result(None)
        await until(lambda: self.rig.player.playing)
        self.assertEqual(self.coordinator.turn_state, TurnState.SPEAKING)
        self.assertTrue(self.coordinator.is_playing)
        starts = self.rig.backend.starts

        self.rig.player.finish()
        await until(lambda: self.coordinator.is_listening)
        self.assertEqual(self.coordinator.turn_state, TurnState.LISTENING)
        self.assertEqual(self.rig.backend.starts, starts + 1)
        self.assertEqual(self.texts(), ["Hello there", "hello", "hi there"])

    async def test_interim_results_never_reach_the_log(self):
        await self.start_listening()
        self.rig.backend.interim("hel")
        self.rig.backend.interim("hell")
        self.assertEqual(self.coordinator.interim_transcript, "hell")
        self.rig.backend.final("hello")
        self.rig.backend.final("hello")

        await until(lambda: self.rig.player.playing)
        self.assertEqual(len(self.rig.reply.calls), 1)
        self.assertEqual(self.texts(), ["Hello there", "hello", "hi there"])
        self.assertEqual(self.coordinator.interim_transcript, "")

    async def test_submit_text_works_like_a_final_transcript(self):
        await self.start_listening()
        self.coordinator.submit_text("  typed message  ")
        self.assertFalse(self.coordinator.is_listening)
        await until(lambda: self.rig.player.playing)
        self.assertEqual(self.rig.reply.calls[0][0], "typed message")
        self.assertIn("typed message", self.texts())

    async def test_blank_text_is_ignored(self):
        await self.start_listening()
        self.coordinator.submit_text("   ")
        self.assertEqual(len(self.coordinator.messages), 1)
        self.assertEqual(self.rig.reply.calls, [])

    async def test_submit_text_while_speaking_interrupts_playback(self):
        await self.reach_speaking()
        gate = self.rig.reply.hold()

        self.coordinator.submit_text("wait, another question")
        self.assertFalse(self.coordinator.is_playing)
        self.assertEqual(self.coordinator.turn_state, TurnState.AWAITING_REPLY)

        # The interrupted clip's end must not re-arm the mic
        await asyncio.sleep(0.05)
        self.assertFalse(self.coordinator.is_listening)

        gate.set_result(None)
        await until(lambda: self.rig.player.playing)
        self.assertEqual(self.coordinator.turn_state, TurnState.SPEAKING)

    async def test_reply_history_excludes_system_entries(self):
        await self.start_listening()
        self.rig.reply.error = ReplyNetworkError("offline")
        self.coordinator.submit_text("first")
        await until(lambda: self.senders()[-1] == Sender.SYSTEM)

        self.rig.reply.error = None
        await until(lambda: self.coordinator.is_listening)
        self.coordinator.submit_text("second")
        await until(lambda: len(self.rig.reply.calls) == 2)

        history = self.rig.reply.calls[1][1]
        self.assertEqual([h["role"] for h in history], ["assistant", "user", "user"])
        self.assertEqual(history[-1], {"role": "user", "content": "second"})


class TestMutualExclusion(CoordinatorTestCase):

    async def test_mic_and_speaker_never_live_together(self):
        violations = []
        stop = asyncio.Event()

        async def watch():
            while not stop.is_set():
                if self.coordinator.is_listening and self.coordinator.is_playing:
                    violations.append(self.coordinator.turn_state)
                await asyncio.sleep(0.001)

        watcher = asyncio.create_task(watch())
        try:
            await self.reach_speaking()
            self.rig.player.finish()
            await until(lambda: self.coordinator.is_listening)

            self.coordinator.submit_text("typed")
            await until(lambda: self.rig.player.playing)
            self.coordinator.stop_speaking()
            await until(lambda: self.coordinator.is_listening)

            self.coordinator.replay_message(self.coordinator.messages[0].id)
            await until(lambda: self.rig.player.playing)
            self.coordinator.toggle_mic()
            self.coordinator.toggle_mic()
            await asyncio.sleep(0.03)
            self.assertFalse(self.coordinator.is_listening)
            self.rig.player.finish()
            await until(lambda: self.coordinator.is_listening)
        finally:
            stop.set()
            await watcher

        self.assertEqual(violations, [])
        self.assertEqual(self.rig.devices.violations, 0)


class TestMuting(CoordinatorTestCase):

    async def test_output_muted_before_reply_skips_speech(self):
        await self.start_listening()
        gate = self.rig.reply.hold()
        self.rig.backend.final("hello")
        self.coordinator.toggle_output_mute()
        tts_calls = len(self.rig.tts.calls)
        plays = len(self.rig.player.plays)

        gate.set_result(None)
        await until(lambda: self.coordinator.is_listening)
        self.assertEqual(self.texts()[-1], "hi there")
        self.assertEqual(self.coordinator.turn_state, TurnState.LISTENING)
        self.assertEqual(len(self.rig.tts.calls), tts_calls)
        self.assertEqual(len(self.rig.player.plays), plays)

    async def test_mic_muted_while_speaking_waits_for_unmute(self):
        await self.reach_speaking()
        starts = self.rig.backend.starts

        self.coordinator.toggle_mic()
        self.assertTrue(self.coordinator.mic_muted)
        self.assertTrue(self.coordinator.is_playing)
        self.assertEqual(self.rig.player.stops, 0)

        self.rig.player.finish()
        await until(lambda: self.coordinator.turn_state == TurnState.LISTENING)
        await asyncio.sleep(0.05)
        self.assertFalse(self.coordinator.is_listening)
        self.assertEqual(self.rig.backend.starts, starts)
        self.assertEqual(self.coordinator.session.mic_state, MicState.BLOCKED)

        self.coordinator.toggle_mic()
        await until(lambda: self.coordinator.is_listening)
        self.assertEqual(self.rig.backend.starts, starts + 1)

    async def test_muting_mic_stops_capture(self):
        await self.start_listening()
        self.coordinator.toggle_mic()
        self.assertFalse(self.coordinator.is_listening)
        self.assertEqual(self.coordinator.turn_state, TurnState.LISTENING)

    async def test_unmuting_mic_while_awaiting_reply_only_sets_flag(self):
        await self.start_listening()
        self.coordinator.toggle_mic()
        gate = self.rig.reply.hold()
        self.coordinator.submit_text("question")
        self.coordinator.toggle_mic()
        await asyncio.sleep(0.03)
        self.assertFalse(self.coordinator.mic_muted)
        self.assertFalse(self.coordinator.is_listening)
        self.assertEqual(self.coordinator.turn_state, TurnState.AWAITING_REPLY)
        gate.set_result(None)

    async def test_output_mute_while_speaking_stops_playback(self):
        await self.reach_speaking()
        self.coordinator.toggle_output_mute()
        self.assertFalse(self.coordinator.is_playing)
        self.assertEqual(self.rig.player.stops, 1)
        self.assertEqual(self.rig.player.volume, 0.0)
        await until(lambda: self.coordinator.is_listening)

    async def test_output_mute_while_synthesizing_discards_audio(self):
        await self.start_listening()
        gate = asyncio.get_running_loop().create_future()
        self.rig.tts.gate = gate
        self.rig.backend.final("hello")
        await until(lambda: self.coordinator.turn_state == TurnState.SYNTHESIZING)
        plays = len(self.rig.player.plays)

        self.coordinator.toggle_output_mute()
        self.assertFalse(self.coordinator.is_generating)
        gate.set_result(None)
        await until(lambda: self.coordinator.is_listening)
        await asyncio.sleep(0.02)
        self.assertEqual(len(self.rig.player.plays), plays)

    async def test_zero_volume_counts_as_muted(self):
        await self.start_listening()
        self.coordinator.set_volume(0)
        tts_calls = len(self.rig.tts.calls)
        self.coordinator.submit_text("hello")
        await until(lambda: self.texts()[-1] == "hi there")
        await until(lambda: self.coordinator.is_listening)
        self.assertEqual(len(self.rig.tts.calls), tts_calls)

    async def test_volume_is_clamped(self):
        await self.start_listening()
        self.coordinator.set_volume(1.7)
        self.assertEqual(self.coordinator.volume, 1.0)
        self.assertEqual(self.rig.player.volume, 1.0)
        self.coordinator.set_volume(-2)
        self.assertEqual(self.coordinator.volume, 0.0)


class TestPlaybackControls(CoordinatorTestCase):

    async def test_stop_speaking_goes_idle_then_listens(self):
        await self.reach_speaking()
        self.coordinator.stop_speaking()
        self.assertFalse(self.coordinator.is_playing)
        self.assertEqual(self.coordinator.session.audio_output_state, AudioOutputState.SILENT)
        await until(lambda: self.coordinator.is_listening)

    async def test_stop_speaking_twice_is_harmless(self):
        await self.reach_speaking()
        self.coordinator.stop_speaking()
        self.coordinator.stop_speaking()
        self.assertEqual(self.rig.player.stops, 1)
        await until(lambda: self.coordinator.is_listening)

    async def test_pause_and_resume(self):
        await self.reach_speaking()
        self.coordinator.toggle_playback()
        self.assertTrue(self.rig.player.paused)
        self.assertEqual(self.coordinator.session.audio_output_state, AudioOutputState.PAUSED)
        await asyncio.sleep(0.03)
        self.assertFalse(self.coordinator.is_listening)

        self.coordinator.toggle_playback()
        self.assertFalse(self.rig.player.paused)
        self.assertTrue(self.coordinator.is_playing)

    async def test_replay_assistant_message(self):
        await self.start_listening()
        welcome = self.coordinator.messages[0]
        self.coordinator.replay_message(welcome.id)
        self.assertFalse(self.coordinator.is_listening)
        await until(lambda: self.rig.player.playing)
        self.assertEqual(self.rig.tts.calls, ["Hello there", "Hello there"])
        self.assertEqual(len(self.coordinator.messages), 1)

    async def test_replay_ignores_user_messages(self):
        await self.reach_speaking()
        self.rig.player.finish()
        await until(lambda: self.coordinator.is_listening)
        user_message = self.coordinator.messages[1]
        calls = len(self.rig.tts.calls)
        self.coordinator.replay_message(user_message.id)
        self.coordinator.replay_message("missing")
        self.assertEqual(len(self.rig.tts.calls), calls)
        self.assertTrue(self.coordinator.is_listening)


class TestFailures(CoordinatorTestCase):

    async def test_reply_network_error_is_inline_and_relistens(self):
        await self.start_listening()
        self.rig.reply.error = ReplyNetworkError("connection refused")
        self.rig.backend.final("hello")

        await until(lambda: self.coordinator.is_listening)
        self.assertEqual(self.senders(), [Sender.ASSISTANT, Sender.USER, Sender.SYSTEM])
        self.assertIn("couldn't reach", self.texts()[-1])
        self.assertEqual(self.rig.notifier.count("Error"), 1)

    async def test_reply_upstream_error_reports_status(self):
        await self.start_listening()
        self.rig.reply.error = ReplyUpstreamError(503, "overloaded")
        self.coordinator.submit_text("hello")
        await until(lambda: self.senders()[-1] == Sender.SYSTEM)
        self.assertIn("503", self.texts()[-1])
        self.assertIn("overloaded", self.texts()[-1])

    async def test_quota_error_notifies_once_per_session(self):
        self.rig.tts.error = SynthesisQuotaExceeded("quota exceeded")
        await self.coordinator.initialize()
        await until(lambda: self.coordinator.is_listening)

        self.rig.backend.final("hello")
        await until(lambda: len(self.coordinator.messages) == 5)
        await until(lambda: self.coordinator.is_listening)

        system = [m for m in self.coordinator.messages if m.sender == Sender.SYSTEM]
        self.assertEqual(len(system), 2)
        self.assertEqual(self.rig.notifier.count("Voice Quota Exceeded"), 1)

    async def test_quota_notice_resets_after_restart(self):
        self.rig.tts.error = SynthesisQuotaExceeded("quota exceeded")
        await self.coordinator.initialize()
        await until(lambda: self.coordinator.is_listening)
        await self.coordinator.restart()
        await until(lambda: self.coordinator.is_listening)
        self.assertEqual(self.rig.notifier.count("Voice Quota Exceeded"), 2)

    async def test_other_synthesis_errors_always_notify(self):
        self.rig.tts.error = SynthesisFailed("boom")
        await self.coordinator.initialize()
        await until(lambda: self.coordinator.is_listening)
        self.rig.backend.final("hello")
        await until(lambda: len(self.coordinator.messages) == 5)
        await until(lambda: self.coordinator.is_listening)

        self.assertEqual(self.rig.notifier.count("Speech Generation Issue"), 2)
        self.assertEqual(self.senders(), [Sender.ASSISTANT, Sender.SYSTEM, Sender.USER,
                                          Sender.ASSISTANT, Sender.SYSTEM])

    async def test_playback_failure_still_relistens(self):
        await self.coordinator.initialize()
        await until(lambda: self.rig.player.playing)
        self.rig.player.fail(OSError("device lost"))
        await until(lambda: self.coordinator.is_listening)

    async def test_superseded_synthesis_result_is_released(self):
        await self.start_listening()
        handle = AudioHandle(text="stale", audio=b"x")
        self.coordinator.dispatch(SynthesisResolved(request=99, handle=handle))
        self.assertEqual(handle.audio, b"")
        self.assertTrue(self.coordinator.is_listening)


class TestLifecycle(CoordinatorTestCase):

    async def test_restart_starts_with_only_a_fresh_welcome(self):
        await self.reach_speaking()
        old_session = self.coordinator.session
        old_ids = {m.id for m in self.coordinator.messages}

        self.assertTrue(await self.coordinator.restart())
        self.assertIsNot(self.coordinator.session, old_session)
        self.assertEqual(old_session.status, SessionStatus.ENDED)
        self.assertEqual(self.texts(), ["Hello there"])
        self.assertFalse(old_ids & {m.id for m in self.coordinator.messages})
        self.assertEqual(self.rig.notifier.count("Conversation Restarted"), 1)

    async def test_restart_keeps_mute_preferences(self):
        await self.start_listening()
        self.coordinator.toggle_output_mute()
        await self.coordinator.restart()
        self.assertTrue(self.coordinator.output_muted)
        await until(lambda: self.coordinator.is_listening)
        self.assertEqual(self.rig.tts.calls, ["Hello there"])

    async def test_concurrent_restart_is_ignored(self):
        await self.start_listening()
        first, second = await asyncio.gather(self.coordinator.restart(), self.coordinator.restart())
        self.assertTrue(first)
        self.assertFalse(second)
        self.assertEqual(self.texts(), ["Hello there"])
        self.assertFalse(self.coordinator.is_restarting)

    async def test_end_stops_everything(self):
        await self.reach_speaking()
        await self.coordinator.end()
        self.assertEqual(self.coordinator.status, SessionStatus.ENDED)
        self.assertFalse(self.coordinator.is_listening)
        self.assertFalse(self.coordinator.is_playing)
        self.assertEqual(len(self.coordinator.messages), 0)
        self.assertEqual(self.rig.notifier.count("Conversation Ended"), 1)

        self.coordinator.submit_text("anyone there?")
        await asyncio.sleep(0.02)
        self.assertEqual(len(self.coordinator.messages), 0)
        self.assertEqual(self.rig.reply.calls, [])

    async def test_end_discards_pending_reply(self):
        await self.start_listening()
        gate = self.rig.reply.hold()
        self.rig.backend.final("hello")
        session_id = self.coordinator.session.id

        await self.coordinator.end()
        if not gate.done():
            gate.set_result(None)
        await asyncio.sleep(0.02)
        self.coordinator.dispatch(ReplyResolved(session_id=session_id, request=1, text="late"))
        self.assertEqual(len(self.coordinator.messages), 0)
        self.assertNotIn("late", self.texts())

    async def test_restart_discards_reply_from_old_session(self):
        await self.start_listening()
        gate = self.rig.reply.hold()
        self.rig.backend.final("hello")
        old_id = self.coordinator.session.id

        await self.coordinator.restart()
        self.rig.reply.gate = None
        if not gate.done():
            gate.set_result(None)
        self.coordinator.dispatch(ReplyResolved(session_id=old_id, request=1, text="late"))
        await asyncio.sleep(0.02)
        self.assertEqual(self.texts(), ["Hello there"])

    async def test_end_during_restart_is_terminal(self):
        await self.start_listening()
        gate = self.rig.reply.hold()
        self.rig.backend.final("hello")
        await until(lambda: self.rig.reply.calls)

        restart = asyncio.ensure_future(self.coordinator.restart())
        await asyncio.sleep(0)
        self.assertTrue(self.coordinator.is_restarting)
        await self.coordinator.end()
        self.assertFalse(await restart)
        if not gate.done():
            gate.set_result(None)

        await asyncio.sleep(0.03)
        self.assertEqual(self.coordinator.status, SessionStatus.ENDED)
        self.assertFalse(self.coordinator.is_listening)
        self.assertFalse(self.coordinator.is_playing)
        self.assertEqual(self.rig.notifier.count("Conversation Ended"), 1)
        self.assertEqual(self.rig.notifier.count("Conversation Restarted"), 0)
        self.assertFalse(self.coordinator.is_restarting)

    async def test_end_cancels_pending_auto_listen(self):
        await self.coordinator.end()
        self.rig = build_rig(make_config(auto_listen_delay=0.1))
        self.coordinator = self.rig.coordinator

        await self.coordinator.initialize()
        await until(lambda: self.rig.player.playing)
        self.rig.player.finish()
        await until(lambda: self.coordinator.turn_state == TurnState.LISTENING)
        await self.coordinator.end()

        await asyncio.sleep(0.15)
        self.assertEqual(self.rig.backend.starts, 0)
        self.assertFalse(self.coordinator.is_listening)

    async def test_reconfigure_restarts_on_agent_change(self):
        await self.start_listening()
        self.assertFalse(await self.coordinator.reconfigure(agent_name="assistant"))
        self.assertTrue(await self.coordinator.reconfigure(agent_name="planner"))
        self.assertEqual(self.coordinator.reply_provider.agent_name, "planner")
        self.assertEqual(self.texts(), ["Hello there"])

    async def test_reconfigure_with_new_provider(self):
        await self.start_listening()
        provider = FakeReply(reply="from the new agent", agent_name="other")
        self.assertTrue(await self.coordinator.reconfigure(reply_provider=provider))
        await until(lambda: self.rig.player.playing)
        self.rig.player.finish()
        await until(lambda: self.coordinator.is_listening)
        self.coordinator.submit_text("hello")
        await until(lambda: self.texts()[-1] == "from the new agent")

    async def test_context_manager_initializes_and_ends(self):
        async with self.coordinator as coordinator:
            self.assertEqual(coordinator.status, SessionStatus.ACTIVE)
        self.assertEqual(self.coordinator.status, SessionStatus.ENDED)


class TestInputChannel(unittest.IsolatedAsyncioTestCase):

    async def asyncTearDown(self):
        await self.rig.coordinator.end()

    async def test_denied_permission_leaves_text_working(self):
        backend = FakeBackend(Devices(), permission=PermissionState.DENIED)
        self.rig = build_rig(backend=backend)
        coordinator = self.rig.coordinator
        coordinator.session.mute.output_muted = True

        await coordinator.initialize()
        self.assertEqual(coordinator.permission_state, PermissionState.DENIED)
        await until(lambda: coordinator.input.has_pending_start)
        self.assertEqual(backend.starts, 0)
        self.assertEqual(self.rig.notifier.count("Microphone Access Denied"), 1)

        coordinator.submit_text("typed")
        await until(lambda: coordinator.messages[-1].text == "hi there")
        await until(lambda: coordinator.input.has_pending_start)

        coordinator.input.set_permission(PermissionState.GRANTED)
        self.assertEqual(backend.starts, 1)
        self.assertTrue(coordinator.is_listening)

    async def test_permission_rechecked_when_mic_is_rearmed(self):
        backend = FakeBackend(Devices(), permission=PermissionState.DENIED)
        self.rig = build_rig(backend=backend)
        coordinator = self.rig.coordinator
        coordinator.session.mute.output_muted = True

        await coordinator.initialize()
        await until(lambda: coordinator.input.has_pending_start)
        self.assertEqual(backend.starts, 0)

        backend.permission = PermissionState.GRANTED
        coordinator.toggle_mic()
        coordinator.toggle_mic()
        await until(lambda: coordinator.is_listening)
        self.assertEqual(coordinator.permission_state, PermissionState.GRANTED)
        self.assertEqual(backend.starts, 1)
        self.assertEqual(coordinator.session.mic_state, MicState.CAPTURING)

    async def test_unsupported_recognition_degrades_to_text(self):
        backend = FakeBackend(Devices(), available=False)
        self.rig = build_rig(backend=backend)
        coordinator = self.rig.coordinator
        coordinator.session.mute.output_muted = True

        await coordinator.initialize()
        await until(lambda: self.rig.notifier.count("Speech Recognition Unavailable") == 1)
        self.assertEqual(coordinator.session.mic_state, MicState.BLOCKED)

        coordinator.submit_text("typed")
        await until(lambda: coordinator.messages[-1].text == "hi there")
        await asyncio.sleep(0.03)
        self.assertEqual(self.rig.notifier.count("Speech Recognition Unavailable"), 1)

    async def test_text_mode_keeps_mic_off(self):
        self.rig = build_rig(make_config(input_mode="text"))
        coordinator = self.rig.coordinator
        await coordinator.initialize()
        await until(lambda: self.rig.player.playing)
        self.rig.player.finish()
        await until(lambda: coordinator.turn_state == TurnState.LISTENING)
        await asyncio.sleep(0.03)
        self.assertTrue(coordinator.mic_muted)
        self.assertEqual(self.rig.backend.starts, 0)

        coordinator.set_input_mode(InputMode.VOICE)
        await until(lambda: coordinator.is_listening)
        coordinator.set_input_mode("text")
        self.assertFalse(coordinator.is_listening)

    async def test_auto_start_disabled_waits_for_mic_toggle(self):
        self.rig = build_rig(make_config(auto_start_mic=False))
        coordinator = self.rig.coordinator
        await coordinator.initialize()
        await until(lambda: self.rig.player.playing)
        self.rig.player.finish()
        await asyncio.sleep(0.03)
        self.assertFalse(coordinator.is_listening)

        coordinator.toggle_mic()
        await until(lambda: coordinator.is_listening)

    async def test_recognition_stall_leaves_listening_intent(self):
        self.rig = build_rig()
        coordinator = self.rig.coordinator
        coordinator.session.mute.output_muted = True
        await coordinator.initialize()
        await until(lambda: coordinator.is_listening)

        self.rig.backend.end()
        self.assertTrue(coordinator.is_listening)
        self.assertEqual(self.rig.backend.starts, 2)

        self.rig.backend.end()
        self.assertFalse(coordinator.is_listening)
        self.assertEqual(self.rig.backend.starts, 2)
        self.assertEqual(coordinator.turn_state, TurnState.LISTENING)
        self.assertEqual(coordinator.session.mic_state, MicState.BLOCKED)


if __name__ == "__main__":
    unittest.main()
