# voice_chat/cli.py
"""
Command-line host for a voice conversation
"""

import asyncio
import logging
import signal
import sys
import threading

from .config import Config, setup_logging
from .coordinator import TurnTakingCoordinator
from .model_providers.factory import ModelProviderFactory
from .notifications import ConsoleNotifier
from .speech_input import SpeechInputController
from .speech_output import SpeechOutputController
from .state import InputMode, Sender
from .utils import signal_handler

logger = logging.getLogger(__name__)

HELP_TEXT = """
Commands:
  /mic            toggle the microphone
  /mute           toggle spoken replies
  /volume <0-1>   set playback volume
  /stop           stop the assistant talking
  /pause          pause or resume playback
  /replay         replay the last assistant message
  /text, /voice   switch input mode
  /restart        start a new conversation
  /end            end the conversation
  /quit           exit
Anything else is sent as a message.
"""

SENDER_ICONS = {Sender.USER: "👤", Sender.ASSISTANT: "🤖", Sender.SYSTEM: "⚠️"}


def build_coordinator(config: Config) -> TurnTakingCoordinator:
    """Wire providers, audio devices and controllers into a coordinator"""
    from .audio import ContinuousAudioRecorder, SoundDevicePlayer
    from .recognition import WhisperRecognizer

    transcription, reply, tts = ModelProviderFactory.from_config(config)
    notifier = ConsoleNotifier()

    recorder = ContinuousAudioRecorder(config.sample_rate)
    recorder.log_devices()
    backend = WhisperRecognizer(recorder, transcription, config)

    speech_input = SpeechInputController(
        backend, notifier=notifier, restart_cooldown=config.recognition_restart_cooldown
    )
    speech_output = SpeechOutputController(
        tts, SoundDevicePlayer(), voice=config.tts_voice, volume=config.default_volume
    )
    coordinator = TurnTakingCoordinator(config, speech_input, speech_output, reply, notifier=notifier)
    if tts is None:
        coordinator.session.mute.output_muted = True
    return coordinator


class TranscriptPrinter:
    """Prints messages as they are appended to the conversation"""

    def __init__(self, coordinator: TurnTakingCoordinator):
        self.coordinator = coordinator
        self._seen = set()

    def flush(self):
        for message in self.coordinator.messages:
            if message.id in self._seen:
                continue
            self._seen.add(message.id)
            print(f"{SENDER_ICONS[message.sender]} {message.sender.value.title()}: {message.text}")

    async def run(self, stop_event: asyncio.Event):
        while not stop_event.is_set():
            self.flush()
            await asyncio.sleep(0.1)


async def handle_command(coordinator: TurnTakingCoordinator, line: str) -> bool:
    """Apply one line of input; returns False when the host should exit"""
    command, _, argument = line.partition(" ")
    command = command.lower()

    if command in ("/quit", "/exit"):
        return False
    if command == "/help":
        print(HELP_TEXT)
    elif command == "/mic":
        coordinator.toggle_mic()
        print(f"🎤 Microphone {'muted' if coordinator.mic_muted else 'on'}")
    elif command == "/mute":
        coordinator.toggle_output_mute()
        print(f"🔈 Spoken replies {'muted' if coordinator.output_muted else 'on'}")
    elif command == "/volume":
        try:
            coordinator.set_volume(float(argument))
        except ValueError:
            print("Usage: /volume <0-1>")
        else:
            print(f"🔊 Volume {coordinator.volume:.2f}")
    elif command == "/stop":
        coordinator.stop_speaking()
    elif command == "/pause":
        coordinator.toggle_playback()
    elif command == "/replay":
        replies = [m for m in coordinator.messages if m.sender == Sender.ASSISTANT]
        if replies:
            coordinator.replay_message(replies[-1].id)
        else:
            print("Nothing to replay")
    elif command == "/text":
        coordinator.set_input_mode(InputMode.TEXT)
    elif command == "/voice":
        coordinator.set_input_mode(InputMode.VOICE)
    elif command == "/restart":
        await coordinator.restart()
    elif command == "/end":
        await coordinator.end()
    elif command.startswith("/"):
        print(f"Unknown command {command}; type /help")
    else:
        coordinator.submit_text(line)
    return True


def start_stdin_reader(loop: asyncio.AbstractEventLoop) -> asyncio.Queue:
    """Feed stdin lines into a queue from a daemon thread; None marks EOF"""
    lines: asyncio.Queue = asyncio.Queue()

    def pump():
        try:
            for line in sys.stdin:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            loop.call_soon_threadsafe(lines.put_nowait, None)
        except RuntimeError:
            # Event loop already closed during shutdown
            return

    threading.Thread(target=pump, name="stdin-reader", daemon=True).start()
    return lines


async def run(config: Config):
    coordinator = build_coordinator(config)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler, sig, coordinator, stop_event)
        except NotImplementedError:
            # Windows event loops
            signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(signal_handler, s, coordinator, stop_event))

    print("\n" + "=" * 60)
    print("🎙️  Voice Chat - type /help for commands")
    print("=" * 60 + "\n")

    printer = TranscriptPrinter(coordinator)
    async with coordinator:
        printer_task = asyncio.create_task(printer.run(stop_event))
        lines = start_stdin_reader(loop)
        try:
            while not stop_event.is_set():
                reader = asyncio.create_task(lines.get())
                stop_waiter = asyncio.create_task(stop_event.wait())
                done, pending = await asyncio.wait({reader, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
                for task in pending:
                    task.cancel()
                if reader not in done:
                    break

                line = reader.result()
                if line is None:
                    break  # EOF
                line = line.strip()
                if not line:
                    continue
                if not await handle_command(coordinator, line):
                    break
                printer.flush()
        finally:
            stop_event.set()
            printer_task.cancel()
            printer.flush()

    logger.info("Voice chat shutdown complete")


def main():
    """Entry point for ``python -m voice_chat``"""
    try:
        config = Config.from_env()
    except ValueError as e:
        print(f"❌ {e}")
        sys.exit(2)
    setup_logging(config)

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Shutdown complete")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)
