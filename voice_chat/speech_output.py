# voice_chat/speech_output.py
"""
Speech output: synthesis plus playback with exactly-once end events
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional

from .errors import SynthesisError, SynthesisFailed
from .events import Event, PlaybackEnded
from .model_providers.base import TextToSpeechProvider

logger = logging.getLogger(__name__)


class AudioPlayer(ABC):
    """Plays one clip at a time"""

    @abstractmethod
    async def play(self, audio: bytes, volume: float) -> None:
        """Return once the clip finishes or ``stop`` is called"""
        pass

    @abstractmethod
    def stop(self) -> None:
        pass

    def pause(self) -> None:
        pass

    def resume(self) -> None:
        pass

    def set_volume(self, volume: float) -> None:
        pass


@dataclass(eq=False)
class AudioHandle:
    """Synthesized audio for one piece of text"""
    text: str
    audio: bytes
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    ended: bool = False

    def release(self):
        self.audio = b""


def clamp_volume(volume: float) -> float:
    return max(0.0, min(1.0, float(volume)))


class SpeechOutputController:
    """Owns the single "current" audio handle.

    Playback end fires exactly once per handle through the bound event
    sink, whether the clip ran to completion, failed, or was stopped.
    """

    def __init__(
        self,
        tts: Optional[TextToSpeechProvider],
        player: AudioPlayer,
        voice: Optional[str] = None,
        volume: float = 0.8,
    ):
        self.tts = tts
        self.player = player
        self.voice = voice
        self._volume = clamp_volume(volume)

        self._emit: Callable[[Event], None] = lambda event: None
        self._request = 0
        self._generating = False
        self._current: Optional[AudioHandle] = None
        self._playing = False
        self._paused = False
        self._playback_task: Optional[asyncio.Task] = None

    def bind(self, emit: Callable[[Event], None]):
        self._emit = emit

    @property
    def is_generating(self) -> bool:
        return self._generating

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def has_active_handle(self) -> bool:
        """A clip is playing or paused"""
        return self._current is not None and not self._current.ended

    @property
    def current(self) -> Optional[AudioHandle]:
        return self._current

    @property
    def volume(self) -> float:
        return self._volume

    # ------------------------------------------------------------------ #
    async def synthesize(self, text: str) -> AudioHandle:
        """Generate audio for ``text``; supersedes any earlier request"""
        self.stop()
        self._request += 1
        request = self._request
        self._generating = True
        logger.info(f"Synthesizing: {text[:50]}...")

        try:
            if self.tts is None:
                raise SynthesisFailed("No speech synthesis configured")
            audio = await self.tts.synthesize(text, voice=self.voice)
        except SynthesisError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise SynthesisFailed(str(e)) from e
        finally:
            if request == self._request:
                self._generating = False

        if not audio:
            raise SynthesisFailed("Speech synthesis returned no audio")

        handle = AudioHandle(text=text, audio=audio)
        if request == self._request:
            # Something may have started playing while we were generating
            self.stop()
        else:
            logger.debug("Synthesis result superseded by a newer request")
        return handle

    def cancel_generation(self) -> None:
        """Drop interest in any in-flight synthesis"""
        if self._generating:
            logger.info("Cancelling pending speech generation")
        self._request += 1
        self._generating = False

    def play(self, handle: AudioHandle) -> None:
        if handle is self._current and self._paused:
            self.resume()
            return
        if handle.ended:
            logger.warning("Refusing to play a handle that already ended")
            return

        self.stop()
        self._current = handle
        self._playing = True
        self._paused = False
        self._playback_task = asyncio.get_running_loop().create_task(self._run_playback(handle))

    async def _run_playback(self, handle: AudioHandle):
        try:
            await self.player.play(handle.audio, self._volume)
            logger.info("Audio playback completed")
        except asyncio.CancelledError:
            logger.debug("Playback task cancelled")
        except Exception as e:
            logger.error(f"Audio playback failed: {e}")
        finally:
            self._finish(handle, interrupted=False)

    def _finish(self, handle: AudioHandle, interrupted: bool):
        if handle.ended:
            return
        handle.ended = True
        if self._current is handle:
            self._playing = False
            self._paused = False
        self._emit(PlaybackEnded(handle_id=handle.id, interrupted=interrupted))

    def stop(self) -> None:
        """Stop playback now; the end event fires before this returns"""
        handle = self._current
        if handle is None or handle.ended:
            return

        self._playing = False
        self._paused = False
        try:
            self.player.stop()
        except Exception as e:
            logger.error(f"Error stopping audio: {e}")
        if self._playback_task and not self._playback_task.done():
            self._playback_task.cancel()
        logger.info("Audio playback stopped")
        self._finish(handle, interrupted=True)

    def pause(self) -> None:
        if not self._playing:
            return
        self.player.pause()
        self._playing = False
        self._paused = True
        logger.info("Audio playback paused")

    def resume(self) -> None:
        if not self._paused or not self.has_active_handle:
            return
        self.player.resume()
        self._playing = True
        self._paused = False
        logger.info("Audio playback resumed")

    def set_volume(self, volume: float) -> None:
        self._volume = clamp_volume(volume)
        self.player.set_volume(self._volume)

    def release(self) -> None:
        """Stop everything and drop audio references"""
        self.stop()
        self.cancel_generation()
        if self._current is not None:
            self._current.release()
            self._current = None
        self._playback_task = None
