# voice_chat/recognition.py
"""
Speech recognition backend: energy/VAD segmentation plus Whisper transcription
"""

import asyncio
import logging
from typing import List, Optional

import numpy as np

from .errors import RecognitionTransientFailure
from .model_providers.base import TranscriptionProvider
from .speech_input import NETWORK, NO_SPEECH, RecognitionBackend

try:
    import webrtcvad
    VAD_AVAILABLE = True
except ImportError:
    VAD_AVAILABLE = False

logger = logging.getLogger(__name__)

FRAME_DURATION = 0.03


def audio_energy(audio_data: np.ndarray) -> float:
    """RMS energy of int16 samples"""
    return float(np.sqrt(np.mean(audio_data.astype(float) ** 2))) if len(audio_data) else 0.0


class SpeechSegmenter:
    """Detects one utterance in a stream of 30ms frames"""

    def __init__(self, config, sample_rate: int, vad=None):
        self.config = config
        self.sample_rate = sample_rate
        self.vad = vad
        self.required_silence_frames = int(config.silence_duration / FRAME_DURATION)
        self.min_speech_frames = int(config.min_speech_duration / FRAME_DURATION)
        self.frame_samples = int(sample_rate * FRAME_DURATION)

        # Dynamic noise floor estimation
        self.noise_samples: List[float] = []
        self.noise_floor = config.silence_threshold
        self.reset()

    def reset(self):
        self.frames: List[bytes] = []
        self.speech_frames = 0
        self.silence_frames = 0
        self.speech_started = False
        self.peak_energy = 0.0

    def _update_noise_floor(self, energy: float):
        self.noise_samples.append(energy)
        if len(self.noise_samples) >= 20:
            # Noise floor with some headroom
            floor = np.percentile(self.noise_samples, 95) * self.config.energy_threshold_multiplier
            floor = max(floor, self.config.silence_threshold)
            self.noise_floor = float(min(floor, self.config.max_energy_threshold))

    def _is_speech(self, chunk: bytes, audio_data: np.ndarray, energy: float) -> bool:
        if self.vad is not None and len(audio_data) == self.frame_samples:
            # Also require energy threshold for VAD
            return self.vad.is_speech(chunk, self.sample_rate) and energy > self.noise_floor
        return energy > self.noise_floor

    def feed(self, chunk: bytes) -> bool:
        """Consume one frame; True once a complete utterance is buffered"""
        audio_data = np.frombuffer(chunk, dtype=np.int16)
        energy = audio_energy(audio_data)
        self.peak_energy = max(self.peak_energy, energy)

        if not self.speech_started and len(self.noise_samples) < 50:
            self._update_noise_floor(energy)

        if self._is_speech(chunk, audio_data, energy):
            if not self.speech_started:
                # Higher threshold for speech start
                if energy <= self.noise_floor * 1.5:
                    return False
                logger.debug(f"Speech detected (energy: {energy:.4f}, threshold: {self.noise_floor:.4f})")
                self.speech_started = True
            self.frames.append(chunk)
            self.speech_frames += 1
            self.silence_frames = 0
            return False

        if not self.speech_started:
            return False

        self.frames.append(chunk)
        self.silence_frames += 1
        if self.silence_frames < self.required_silence_frames:
            return False

        if self.speech_frames < self.min_speech_frames:
            logger.debug(f"Ignoring short noise burst ({self.speech_frames} frames)")
            self.reset()
            return False
        if self.peak_energy <= self.noise_floor * 2:
            logger.debug(f"Ignoring low-energy speech (peak: {self.peak_energy:.4f})")
            self.reset()
            return False

        logger.debug(f"Silence detected after {self.speech_frames} speech frames")
        return True


class WhisperRecognizer(RecognitionBackend):
    """Continuous recognition over a microphone recorder and a transcription provider.

    Interim results are produced by re-transcribing the utterance so far
    every ``interim_interval`` seconds (0 disables them). A session with no
    speech for ``listen_timeout`` seconds ends through ``on_end``.
    """

    def __init__(self, recorder, transcriber: Optional[TranscriptionProvider], config, language: Optional[str] = None):
        self.recorder = recorder
        self.transcriber = transcriber
        self.config = config
        self.language = language
        self.vad = None
        self._task: Optional[asyncio.Task] = None
        self._init_vad(config.vad_aggressiveness)

    def _init_vad(self, aggressiveness: int):
        if not self.config.enable_vad:
            return
        if VAD_AVAILABLE:
            try:
                self.vad = webrtcvad.Vad(aggressiveness)
                logger.info(f"WebRTC VAD initialized (aggressiveness={aggressiveness})")
            except Exception as e:
                logger.warning(f"Failed to initialize VAD: {e}")
                self.vad = None
        else:
            logger.info("webrtcvad not installed; using energy-based speech detection")

    def is_available(self) -> bool:
        if self.transcriber is None:
            return False
        has_device = getattr(self.recorder, "has_input_device", None)
        return has_device() if has_device else True

    def start(self, on_result, on_end, on_error) -> None:
        loop = asyncio.get_running_loop()
        self._cancel_task()
        try:
            self.recorder.start()
        except RecognitionTransientFailure as e:
            loop.call_soon(on_error, e.code, str(e))
            return
        self._task = loop.create_task(self._listen(on_result, on_end, on_error))

    def stop(self) -> None:
        self._cancel_task()
        self.recorder.stop()

    def _cancel_task(self):
        task, self._task = self._task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _listen(self, on_result, on_end, on_error):
        loop = asyncio.get_running_loop()
        segmenter = SpeechSegmenter(self.config, self.recorder.sample_rate, self.vad)
        started = loop.time()
        last_interim = started

        while True:
            chunk = self.recorder.read_chunk()
            if chunk is None:
                if not segmenter.speech_started and loop.time() - started > self.config.listen_timeout:
                    logger.info(f"No speech after {self.config.listen_timeout}s")
                    self.recorder.stop()
                    on_end()
                    return
                await asyncio.sleep(0.01)
                continue

            if segmenter.feed(chunk):
                break

            interval = self.config.interim_interval
            if interval and segmenter.speech_started and loop.time() - last_interim >= interval:
                last_interim = loop.time()
                partial = await self._transcribe(segmenter.frames)
                if partial:
                    on_result(partial, False)

        self.recorder.stop()
        try:
            text = await self._transcribe(segmenter.frames, raise_errors=True)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Transcription failed: {e}")
            on_error(NETWORK, str(e))
            return

        if not text:
            on_error(NO_SPEECH, "empty transcription")
            return
        on_result(text, True)

    async def _transcribe(self, frames: List[bytes], raise_errors: bool = False) -> str:
        wav = self.recorder.to_wav(list(frames))
        if wav is None:
            return ""
        try:
            text = await self.transcriber.transcribe(wav, language=self.language)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if raise_errors:
                raise
            logger.debug(f"Interim transcription failed: {e}")
            return ""
        return (text or "").strip()
