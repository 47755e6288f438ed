# voice_chat/audio.py
"""
Microphone capture and speaker playback on top of sounddevice
"""

import asyncio
import io
import logging
import queue
import threading
from typing import List, Optional

import numpy as np
import sounddevice as sd
import soundfile as sf

from .errors import RecognitionTransientFailure
from .speech_input import AUDIO_CAPTURE
from .speech_output import AudioPlayer, clamp_volume

logger = logging.getLogger(__name__)

FRAME_DURATION = 0.03  # 30ms chunks for VAD


class ContinuousAudioRecorder:
    """Streams 16-bit mono microphone audio into a queue"""

    def __init__(self, sample_rate: int = 16000):
        self.sample_rate = sample_rate
        self.audio_queue = queue.Queue()
        self.recording = False
        self.stream = None
        self._lock = threading.Lock()

    def has_input_device(self) -> bool:
        try:
            sd.query_devices(kind="input")
            return True
        except Exception as e:
            logger.warning(f"No audio input device: {e}")
            return False

    def log_devices(self):
        """List available audio devices for debugging"""
        try:
            devices = sd.query_devices()
            logger.info("Available audio devices:")
            for i, device in enumerate(devices):
                logger.info(f"  {i}: {device['name']} - In:{device['max_input_channels']} Out:{device['max_output_channels']}")
        except Exception as e:
            logger.warning(f"Could not query audio devices: {e}")

    def start(self):
        """Open the input stream; raises RecognitionTransientFailure without a device"""
        with self._lock:
            if self.recording:
                return

            self._drain()
            try:
                self.stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    blocksize=int(self.sample_rate * FRAME_DURATION),
                    dtype="int16",
                    channels=1,
                    callback=self._audio_callback
                )
                self.stream.start()
            except sd.PortAudioError as e:
                self.stream = None
                raise RecognitionTransientFailure(AUDIO_CAPTURE, str(e)) from e

            self.recording = True
            logger.info("Started audio recording")

    def stop(self):
        with self._lock:
            if not self.recording and self.stream is None:
                return
            self.recording = False
            if self.stream:
                try:
                    self.stream.stop()
                    self.stream.close()
                except sd.PortAudioError as e:
                    logger.warning(f"Error closing input stream: {e}")
                self.stream = None
            logger.info("Stopped audio recording")

    def _audio_callback(self, indata, frames, time_info, status):
        if status:
            logger.warning(f"Audio callback status: {status}")
        if self.recording:
            self.audio_queue.put(bytes(indata))

    def _drain(self):
        while True:
            try:
                self.audio_queue.get_nowait()
            except queue.Empty:
                return

    def read_chunk(self) -> Optional[bytes]:
        """Next captured chunk, or None if nothing is buffered"""
        try:
            return self.audio_queue.get_nowait()
        except queue.Empty:
            return None

    def to_wav(self, frames: List[bytes]) -> Optional[io.BytesIO]:
        """Convert audio frames to WAV format"""
        wav_buffer = io.BytesIO()
        try:
            with sf.SoundFile(
                wav_buffer,
                mode="w",
                samplerate=self.sample_rate,
                channels=1,
                subtype="PCM_16",
                format="WAV"
            ) as sound_file:
                for frame in frames:
                    sound_file.buffer_write(frame, dtype="int16")
        except Exception as e:
            logger.error(f"Error creating WAV file: {e}")
            return None

        wav_buffer.seek(0)
        wav_buffer.name = "speech.wav"
        return wav_buffer


class SoundDevicePlayer(AudioPlayer):
    """Plays decoded clips through a callback OutputStream.

    ``play`` resolves when the clip drains or ``stop`` aborts the stream.
    Pausing writes silence without closing the stream.
    """

    def __init__(self):
        self._data: Optional[np.ndarray] = None
        self._position = 0
        self._volume = 1.0
        self._paused = False
        self._stream = None
        self._done: Optional[asyncio.Future] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def play(self, audio: bytes, volume: float) -> None:
        data, sample_rate = sf.read(io.BytesIO(audio), dtype="float32", always_2d=True)
        self._loop = asyncio.get_running_loop()
        self._done = self._loop.create_future()
        self._data = data
        self._position = 0
        self._paused = False
        self._volume = clamp_volume(volume)

        done = self._done
        self._stream = sd.OutputStream(
            samplerate=sample_rate,
            channels=data.shape[1],
            dtype="float32",
            callback=self._callback,
            finished_callback=lambda: self._loop.call_soon_threadsafe(self._resolve, done),
        )
        try:
            self._stream.start()
            await done
        finally:
            self._close()

    def _callback(self, outdata, frames, time_info, status):
        if status:
            logger.warning(f"Playback callback status: {status}")
        if self._paused:
            outdata.fill(0)
            return

        chunk = self._data[self._position:self._position + frames]
        count = len(chunk)
        outdata[:count] = chunk * self._volume
        outdata[count:] = 0
        self._position += count
        if count < frames:
            raise sd.CallbackStop()

    @staticmethod
    def _resolve(done: asyncio.Future):
        if not done.done():
            done.set_result(None)

    def _close(self):
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.abort()
                stream.close()
            except sd.PortAudioError as e:
                logger.warning(f"Error closing output stream: {e}")
        self._data = None

    def stop(self) -> None:
        if self._done is not None:
            self._resolve(self._done)
        self._close()

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def set_volume(self, volume: float) -> None:
        self._volume = clamp_volume(volume)
