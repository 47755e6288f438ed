# voice_chat/config.py
"""
Configuration management for the voice conversation runtime
"""

import os
import sys
import logging
from dataclasses import dataclass
from typing import List
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_WELCOME_MESSAGE = "Hello! I'm listening. Speak or type whenever you're ready."
DEFAULT_SYSTEM_PROMPT = "You are a helpful voice assistant. Keep answers short and conversational."


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ["true", "1", "yes", "on"]


@dataclass
class Config:
    """Configuration settings for a voice conversation"""
    # === API KEYS ===
    openai_api_key: str

    # === REPLY COLLABORATOR ===
    reply_provider: str
    chat_model: str
    webhook_url: str
    agent_name: str
    reply_timeout: float
    system_prompt: str
    max_history_messages: int

    # === SPEECH MODELS ===
    stt_model: str
    tts_model: str
    tts_voice: str

    # === AUDIO CONFIGURATION ===
    sample_rate: int
    silence_threshold: float
    silence_duration: float
    min_speech_duration: float
    energy_threshold_multiplier: float
    max_energy_threshold: float
    listen_timeout: float
    interim_interval: float

    # === VAD CONFIGURATION ===
    enable_vad: bool
    vad_aggressiveness: int

    # === TURN-TAKING TIMING ===
    # Empirically tuned; re-check against real playback-tail bleed
    auto_listen_delay: float
    muted_listen_delay: float
    mic_unmute_delay: float
    recognition_restart_cooldown: float

    # === SESSION ===
    welcome_message: str
    default_volume: float
    input_mode: str
    auto_start_mic: bool

    # === SYSTEM CONFIGURATION ===
    max_retries: int
    retry_delay: float

    # === LOGGING CONFIGURATION ===
    log_level: str
    log_file: str

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables"""
        config = cls(
            # === API KEYS ===
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),

            # === REPLY COLLABORATOR ===
            reply_provider=os.getenv("REPLY_PROVIDER", "openai").lower(),
            chat_model=os.getenv("CHAT_MODEL", "gpt-4o-mini"),
            webhook_url=os.getenv("WEBHOOK_URL", ""),
            agent_name=os.getenv("AGENT_NAME", "assistant"),
            reply_timeout=float(os.getenv("REPLY_TIMEOUT", "30")),
            system_prompt=os.getenv("SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT),
            max_history_messages=int(os.getenv("MAX_HISTORY_MESSAGES", "20")),

            # === SPEECH MODELS ===
            stt_model=os.getenv("STT_MODEL", "whisper-1"),
            tts_model=os.getenv("TTS_MODEL", "tts-1"),
            tts_voice=os.getenv("TTS_VOICE", "nova"),

            # === AUDIO CONFIGURATION ===
            sample_rate=int(os.getenv("SAMPLE_RATE", "16000")),
            silence_threshold=float(os.getenv("SILENCE_THRESHOLD", "0.03")),
            silence_duration=float(os.getenv("SILENCE_DURATION", "1.2")),
            min_speech_duration=float(os.getenv("MIN_SPEECH_DURATION", "0.4")),
            energy_threshold_multiplier=float(os.getenv("ENERGY_THRESHOLD_MULTIPLIER", "2.0")),
            max_energy_threshold=float(os.getenv("MAX_ENERGY_THRESHOLD", "0.5")),
            listen_timeout=float(os.getenv("LISTEN_TIMEOUT", "15")),
            interim_interval=float(os.getenv("INTERIM_INTERVAL", "0")),

            # === VAD CONFIGURATION ===
            enable_vad=_env_bool("ENABLE_VAD", "true"),
            vad_aggressiveness=int(os.getenv("VAD_AGGRESSIVENESS", "3")),

            # === TURN-TAKING TIMING ===
            auto_listen_delay=float(os.getenv("AUTO_LISTEN_DELAY", "0.75")),
            muted_listen_delay=float(os.getenv("MUTED_LISTEN_DELAY", "1.0")),
            mic_unmute_delay=float(os.getenv("MIC_UNMUTE_DELAY", "0.5")),
            recognition_restart_cooldown=float(os.getenv("RECOGNITION_RESTART_COOLDOWN", "5.0")),

            # === SESSION ===
            welcome_message=os.getenv("WELCOME_MESSAGE", DEFAULT_WELCOME_MESSAGE),
            default_volume=float(os.getenv("DEFAULT_VOLUME", "0.8")),
            input_mode=os.getenv("INPUT_MODE", "voice").lower(),
            auto_start_mic=_env_bool("AUTO_START_MIC", "true"),

            # === SYSTEM CONFIGURATION ===
            max_retries=int(os.getenv("MAX_RETRIES", "2")),
            retry_delay=float(os.getenv("RETRY_DELAY", "1.0")),

            # === LOGGING CONFIGURATION ===
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE", "voice_chat.log"),
        )

        problems = config.validate()
        if problems:
            raise ValueError("Invalid configuration: " + "; ".join(problems))
        return config

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty when valid)"""
        problems = []
        if self.reply_provider not in ("openai", "webhook"):
            problems.append(f"unknown REPLY_PROVIDER '{self.reply_provider}'")
        if self.reply_provider == "webhook" and not self.webhook_url:
            problems.append("WEBHOOK_URL is required for the webhook reply provider")
        if not 0.0 <= self.default_volume <= 1.0:
            problems.append(f"DEFAULT_VOLUME must be within [0, 1], got {self.default_volume}")
        if self.input_mode not in ("voice", "text"):
            problems.append(f"INPUT_MODE must be 'voice' or 'text', got '{self.input_mode}'")
        for name in ("auto_listen_delay", "muted_listen_delay", "mic_unmute_delay",
                     "recognition_restart_cooldown", "listen_timeout", "interim_interval"):
            if getattr(self, name) < 0:
                problems.append(f"{name} must not be negative")
        if not self.welcome_message.strip():
            problems.append("WELCOME_MESSAGE must not be empty")
        return problems


def setup_logging(config: Config):
    """Configure logging with file and console handlers"""
    # Launcher-style console output
    force_console = os.getenv("VOICE_CHAT_CONSOLE_OUTPUT") == "1"

    file_handler = logging.FileHandler(config.log_file, encoding='utf-8')
    console_handler = logging.StreamHandler(sys.stdout)
    handlers = [file_handler, console_handler]

    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    if force_console:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format=log_format,
        handlers=handlers,
        force=True  # Reconfigure even if already configured
    )

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
