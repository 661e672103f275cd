"""
Configuration for the live transcription service.

Loads LIVEKIT_*, ASSEMBLYAI_* and TRANSCRIBER_* environment variables that
drive room joining, audio gating, accounting and downstream forwarding.
Redis connection settings are loaded separately by shared.redis_client.
"""

import os
import logging
from dataclasses import dataclass
from typing import List, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class TranscriberConfig:
    """
    Service configuration with environment variable loading.
    """

    # LiveKit
    livekit_url: str = ""
    livekit_api_key: str = ""
    livekit_api_secret: str = ""

    # AssemblyAI streaming
    assemblyai_api_key: str = ""
    assemblyai_host: str = "streaming.assemblyai.com"

    # Audio gating
    sample_rate: int = 16000              # Mono PCM rate requested from the transport
    chunk_size: int = 4800                # 300ms at 16kHz
    speech_threshold: float = 0.001       # RMS above this is speech

    # Room bot
    bot_identity: str = "transcription-bot"
    bot_name: str = "Transcription Service"
    join_max_attempts: int = 3
    join_retry_delay_s: float = 2.0       # delay = attempt * this

    # Accounting
    tokens_per_hour: int = 8
    transcript_retention_s: int = 86400

    # Downstream forwarding
    agent_url: Optional[str] = None
    signals_url: Optional[str] = None     # template with {correlation_id}
    forward_timeout_s: float = 5.0

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3002
    log_level: str = "INFO"

    @staticmethod
    def from_env() -> 'TranscriberConfig':
        """
        Load configuration from environment variables.

        Returns:
            TranscriberConfig: Configuration instance loaded from environment
        """
        return TranscriberConfig(
            # LiveKit
            livekit_url=os.getenv("LIVEKIT_URL", ""),
            livekit_api_key=os.getenv("LIVEKIT_API_KEY", ""),
            livekit_api_secret=os.getenv("LIVEKIT_API_SECRET", ""),

            # AssemblyAI
            assemblyai_api_key=os.getenv("ASSEMBLYAI_API_KEY", ""),
            assemblyai_host=os.getenv("ASSEMBLYAI_STREAMING_HOST", "streaming.assemblyai.com"),

            # Audio gating
            sample_rate=int(os.getenv("TRANSCRIBER_SAMPLE_RATE", "16000")),
            chunk_size=int(os.getenv("TRANSCRIBER_CHUNK_SIZE", "4800")),
            speech_threshold=float(os.getenv("TRANSCRIBER_SPEECH_THRESHOLD", "0.001")),

            # Room bot
            bot_identity=os.getenv("TRANSCRIBER_BOT_IDENTITY", "transcription-bot"),
            bot_name=os.getenv("TRANSCRIBER_BOT_NAME", "Transcription Service"),
            join_max_attempts=int(os.getenv("TRANSCRIBER_JOIN_MAX_ATTEMPTS", "3")),
            join_retry_delay_s=float(os.getenv("TRANSCRIBER_JOIN_RETRY_DELAY", "2.0")),

            # Accounting
            tokens_per_hour=int(os.getenv("TRANSCRIBER_TOKENS_PER_HOUR", "8")),
            transcript_retention_s=int(os.getenv("TRANSCRIBER_TRANSCRIPT_RETENTION", "86400")),

            # Forwarding
            agent_url=os.getenv("TRANSCRIBER_AGENT_URL") or None,
            signals_url=os.getenv("TRANSCRIBER_SIGNALS_URL") or None,
            forward_timeout_s=float(os.getenv("TRANSCRIBER_FORWARD_TIMEOUT", "5.0")),

            # HTTP server
            host=os.getenv("TRANSCRIBER_HOST", "0.0.0.0"),
            port=int(os.getenv("TRANSCRIBER_PORT", "3002")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def __post_init__(self):
        """
        Validate and normalize configuration.
        """
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.speech_threshold < 0:
            raise ValueError(f"speech_threshold must be non-negative, got {self.speech_threshold}")
        if self.join_max_attempts < 1:
            raise ValueError(f"join_max_attempts must be at least 1, got {self.join_max_attempts}")
        if self.join_retry_delay_s < 0:
            raise ValueError(f"join_retry_delay_s must be non-negative, got {self.join_retry_delay_s}")
        if self.tokens_per_hour < 0:
            raise ValueError(f"tokens_per_hour must be non-negative, got {self.tokens_per_hour}")

        self.log_level = (self.log_level or "INFO").strip().upper()
        if self.log_level not in VALID_LOG_LEVELS:
            logger.warning("Unknown log level '%s'. Using INFO.", self.log_level)
            self.log_level = "INFO"

        if self.signals_url and "{correlation_id}" not in self.signals_url:
            logger.warning(
                "TRANSCRIBER_SIGNALS_URL has no {correlation_id} placeholder; "
                "every session will post to the same URL"
            )

    @property
    def chunk_duration_ms(self) -> float:
        return self.chunk_size / self.sample_rate * 1000

    def missing_credentials(self) -> List[str]:
        required = {
            "LIVEKIT_URL": self.livekit_url,
            "LIVEKIT_API_KEY": self.livekit_api_key,
            "LIVEKIT_API_SECRET": self.livekit_api_secret,
            "ASSEMBLYAI_API_KEY": self.assemblyai_api_key,
        }
        return [name for name, value in required.items() if not value]

    def require_credentials(self) -> None:
        """
        Fail fast when the transport or engine credentials are absent.

        Raises:
            ConfigurationError: listing every missing variable
        """
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")
