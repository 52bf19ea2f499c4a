from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from speechflow.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class BatchConfig:
    api_key: str
    base_url: str = "https://asr.api.speechmatics.com/v2"
    operating_point: str = "enhanced"
    poll_interval_seconds: float = 3.0
    max_attempts: int = 100
    timeout_seconds: float = 120.0


@dataclass(frozen=True, slots=True)
class RealtimeConfig:
    api_key: str
    url: str = "wss://eu2.rt.speechmatics.com/v2"
    auth_url: str = "https://mp.speechmatics.com/v1"
    language: str = "es"
    operating_point: str = "standard"
    enable_partials: bool = True
    max_delay: float = 1.0
    remove_disfluencies: bool = True
    end_of_utterance_silence: float = 1.5
    sample_rate: int = 16000
    block_size: int = 4096
    token_ttl_seconds: int = 3600
    handshake_timeout_seconds: float = 10.0
    drain_timeout_seconds: float = 5.0

    def start_message(self, language: str | None = None) -> dict[str, object]:
        return {
            "message": "StartRecognition",
            "audio_format": {
                "type": "raw",
                "encoding": "pcm_s16le",
                "sample_rate": self.sample_rate,
            },
            "transcription_config": {
                "language": language or self.language,
                "operating_point": self.operating_point,
                "enable_partials": self.enable_partials,
                "max_delay": self.max_delay,
                "transcript_filtering_config": {"remove_disfluencies": self.remove_disfluencies},
                "conversation_config": {"end_of_utterance_silence_trigger": self.end_of_utterance_silence},
            },
        }


@dataclass(slots=True)
class Settings:
    host: str
    port: int
    mcp_path: str
    health_path: str
    poll_interval_seconds: int
    auto_process: bool
    data_dir: Path
    database_path: Path
    default_language: str
    batch: BatchConfig
    realtime: RealtimeConfig


def _as_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    return int(raw)


def _as_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    return float(raw)


def _as_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _normalized_path(path: str) -> str:
    if not path.startswith("/"):
        path = f"/{path}"
    return path


def load_settings() -> Settings:
    load_dotenv()
    data_dir = Path(os.getenv("DATA_DIR", "/data")).resolve()
    database_path = Path(os.getenv("DATABASE_PATH", str(data_dir / "speechflow.sqlite3"))).resolve()

    speechmatics_api_key = os.getenv("SPEECHMATICS_API_KEY", "").strip()
    if not speechmatics_api_key:
        raise ConfigurationError("SPEECHMATICS_API_KEY is required")

    default_language = os.getenv("DEFAULT_LANGUAGE", "es").strip() or "es"

    batch = BatchConfig(
        api_key=speechmatics_api_key,
        base_url=os.getenv("SPEECHMATICS_BATCH_URL", "https://asr.api.speechmatics.com/v2").rstrip("/"),
        operating_point=os.getenv("BATCH_OPERATING_POINT", "enhanced"),
        poll_interval_seconds=_as_float("JOB_POLL_INTERVAL_SECONDS", 3.0),
        max_attempts=_as_int("JOB_MAX_ATTEMPTS", 100),
    )
    realtime = RealtimeConfig(
        api_key=speechmatics_api_key,
        url=os.getenv("SPEECHMATICS_RT_URL", "wss://eu2.rt.speechmatics.com/v2"),
        auth_url=os.getenv("SPEECHMATICS_AUTH_URL", "https://mp.speechmatics.com/v1").rstrip("/"),
        language=default_language,
        operating_point=os.getenv("RT_OPERATING_POINT", "standard"),
        max_delay=_as_float("RT_MAX_DELAY", 1.0),
        remove_disfluencies=_as_bool("RT_REMOVE_DISFLUENCIES", True),
        end_of_utterance_silence=_as_float("RT_EOU_SILENCE_SECONDS", 1.5),
        sample_rate=_as_int("RT_SAMPLE_RATE", 16000),
        block_size=_as_int("RT_BLOCK_SIZE", 4096),
        token_ttl_seconds=_as_int("RT_TOKEN_TTL_SECONDS", 3600),
    )

    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=_as_int("PORT", 3000),
        mcp_path=_normalized_path(os.getenv("MCP_PATH", "/mcp")),
        health_path=_normalized_path(os.getenv("HEALTH_PATH", "/healthz")),
        poll_interval_seconds=_as_int("POLL_INTERVAL_SECONDS", 5),
        auto_process=_as_bool("AUTO_PROCESS", True),
        data_dir=data_dir,
        database_path=database_path,
        default_language=default_language,
        batch=batch,
        realtime=realtime,
    )
