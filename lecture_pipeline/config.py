"""Application configuration. Loads from env vars."""
from pydantic_settings import BaseSettings
from typing import Literal


class Settings(BaseSettings):
    """Pipeline settings. Override via environment variables."""

    # Session storage: one directory per session (uploads/, chunks/, transcripts/, reports/, progress.json)
    STORAGE_DIR: str = "./temp"
    MAX_UPLOAD_MB: int = 200

    # Splitting: fixed-duration windows, ffmpeg transcodes run in batches of MAX_PARALLEL_SPLITTING
    CHUNK_DURATION_SECONDS: int = 600
    MAX_PARALLEL_SPLITTING: int = 4
    FFMPEG_BINARY: str = "ffmpeg"

    # Encoding for chunks: mono, reduced sample rate, speech bitrate (small uploads, fast decode)
    AUDIO_CODEC: str = "libmp3lame"
    AUDIO_BITRATE: str = "128k"
    AUDIO_CHANNELS: int = 1
    AUDIO_FREQUENCY: int = 22050
    FFMPEG_PRESET: str = "fast"
    FFMPEG_THREADS: int = 2

    # Adaptive transcription parallelism by average chunk size
    SMALL_CHUNK_LIMIT_MB: float = 5.0
    SMALL_CHUNK_MAX_PARALLEL: int = 12
    MEDIUM_CHUNK_LIMIT_MB: float = 15.0
    MEDIUM_CHUNK_MAX_PARALLEL: int = 8
    LARGE_CHUNK_MAX_PARALLEL: int = 4
    BATCH_DELAY_SECONDS: float = 1.0  # pause between transcription batches

    # Chunk validation before upload to the STT service
    MIN_CHUNK_BYTES: int = 1024  # smaller is suspect
    MAX_CHUNK_MB: float = 25.0  # larger is likely to time out / be rejected
    REPAIR_INVALID_CHUNKS: bool = True

    # STT backend: "openai" (Whisper API) | "cloudflare" (Workers AI) | "local" (faster-whisper)
    ASR_BACKEND: Literal["openai", "cloudflare", "local"] = "openai"

    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"

    CLOUDFLARE_ACCOUNT_ID: str = ""
    CLOUDFLARE_API_TOKEN: str = ""

    # Local Whisper (when ASR_BACKEND=local): model loaded once at startup
    LOCAL_WHISPER_MODEL: str = "base"
    LOCAL_WHISPER_DEVICE: Literal["cpu", "cuda"] = "cpu"
    LOCAL_WHISPER_COMPUTE_TYPE: Literal["int8", "float16"] = "int8"
    LOCAL_WHISPER_BEAM_SIZE: int = 5

    # Whisper request options
    WHISPER_MODEL: str = "whisper-1"
    WHISPER_RESPONSE_FORMAT: Literal["text", "json", "verbose_json"] = "text"
    WHISPER_LANGUAGE: str = "pt"
    WHISPER_PROMPT: str = "Esta é uma transcrição de uma aula em português brasileiro."

    # Retry: attempt N uses timeout N * WHISPER_TIMEOUT_SECONDS
    WHISPER_TIMEOUT_SECONDS: float = 90.0
    WHISPER_MAX_RETRIES: int = 3
    RETRY_BACKOFF: Literal["linear", "exponential"] = "exponential"
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_MAX_DELAY_SECONDS: float = 10.0

    # Idempotence / artifacts
    SKIP_EXISTING_TRANSCRIPTIONS: bool = True
    SAVE_PROCESSING_METADATA: bool = True
    TRANSCRIPT_SEPARATOR: str = "\n"

    # Monitoring: warn when throughput < PERFORMANCE_WARNING_RATIO * expected
    ENABLE_DETAILED_LOGS: bool = True
    ENABLE_PERFORMANCE_METRICS: bool = True
    LOG_PROGRESS_INTERVAL: int = 5  # log every N units
    EXPECTED_SPLIT_CHUNKS_PER_SECOND: float = 2.0
    EXPECTED_TRANSCRIBE_CHUNKS_PER_SECOND: float = 0.5
    PERFORMANCE_WARNING_RATIO: float = 0.7

    # Logging: level (DEBUG, INFO, WARNING, ERROR); file path empty = console only
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"


def get_settings() -> Settings:
    return Settings()
