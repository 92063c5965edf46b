# klamai/core/config.py
"""
Application configuration using Pydantic Settings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
import json
from pydantic import field_validator


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    """

    # Application
    APP_NAME: str = "KlamAI"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str

    # OpenAI (extraction + assistants)
    OPENAI_API_KEY: str = ""
    OPENAI_EXTRACTION_MODEL: str = "gpt-4o-mini"
    ASISTENTE_AUXILIAR_ID: str = ""
    ASISTENTE_CLASIFICADOR_ID: str = ""
    ASISTENTE_PROPUESTAS_ID: str = ""
    ASSISTANT_POLL_INTERVAL_SECONDS: float = 0.5
    ASSISTANT_RUN_TIMEOUT_SECONDS: float = 600.0  # 0 disables the ceiling

    @field_validator(
        "ASISTENTE_AUXILIAR_ID",
        "ASISTENTE_CLASIFICADOR_ID",
        "ASISTENTE_PROPUESTAS_ID",
        mode="before",
    )
    @classmethod
    def strip_assistant_id(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip()
        return v

    # Source object store (MinIO, S3 compatible)
    MINIO_ENDPOINT: str = ""
    MINIO_PORT: int = 443
    MINIO_USE_SSL: bool = True
    MINIO_ACCESS_KEY_ID: str = ""
    MINIO_SECRET_ACCESS_KEY: str = ""
    MINIO_BUCKET_NAME: str = ""

    # Destination object store
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_REGION: str = "eu-west-1"
    STORAGE_ENDPOINT_URL: str = ""
    STORAGE_BUCKET_NAME: str = "documentos_legales"

    # WhatsApp (Evolution API)
    EVOLUTION_API_SERVER_URL: str = ""
    EVOLUTION_API_INSTANCE: str = ""
    EVOLUTION_API_KEY: str = ""
    ADMIN_WHATSAPP_NUMBER: str = ""
    CASE_NOTIFICATIONS_ENABLED: bool = False

    # Background case processing
    CASE_WORKER_CONCURRENCY: int = 2
    CASE_QUEUE_MAXSIZE: int = 100
    FALLBACK_SPECIALTY_NAME: str = "Consulta General"
    SEED_FALLBACK_SPECIALTY: bool = True

    # CORS
    CORS_ORIGINS: str = '["http://localhost:3000"]'

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from string to list"""
        try:
            if isinstance(self.CORS_ORIGINS, str):
                return json.loads(self.CORS_ORIGINS)
            return self.CORS_ORIGINS
        except json.JSONDecodeError:
            return ["http://localhost:3000"]

    @property
    def minio_endpoint_url(self) -> str:
        """Full endpoint URL for the MinIO client, empty when not configured"""
        host = (self.MINIO_ENDPOINT or "").strip()
        if not host:
            return ""
        if "://" in host:
            return host
        scheme = "https" if self.MINIO_USE_SSL else "http"
        return f"{scheme}://{host}:{self.MINIO_PORT}"


# Create settings instance
settings = Settings()
