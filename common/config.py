from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _default_env_file() -> str:
    # .env en la raíz del repo; las variables reales del entorno tienen prioridad.
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes", "on")


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value


@dataclass(frozen=True)
class Settings:
    # MQTT (ingesta)
    mqtt_host: str
    mqtt_port: int
    mqtt_username: Optional[str]
    mqtt_password: Optional[str]
    mqtt_client_id: str
    mqtt_tls: bool
    mqtt_topic_prefix: str
    mqtt_share_group: Optional[str]

    # Redis: buffer de fragmentos y broker de salida
    redis_url: str
    broker_redis_url: str
    broker_exchange: str
    broker_stream_maxlen: int

    # Metadata store
    database_url: Optional[str]
    db_host: str
    db_port: int
    db_user: str
    db_password: str
    db_name: str
    odbc_driver: str

    # Pipeline
    fragment_ttl_seconds: int
    default_sample_interval_us: int
    clear_after_publish: bool
    metadata_cache_ttl_seconds: int

    log_level: str = "INFO"


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("WORKER_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    return Settings(
        mqtt_host=os.getenv("MQTT_BROKER_HOST", "localhost"),
        mqtt_port=int(os.getenv("MQTT_BROKER_PORT", "1883")),
        mqtt_username=_env_optional("MQTT_USERNAME"),
        mqtt_password=_env_optional("MQTT_PASSWORD"),
        mqtt_client_id=os.getenv("MQTT_CLIENT_ID", "worker-telemetry"),
        mqtt_tls=_env_bool("MQTT_TLS", "false"),
        mqtt_topic_prefix=os.getenv("MQTT_TOPIC_PREFIX", "telemetry").strip("/"),
        # Suscripción compartida: el broker reparte mensajes entre workers.
        mqtt_share_group=_env_optional("MQTT_SHARE_GROUP") or "telemetry-workers",
        redis_url=redis_url,
        broker_redis_url=os.getenv("BROKER_REDIS_URL", redis_url),
        broker_exchange=os.getenv("BROKER_EXCHANGE", "telemetry"),
        broker_stream_maxlen=int(os.getenv("BROKER_STREAM_MAXLEN", "100000")),
        database_url=_env_optional("DATABASE_URL"),
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "1433")),
        db_user=os.getenv("DB_USER", "sa"),
        db_password=os.getenv("DB_PASSWORD", ""),
        db_name=os.getenv("DB_NAME", "one_platform"),
        # Common values:
        # - ODBC Driver 17 for SQL Server
        # - ODBC Driver 18 for SQL Server
        odbc_driver=os.getenv("ODBC_DRIVER", "ODBC Driver 17 for SQL Server"),
        # 0 deshabilita la expiración de ráfagas incompletas.
        fragment_ttl_seconds=int(os.getenv("FRAGMENT_TTL_SECONDS", "3600")),
        # Intervalo entre muestras cuando falta el sample-rate (1 kHz).
        default_sample_interval_us=int(os.getenv("DEFAULT_SAMPLE_INTERVAL_US", "1000")),
        clear_after_publish=_env_bool("CLEAR_AFTER_PUBLISH", "true"),
        metadata_cache_ttl_seconds=int(os.getenv("METADATA_CACHE_TTL_SECONDS", "300")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
