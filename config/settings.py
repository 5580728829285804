"""
Configuration loader for the Delayed Notifier service.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./delayed_notifier.db"      # postgresql:// | sqlite://
    store_backend: str = "memory"                      # "sql" | "memory"


@dataclass
class CacheConfig:
    backend: str = "memory"             # "memory" for dev, "redis" for production
    redis_url: str = "redis://localhost:6379"
    ttl_seconds: int = 24 * 60 * 60
    key_prefix: str = "notification:status:"


@dataclass
class QueueConfig:
    backend: str = "memory"             # "memory" for dev, "redis" for production
    redis_url: str = "redis://localhost:6379"
    routing_key: str = "notifications"
    dead_letter_queue: str = "notifications:dlq"
    consumer_group: str = "notification-dispatchers"
    consumer_concurrency: int = 2       # dispatcher workers per process
    delayed_promote_interval: float = 1.0   # seconds between delayed-set scans
    max_attempts: int = 3               # broker-level redeliveries before DLQ
    retry_backoff_base: int = 5         # base seconds for redelivery backoff
    publish_attempts: int = 3
    publish_initial_delay: float = 3.0
    publish_backoff: float = 2.0


@dataclass
class TelegramConfig:
    bot_token: str = ""
    api_base_url: str = "https://api.telegram.org"
    timeout: float = 10.0


@dataclass
class Settings:
    app_name: str = "DelayedNotifier"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080
    channel: str = "console"            # "telegram" | "console"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    if config_path is None:
        config_path = os.environ.get(
            "NOTIFIER_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.log_level = raw.get("log_level", settings.log_level)
        settings.host = raw.get("host", settings.host)
        settings.port = int(raw.get("port", settings.port))
        settings.channel = raw.get("channel", settings.channel)

        if "database" in raw:
            db = raw["database"]
            settings.database = DatabaseConfig(
                url=db.get("url", settings.database.url),
                store_backend=db.get("store_backend", settings.database.store_backend),
            )

        if "cache" in raw:
            c = raw["cache"]
            settings.cache = CacheConfig(
                backend=c.get("backend", "memory"),
                redis_url=c.get("redis_url", "redis://localhost:6379"),
                ttl_seconds=int(c.get("ttl_seconds", 24 * 60 * 60)),
                key_prefix=c.get("key_prefix", "notification:status:"),
            )

        if "queue" in raw:
            q = raw["queue"]
            settings.queue = QueueConfig(
                backend=q.get("backend", "memory"),
                redis_url=q.get("redis_url", "redis://localhost:6379"),
                routing_key=q.get("routing_key", "notifications"),
                dead_letter_queue=q.get("dead_letter_queue", "notifications:dlq"),
                consumer_group=q.get("consumer_group", "notification-dispatchers"),
                consumer_concurrency=int(q.get("consumer_concurrency", 2)),
                delayed_promote_interval=float(q.get("delayed_promote_interval", 1.0)),
                max_attempts=int(q.get("max_attempts", 3)),
                retry_backoff_base=int(q.get("retry_backoff_base", 5)),
                publish_attempts=int(q.get("publish_attempts", 3)),
                publish_initial_delay=float(q.get("publish_initial_delay", 3.0)),
                publish_backoff=float(q.get("publish_backoff", 2.0)),
            )

        if "telegram" in raw:
            tg = raw["telegram"]
            settings.telegram = TelegramConfig(
                bot_token=tg.get("bot_token", ""),
                api_base_url=tg.get("api_base_url", "https://api.telegram.org"),
                timeout=float(tg.get("timeout", 10.0)),
            )

    return settings

