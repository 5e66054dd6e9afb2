"""
Runtime configuration loaded from the environment (and a local .env file)
"""
import logging
import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from dotenv import load_dotenv

load_dotenv()


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _parse_int(value: Optional[str], default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Expected an integer setting, got {value!r}")


def parse_email_list(raw: Optional[str]) -> FrozenSet[str]:
    """Split a comma separated allow-list into normalized addresses"""
    if not raw:
        return frozenset()
    return frozenset(part.strip().lower() for part in raw.split(',') if part.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = 'postgresql://localhost/flight_reservations'
    db_echo: bool = False
    smtp_host: str = 'smtp.gmail.com'
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_from: Optional[str] = None
    app_url: str = ''
    admin_emails: FrozenSet[str] = field(default_factory=frozenset)
    notification_workers: int = 8
    session_ttl_hours: int = 24
    log_level: str = 'INFO'

    @property
    def sender_address(self) -> Optional[str]:
        return self.smtp_from or self.smtp_user

    @classmethod
    def from_env(cls, environ=None) -> 'Settings':
        """Build settings from ``environ`` (defaults to ``os.environ``)"""
        env = os.environ if environ is None else environ
        return cls(
            database_url=env.get('DATABASE_URL', cls.database_url),
            db_echo=_parse_bool(env.get('DB_ECHO')),
            smtp_host=env.get('SMTP_HOST') or cls.smtp_host,
            smtp_port=_parse_int(env.get('SMTP_PORT'), cls.smtp_port),
            smtp_user=env.get('SMTP_USER') or None,
            smtp_pass=env.get('SMTP_PASS') or None,
            smtp_from=env.get('SMTP_FROM') or None,
            app_url=(env.get('APP_URL') or '').rstrip('/'),
            admin_emails=parse_email_list(env.get('ADMIN_EMAILS')),
            notification_workers=max(1, _parse_int(env.get('NOTIFICATION_WORKERS'), cls.notification_workers)),
            session_ttl_hours=_parse_int(env.get('SESSION_TTL_HOURS'), cls.session_ttl_hours),
            log_level=(env.get('LOG_LEVEL') or cls.log_level).upper(),
        )


_settings = None


def get_settings() -> Settings:
    """Get or create the process-wide settings"""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def set_settings(settings: Optional[Settings]) -> None:
    """Override the process-wide settings; ``None`` re-reads the environment on next use"""
    global _settings
    _settings = settings


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for scripts and services"""
    logging.basicConfig(
        level=level or get_settings().log_level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
