"""Configuration settings for the appointment tracker."""

import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from .models import CARD_TITLES, DEFAULT_LABELS, Target, TargetSite

load_dotenv()

# Sites to monitor
DEFAULT_REGULAR_URL = "https://telegov.njportal.com/njmvc/AppointmentWizard"
DEFAULT_MOBILE_URL = "https://telegov.njportal.com/njmvcmobileunit/AppointmentWizard"
DEFAULT_REGULAR_NOTIFICATION_URL = "https://telegov.njportal.com/njmvc/AppointmentWizard/12"
DEFAULT_MOBILE_NOTIFICATION_URL = "https://telegov.njportal.com/njmvcmobileunit/AppointmentWizard"

# Monitoring interval (minutes)
CHECK_INTERVAL_MINUTES: int = 10

# HTTP settings
REQUEST_TIMEOUT_SECONDS: float = 30
MAX_RETRIES: int = 3
USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Backoff: min(base * 2^attempt + jitter, cap)
RETRY_BASE_DELAY_SECONDS: float = 2.0
RETRY_MAX_DELAY_SECONDS: float = 60.0
RETRY_JITTER_SECONDS: float = 1.0

# Email
DEFAULT_EMAIL_SUBJECT = "REAL ID Appointment Available!"
DEFAULT_SMTP_HOST = "smtp.gmail.com"
DEFAULT_SMTP_PORT = 587

# Storage and logging
DEFAULT_DATA_FILE = "data/appointments.json"
DEFAULT_DEBUG_DIR = "debug"
DEFAULT_LOG_FILE = "tracker.log"
LOG_MAX_BYTES: int = 10 * 1024 * 1024
MAX_HISTORY: int = 100

LOG_LEVELS = ("debug", "info", "warn", "error", "fatal")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_TRUE = {"true", "yes", "1", "on"}
_FALSE = {"false", "no", "0", "off"}


class ConfigError(Exception):
    """Raised when one or more configuration values are missing or invalid."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            f"Invalid configuration: {len(self.errors)} error(s) found: "
            + "; ".join(self.errors)
        )


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _email_address(value: str) -> str:
    """Strip a 'Name <addr>' wrapper down to the bare address."""
    match = re.search(r"<([^>]+)>", value)
    return match.group(1).strip() if match else value.strip()


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def obfuscate(value: str) -> str:
    """Keep the first and last two characters of a secret."""
    if not value or len(value) < 4:
        return "****"
    return f"{value[:2]}{'*' * (len(value) - 4)}{value[-2:]}"


def interval_to_cron(minutes: int) -> str:
    """Express a check interval in minutes as a cron expression."""
    if minutes <= 0:
        raise ValueError("Interval must be greater than 0")
    if minutes < 60:
        return f"*/{minutes} * * * *"
    if minutes % 60 == 0 and minutes // 60 < 24:
        return f"0 */{minutes // 60} * * *"
    if minutes == 24 * 60:
        return "0 0 * * *"
    raise ValueError(
        "Interval must be below 60 minutes, a whole number of hours below 24, or 1440"
    )


class _EnvReader:
    """Reads typed values from a mapping and collects every error."""

    def __init__(self, env: Mapping[str, str]):
        self.env = env
        self.errors: list[str] = []

    def get(
        self,
        key: str,
        default: Any,
        cast: Callable[[str], Any] = str,
        validate: Optional[Callable[[Any], Optional[str]]] = None,
        blank_is_none: bool = False,
    ) -> Any:
        raw = self.env.get(key)
        if blank_is_none and raw is not None and raw.strip() == "":
            # Present but empty clears the value instead of restoring the default
            return None
        if raw is None or raw.strip() == "":
            value = default
        else:
            try:
                value = cast(raw.strip())
            except (TypeError, ValueError) as e:
                self.errors.append(f"{key}: {e}")
                return default
        if validate is not None and value not in (None, ""):
            problem = validate(value)
            if problem:
                self.errors.append(f"{key}: {problem}")
        return value


def _to_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"must be an integer, got {value!r}") from None


def _to_float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"must be a number, got {value!r}") from None


def _to_bool(value: str) -> bool:
    normalized = value.lower()
    if normalized in _TRUE:
        return True
    if normalized in _FALSE:
        return False
    raise ValueError(f"must be a boolean, got {value!r}")


def _check_url(value: str) -> Optional[str]:
    return None if _is_url(value) else "Invalid URL format"


def _check_positive(value: float) -> Optional[str]:
    return None if value > 0 else "must be greater than 0"


def _check_non_negative(value: float) -> Optional[str]:
    return None if value >= 0 else "must be greater than or equal to 0"


def _check_interval(value: int) -> Optional[str]:
    try:
        interval_to_cron(value)
    except ValueError as e:
        return str(e)
    return None


def _check_sender(value: str) -> Optional[str]:
    return None if _EMAIL_RE.match(_email_address(value)) else "Invalid email format"


def _check_recipients(value: list[str]) -> Optional[str]:
    bad = [r for r in value if not _EMAIL_RE.match(_email_address(r))]
    return f"Invalid email format: {', '.join(bad)}" if bad else None


def _check_level(value: str) -> Optional[str]:
    if value.lower() in LOG_LEVELS:
        return None
    return f"Log level must be one of: {', '.join(LOG_LEVELS)}"


@dataclass(frozen=True)
class EmailSettings:
    sender: str = ""
    recipients: tuple[str, ...] = ()
    password: str = ""
    subject: str = DEFAULT_EMAIL_SUBJECT
    smtp_host: str = DEFAULT_SMTP_HOST
    smtp_port: int = DEFAULT_SMTP_PORT
    smtp_ssl: bool = False
    template_file: Optional[Path] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.sender and self.recipients and self.password)


@dataclass(frozen=True)
class Settings:
    """Validated tracker configuration, built once and passed to components."""
    regular_url: str = DEFAULT_REGULAR_URL
    mobile_url: str = DEFAULT_MOBILE_URL
    regular_notification_url: Optional[str] = DEFAULT_REGULAR_NOTIFICATION_URL
    mobile_notification_url: Optional[str] = DEFAULT_MOBILE_NOTIFICATION_URL
    check_interval: int = CHECK_INTERVAL_MINUTES
    email: EmailSettings = field(default_factory=EmailSettings)
    log_file: Optional[Path] = Path(DEFAULT_LOG_FILE)
    log_level: str = "info"
    log_max_bytes: int = LOG_MAX_BYTES
    request_timeout: float = REQUEST_TIMEOUT_SECONDS
    max_retries: int = MAX_RETRIES
    retry_base_delay: float = RETRY_BASE_DELAY_SECONDS
    retry_max_delay: float = RETRY_MAX_DELAY_SECONDS
    retry_jitter: float = RETRY_JITTER_SECONDS
    user_agent: str = USER_AGENT
    data_file: Path = Path(DEFAULT_DATA_FILE)
    max_history: int = MAX_HISTORY
    debug_dir: Path = Path(DEFAULT_DEBUG_DIR)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Every key is checked before failing so the error lists all problems.

        Raises:
            ConfigError: If any value is invalid
        """
        reader = _EnvReader(os.environ if env is None else env)
        get = reader.get

        template = get("TRACKER_EMAIL_TEMPLATE", "")
        email = EmailSettings(
            sender=get("TRACKER_EMAIL_SENDER", "", validate=_check_sender),
            recipients=tuple(get("TRACKER_EMAIL_RECIPIENT", [], _split_list, _check_recipients)),
            password=get("TRACKER_EMAIL_PASSWORD", ""),
            subject=get("TRACKER_EMAIL_SUBJECT", DEFAULT_EMAIL_SUBJECT),
            smtp_host=get("TRACKER_SMTP_HOST", DEFAULT_SMTP_HOST),
            smtp_port=get("TRACKER_SMTP_PORT", DEFAULT_SMTP_PORT, _to_int, _check_positive),
            smtp_ssl=get("TRACKER_SMTP_SSL", False, _to_bool),
            template_file=Path(template) if template else None,
        )
        log_file = get("TRACKER_LOG_FILE", DEFAULT_LOG_FILE)

        settings = cls(
            regular_url=get("TRACKER_REGULAR_URL", DEFAULT_REGULAR_URL, validate=_check_url),
            mobile_url=get("TRACKER_MOBILE_URL", DEFAULT_MOBILE_URL, validate=_check_url),
            regular_notification_url=get(
                "TRACKER_REGULAR_NOTIFICATION_URL", DEFAULT_REGULAR_NOTIFICATION_URL,
                validate=_check_url, blank_is_none=True,
            ),
            mobile_notification_url=get(
                "TRACKER_MOBILE_NOTIFICATION_URL", DEFAULT_MOBILE_NOTIFICATION_URL,
                validate=_check_url, blank_is_none=True,
            ),
            check_interval=get("TRACKER_CHECK_INTERVAL", CHECK_INTERVAL_MINUTES, _to_int, _check_interval),
            email=email,
            log_file=Path(log_file) if log_file else None,
            log_level=get("TRACKER_LOG_LEVEL", "info", validate=_check_level).lower(),
            log_max_bytes=get("TRACKER_LOG_MAX_BYTES", LOG_MAX_BYTES, _to_int, _check_positive),
            request_timeout=get("TRACKER_REQUEST_TIMEOUT", REQUEST_TIMEOUT_SECONDS, _to_float, _check_positive),
            max_retries=get("TRACKER_MAX_RETRIES", MAX_RETRIES, _to_int, _check_non_negative),
            retry_base_delay=get("TRACKER_RETRY_BASE_DELAY", RETRY_BASE_DELAY_SECONDS, _to_float, _check_non_negative),
            retry_max_delay=get("TRACKER_RETRY_MAX_DELAY", RETRY_MAX_DELAY_SECONDS, _to_float, _check_non_negative),
            retry_jitter=get("TRACKER_RETRY_JITTER", RETRY_JITTER_SECONDS, _to_float, _check_non_negative),
            user_agent=get("TRACKER_USER_AGENT", USER_AGENT),
            data_file=Path(get("TRACKER_DATA_FILE", DEFAULT_DATA_FILE)),
            max_history=get("TRACKER_MAX_HISTORY", MAX_HISTORY, _to_int, _check_positive),
            debug_dir=Path(get("TRACKER_DEBUG_DIR", DEFAULT_DEBUG_DIR)),
        )

        if reader.errors:
            raise ConfigError(reader.errors)
        return settings

    def to_env(self) -> dict[str, str]:
        """Inverse of from_env, used to validate partial overrides."""
        return {
            "TRACKER_REGULAR_URL": self.regular_url,
            "TRACKER_MOBILE_URL": self.mobile_url,
            "TRACKER_REGULAR_NOTIFICATION_URL": self.regular_notification_url or "",
            "TRACKER_MOBILE_NOTIFICATION_URL": self.mobile_notification_url or "",
            "TRACKER_CHECK_INTERVAL": str(self.check_interval),
            "TRACKER_EMAIL_SENDER": self.email.sender,
            "TRACKER_EMAIL_RECIPIENT": ",".join(self.email.recipients),
            "TRACKER_EMAIL_PASSWORD": self.email.password,
            "TRACKER_EMAIL_SUBJECT": self.email.subject,
            "TRACKER_EMAIL_TEMPLATE": str(self.email.template_file or ""),
            "TRACKER_SMTP_HOST": self.email.smtp_host,
            "TRACKER_SMTP_PORT": str(self.email.smtp_port),
            "TRACKER_SMTP_SSL": str(self.email.smtp_ssl).lower(),
            "TRACKER_LOG_FILE": str(self.log_file or ""),
            "TRACKER_LOG_LEVEL": self.log_level,
            "TRACKER_LOG_MAX_BYTES": str(self.log_max_bytes),
            "TRACKER_REQUEST_TIMEOUT": str(self.request_timeout),
            "TRACKER_MAX_RETRIES": str(self.max_retries),
            "TRACKER_RETRY_BASE_DELAY": str(self.retry_base_delay),
            "TRACKER_RETRY_MAX_DELAY": str(self.retry_max_delay),
            "TRACKER_RETRY_JITTER": str(self.retry_jitter),
            "TRACKER_USER_AGENT": self.user_agent,
            "TRACKER_DATA_FILE": str(self.data_file),
            "TRACKER_MAX_HISTORY": str(self.max_history),
            "TRACKER_DEBUG_DIR": str(self.debug_dir),
        }

    def with_overrides(self, overrides: Mapping[str, Any]) -> "Settings":
        """
        Return new validated settings; the current instance is unchanged.

        An empty value clears optional settings (notification URLs) and
        resets the rest to their defaults.

        Raises:
            ConfigError: If a key is unknown or a value is invalid
        """
        env = self.to_env()
        unknown = sorted(key for key in overrides if key not in env)
        if unknown:
            raise ConfigError([f"{key}: Unknown setting" for key in unknown])
        env.update({key: "" if value is None else str(value) for key, value in overrides.items()})
        return Settings.from_env(env)

    def site(self, target: Target) -> TargetSite:
        if target == Target.REGULAR:
            url, notification_url = self.regular_url, self.regular_notification_url
        else:
            url, notification_url = self.mobile_url, self.mobile_notification_url
        return TargetSite(
            target=target,
            url=url,
            notification_url=notification_url or None,
            label=DEFAULT_LABELS[target],
            card_title=CARD_TITLES[target],
        )

    @property
    def sites(self) -> list[TargetSite]:
        return [self.site(target) for target in Target]

    @property
    def cron_expression(self) -> str:
        return interval_to_cron(self.check_interval)

    def safe_dict(self) -> dict[str, Any]:
        """Settings as a plain dict with secrets obfuscated, for logging."""
        data = asdict(self)
        data["email"]["password"] = obfuscate(self.email.password) if self.email.password else ""
        return {key: str(value) if isinstance(value, Path) else value for key, value in data.items()}
