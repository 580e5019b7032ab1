"""
Configuration management for DocVault.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The storage bucket has no default: operations fail fast without it
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep the legacy variable aliases (AWS_S3_* and S3_*) working
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlsplit, urlunsplit

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "backups/"
DEFAULT_RETENTION = 7
DEFAULT_MONGO_URI = "mongodb://localhost:27017/docvault"
DEFAULT_DATABASE_NAME = "docvault"
MIN_CHUNK_SIZE = 5 * 1024 * 1024  # S3 multipart minimum part size


def _getenv(*names: str, default: str | None = None) -> str | None:
    """Return the first non-empty environment variable among names."""
    for name in names:
        value = os.getenv(name)
        if value is not None and value.strip():
            return value.strip()
    return default


def _getint(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", setting=name)


def _getfloat(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", setting=name)


def normalize_prefix(prefix: str | None) -> str:
    """Normalise a key prefix so that it ends with exactly one '/'."""
    if not prefix:
        return DEFAULT_PREFIX
    return prefix.rstrip("/") + "/"


def redact_uri(uri: str | None) -> str | None:
    """Replace the password component of a connection URI with '***'."""
    if not uri:
        return uri
    parts = urlsplit(uri)
    if "@" not in parts.netloc:
        return uri
    userinfo, hosts = parts.netloc.rsplit("@", 1)
    if ":" in userinfo:
        userinfo = userinfo.split(":", 1)[0] + ":***"
    return urlunsplit(parts._replace(netloc=f"{userinfo}@{hosts}"))


def database_name_from_uri(uri: str, default: str = DEFAULT_DATABASE_NAME) -> str:
    """Extract the database name from a MongoDB URI path."""
    path = urlsplit(uri).path
    name = path.lstrip("/")
    return name or default


def derive_verify_uri(primary_uri: str) -> str:
    """Build the disposable verification URI from the primary URI.

    The database name gets a "-verify" suffix; everything else (hosts,
    credentials, options) is kept.

    Raises:
        ConfigurationError: If the primary URI cannot be parsed
    """
    try:
        parts = urlsplit(primary_uri)
    except ValueError as e:
        raise ConfigurationError(
            f"Cannot derive BACKUP_VERIFY_URI from MONGO_URI: {e}", setting="BACKUP_VERIFY_URI"
        )
    if not parts.scheme.startswith("mongodb"):
        raise ConfigurationError(
            "Cannot derive BACKUP_VERIFY_URI from MONGO_URI; set BACKUP_VERIFY_URI explicitly",
            setting="BACKUP_VERIFY_URI",
        )
    name = database_name_from_uri(primary_uri)
    return urlunsplit(parts._replace(path=f"/{name}-verify"))


@dataclass(frozen=True)
class S3Config:
    """Object storage configuration.

    Attributes:
        bucket: S3 bucket name (required)
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO and other S3-compatibles)
        access_key_id: Access key ID (optional, uses AWS credential chain)
        secret_access_key: Secret access key (optional)
    """

    bucket: str | None = None
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None

    @property
    def force_path_style(self) -> bool:
        """Custom endpoints are addressed path-style."""
        return bool(self.endpoint_url) and self.endpoint_url.startswith(("http://", "https://"))

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=_getenv("AWS_S3_BUCKET", "S3_BUCKET"),
            region=_getenv("AWS_S3_REGION", "AWS_REGION", "AWS_DEFAULT_REGION", default="us-east-1"),
            endpoint_url=_getenv("AWS_S3_ENDPOINT", "S3_ENDPOINT"),
            access_key_id=_getenv("AWS_S3_ACCESS_KEY_ID", "AWS_ACCESS_KEY_ID"),
            secret_access_key=_getenv("AWS_S3_SECRET_ACCESS_KEY", "AWS_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class BackupConfig:
    """Backup, retention and verification settings.

    Attributes:
        prefix: Key prefix for backup archives
        retention: Number of most recent archives to keep (<= 0 disables)
        batch_size: Cursor batch size on export, insert batch size on restore
        chunk_size: Upload/download chunk size in bytes
        compression_level: Deflate level for archive entries (0-9)
        smoke_collections: Collections counted by the verification runner
        verify_uri: Disposable database URI for verification
    """

    prefix: str = DEFAULT_PREFIX
    retention: int = DEFAULT_RETENTION
    batch_size: int = 500
    chunk_size: int = 8 * 1024 * 1024
    compression_level: int = 9
    smoke_collections: tuple[str, ...] = ("users", "orders", "products")
    verify_uri: str | None = None

    @classmethod
    def from_env(cls) -> BackupConfig:
        """Load configuration from environment variables."""
        smoke = _getenv("BACKUP_SMOKE_COLLECTIONS")
        return cls(
            prefix=normalize_prefix(_getenv("BACKUP_PREFIX")),
            retention=_getint("BACKUP_RETENTION", DEFAULT_RETENTION),
            batch_size=_getint("BACKUP_BATCH_SIZE", 500),
            chunk_size=_getint("BACKUP_CHUNK_SIZE", 8 * 1024 * 1024),
            compression_level=_getint("BACKUP_COMPRESSION_LEVEL", 9),
            smoke_collections=tuple(s.strip() for s in smoke.split(",") if s.strip())
            if smoke
            else ("users", "orders", "products"),
            verify_uri=_getenv("BACKUP_VERIFY_URI"),
        )


@dataclass(frozen=True)
class DatabaseConfig:
    """Document database locations.

    Attributes:
        uri: Primary database URI (backup source, default restore target)
        restore_target_uri: Restore target (defaults to the primary)
        dr_target_uri: Disaster-recovery target (defaults to the primary)
    """

    uri: str = DEFAULT_MONGO_URI
    restore_target_uri: str | None = None
    dr_target_uri: str | None = None

    @property
    def restore_target(self) -> str:
        return self.restore_target_uri or self.uri

    @property
    def recovery_target(self) -> str:
        return self.dr_target_uri or self.uri

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Load configuration from environment variables."""
        return cls(
            uri=_getenv("MONGO_URI", "MONGODB_URI", default=DEFAULT_MONGO_URI),
            restore_target_uri=_getenv("TARGET_MONGO_URI"),
            dr_target_uri=_getenv("DR_TARGET_URI"),
        )


@dataclass(frozen=True)
class RecoveryConfig:
    """Disaster-recovery step commands.

    Attributes:
        migrate_command: Shell command applying pending migrations
        verify_command: Shell command running post-migration checks
        step_timeout_seconds: Upper bound for each external step
    """

    migrate_command: str | None = None
    verify_command: str | None = None
    step_timeout_seconds: float = 1800.0

    @classmethod
    def from_env(cls) -> RecoveryConfig:
        """Load configuration from environment variables."""
        return cls(
            migrate_command=_getenv("DR_MIGRATE_COMMAND"),
            verify_command=_getenv("DR_VERIFY_COMMAND"),
            step_timeout_seconds=_getfloat("DR_STEP_TIMEOUT_SECONDS", 1800.0),
        )


@dataclass(frozen=True)
class AlertConfig:
    """Webhook alert configuration.

    Attributes:
        slack_webhook_url: Slack incoming webhook
        discord_webhook_url: Discord webhook
        timeout_seconds: Per-request delivery timeout
    """

    slack_webhook_url: str | None = None
    discord_webhook_url: str | None = None
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> AlertConfig:
        """Load configuration from environment variables."""
        return cls(
            slack_webhook_url=_getenv("SLACK_WEBHOOK_URL", "SLACK_RELEASE_WEBHOOK", "SLACK_WEBHOOK"),
            discord_webhook_url=_getenv("DISCORD_WEBHOOK_URL"),
            timeout_seconds=_getfloat("ALERT_TIMEOUT_SECONDS", 10.0),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class DocVaultConfig:
    """Complete DocVault configuration.

    Attributes:
        s3: Object storage configuration
        backup: Backup/retention/verification configuration
        database: Database locations
        recovery: Disaster-recovery step commands
        alerts: Alert webhooks
        observability: Logging configuration
    """

    s3: S3Config = field(default_factory=S3Config)
    backup: BackupConfig = field(default_factory=BackupConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> DocVaultConfig:
        """Load complete configuration from environment variables.

        Validation is left to the operation that needs it, so commands
        that do not touch storage can still load a partial configuration.

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed.
        """
        return cls(
            s3=S3Config.from_env(),
            backup=BackupConfig.from_env(),
            database=DatabaseConfig.from_env(),
            recovery=RecoveryConfig.from_env(),
            alerts=AlertConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigurationError: If configuration is invalid.
        """
        if not self.s3.bucket:
            raise ConfigurationError(
                "Missing AWS_S3_BUCKET (or S3_BUCKET) configuration for backups",
                setting="AWS_S3_BUCKET",
            )
        if bool(self.s3.access_key_id) != bool(self.s3.secret_access_key):
            raise ConfigurationError(
                "AWS_S3_ACCESS_KEY_ID and AWS_S3_SECRET_ACCESS_KEY must be set together",
                setting="AWS_S3_SECRET_ACCESS_KEY",
            )
        if self.backup.batch_size <= 0:
            raise ConfigurationError("BACKUP_BATCH_SIZE must be positive", setting="BACKUP_BATCH_SIZE")
        if self.backup.chunk_size < MIN_CHUNK_SIZE:
            raise ConfigurationError(
                f"BACKUP_CHUNK_SIZE must be at least {MIN_CHUNK_SIZE} bytes",
                setting="BACKUP_CHUNK_SIZE",
            )
        if not 0 <= self.backup.compression_level <= 9:
            raise ConfigurationError(
                "BACKUP_COMPRESSION_LEVEL must be between 0 and 9",
                setting="BACKUP_COMPRESSION_LEVEL",
            )

    def verify_location(self) -> str:
        """Return the disposable verification URI.

        Raises:
            ConfigurationError: If it would point at the primary database.
        """
        uri = self.backup.verify_uri or derive_verify_uri(self.database.uri)
        if uri == self.database.uri or (
            urlsplit(uri).netloc == urlsplit(self.database.uri).netloc
            and database_name_from_uri(uri) == database_name_from_uri(self.database.uri)
        ):
            raise ConfigurationError(
                "BACKUP_VERIFY_URI must not point at the primary database",
                setting="BACKUP_VERIFY_URI",
            )
        return uri

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "DocVault configuration loaded",
            extra={
                "s3_bucket": self.s3.bucket,
                "s3_region": self.s3.region,
                "s3_endpoint": self.s3.endpoint_url,
                "prefix": self.backup.prefix,
                "retention": self.backup.retention,
                "batch_size": self.backup.batch_size,
                "database_uri": redact_uri(self.database.uri),
                "dr_target_uri": redact_uri(self.database.dr_target_uri),
                "alerts_configured": bool(
                    self.alerts.slack_webhook_url or self.alerts.discord_webhook_url
                ),
                "log_level": self.observability.log_level,
            },
        )
