"""
Configuration management with schema validation and atomic writes.

Two files live in the data directory:
- manager.conf: key=value account policy (MAX_USERS, DEFAULT_EXPIRE_DAYS, ...)
- settings.yaml: logging, transport and monitor settings, with ${VAR:default}
  environment substitution

Nothing here is global: ConfigManager is built once per invocation and the
loaded objects are passed to every component.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import dotenv_values, load_dotenv
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConfigError
from .logger import get_logger

logger = get_logger(__name__)

DEFAULT_DATA_DIR = "/var/lib/tunnelward"
MANAGER_CONF_NAME = "manager.conf"
SETTINGS_FILE_NAME = "settings.yaml"
USER_DB_NAME = "users.db"


def data_dir_from_env() -> Path:
    return Path(os.getenv("TUNNELWARD_DATA_DIR", DEFAULT_DATA_DIR))


class ManagerConfig(BaseModel):
    """Account policy read from manager.conf"""
    max_users: int = Field(default=50, ge=0, alias="MAX_USERS")
    default_expire_days: int = Field(default=30, ge=1, alias="DEFAULT_EXPIRE_DAYS")
    allow_password_auth: bool = Field(default=False, alias="ALLOW_PASSWORD_AUTH")
    require_key_auth: bool = Field(default=True, alias="REQUIRE_KEY_AUTH")
    min_password_length: int = Field(default=12, ge=8, alias="MIN_PASSWORD_LENGTH")
    stunnel_port: int = Field(default=443, ge=1, le=65535, alias="STUNNEL_PORT")
    stunnel_config_path: str = Field(default="/etc/stunnel/stunnel.conf", alias="STUNNEL_CONFIG_PATH")

    class Config:
        frozen = True
        populate_by_name = True

    def to_conf_lines(self) -> List[str]:
        lines = ["# Tunnelward account manager configuration"]
        for name, field in type(self).model_fields.items():
            value = getattr(self, name)
            if isinstance(value, bool):
                value = "true" if value else "false"
            lines.append(f"{field.alias}={value}")
        return lines


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file_path: str = "/var/log/tunnelward/tunnelward.log"
    max_bytes: int = 10485760
    backup_count: int = 5


class TransportSettings(BaseModel):
    """Names of the services the tunnel depends on"""
    service_names: List[str] = Field(default_factory=lambda: ["stunnel4", "stunnel"])
    ssh_service_names: List[str] = Field(default_factory=lambda: ["ssh", "sshd"])
    certificate_path: str = "/etc/stunnel/stunnel.pem"


class MonitorSettings(BaseModel):
    email_alerts: bool = False
    admin_email: str = "admin@example.com"
    lock_file: str = "/var/run/tunnelward_monitor.lock"
    certificate_warning_days: int = Field(default=30, ge=0)
    expiry_warning_days: int = Field(default=7, ge=1)
    max_sessions_per_user: int = Field(default=3, ge=1)
    disk_usage_threshold: float = Field(default=90.0, gt=0, le=100)
    memory_usage_threshold: float = Field(default=90.0, gt=0, le=100)
    max_log_bytes: int = 10485760
    rotated_log_max_age_days: int = 5
    log_files: List[str] = Field(
        default_factory=lambda: ["/var/log/stunnel/stunnel.log", "/var/log/tunnelward/monitor.log"]
    )
    report_dir: str = "/tmp"
    cron_schedule: str = "0 */6 * * *"
    interval_hours: int = Field(default=6, ge=1)


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)


class ConfigManager:
    """Locates, loads and validates configuration for one invocation"""

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir is not None else data_dir_from_env()
        self.manager_conf_path = self.data_dir / MANAGER_CONF_NAME
        self.settings_path = self.data_dir / SETTINGS_FILE_NAME
        self.user_db_path = self.data_dir / USER_DB_NAME
        self.locks_dir = self.data_dir / "locks"

        env_path = self.data_dir / ".env"
        if env_path.exists():
            load_dotenv(env_path)

    def _substitute_env_vars(self, value: Any) -> Any:
        """Recursively substitute environment variables"""
        if isinstance(value, str):
            if value.startswith("${") and value.endswith("}"):
                var_expr = value[2:-1]
                if ":" in var_expr:
                    var_name, default = var_expr.split(":", 1)
                    return os.getenv(var_name.strip(), default.strip())
                env_value = os.getenv(var_expr)
                if env_value is None:
                    raise ConfigError(f"Environment variable {var_expr} not found", identifier=var_expr)
                return env_value
        elif isinstance(value, dict):
            return {k: self._substitute_env_vars(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self._substitute_env_vars(item) for item in value]
        return value

    def load_manager_config(self) -> ManagerConfig:
        """Load manager.conf, writing one with defaults on first run"""
        if not self.manager_conf_path.exists():
            config = ManagerConfig()
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self._atomic_write(self.manager_conf_path, "\n".join(config.to_conf_lines()) + "\n")
            logger.info("Created default manager configuration", path=str(self.manager_conf_path))
            return config

        raw = dotenv_values(self.manager_conf_path)
        known = {field.alias for field in ManagerConfig.model_fields.values()}
        values = {k: v for k, v in raw.items() if k in known and v not in (None, "")}
        try:
            return ManagerConfig(**values)
        except PydanticValidationError as e:
            raise ConfigError(
                f"Invalid configuration in {self.manager_conf_path}: {e}",
                identifier=str(self.manager_conf_path),
            )

    def load_settings(self) -> Settings:
        """Load and validate settings.yaml; defaults when absent"""
        if not self.settings_path.exists():
            return Settings()
        try:
            with open(self.settings_path, "r", encoding="utf-8") as f:
                raw_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read {self.settings_path}: {e}", identifier=str(self.settings_path))

        processed = self._substitute_env_vars(raw_data)
        try:
            return Settings(**processed)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid settings in {self.settings_path}: {e}", identifier=str(self.settings_path))

    def _atomic_write(self, path: Path, content: str) -> None:
        """Write a text file atomically"""
        with tempfile.NamedTemporaryFile(mode="w", dir=path.parent, delete=False, encoding="utf-8") as tf:
            tf.write(content)
            temp_path = Path(tf.name)
        try:
            shutil.move(str(temp_path), str(path))
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config to {path}: {e}", identifier=str(path))


def describe_config(config: ManagerConfig, manager: ConfigManager) -> Dict[str, str]:
    """Flat view used by the `config` command"""
    return {
        "Max users": str(config.max_users),
        "Default expire days": str(config.default_expire_days),
        "Allow password auth": str(config.allow_password_auth).lower(),
        "Require key auth": str(config.require_key_auth).lower(),
        "Min password length": str(config.min_password_length),
        "Stunnel port": str(config.stunnel_port),
        "Stunnel config": config.stunnel_config_path,
        "Config file": str(manager.manager_conf_path),
        "Settings file": str(manager.settings_path),
        "User database": str(manager.user_db_path),
    }
