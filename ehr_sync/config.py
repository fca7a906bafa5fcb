from enum import Enum
import configparser
import re
from os import environ
from os.path import exists
from typing import Any, Optional
import logging

from pydantic import BaseModel, Field, ValidationError, computed_field, field_validator

logger = logging.getLogger(__name__)

_PATH = "ehr_sync{suffix}.conf"
_CONFIG = None


def _convert_conf_to_sec(value: str) -> int:
    conversion_map = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    match = re.match(r"^(\d+)([smhd])$", value)
    if not match:
        raise ValueError(
            f"Incorrect input, must be digits with {list(conversion_map.keys())}"
        )

    number = int(match.group(1))
    unit = match.group(2)

    return number * conversion_map[unit]


def _to_bool(v: Any, default: bool) -> bool:
    if v in (None, "", " "):
        return default
    if isinstance(v, str):
        return v.lower() in ("yes", "true", "t", "1")
    return bool(v)


class LogLevel(str, Enum):
    debug = "debug"
    info = "info"
    warning = "warning"
    error = "error"
    critical = "critical"


class ConfigApp(BaseModel):
    loglevel: LogLevel = Field(default=LogLevel.info)


class Scheduler(BaseModel):
    delay_input: str = Field(default="5m")
    max_logs_entries: int = Field(default=1000, ge=0)
    automatic_background_export: bool = Field(default=False)
    # Parallelism for exporting multiple tenants (1 = sequential)
    max_concurrent_tenant_exports: int = Field(default=1, ge=1, le=32)

    @computed_field
    def delay_input_in_sec(self) -> int:
        return _convert_conf_to_sec(self.delay_input)

    @field_validator("max_logs_entries", mode="before")
    def validate_max_log_entries(cls, v: Any) -> int:
        if v in (None, "", " "):
            return 1000
        return int(v)

    @field_validator("automatic_background_export", mode="before")
    def validate_automatic_background_export(cls, v: Any) -> bool:
        return _to_bool(v, False)

    @field_validator("max_concurrent_tenant_exports", mode="before")
    def validate_max_concurrent_tenant_exports(cls, v: Any) -> int:
        if v in (None, "", " "):
            return 1
        return int(v)


class ConfigUvicorn(BaseModel):
    swagger_enabled: bool = Field(default=False)
    docs_url: str = Field(default="/docs")
    redoc_url: str = Field(default="/redoc")
    host: str = Field(default="127.0.0.1")
    port: Optional[int] = Field(default=8000, gt=0, lt=65535)
    reload: bool = Field(default=True)
    reload_delay: float = Field(default=1)
    reload_dirs: list[str] = Field(default=["ehr_sync"])
    use_ssl: bool = Field(default=False)
    ssl_base_dir: str | None = Field(default=None)
    ssl_cert_file: str | None = Field(default=None)
    ssl_key_file: str | None = Field(default=None)

    @field_validator("host", mode="before")
    def validate_host(cls, v: Any) -> str:
        if v in (None, "", " "):
            return "127.0.0.1"
        return str(v)

    @field_validator("port", mode="before")
    def validate_port(cls, v: Any) -> int:
        if v in (None, "", " "):
            return 8000
        return int(v)

    @field_validator("swagger_enabled", "reload", "use_ssl", mode="before")
    def validate_flags(cls, v: Any) -> bool:
        return _to_bool(v, False)

    @field_validator("reload_delay", mode="before")
    def validate_reload_delay(cls, v: Any) -> float:
        if v in (None, "", " "):
            return 1.0
        return float(v)

    @field_validator("reload_dirs", mode="before")
    def validate_reload_dirs(cls, v: Any) -> list[str]:
        if v in (None, "", " "):
            return ["ehr_sync"]
        if isinstance(v, str):
            return [d.strip() for d in v.split(",")]
        return v  # type: ignore


class ConfigTenants(BaseModel):
    tenants_file_path: str
    # Fallback target store used when a tenant does not configure its own
    default_target_store_url: str | None = Field(default=None)


class ConfigEhr(BaseModel):
    timeout: int = Field(default=30)
    # Vendor app key (Epic) is read from this directory when the tenant path is relative
    private_key_dir: str | None = Field(default=None)
    document_type_code: str = Field(default="18842-5")
    document_search_count: int = Field(default=5)
    encounter_search_count: int = Field(default=5)

    @field_validator("timeout", mode="before")
    def validate_timeout(cls, v: Any) -> int:
        if v in (None, "", " "):
            return 30
        return int(v)

    @field_validator("document_search_count", "encounter_search_count", mode="before")
    def validate_counts(cls, v: Any) -> int:
        if v in (None, "", " "):
            return 5
        return int(v)


class ConfigTargetStore(BaseModel):
    authentication: str = Field(
        default="off",
        description="Enable authentication, can be 'off', 'oauth2' or 'aws'",
    )
    timeout: int = Field(default=10)
    backoff: float = Field(default=0.5)
    retries: int = Field(default=3)
    mtls_client_cert_path: str | None = Field(default=None)
    mtls_client_key_path: str | None = Field(default=None)
    mtls_ca_path: str | None = Field(default=None)

    @field_validator("authentication")
    def validate_authentication(cls, value: Any) -> str:
        if value not in {"off", "oauth2", "aws"}:
            raise ValueError(
                "authentication must be either 'off', 'oauth2' or 'aws'"
            )
        return str(value)

    @field_validator("timeout", mode="before")
    def validate_timeout(cls, v: Any) -> int:
        if v in (None, "", " "):
            return 10
        return int(v)

    @field_validator("backoff", mode="before")
    def validate_backoff(cls, v: Any) -> float:
        if v in (None, "", " "):
            return 0.5
        return float(v)

    @field_validator("retries", mode="before")
    def validate_retries(cls, v: Any) -> int:
        if v in (None, "", " "):
            return 3
        return int(v)


class ConfigEvents(BaseModel):
    host: str | None = Field(default=None)
    port: int | None = Field(default=None)
    ssl: bool = Field(default=False)
    key: str | None = Field(default=None)
    cert: str | None = Field(default=None)
    cafile: str | None = Field(default=None)
    check_hostname: bool = Field(default=True)
    document_channel: str = Field(default="ehr-sync.document-exported")
    encounter_channel: str = Field(default="ehr-sync.encounter-exported")

    @field_validator("port", mode="before")
    def validate_port(cls, v: Any) -> int | None:
        if v in (None, "", " "):
            return None
        return int(v)

    @field_validator("ssl", mode="before")
    def validate_ssl(cls, v: Any) -> bool:
        return _to_bool(v, False)

    @field_validator("check_hostname", mode="before")
    def validate_check_hostname(cls, v: Any) -> bool:
        return _to_bool(v, True)


class ConfigStats(BaseModel):
    enabled: bool = Field(default=False)
    host: str | None = Field(default=None)
    port: int | None = Field(default=None)
    module_name: str | None = Field(default=None)

    @field_validator("enabled", mode="before")
    def validate_enabled(cls, v: Any) -> bool:
        return _to_bool(v, False)

    @field_validator("port", mode="before")
    def validate_port(cls, v: Any) -> int | None:
        if v in (None, "", " "):
            return None
        return int(v)


class ConfigAws(BaseModel):
    profile: str
    region: str


class ConfigOauth2(BaseModel):
    token_url: str
    client_id: str
    client_secret: str
    scope: str


class Config(BaseModel):
    app: ConfigApp
    uvicorn: ConfigUvicorn
    tenants: ConfigTenants
    ehr: ConfigEhr
    target_store: ConfigTargetStore
    events: ConfigEvents
    stats: ConfigStats
    oauth2: ConfigOauth2 | None = None
    aws: ConfigAws | None = None
    scheduler: Scheduler


def read_ini_file(path: str) -> Any:
    ini_data = configparser.ConfigParser()
    ini_data.read(path)

    ret = {}
    for section in ini_data.sections():
        ret[section] = dict(ini_data[section])

    return ret


def reset_config() -> None:
    global _CONFIG
    _CONFIG = None


def set_config(config: Config) -> None:
    global _CONFIG
    _CONFIG = config


def get_config(path: str | None = None) -> Config:
    global _CONFIG
    global _PATH

    if _CONFIG is not None:
        return _CONFIG

    if path is None:
        suffix = environ.get("APP_ENV", "")
        if suffix:
            suffix = f".{suffix}"
        path = _PATH.replace("{suffix}", suffix)
        logger.info(f"Reading configuration using file: {path}")

    if not exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    # INI files keep us in line with our other services. Pydantic doesn't read them, so the
    # sections are turned into plain dicts first.
    ini_data = read_ini_file(path)

    for optional_section in ("oauth2", "aws"):
        if optional_section not in ini_data:
            ini_data[optional_section] = None
    for defaulted_section in ("uvicorn", "ehr", "target_store", "events", "stats", "scheduler"):
        ini_data.setdefault(defaulted_section, {})

    try:
        _CONFIG = Config(**ini_data)
    except ValidationError as e:
        logger.error(f"Configuration validation error: {e}")
        raise e

    return _CONFIG
