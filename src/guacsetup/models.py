"""Shared domain models for guacsetup."""

import re
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Mapping, Tuple

from guacsetup import constants
from guacsetup.errors import ConfigError

_STRICT_VERSION = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


@dataclass(frozen=True, order=True)
class ReleaseVersion:
    """A stable ``major.minor.patch`` release, ordered numerically."""

    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, value: str) -> "ReleaseVersion":
        match = _STRICT_VERSION.match(value.strip())
        if not match:
            raise ValueError(f"Not a stable release version: {value!r}")
        major, minor, patch = (int(part) for part in match.groups())
        return cls(major, minor, patch)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class DatabaseCredential:
    database: str
    user: str
    secret: str = field(repr=False)


@dataclass(frozen=True)
class InstalledArtifactSet:
    """Serving locations of one deployed release."""

    runtime_home: str
    application_path: str
    plugin_path: str
    version: ReleaseVersion


class ServiceState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"


class WorkflowStage(str, Enum):
    NOT_INSTALLED = "not_installed"
    PACKAGES_READY = "packages_ready"
    DATABASE_READY = "database_ready"
    RUNTIME_READY = "runtime_ready"
    ARTIFACTS_DEPLOYED = "artifacts_deployed"
    CONFIG_WRITTEN = "config_written"
    SERVICES_RUNNING = "services_running"
    AWAITING_SCHEMA_APPROVAL = "awaiting_schema_approval"


@dataclass(frozen=True)
class ServiceDefinition:
    """A service unit managed by the OS service manager."""

    name: str
    description: str
    exec_start: str
    exec_stop: str
    working_directory: str
    user: str
    group: str
    environment: Dict[str, str] = field(default_factory=dict)
    service_type: str = "forking"
    restart: str = "always"
    restart_sec: int = 10
    umask: str = "0007"
    after: Tuple[str, ...] = ("network.target",)
    wants: Tuple[str, ...] = ()


@dataclass(frozen=True)
class InstallSettings:
    """Every tunable of the install and update workflows."""

    guacamole_index_url: str = constants.GUACAMOLE_INDEX_URL
    tomcat_index_url: str = constants.TOMCAT_INDEX_URL
    database_name: str = constants.DATABASE_NAME
    database_user: str = constants.DATABASE_USER
    secret_length: int = 16
    guac_home: str = constants.GUAC_HOME
    tomcat_home: str = constants.TOMCAT_HOME
    tomcat_service: str = constants.TOMCAT_SERVICE
    service_user: str = constants.SERVICE_USER
    unit_dir: str = constants.UNIT_DIR
    credentials_file: str = constants.CREDENTIALS_FILE
    state_file: str = constants.STATE_FILE
    update_command_path: str = constants.UPDATE_COMMAND_PATH
    jdbc_driver_path: str = constants.JDBC_DRIVER_PATH
    java_heap_min: str = "512M"
    java_heap_max: str = "1024M"
    guacd_hostname: str = "127.0.0.1"
    guacd_port: int = 4822
    mysql_hostname: str = "127.0.0.1"
    mysql_port: int = 3306
    mysql_ssl_mode: str = "disabled"
    http_port: int = 8080
    root_context: bool = True
    upgrade_os: bool = True
    download_timeout: float = 60.0
    allow_insecure_http: bool = False

    @classmethod
    def field_names(cls):
        return {item.name for item in fields(cls)}

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "InstallSettings":
        unknown = sorted(set(values) - cls.field_names())
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**dict(values))

    @property
    def extensions_dir(self) -> str:
        return f"{self.guac_home}/extensions"

    @property
    def lib_dir(self) -> str:
        return f"{self.guac_home}/lib"

    @property
    def properties_file(self) -> str:
        return f"{self.guac_home}/guacamole.properties"

    @property
    def webapps_dir(self) -> str:
        return f"{self.tomcat_home}/webapps"

    @property
    def application_path(self) -> str:
        return f"{self.webapps_dir}/{constants.APPLICATION_FILENAME}"

    @property
    def unit_file(self) -> str:
        return f"{self.unit_dir}/{self.tomcat_service}.service"
