"""Rendering of gateway configuration and the runtime service unit."""

from typing import Iterable, Mapping

from guacsetup.constants import FILE_MODE, PROPERTIES_FILE_MODE
from guacsetup.errors import ProvisionError
from guacsetup.models import InstallSettings, ServiceDefinition

PROPERTIES_KEYS = (
    "guacd-hostname",
    "guacd-port",
    "mysql-hostname",
    "mysql-port",
    "mysql-database",
    "mysql-username",
    "mysql-password",
    "mysql-ssl-mode",
)


def _environment_line(key: str, value: str) -> str:
    # systemd splits unquoted assignments on whitespace.
    assignment = f"{key}={value}"
    if any(char.isspace() for char in assignment):
        escaped = assignment.replace("\\", "\\\\").replace('"', '\\"')
        return f'Environment="{escaped}"'
    return f"Environment={assignment}"


def tomcat_service_definition(settings: InstallSettings, java_home: str) -> ServiceDefinition:
    home = settings.tomcat_home
    return ServiceDefinition(
        name=settings.tomcat_service,
        description="Apache Tomcat 9 (Guacamole)",
        exec_start=f"{home}/bin/startup.sh",
        exec_stop=f"{home}/bin/shutdown.sh",
        working_directory=home,
        user=settings.service_user,
        group=settings.service_user,
        environment={
            "JAVA_HOME": java_home,
            "CATALINA_PID": f"{home}/temp/tomcat.pid",
            "CATALINA_HOME": home,
            "CATALINA_BASE": home,
            "CATALINA_OPTS": (
                f"-Xms{settings.java_heap_min} -Xmx{settings.java_heap_max} "
                "-server -XX:+UseParallelGC"
            ),
            "JAVA_OPTS": "-Djava.awt.headless=true -Djava.security.egd=file:/dev/./urandom",
        },
        wants=("guacd.service",),
    )


class ServiceConfigurator:
    """Writes configuration files wholesale and (re)starts the affected services."""

    def __init__(self, filesystem_service, service_manager, logger, console):
        self.filesystem_service = filesystem_service
        self.service_manager = service_manager
        self.logger = logger
        self.console = console

    def render_properties(self, path: str, values: Mapping[str, object]):
        missing = [key for key in PROPERTIES_KEYS if key not in values]
        if missing:
            raise ProvisionError(f"Missing properties: {', '.join(missing)}")

        content = f"""# --- Guacamole core ---
guacd-hostname: {values["guacd-hostname"]}
guacd-port: {values["guacd-port"]}

# --- MySQL/MariaDB auth ---
mysql-hostname: {values["mysql-hostname"]}
mysql-port: {values["mysql-port"]}
mysql-database: {values["mysql-database"]}
mysql-username: {values["mysql-username"]}
mysql-password: {values["mysql-password"]}
# Avoid SSL mismatch unless explicitly configured on server:
mysql-ssl-mode: {values["mysql-ssl-mode"]}
"""
        self.filesystem_service.write_text_atomic(path, content, PROPERTIES_FILE_MODE)
        self.logger.info("Wrote %s", path)

    def render_service_unit(self, path: str, definition: ServiceDefinition):
        environment = "\n".join(
            _environment_line(key, value) for key, value in definition.environment.items()
        )
        wants = ""
        if definition.wants:
            wants = f"Wants={' '.join(definition.wants)}\n"

        content = f"""[Unit]
Description={definition.description}
After={' '.join(definition.after)}
{wants}
[Service]
Type={definition.service_type}
{environment}
WorkingDirectory={definition.working_directory}
ExecStart={definition.exec_start}
ExecStop={definition.exec_stop}
User={definition.user}
Group={definition.group}
UMask={definition.umask}
RestartSec={definition.restart_sec}
Restart={definition.restart}

[Install]
WantedBy=multi-user.target
"""
        self.filesystem_service.write_text_atomic(path, content, FILE_MODE)
        self.logger.info("Wrote %s", path)

    def apply_and_restart(self, service_names: Iterable[str]):
        self.service_manager.daemon_reload()
        for name in service_names:
            self.service_manager.enable(name)
            self.service_manager.restart(name)
            self.console.print(f"[green]Service {name} running.[/green]")
