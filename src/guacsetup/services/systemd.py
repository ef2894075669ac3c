"""systemd lifecycle helpers for guacsetup."""

from guacsetup.errors import ServiceError
from guacsetup.errors_catalog import actionable_error
from guacsetup.models import ServiceState

_ACTIVE_STATES = {
    "active": ServiceState.RUNNING,
    "reloading": ServiceState.RUNNING,
    "activating": ServiceState.STARTING,
    "failed": ServiceState.FAILED,
}


class ServiceManager:
    """Thin wrapper over ``systemctl``; every failed action is fatal."""

    def __init__(self, command_runner, logger):
        self.command_runner = command_runner
        self.logger = logger

    def _systemctl(self, *args: str, check: bool = True):
        return self.command_runner.run(
            ["systemctl", *args],
            check=check,
            capture_output=True,
            error_cls=ServiceError,
        )

    def state(self, name: str) -> ServiceState:
        result = self._systemctl("is-active", name, check=False)
        return _ACTIVE_STATES.get((result.stdout or "").strip(), ServiceState.STOPPED)

    def is_running(self, name: str) -> bool:
        return self.state(name) == ServiceState.RUNNING

    def daemon_reload(self):
        self._systemctl("daemon-reload")

    def enable(self, name: str):
        self._systemctl("enable", name)

    def _transition(self, action: str, name: str, expected: ServiceState):
        self.logger.info("systemctl %s %s", action, name)
        try:
            self._systemctl(action, name)
        except ServiceError as exc:
            raise ServiceError(
                f"{actionable_error('service_failed', service=name, action=action)}\n{exc}"
            ) from exc

        current = self.state(name)
        if expected == ServiceState.RUNNING and current not in (ServiceState.RUNNING, ServiceState.STARTING):
            raise ServiceError(actionable_error("service_failed", service=name, action=action))
        if expected == ServiceState.STOPPED and current == ServiceState.RUNNING:
            raise ServiceError(actionable_error("service_failed", service=name, action=action))

    def start(self, name: str):
        self._transition("start", name, ServiceState.RUNNING)

    def stop(self, name: str):
        self._transition("stop", name, ServiceState.STOPPED)

    def restart(self, name: str):
        self._transition("restart", name, ServiceState.RUNNING)

    def enable_and_start(self, name: str):
        self.enable(name)
        if self.is_running(name):
            self.logger.debug("Service %s already running", name)
            return
        self.start(name)
