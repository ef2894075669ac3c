"""OS package provisioning through apt."""

from typing import Iterable, List, Sequence

from guacsetup.errors import PackageError

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class PackageProvisioner:
    """Installs missing packages and keeps their services running."""

    def __init__(self, command_runner, service_manager, logger, console):
        self.command_runner = command_runner
        self.service_manager = service_manager
        self.logger = logger
        self.console = console

    def _apt(self, *args: str):
        return self.command_runner.run(
            ["apt-get", *args],
            capture_output=True,
            env=APT_ENV,
            error_cls=PackageError,
        )

    def refresh_index(self, upgrade: bool = False):
        self.console.print("[blue]Updating package index...[/blue]")
        self._apt("update", "-y")
        if upgrade:
            self.console.print("[blue]Upgrading installed packages...[/blue]")
            self._apt("dist-upgrade", "-y")

    def is_installed(self, name: str) -> bool:
        result = self.command_runner.run(
            ["dpkg-query", "-W", "-f=${Status}", name],
            check=False,
            capture_output=True,
            error_cls=PackageError,
        )
        # "install ok installed"; half-removed packages report "config-files" etc.
        return result.returncode == 0 and (result.stdout or "").split()[-1:] == ["installed"]

    def is_available(self, name: str) -> bool:
        result = self.command_runner.run(
            ["apt-cache", "show", name],
            check=False,
            capture_output=True,
            error_cls=PackageError,
        )
        return result.returncode == 0

    def select_package(self, candidates: Sequence[str]) -> str:
        """First candidate the package index knows; the last one otherwise."""
        for name in candidates:
            if self.is_available(name):
                return name
        return candidates[-1]

    def ensure_packages(self, names: Iterable[str]) -> List[str]:
        """Install whatever is missing and return the names actually installed."""
        missing = [name for name in dict.fromkeys(names) if not self.is_installed(name)]
        if not missing:
            self.logger.info("All requested packages are already installed.")
            return []

        self.logger.info("Installing packages: %s", " ".join(missing))
        self._apt("install", "-y", *missing)
        return missing

    def ensure_service_running(self, name: str):
        self.service_manager.enable_and_start(name)
