"""Vendored application server (Tomcat 9) installation."""

import os
import shutil
from typing import Optional

from guacsetup.constants import DEFAULT_JAVA_HOME, DIR_MODE, RUNTIME_VERSION_MARKER
from guacsetup.errors import ProvisionError
from guacsetup.models import ReleaseVersion


def detect_java_home(which=shutil.which, default: str = DEFAULT_JAVA_HOME) -> str:
    """JDK root of the ``javac`` on PATH, or ``default``."""
    javac = which("javac")
    if not javac:
        return default
    return os.path.dirname(os.path.dirname(os.path.realpath(javac)))


class RuntimeInstaller:
    """Fetches and unpacks the runtime once per version and owns it by a service user."""

    def __init__(
        self,
        download_service,
        archive_service,
        filesystem_service,
        command_runner,
        logger,
        console,
        base_url: str,
    ):
        self.download_service = download_service
        self.archive_service = archive_service
        self.filesystem_service = filesystem_service
        self.command_runner = command_runner
        self.logger = logger
        self.console = console
        self.base_url = base_url.rstrip("/")

    def archive_url(self, version: ReleaseVersion) -> str:
        return f"{self.base_url}/v{version}/bin/apache-tomcat-{version}.tar.gz"

    def installed_version(self, dest_dir: str) -> Optional[str]:
        return self.filesystem_service.read_marker(os.path.join(dest_dir, RUNTIME_VERSION_MARKER))

    def ensure_service_user(self, user: str, home: str):
        result = self.command_runner.run(["id", "-u", user], check=False, capture_output=True)
        if result.returncode == 0:
            self.logger.debug("Service user %s already exists", user)
            return
        self.command_runner.run(
            ["useradd", "-r", "-d", home, "-s", "/bin/false", user],
            capture_output=True,
        )
        self.logger.info("Created service user %s", user)

    def install_runtime(self, version: ReleaseVersion, dest_dir: str, service_user: str) -> bool:
        """Unpack ``version`` into ``dest_dir``; returns False when it was already there.

        Re-extraction over an older version overwrites files in place; files the
        new archive no longer ships are left behind.
        """
        self.filesystem_service.ensure_dir(dest_dir, DIR_MODE)
        current = self.installed_version(dest_dir)
        extracted = current != str(version)

        if extracted:
            if current:
                self.logger.warning(
                    "Replacing runtime %s with %s in place; files removed upstream are kept.",
                    current,
                    version,
                )
            with self.filesystem_service.scratch_dir(prefix="guacsetup-runtime-") as scratch:
                archive_path = os.path.join(scratch, f"apache-tomcat-{version}.tar.gz")
                self.download_service.download_file(
                    self.archive_url(version),
                    archive_path,
                    f"Downloading Tomcat {version}...",
                )
                self.archive_service.safe_extract_tar(archive_path, dest_dir, strip_components=1)
            self.filesystem_service.write_text_atomic(
                os.path.join(dest_dir, RUNTIME_VERSION_MARKER), f"{version}\n", 0o644
            )
        else:
            self.console.print(f"[green]Tomcat {version} already installed.[/green]")

        self.ensure_service_user(service_user, dest_dir)
        self.command_runner.run(["chown", "-R", f"{service_user}:", dest_dir], capture_output=True)

        conf_dir = os.path.join(dest_dir, "conf")
        if not os.path.isdir(conf_dir):
            raise ProvisionError(f"Runtime at {dest_dir} has no conf/ directory.")
        self.filesystem_service.add_tree_permissions(conf_dir, 0o040)
        self.filesystem_service.add_permissions(conf_dir, 0o010)
        return extracted
