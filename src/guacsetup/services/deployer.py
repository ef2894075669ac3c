"""Web client archive and JDBC authentication extension deployment."""

import os
import re
import shutil
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from guacsetup.constants import APPLICATION_FILENAME, DIR_MODE, FILE_MODE, PLUGIN_GLOB
from guacsetup.errors import ExtractionError, ProvisionError
from guacsetup.models import ReleaseVersion

_PLUGIN_NAME = re.compile(r"^guacamole-auth-jdbc-mysql-(\d+\.\d+\.\d+)\.jar$")
_UPGRADE_NAME = re.compile(r"^upgrade-pre-(\d+\.\d+\.\d+)\.sql$")
_UPGRADE_DIRS = ("mysql/schema/upgrade", "mysql/upgrade")


@dataclass(frozen=True)
class PluginBundle:
    """Contents of an extracted ``guacamole-auth-jdbc`` archive."""

    version: ReleaseVersion
    root: str
    jar_path: str
    schema_files: List[str]
    upgrade_files: Dict[ReleaseVersion, str] = field(default_factory=dict)


def plugin_filename(version: ReleaseVersion) -> str:
    return f"guacamole-auth-jdbc-mysql-{version}.jar"


class ArtifactDeployer:
    """Places a release's web archive and auth extension into their serving locations.

    New files are staged next to their destination and moved over the old ones,
    so the serving directories never hold a partially written artifact.
    """

    def __init__(
        self,
        download_service,
        archive_service,
        filesystem_service,
        logger,
        console,
        base_url: str,
    ):
        self.download_service = download_service
        self.archive_service = archive_service
        self.filesystem_service = filesystem_service
        self.logger = logger
        self.console = console
        self.base_url = base_url.rstrip("/")

    def application_url(self, version: ReleaseVersion) -> str:
        return f"{self.base_url}/{version}/binary/guacamole-{version}.war"

    def plugin_url(self, version: ReleaseVersion) -> str:
        return f"{self.base_url}/{version}/binary/guacamole-auth-jdbc-{version}.tar.gz"

    def fetch_application(self, version: ReleaseVersion, scratch_dir: str) -> str:
        path = os.path.join(scratch_dir, APPLICATION_FILENAME)
        self.download_service.download_file(
            self.application_url(version),
            path,
            f"Downloading Guacamole {version} web application...",
        )
        return path

    def install_application(self, staged_path: str, dest_path: str):
        self.filesystem_service.install_file(staged_path, dest_path, FILE_MODE)
        self.logger.info("Installed %s", dest_path)

    def deploy_application(self, version: ReleaseVersion, dest_path: str):
        with self.filesystem_service.scratch_dir() as scratch:
            self.install_application(self.fetch_application(version, scratch), dest_path)

    def fetch_plugin_bundle(self, version: ReleaseVersion, scratch_dir: str) -> PluginBundle:
        archive_path = os.path.join(scratch_dir, "guacamole-auth-jdbc.tar.gz")
        self.download_service.download_file(
            self.plugin_url(version),
            archive_path,
            f"Downloading Guacamole {version} JDBC extension...",
        )
        extract_dir = os.path.join(scratch_dir, "jdbc")
        os.makedirs(extract_dir, exist_ok=True)
        self.archive_service.safe_extract_tar(archive_path, extract_dir)

        root = self.archive_service.find_single_dir(extract_dir, "guacamole-auth-jdbc-")
        jar_path = self.archive_service.require_entry(
            root,
            f"mysql/{plugin_filename(version)}",
            os.path.basename(self.plugin_url(version)),
        )
        schema_files = self.filesystem_service.matching(os.path.join(root, "mysql", "schema"), "*.sql")
        if not schema_files:
            raise ExtractionError(f"No schema files found under {root}/mysql/schema.")

        upgrade_files = {}
        for relative in _UPGRADE_DIRS:
            for path in self.filesystem_service.matching(os.path.join(root, relative), "upgrade-pre-*.sql"):
                match = _UPGRADE_NAME.match(os.path.basename(path))
                if match:
                    upgrade_files[ReleaseVersion.parse(match.group(1))] = path

        return PluginBundle(
            version=version,
            root=root,
            jar_path=jar_path,
            schema_files=schema_files,
            upgrade_files=upgrade_files,
        )

    def install_plugin(self, bundle: PluginBundle, plugin_dir: str) -> str:
        """Swap the deployed extension for ``bundle``'s; exactly one jar remains."""
        self.filesystem_service.ensure_dir(plugin_dir, DIR_MODE)
        final_path = os.path.join(plugin_dir, plugin_filename(bundle.version))
        staged = self.filesystem_service.stage_file(bundle.jar_path, plugin_dir, FILE_MODE)
        try:
            for old in self.filesystem_service.matching(plugin_dir, PLUGIN_GLOB):
                if old != final_path:
                    self.filesystem_service.remove_file(old)
                    self.logger.info("Removed previous extension %s", old)
            os.replace(staged, final_path)
        except OSError as exc:
            raise ProvisionError(f"Could not install extension into {plugin_dir}: {exc}") from exc
        finally:
            self.filesystem_service.remove_file(staged)
        self.logger.info("Installed %s", final_path)
        return final_path

    def deploy_plugin(self, version: ReleaseVersion, plugin_dir: str) -> str:
        with self.filesystem_service.scratch_dir() as scratch:
            return self.install_plugin(self.fetch_plugin_bundle(version, scratch), plugin_dir)

    def installed_plugin_version(self, plugin_dir: str) -> Optional[ReleaseVersion]:
        versions = []
        for path in self.filesystem_service.matching(plugin_dir, PLUGIN_GLOB):
            match = _PLUGIN_NAME.match(os.path.basename(path))
            if match:
                versions.append(ReleaseVersion.parse(match.group(1)))
        return max(versions) if versions else None

    def pending_upgrades(self, bundle: PluginBundle, installed: Optional[ReleaseVersion]) -> List[str]:
        """Upgrade scripts needed to bring an ``installed`` schema to ``bundle.version``."""
        if installed is None or installed >= bundle.version:
            return []
        return [
            path
            for script_version, path in sorted(bundle.upgrade_files.items())
            if installed < script_version <= bundle.version
        ]

    def stage_upgrade_scripts(self, scripts: List[str], dest_dir: str) -> List[str]:
        """Copy upgrade scripts out of the scratch area for later, manual approval."""
        self.filesystem_service.ensure_dir(dest_dir, DIR_MODE)
        staged = []
        for path in scripts:
            target = os.path.join(dest_dir, os.path.basename(path))
            try:
                shutil.copy2(path, target)
            except OSError as exc:
                raise ProvisionError(f"Could not stage upgrade script {path}: {exc}") from exc
            staged.append(target)
        return staged

    def link_root_context(self, webapps_dir: str) -> bool:
        """Serve the web client at ``/`` by pointing ``ROOT.war`` at it."""
        self.filesystem_service.cleanup_dir(os.path.join(webapps_dir, "ROOT"))
        return self.filesystem_service.ensure_symlink(
            APPLICATION_FILENAME, os.path.join(webapps_dir, "ROOT.war")
        )
