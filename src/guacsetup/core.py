import logging
import os
import shlex
import sys
from typing import Any, Callable, Dict, List, Optional

import requests
from rich.console import Console

from .constants import (
    BASE_PACKAGES,
    DATABASE_SERVICE,
    DIR_MODE,
    GUACAMOLE_VERSION_PATTERN,
    GUACD_PACKAGE_CANDIDATES,
    SCRIPT_MODE,
    TOMCAT_VERSION_PATTERN,
)
from .errors import PrivilegeError, ProvisionError
from .errors_catalog import actionable_error
from .models import (
    DatabaseCredential,
    InstallSettings,
    InstalledArtifactSet,
    ReleaseVersion,
    WorkflowStage,
)
from .services.archive import ArchiveService
from .services.command_runner import CommandRunner
from .services.configurator import ServiceConfigurator, tomcat_service_definition
from .services.credentials import CredentialStore
from .services.database import DatabaseProvisioner
from .services.deployer import ArtifactDeployer, PluginBundle
from .services.download import DownloadService
from .services.filesystem import FileSystemService
from .services.packages import PackageProvisioner
from .services.runtime import RuntimeInstaller, detect_java_home
from .services.state import StateService
from .services.systemd import ServiceManager
from .services.version_resolver import VersionResolver

console = Console()
logger = logging.getLogger("guacsetup")

GUACD_SERVICE = "guacd"


class Workflow:
    """Shared wiring and step bookkeeping of the install, update and approval workflows."""

    NAME = "workflow"
    COMMAND = "guacsetup"

    def __init__(
        self,
        settings: Optional[InstallSettings] = None,
        command_runner=None,
        requests_module=requests,
    ):
        self.settings = settings or InstallSettings()
        self.state: Optional[Dict[str, Any]] = None
        self.current_step_name: Optional[str] = None

        self.command_runner = command_runner or CommandRunner(logger=logger)
        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.archive_service = ArchiveService()
        self.download_service = DownloadService(
            logger=logger,
            console=console,
            requests_module=requests_module,
            timeout=self.settings.download_timeout,
            allow_insecure_http=self.settings.allow_insecure_http,
        )
        self.version_resolver = VersionResolver(self.download_service, logger)
        self.service_manager = ServiceManager(self.command_runner, logger)
        self.package_provisioner = PackageProvisioner(
            self.command_runner, self.service_manager, logger, console
        )
        self.credential_store = CredentialStore(
            self.settings.credentials_file, self.filesystem_service, logger
        )
        self.database_provisioner = DatabaseProvisioner(
            self.command_runner,
            self.credential_store,
            logger,
            console,
            secret_length=self.settings.secret_length,
        )
        self.runtime_installer = RuntimeInstaller(
            self.download_service,
            self.archive_service,
            self.filesystem_service,
            self.command_runner,
            logger,
            console,
            base_url=self.settings.tomcat_index_url,
        )
        self.deployer = ArtifactDeployer(
            self.download_service,
            self.archive_service,
            self.filesystem_service,
            logger,
            console,
            base_url=self.settings.guacamole_index_url,
        )
        self.configurator = ServiceConfigurator(
            self.filesystem_service, self.service_manager, logger, console
        )
        self.state_service = StateService(state_file=self.settings.state_file, logger=logger)

    def _require_root(self):
        if os.geteuid() != 0:
            raise PrivilegeError(actionable_error("not_root", command=self.COMMAND))

    def _run_step(
        self,
        name: str,
        callback: Callable,
        *args,
        stage: Optional[WorkflowStage] = None,
        **kwargs,
    ):
        if self.state is not None:
            self.state_service.mark_step_started(self.state, name)
        self.current_step_name = name
        logger.debug("Step %s started", name)

        result = callback(*args, **kwargs)

        if self.state is not None:
            self.state_service.mark_step_completed(self.state, name)
            if stage is not None:
                self.state_service.set_stage(self.state, stage)
        self.current_step_name = None
        return result

    def resolve_guacamole_version(self) -> ReleaseVersion:
        return self.version_resolver.resolve_latest(
            self.settings.guacamole_index_url, GUACAMOLE_VERSION_PATTERN
        )

    def stage_schema_gate(
        self, bundle: PluginBundle, installed: Optional[ReleaseVersion]
    ) -> List[str]:
        """Copy upgrade scripts the new release needs; they are never run here."""
        scripts = self.deployer.pending_upgrades(bundle, installed)
        if not scripts:
            return []

        dest_dir = os.path.join(self.settings.guac_home, "upgrade", str(bundle.version))
        staged = self.deployer.stage_upgrade_scripts(scripts, dest_dir)
        if self.state is not None:
            # Saved right away; finish() only reads the record back.
            earlier = self.state_service.get_pending_schema_upgrade(self.state) or {}
            carried = [path for path in earlier.get("scripts", []) if path not in staged]
            self.state_service.set_pending_schema_upgrade(
                self.state, str(bundle.version), carried + staged
            )
        logger.warning(
            "Schema upgrade from %s to %s requires %s script(s); waiting for approval.",
            installed,
            bundle.version,
            len(staged),
        )
        return staged

    def finish(self):
        """Record the final stage; an unapproved schema upgrade keeps the gate closed."""
        if self.state is None:
            return

        pending = self.state_service.get_pending_schema_upgrade(self.state)
        if pending:
            self.state_service.set_stage(self.state, WorkflowStage.AWAITING_SCHEMA_APPROVAL)
            self.print_schema_notice(pending)
        else:
            self.state_service.set_stage(self.state, WorkflowStage.SERVICES_RUNNING)

    def print_schema_notice(self, pending: Dict[str, Any]):
        scripts = pending["scripts"]
        console.print(
            f"[yellow]NOTE: Guacamole {pending['version']} changes the database schema. "
            "The upgrade was NOT applied.[/yellow]"
        )
        console.print("  Review scripts:")
        for path in scripts:
            console.print(f"    {path}")
        console.print(
            f"  Apply manually:    cat {' '.join(shlex.quote(path) for path in scripts)} "
            f"| mariadb -u root {self.settings.database_name}"
        )
        console.print("  Then record it:    sudo guacsetup schema-upgrade --mark-applied")
        console.print("  Or approve with:   sudo guacsetup schema-upgrade")

    def _execute(self) -> int:
        raise NotImplementedError

    def run(self) -> int:
        try:
            self._require_root()
            self.state = self.state_service.initialize(self.NAME)
            logger.info("Starting %s...", self.NAME)
            return self._execute()

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            self._record_failure("Operation cancelled by user.")
            return 1
        except ProvisionError as exc:
            step = self.current_step_name or self.NAME
            console.print(f"[bold red]Error:[/bold red] ({step}) {exc}")
            logger.error("%s failed: %s", step, exc)
            self._record_failure(str(exc))
            return 1
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            self._record_failure(str(exc))
            return 1

    def _record_failure(self, error: str):
        if self.state is None:
            return
        try:
            self.state_service.mark_step_failed(self.state, self.current_step_name or self.NAME, error)
        except ProvisionError as exc:
            logger.warning("Could not record failure in state file: %s", exc)


class GuacamoleInstaller(Workflow):
    """Converges a host to a running Guacamole gateway; safe to re-run."""

    NAME = "install"
    COMMAND = "guacamole-install"

    def provision_packages(self):
        console.print("[blue]Installing base packages (MariaDB, guacd, Java, tools)...[/blue]")
        self.package_provisioner.refresh_index(upgrade=self.settings.upgrade_os)
        guacd_package = self.package_provisioner.select_package(GUACD_PACKAGE_CANDIDATES)
        self.package_provisioner.ensure_packages([*BASE_PACKAGES, guacd_package])
        self.package_provisioner.ensure_service_running(DATABASE_SERVICE)
        self.package_provisioner.ensure_service_running(GUACD_SERVICE)
        console.print("[green]Installed base packages.[/green]")

    def provision_database(self) -> DatabaseCredential:
        console.print("[blue]Configuring database...[/blue]")
        name = self.settings.database_name
        self.database_provisioner.ensure_database(name)
        credential = self.database_provisioner.ensure_role(
            self.settings.database_user,
            name,
            properties_path=self.settings.properties_file,
        )
        console.print(f"[green]Database ready: {credential.database} / {credential.user}[/green]")
        return credential

    def install_runtime(self) -> ReleaseVersion:
        version = self.version_resolver.resolve_latest(
            self.settings.tomcat_index_url, TOMCAT_VERSION_PATTERN
        )
        console.print(f"[blue]Installing Apache Tomcat 9 ({version})...[/blue]")
        self.runtime_installer.install_runtime(
            version, self.settings.tomcat_home, self.settings.service_user
        )
        console.print(f"[green]Tomcat 9 installed (v{version}).[/green]")
        return version

    def deploy_artifacts(self) -> InstalledArtifactSet:
        version = self.resolve_guacamole_version()
        console.print(f"[blue]Installing Apache Guacamole {version} (client + JDBC)...[/blue]")

        for directory in (self.settings.guac_home, self.settings.extensions_dir, self.settings.lib_dir):
            self.filesystem_service.ensure_dir(directory, DIR_MODE)
        driver = self.settings.jdbc_driver_path
        self.filesystem_service.ensure_symlink(
            driver, os.path.join(self.settings.lib_dir, os.path.basename(driver))
        )

        installed = self.deployer.installed_plugin_version(self.settings.extensions_dir)
        with self.filesystem_service.scratch_dir() as scratch:
            application = self.deployer.fetch_application(version, scratch)
            bundle = self.deployer.fetch_plugin_bundle(version, scratch)
            self.deployer.install_application(application, self.settings.application_path)
            plugin_path = self.deployer.install_plugin(bundle, self.settings.extensions_dir)

            loaded = self.database_provisioner.load_schema_if_empty(
                self.settings.database_name, bundle.schema_files
            )
            if not loaded:
                self.stage_schema_gate(bundle, installed)

        console.print(f"[green]Guacamole {version} deployed.[/green]")
        return InstalledArtifactSet(
            runtime_home=self.settings.tomcat_home,
            application_path=self.settings.application_path,
            plugin_path=plugin_path,
            version=version,
        )

    def write_configuration(self, credential: DatabaseCredential):
        console.print(f"[blue]Writing {self.settings.properties_file}...[/blue]")
        self.configurator.render_properties(
            self.settings.properties_file,
            {
                "guacd-hostname": self.settings.guacd_hostname,
                "guacd-port": self.settings.guacd_port,
                "mysql-hostname": self.settings.mysql_hostname,
                "mysql-port": self.settings.mysql_port,
                "mysql-database": credential.database,
                "mysql-username": credential.user,
                "mysql-password": credential.secret,
                "mysql-ssl-mode": self.settings.mysql_ssl_mode,
            },
        )
        self.command_runner.run(
            ["chown", "-R", f"{self.settings.service_user}:", self.settings.guac_home],
            capture_output=True,
        )

        definition = tomcat_service_definition(self.settings, detect_java_home())
        self.configurator.render_service_unit(self.settings.unit_file, definition)
        self.install_update_command()
        if self.settings.root_context:
            self.deployer.link_root_context(self.settings.webapps_dir)
        console.print("[green]Configuration written.[/green]")

    def install_update_command(self):
        script = f'#!/bin/sh\nexec {shlex.quote(sys.executable)} -m guacsetup.cli update "$@"\n'
        self.filesystem_service.write_text_atomic(
            self.settings.update_command_path, script, SCRIPT_MODE
        )
        logger.info("Installed updater at %s", self.settings.update_command_path)

    def start_services(self):
        console.print("[blue]Configuring services...[/blue]")
        self.configurator.apply_and_restart([GUACD_SERVICE, self.settings.tomcat_service])

    def primary_address(self) -> str:
        result = self.command_runner.run(["hostname", "-I"], check=False, capture_output=True)
        addresses = (result.stdout or "").split()
        return addresses[0] if result.returncode == 0 and addresses else "127.0.0.1"

    def print_summary(self, artifacts: InstalledArtifactSet):
        address = self.primary_address()
        port = self.settings.http_port
        console.print(f"[bold green]Apache Guacamole {artifacts.version} is ready![/bold green]")
        console.print(f"  URL:    http://{address}:{port}/guacamole")
        if self.settings.root_context:
            console.print(f"  Also:   http://{address}:{port}/")
        console.print(f"  DB Credentials saved at: {self.credential_store.path}")
        console.print("  Update later with: sudo guacamole-update")

    def _execute(self) -> int:
        self._run_step("provision_packages", self.provision_packages, stage=WorkflowStage.PACKAGES_READY)
        credential = self._run_step(
            "provision_database", self.provision_database, stage=WorkflowStage.DATABASE_READY
        )
        self._run_step("install_runtime", self.install_runtime, stage=WorkflowStage.RUNTIME_READY)
        artifacts = self._run_step(
            "deploy_artifacts", self.deploy_artifacts, stage=WorkflowStage.ARTIFACTS_DEPLOYED
        )
        self._run_step(
            "write_configuration",
            self.write_configuration,
            credential,
            stage=WorkflowStage.CONFIG_WRITTEN,
        )
        self._run_step("start_services", self.start_services)
        self.finish()
        self.print_summary(artifacts)
        return 0


class GuacamoleUpdater(Workflow):
    """Swaps the web archive and auth extension for the latest release."""

    NAME = "update"
    COMMAND = "guacamole-update"

    def check_installed(self):
        if not os.path.isdir(self.settings.webapps_dir):
            raise ProvisionError(
                f"No runtime found at {self.settings.tomcat_home}. Run guacamole-install first."
            )

    def fetch_release(self, version: ReleaseVersion, scratch_dir: str):
        application = self.deployer.fetch_application(version, scratch_dir)
        bundle = self.deployer.fetch_plugin_bundle(version, scratch_dir)
        return application, bundle

    def install_release(self, application: str, bundle: PluginBundle) -> InstalledArtifactSet:
        self.deployer.install_application(application, self.settings.application_path)
        plugin_path = self.deployer.install_plugin(bundle, self.settings.extensions_dir)
        return InstalledArtifactSet(
            runtime_home=self.settings.tomcat_home,
            application_path=self.settings.application_path,
            plugin_path=plugin_path,
            version=bundle.version,
        )

    def _execute(self) -> int:
        self._run_step("check_installed", self.check_installed)
        version = self._run_step("resolve_version", self.resolve_guacamole_version)
        console.print(f"Latest Guacamole version: {version}")

        installed = self.deployer.installed_plugin_version(self.settings.extensions_dir)
        if installed == version and os.path.isfile(self.settings.application_path):
            console.print(f"[green]Guacamole {version} is already deployed; nothing to update.[/green]")
            self._run_step("start_runtime", self.service_manager.enable_and_start, self.settings.tomcat_service)
            self.finish()
            return 0

        tomcat = self.settings.tomcat_service
        with self.filesystem_service.scratch_dir() as scratch:
            application, bundle = self._run_step("fetch_release", self.fetch_release, version, scratch)
            self._run_step("stop_runtime", self.service_manager.stop, tomcat)
            self._run_step(
                "install_release",
                self.install_release,
                application,
                bundle,
                stage=WorkflowStage.ARTIFACTS_DEPLOYED,
            )
            self.stage_schema_gate(bundle, installed)

        console.print(f"[green]Updated web application and JDBC extension to {version}.[/green]")
        console.print(f"Restarting {tomcat}...")
        self._run_step("start_runtime", self.service_manager.start, tomcat)
        self.finish()
        return 0


class SchemaUpgradeGate(Workflow):
    """Applies staged schema upgrade scripts after explicit operator approval."""

    NAME = "schema-upgrade"
    COMMAND = "guacsetup schema-upgrade"

    def __init__(
        self,
        *args,
        assume_yes: bool = False,
        confirm: Optional[Callable[[str], bool]] = None,
        mark_applied: bool = False,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.assume_yes = assume_yes
        self.confirm = confirm
        self.mark_applied = mark_applied

    def _execute(self) -> int:
        pending = self.state_service.get_pending_schema_upgrade(self.state)
        if not pending or not pending.get("scripts"):
            raise ProvisionError(actionable_error("no_pending_schema_upgrade"))

        if self.mark_applied:
            # Operator ran the scripts by hand; only the record is cleared.
            self.state_service.clear_pending_schema_upgrade(self.state)
            console.print(
                f"[green]Schema upgrade to {pending['version']} recorded as applied; "
                "no SQL was run.[/green]"
            )
            logger.info("Schema upgrade to %s marked as applied manually", pending["version"])
            self.finish()
            return 0

        scripts = pending["scripts"]
        missing = [path for path in scripts if not os.path.isfile(path)]
        if missing:
            raise ProvisionError(f"Staged upgrade scripts are missing: {', '.join(missing)}")

        database = self.settings.database_name
        console.print(f"[bold]Schema upgrade to Guacamole {pending['version']}[/bold]")
        for path in scripts:
            console.print(f"  {path}")

        approved = self.assume_yes or (
            self.confirm is not None
            and self.confirm(f"Apply {len(scripts)} script(s) to database {database}?")
        )
        if not approved:
            console.print("[yellow]Schema upgrade not approved; nothing was changed.[/yellow]")
            return 1

        tomcat = self.settings.tomcat_service
        self._run_step("stop_runtime", self.service_manager.stop, tomcat)
        self._run_step(
            "apply_schema_upgrade", self.database_provisioner.apply_sql_files, database, scripts
        )
        self.state_service.clear_pending_schema_upgrade(self.state)
        console.print(f"[green]Database schema upgraded to {pending['version']}.[/green]")
        self._run_step("start_runtime", self.service_manager.start, tomcat)
        self.finish()
        return 0
