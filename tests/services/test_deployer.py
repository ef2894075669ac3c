import os

import pytest

from guacsetup.errors import ExtractionError, ProvisionError
from guacsetup.models import ReleaseVersion
from guacsetup.services.archive import ArchiveService
from guacsetup.services.deployer import ArtifactDeployer, PluginBundle
from guacsetup.services.filesystem import FileSystemService

from fakes import jdbc_archive, make_tar

BASE_URL = "https://example.invalid/guacamole"


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class FakeDownloadService:
    def __init__(self, payloads=None):
        self.payloads = payloads or {}
        self.urls = []

    def download_file(self, url, dest_path, description="", expected_sha256=None):
        self.urls.append(url)
        with open(dest_path, "wb") as file_obj:
            file_obj.write(self.payloads[url])


def _deployer(payloads=None):
    return ArtifactDeployer(
        FakeDownloadService(payloads),
        ArchiveService(),
        FileSystemService(DummyLogger(), DummyConsole()),
        DummyLogger(),
        DummyConsole(),
        base_url=BASE_URL,
    )


def _plugin_url(version):
    return f"{BASE_URL}/{version}/binary/guacamole-auth-jdbc-{version}.tar.gz"


def test_release_urls():
    deployer = _deployer()
    version = ReleaseVersion(1, 6, 0)

    assert deployer.application_url(version) == f"{BASE_URL}/1.6.0/binary/guacamole-1.6.0.war"
    assert deployer.plugin_url(version) == _plugin_url("1.6.0")


def test_fetch_plugin_bundle_collects_jar_schema_and_upgrades(tmp_path):
    deployer = _deployer({_plugin_url("1.6.0"): jdbc_archive("1.6.0", upgrades=("1.5.0", "1.6.0"))})

    bundle = deployer.fetch_plugin_bundle(ReleaseVersion(1, 6, 0), str(tmp_path))

    assert os.path.basename(bundle.jar_path) == "guacamole-auth-jdbc-mysql-1.6.0.jar"
    assert [os.path.basename(path) for path in bundle.schema_files] == [
        "001-create-schema.sql",
        "002-create-admin-user.sql",
    ]
    assert sorted(bundle.upgrade_files) == [ReleaseVersion(1, 5, 0), ReleaseVersion(1, 6, 0)]


def test_fetch_plugin_bundle_requires_mysql_jar(tmp_path):
    archive = make_tar({"guacamole-auth-jdbc-1.6.0/postgresql/guacamole-auth-jdbc-postgresql-1.6.0.jar": "pg"})
    deployer = _deployer({_plugin_url("1.6.0"): archive})

    with pytest.raises(ExtractionError) as exc_info:
        deployer.fetch_plugin_bundle(ReleaseVersion(1, 6, 0), str(tmp_path))

    assert "guacamole-auth-jdbc-mysql-1.6.0.jar" in str(exc_info.value)


def test_upgrade_from_1_5_to_1_6_leaves_exactly_one_jar(tmp_path):
    deployer = _deployer(
        {
            _plugin_url("1.5.0"): jdbc_archive("1.5.0"),
            _plugin_url("1.6.0"): jdbc_archive("1.6.0"),
        }
    )
    extensions = tmp_path / "extensions"

    deployer.deploy_plugin(ReleaseVersion(1, 5, 0), str(extensions))
    assert deployer.installed_plugin_version(str(extensions)) == ReleaseVersion(1, 5, 0)

    deployer.deploy_plugin(ReleaseVersion(1, 6, 0), str(extensions))

    assert sorted(os.listdir(extensions)) == ["guacamole-auth-jdbc-mysql-1.6.0.jar"]
    assert deployer.installed_plugin_version(str(extensions)) == ReleaseVersion(1, 6, 0)


def test_redeploying_same_version_keeps_one_jar(tmp_path):
    deployer = _deployer({_plugin_url("1.6.0"): jdbc_archive("1.6.0")})
    extensions = tmp_path / "extensions"

    deployer.deploy_plugin(ReleaseVersion(1, 6, 0), str(extensions))
    deployer.deploy_plugin(ReleaseVersion(1, 6, 0), str(extensions))

    assert os.listdir(extensions) == ["guacamole-auth-jdbc-mysql-1.6.0.jar"]


def test_deploy_application_replaces_existing_archive(tmp_path):
    war_url = f"{BASE_URL}/1.6.0/binary/guacamole-1.6.0.war"
    deployer = _deployer({war_url: b"new war"})
    dest = tmp_path / "webapps" / "guacamole.war"
    dest.parent.mkdir()
    dest.write_bytes(b"old war")

    deployer.deploy_application(ReleaseVersion(1, 6, 0), str(dest))

    assert dest.read_bytes() == b"new war"
    assert os.listdir(dest.parent) == ["guacamole.war"]


def _bundle(tmp_path, versions):
    upgrade_files = {}
    for value in versions:
        path = tmp_path / f"upgrade-pre-{value}.sql"
        path.write_text(f"-- {value}\n", encoding="utf-8")
        upgrade_files[ReleaseVersion.parse(value)] = str(path)
    return PluginBundle(
        version=ReleaseVersion(1, 6, 0),
        root=str(tmp_path),
        jar_path=str(tmp_path / "plugin.jar"),
        schema_files=[],
        upgrade_files=upgrade_files,
    )


def test_pending_upgrades_selects_scripts_after_installed_version(tmp_path):
    deployer = _deployer()
    bundle = _bundle(tmp_path, ["1.1.0", "1.5.0", "1.6.0"])

    pending = deployer.pending_upgrades(bundle, ReleaseVersion(1, 4, 0))

    assert [os.path.basename(path) for path in pending] == [
        "upgrade-pre-1.5.0.sql",
        "upgrade-pre-1.6.0.sql",
    ]
    assert deployer.pending_upgrades(bundle, ReleaseVersion(1, 6, 0)) == []
    assert deployer.pending_upgrades(bundle, None) == []


def test_stage_upgrade_scripts_copies_out_of_scratch(tmp_path):
    deployer = _deployer()
    bundle = _bundle(tmp_path, ["1.6.0"])
    dest = tmp_path / "guacamole" / "upgrade" / "1.6.0"

    staged = deployer.stage_upgrade_scripts(list(bundle.upgrade_files.values()), str(dest))

    assert staged == [str(dest / "upgrade-pre-1.6.0.sql")]
    assert (dest / "upgrade-pre-1.6.0.sql").read_text(encoding="utf-8") == "-- 1.6.0\n"


def test_stage_upgrade_scripts_reports_unreadable_script(tmp_path):
    deployer = _deployer()
    missing = tmp_path / "scratch" / "upgrade-pre-1.6.0.sql"

    with pytest.raises(ProvisionError, match="Could not stage upgrade script"):
        deployer.stage_upgrade_scripts([str(missing)], str(tmp_path / "upgrade" / "1.6.0"))


def test_link_root_context_replaces_default_root_app(tmp_path):
    deployer = _deployer()
    webapps = tmp_path / "webapps"
    (webapps / "ROOT").mkdir(parents=True)
    (webapps / "ROOT" / "index.jsp").write_text("tomcat", encoding="utf-8")

    assert deployer.link_root_context(str(webapps)) is True
    assert deployer.link_root_context(str(webapps)) is False

    assert not (webapps / "ROOT").exists()
    assert os.readlink(webapps / "ROOT.war") == "guacamole.war"
