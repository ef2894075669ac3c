import tempfile

import pytest

import guacsetup.core as core_module
from fakes import FakeHost, FakeRequests, listing, publish_guacamole, tomcat_archive
from guacsetup.constants import GUACAMOLE_INDEX_URL, TOMCAT_INDEX_URL
from guacsetup.models import InstallSettings


@pytest.fixture
def fake_host():
    return FakeHost()


@pytest.fixture
def mirror():
    requests_module = FakeRequests(
        {
            GUACAMOLE_INDEX_URL: listing("1.5.0", "1.6.0", "1.6.0-rc1", "2.0.0-alpha"),
            TOMCAT_INDEX_URL: listing("v9.0.98", "v9.0.100"),
            f"{TOMCAT_INDEX_URL}v9.0.100/bin/apache-tomcat-9.0.100.tar.gz": tomcat_archive("9.0.100"),
        }
    )
    publish_guacamole(requests_module, "1.5.0")
    publish_guacamole(requests_module, "1.6.0", upgrades=("1.5.0", "1.6.0"))
    return requests_module


@pytest.fixture
def scratch_root(tmp_path, monkeypatch):
    root = tmp_path / "scratch"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


@pytest.fixture
def settings(tmp_path):
    driver = tmp_path / "usr" / "share" / "java" / "mariadb-java-client.jar"
    driver.parent.mkdir(parents=True)
    driver.write_text("driver", encoding="utf-8")
    return InstallSettings(
        guac_home=str(tmp_path / "etc" / "guacamole"),
        tomcat_home=str(tmp_path / "opt" / "apache-guacamole" / "tomcat9"),
        unit_dir=str(tmp_path / "etc" / "systemd" / "system"),
        credentials_file=str(tmp_path / "root" / "guacamole.creds"),
        state_file=str(tmp_path / "var" / "lib" / "guacsetup" / "state.json"),
        update_command_path=str(tmp_path / "usr" / "local" / "sbin" / "guacamole-update"),
        jdbc_driver_path=str(driver),
    )


@pytest.fixture
def as_root(monkeypatch):
    monkeypatch.setattr(core_module.os, "geteuid", lambda: 0)
