import json

import pytest

from guacsetup.errors import ProvisionError
from guacsetup.models import WorkflowStage
from guacsetup.services.state import StateService


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None


def test_state_service_creates_and_updates_state(tmp_path):
    state_file = tmp_path / "state" / "state.json"
    service = StateService(str(state_file), logger=DummyLogger())

    state = service.initialize("install")
    service.mark_step_started(state, "provision_packages")
    service.mark_step_completed(state, "provision_packages")
    service.set_stage(state, WorkflowStage.PACKAGES_READY)

    saved = json.loads(state_file.read_text(encoding="utf-8"))
    assert saved["workflow"] == "install"
    assert saved["stage"] == "packages_ready"
    assert saved["steps"][0]["name"] == "provision_packages"
    assert saved["steps"][0]["status"] == "success"
    assert service.stage(saved) == WorkflowStage.PACKAGES_READY


def test_initialize_keeps_stage_and_pending_gate_but_resets_steps(tmp_path):
    service = StateService(str(tmp_path / "state.json"), logger=DummyLogger())
    state = service.initialize("update")
    service.mark_step_started(state, "fetch_release")
    service.mark_step_failed(state, "fetch_release", "boom")
    service.set_pending_schema_upgrade(state, "1.6.0", ["/etc/guacamole/upgrade/1.6.0/upgrade-pre-1.6.0.sql"])

    resumed = service.initialize("schema-upgrade")

    assert resumed["workflow"] == "schema-upgrade"
    assert resumed["steps"] == []
    assert resumed["last_error"] is None
    assert service.stage(resumed) == WorkflowStage.AWAITING_SCHEMA_APPROVAL
    assert service.get_pending_schema_upgrade(resumed)["version"] == "1.6.0"


def test_mark_step_failed_records_error(tmp_path):
    service = StateService(str(tmp_path / "state.json"), logger=DummyLogger())
    state = service.initialize("install")

    service.mark_step_started(state, "start_services")
    service.mark_step_failed(state, "start_services", "tomcat9 failed")

    assert state["steps"][-1]["status"] == "failed"
    assert state["steps"][-1]["error"] == "tomcat9 failed"
    assert state["last_error"] == "tomcat9 failed"


def test_clear_pending_schema_upgrade(tmp_path):
    service = StateService(str(tmp_path / "state.json"), logger=DummyLogger())
    state = service.initialize("update")
    service.set_pending_schema_upgrade(state, "1.6.0", ["a.sql"])

    service.clear_pending_schema_upgrade(state)

    assert service.get_pending_schema_upgrade(service.load()) is None


def test_stage_defaults_to_not_installed():
    service = StateService("unused.json", logger=DummyLogger())

    assert service.stage(None) == WorkflowStage.NOT_INSTALLED
    assert service.stage({"stage": "bogus"}) == WorkflowStage.NOT_INSTALLED


def test_state_service_rejects_invalid_json(tmp_path):
    state_file = tmp_path / "state.json"
    state_file.write_text("{invalid", encoding="utf-8")
    service = StateService(str(state_file), logger=DummyLogger())

    with pytest.raises(ProvisionError, match="Could not read state file"):
        service.load()
