"""Workflow state persistence: current stage, step history and the schema gate."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from guacsetup.errors import ProvisionError
from guacsetup.models import WorkflowStage


class StateService:
    """Persists the last reached workflow stage and pending manual approvals.

    The record is informational: every step re-checks the live system, so a
    missing or stale state file never changes what a run does, except for the
    schema upgrade gate which only exists here.
    """

    SCHEMA_VERSION = 1

    def __init__(self, state_file: str, logger):
        self.state_file = state_file
        self.logger = logger

    def load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.state_file):
            return None

        try:
            with open(self.state_file, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise ProvisionError(f"Could not read state file '{self.state_file}': {exc}") from exc

        if not isinstance(data, dict):
            raise ProvisionError(f"State file '{self.state_file}' has invalid format.")

        return data

    def save(self, state: Dict[str, Any]):
        directory = os.path.dirname(self.state_file) or "."
        os.makedirs(directory, exist_ok=True)
        state["schema_version"] = self.SCHEMA_VERSION
        state["updated_at"] = self._now()

        fd, temp_path = tempfile.mkstemp(prefix="state-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(state, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.state_file)
        except OSError as exc:
            raise ProvisionError(f"Could not write state file '{self.state_file}': {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

    def initialize(self, workflow: str) -> Dict[str, Any]:
        state = self.load() or {
            "created_at": self._now(),
            "stage": WorkflowStage.NOT_INSTALLED.value,
            "pending_schema_upgrade": None,
            "steps": [],
        }
        state["workflow"] = workflow
        state["last_error"] = None
        state["steps"] = []
        self.save(state)
        return state

    def stage(self, state: Optional[Dict[str, Any]]) -> WorkflowStage:
        if not state:
            return WorkflowStage.NOT_INSTALLED
        try:
            return WorkflowStage(state.get("stage"))
        except ValueError:
            return WorkflowStage.NOT_INSTALLED

    def set_stage(self, state: Dict[str, Any], stage: WorkflowStage):
        state["stage"] = stage.value
        self.logger.debug("Workflow stage: %s", stage.value)
        self.save(state)

    def mark_step_started(self, state: Dict[str, Any], step_name: str):
        state["steps"].append(
            {
                "name": step_name,
                "status": "running",
                "started_at": self._now(),
                "finished_at": None,
                "error": None,
            }
        )
        self.save(state)

    def mark_step_completed(self, state: Dict[str, Any], step_name: str):
        self._update_step_status(state, step_name, "success")
        self.save(state)

    def mark_step_failed(self, state: Dict[str, Any], step_name: str, error: str):
        self._update_step_status(state, step_name, "failed", error=error)
        state["last_error"] = error
        self.save(state)

    def set_pending_schema_upgrade(self, state: Dict[str, Any], version: str, scripts: List[str]):
        state["pending_schema_upgrade"] = {"version": version, "scripts": list(scripts)}
        self.set_stage(state, WorkflowStage.AWAITING_SCHEMA_APPROVAL)

    def get_pending_schema_upgrade(self, state: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not state:
            return None
        return state.get("pending_schema_upgrade")

    def clear_pending_schema_upgrade(self, state: Dict[str, Any]):
        state["pending_schema_upgrade"] = None
        self.save(state)

    def _update_step_status(
        self,
        state: Dict[str, Any],
        step_name: str,
        status: str,
        error: Optional[str] = None,
    ):
        for step in reversed(state.get("steps", [])):
            if step.get("name") == step_name and step.get("status") == "running":
                step["status"] = status
                step["finished_at"] = self._now()
                step["error"] = error
                return

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
