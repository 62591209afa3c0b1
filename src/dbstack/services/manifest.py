"""JSON record of a single dbstack workflow run."""

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _close(record: Dict[str, Any], status: str, error: Optional[str]):
    finished = _now()
    record["status"] = status
    record["error"] = error
    record["finished_at"] = finished.isoformat()
    if record.get("started_at"):
        started = datetime.fromisoformat(record["started_at"])
        record["duration_seconds"] = round((finished - started).total_seconds(), 3)


class ManifestService:
    """Tracks workflow steps and artifacts; writes them only when a path is set."""

    def __init__(self, manifest_file: Optional[str], logger):
        self.path = Path(manifest_file) if manifest_file else None
        self.logger = logger
        self.manifest: Dict[str, Any] = {
            "run_id": None,
            "workflow": None,
            "image": None,
            "status": "pending",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "failed_step": None,
            "steps": [],
            "artifacts": {},
            "error": None,
        }

    def start_run(self, run_id: str, workflow: str, image: Optional[str]):
        self.manifest.update(
            run_id=run_id,
            workflow=workflow,
            image=image,
            status="running",
            started_at=_now().isoformat(),
        )
        self.write()

    def step_started(self, step_name: str):
        self.manifest["steps"].append(
            {"name": step_name, "status": "running", "started_at": _now().isoformat()}
        )
        self.write()

    def step_finished(self, step_name: str, status: str, error: Optional[str] = None):
        open_steps = [
            step
            for step in self.manifest["steps"]
            if step["name"] == step_name and step["status"] == "running"
        ]
        if open_steps:
            _close(open_steps[-1], status, error)
        if status == "failed" and self.manifest["failed_step"] is None:
            self.manifest["failed_step"] = step_name
        self.write()

    def add_artifact(self, key: str, value: Any):
        self.manifest["artifacts"][key] = value
        self.write()

    def finalize(self, status: str, error: Optional[str] = None):
        _close(self.manifest, status, error)
        self.write()

    def write(self):
        if self.path is None:
            return

        temp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".manifest-", suffix=".json", dir=str(self.path.parent))
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self.manifest, handle, indent=2, sort_keys=True)
                handle.write("\n")
            os.replace(temp_path, str(self.path))
        except OSError as exc:
            self.logger.warning("Could not write manifest file '%s': %s", self.path, exc)
            if temp_path and os.path.exists(temp_path):
                os.remove(temp_path)
