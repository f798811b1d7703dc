"""
Durable storage for generated artifacts and per-run debug records
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

from .models import Target, RefinementSession, SessionResult


class ArtifactStore:
    """
    Writes every attempt under a collision-resistant name inside the harness'
    test directory so the next cycle can re-read the previous attempt verbatim,
    and keeps a run directory per session for debug records.
    """

    def __init__(self, artifact_root: str, runs_dir: str = "runs", extension: str = ".ts"):
        self.artifact_root = Path(artifact_root)
        self.runs_dir = Path(runs_dir)
        self.extension = extension
        self.logger = logging.getLogger(__name__)

    def write_attempt(self, target: Target, attempt_number: int, content: str) -> Tuple[str, Path]:
        """Persist an artifact; returns (storage_id, path)"""
        self.artifact_root.mkdir(parents=True, exist_ok=True)

        base = f"{target.base_name}-attempt{attempt_number}"
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
        storage_id = f"{base}-{timestamp}"

        # Same-microsecond writes from parallel sessions get a counter suffix
        counter = 1
        while self.path_for(storage_id).exists():
            storage_id = f"{base}-{timestamp}{counter}"
            counter += 1

        path = self.path_for(storage_id)
        path.write_text(content)
        self.logger.info(f"💾 Saved attempt {attempt_number} for {target.id} to: {path}")
        return storage_id, path

    def path_for(self, storage_id: str) -> Path:
        return self.artifact_root / f"{storage_id}{self.extension}"

    def read_attempt(self, storage_id: str) -> str:
        return self.path_for(storage_id).read_text()

    def exists(self, storage_id: str) -> bool:
        return self.path_for(storage_id).exists()

    def setup_run_directory(self, target: Target) -> Path:
        """Create persistent directory for one refinement session"""
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S-%f")
        run_dir = self.runs_dir / f"{timestamp}_{target.id}"
        (run_dir / "cycles").mkdir(parents=True, exist_ok=True)
        return run_dir

    def save_run_metadata(self, session: RefinementSession, settings: Dict[str, Any]):
        """Save metadata about this session"""
        if not session.run_dir:
            return

        metadata = {
            "start_time": datetime.now().isoformat(),
            "target": {
                "id": session.target.id,
                "vulnerability": session.target.vulnerability,
                "description": session.target.description,
                "severity": session.target.severity.value,
                "contract_name": session.target.contract_name
            },
            "max_cycles": session.max_cycles,
            "config": settings
        }
        self._write_json(session.run_dir / "metadata.json", metadata)

    def save_cycle_record(self, session: RefinementSession, cycle: int, record: Dict[str, Any]):
        """Structured debug record for post-hoc inspection of one cycle"""
        if not session.run_dir:
            return
        self._write_json(session.run_dir / "cycles" / f"cycle_{cycle}.json", {"cycle": cycle, **record})

    def save_final_results(self, session: RefinementSession, result: SessionResult):
        if not session.run_dir:
            return

        results_data = result.to_dict()
        results_data["timestamp"] = datetime.now().isoformat()
        results_data["artifacts"] = [attempt.storage_id for attempt in session.attempts]

        summary_file = session.run_dir / "final_results.json"
        self._write_json(summary_file, results_data)
        self.logger.info(f"Final results saved to: {summary_file}")

    def _write_json(self, path: Path, data: Dict[str, Any]):
        try:
            path.write_text(json.dumps(data, indent=2, default=str))
        except OSError as e:
            self.logger.warning(f"Failed to write debug record {path}: {e}")

    def load_seed(self, test_path: Path) -> Optional[str]:
        """Read a pre-existing test so it can be stored as attempt 1"""
        if not test_path.exists():
            self.logger.error(f"Seed test not found: {test_path}")
            return None
        return test_path.read_text()
