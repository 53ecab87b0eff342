"""Persist job status payloads so other processes can read progress."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

import orjson

from recordwatch.tracking.tracker import JobSnapshot


def checkpoint_path(root: Path, job_id: str) -> Path:
    return root / f"{job_id}.json"


def stop_marker_path(root: Path, job_id: str) -> Path:
    return root / f"{job_id}.stop"


def save_snapshot(root: Path, snapshot: JobSnapshot) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    path = checkpoint_path(root, snapshot.job_id)
    tmp = path.with_suffix(".json.tmp")
    tmp.write_bytes(orjson.dumps(snapshot.to_wire(), option=orjson.OPT_INDENT_2))
    tmp.replace(path)
    return path


def load_snapshot(root: Path, job_id: str) -> Optional[Dict[str, object]]:
    path = checkpoint_path(root, job_id)
    if not path.exists():
        return None
    try:
        return orjson.loads(path.read_bytes())
    except orjson.JSONDecodeError:
        return None


def list_snapshots(root: Path) -> List[str]:
    """Job ids with a saved snapshot, newest first."""
    if not root.exists():
        return []
    paths = sorted(root.glob("*.json"), key=lambda item: item.stat().st_mtime, reverse=True)
    return [path.stem for path in paths]


def clear_snapshot(root: Path, job_id: str) -> None:
    path = checkpoint_path(root, job_id)
    if path.exists():
        path.unlink()


def request_stop(root: Path, job_id: str) -> Path:
    """Leave a marker asking the process polling ``job_id`` to stop."""
    root.mkdir(parents=True, exist_ok=True)
    marker = stop_marker_path(root, job_id)
    marker.touch()
    return marker


def stop_requested(root: Path, job_id: str) -> bool:
    return stop_marker_path(root, job_id).exists()


def clear_stop_request(root: Path, job_id: str) -> None:
    marker = stop_marker_path(root, job_id)
    if marker.exists():
        marker.unlink()
