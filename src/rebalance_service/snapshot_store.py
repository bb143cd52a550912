"""File-backed iteration snapshot storage"""

import json
import logging
import os
from datetime import date
from typing import Any, Optional
from pydantic import ValidationError
from rebalance_calculator import IterationSnapshot, SnapshotStore


def write_json_atomic(file_path: str, data: Any) -> None:
    """Write JSON by writing a temp file first, then renaming over the target"""
    os.makedirs(os.path.dirname(file_path) or '.', exist_ok=True)
    temp_path = file_path + '.tmp'
    with open(temp_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    os.replace(temp_path, file_path)


class JsonSnapshotStore(SnapshotStore):
    """One JSON file per account and date: <data_dir>/<account_id>_<YYYY-MM-DD>.json"""

    def __init__(self, data_dir: str, logger: Optional[logging.Logger] = None):
        self.data_dir = data_dir
        self.logger = logger or logging.getLogger(__name__)

    def read_snapshot(self, account_id: str, day: date) -> Optional[IterationSnapshot]:
        file_path = self._get_file_path(account_id, day)
        if not os.path.exists(file_path):
            return None
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return IterationSnapshot.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            self.logger.warning(f"Ignoring unreadable snapshot {file_path}: {e}")
            return None

    def write_snapshot(self, snapshot: IterationSnapshot) -> None:
        file_path = self._get_file_path(snapshot.account_id, snapshot.date)
        write_json_atomic(file_path, snapshot.model_dump(mode='json'))
        self.logger.debug(f"Saved snapshot {file_path}")

    def _get_file_path(self, account_id: str, day: date) -> str:
        return os.path.join(self.data_dir, f"{account_id}_{day.isoformat()}.json")
