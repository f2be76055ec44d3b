#!/usr/bin/env python3
"""
Checkpoint Store - One JSON document per batch job

The document holds the job state, the matching cursor, the extracted items, the
match results produced so far and, once finished, the summary. Writes go to a
temp file in the same directory and are renamed over the old document so a
crash never leaves a half-written checkpoint.
"""

import os
import json
import logging
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

STATE_EXTRACTED = 'extracted'
STATE_MATCHING = 'matching'
STATE_MATCHED = 'matched'
STATE_COMPLETED = 'completed'
STATE_FAILED = 'failed'
STATE_CANCELLED = 'cancelled'

TERMINAL_STATES = (STATE_COMPLETED, STATE_FAILED, STATE_CANCELLED)


class CheckpointStore:
    """Load and save job checkpoints under a directory"""

    def __init__(self, checkpoint_dir: Path):
        self.checkpoint_dir = Path(checkpoint_dir)
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, job_id: str) -> Path:
        return self.checkpoint_dir / f"{job_id}.json"

    def exists(self, job_id: str) -> bool:
        return self.path_for(job_id).exists()

    def load(self, job_id: str) -> Dict[str, Any]:
        """
        Read a job checkpoint

        Raises:
            FileNotFoundError: no checkpoint for job_id
        """
        path = self.path_for(job_id)
        if not path.exists():
            raise FileNotFoundError(f"No checkpoint for job {job_id} in {self.checkpoint_dir}")
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def save(self, job_id: str, checkpoint: Dict[str, Any]):
        checkpoint['job_id'] = job_id
        checkpoint['updated_at'] = datetime.now().isoformat(timespec='seconds')
        fd, tmp_name = tempfile.mkstemp(prefix=f".{job_id}.", suffix='.tmp', dir=self.checkpoint_dir)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(checkpoint, f, indent=2, ensure_ascii=False, default=str)
            os.replace(tmp_name, self.path_for(job_id))
        except BaseException:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise
        logger.debug(f"Saved checkpoint {job_id}: state={checkpoint.get('state')} "
                     f"cursor={checkpoint.get('cursor')}/{checkpoint.get('total')}")

    def update(self, job_id: str, **fields) -> Dict[str, Any]:
        checkpoint = self.load(job_id)
        checkpoint.update(fields)
        self.save(job_id, checkpoint)
        return checkpoint

    def list_jobs(self) -> List[str]:
        return sorted(path.stem for path in self.checkpoint_dir.glob('*.json'))

    def state(self, job_id: str) -> Optional[str]:
        if not self.exists(job_id):
            return None
        return self.load(job_id).get('state')
