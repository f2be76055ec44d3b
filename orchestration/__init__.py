"""
Orchestration
Checkpointed, chunked batch processing (extract -> match chunks -> savings summary)
"""

from .checkpoint_store import CheckpointStore
from .batch_runner import BatchRunner, Progress, cancel_job

__all__ = ['CheckpointStore', 'BatchRunner', 'Progress', 'cancel_job']
