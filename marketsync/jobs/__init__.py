# Jobs Package - Scheduled background tasks
from .chunk_scheduler import ChunkSyncScheduler, run_chunk_cycle, start_scheduler, stop_scheduler

__all__ = ["ChunkSyncScheduler", "run_chunk_cycle", "start_scheduler", "stop_scheduler"]
