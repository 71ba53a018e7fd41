"""
Resource monitoring for supervised sessions.

Reports CPU and memory usage for a session's process tree on demand, and
periodically prunes old execution history from the database.
"""

import asyncio
import logging
from typing import Optional

import psutil

from .config import config
from .models import prune_executions
from .sessions import SessionManager

logger = logging.getLogger(__name__)

CPU_SAMPLE_INTERVAL = 0.1


def _process_tree_usage(pid: int) -> tuple[float, float, int]:
    """Sum CPU percent and RSS in MB over a process and its descendants."""
    proc = psutil.Process(pid)
    cpu_percent = proc.cpu_percent(interval=CPU_SAMPLE_INTERVAL)
    memory_mb = proc.memory_info().rss / 1024 / 1024

    child_count = 0
    try:
        children = proc.children(recursive=True)
        child_count = len(children)
        for child in children:
            try:
                cpu_percent += child.cpu_percent(interval=CPU_SAMPLE_INTERVAL)
                memory_mb += child.memory_info().rss / 1024 / 1024
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        pass

    return cpu_percent, memory_mb, child_count


class ResourceMonitor:
    """Monitors resource usage of supervised sessions."""

    def __init__(self, sessions: SessionManager, interval: Optional[float] = None):
        self.sessions = sessions
        self.interval = config.monitor_interval if interval is None else interval
        self._running = False
        self._task = None

    async def start(self):
        """Start the monitoring loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info("Resource monitor started")

    async def stop(self):
        """Stop the monitoring loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Resource monitor stopped")

    async def _monitor_loop(self):
        while self._running:
            try:
                await asyncio.to_thread(self._log_metrics)
                self._cleanup_old_data()
            except Exception as e:
                logger.error(f"Error in monitor loop: {e}")

            await asyncio.sleep(self.interval)

    def _log_metrics(self):
        for entry in self.sessions.list_sessions():
            metrics = self.get_session_metrics(entry["id"])
            if metrics and metrics["pid"]:
                logger.debug(
                    f"Metrics for session {entry['id']}: CPU={metrics['cpu_percent']:.1f}%, "
                    f"MEM={metrics['memory_mb']:.1f}MB, children={metrics['child_processes']}"
                )

    def _cleanup_old_data(self):
        """Remove execution records past the retention period."""
        deleted = prune_executions()
        if deleted:
            logger.debug(f"Cleaned up {deleted} old execution records")

    def get_session_metrics(self, session_id: str) -> Optional[dict]:
        """Current resource usage for a session, or None if it is not registered."""
        status = self.sessions.get_status(session_id)
        if not status.success:
            return None

        result = {
            "pid": None,
            "status": status.status.value,
            "cpu_percent": 0.0,
            "memory_mb": 0.0,
            "child_processes": 0,
            "uptime_seconds": round(status.uptime, 3),
        }

        pid = self.sessions.get_pid(session_id)
        if pid:
            try:
                cpu_percent, memory_mb, child_count = _process_tree_usage(pid)
                result.update({
                    "pid": pid,
                    "cpu_percent": round(cpu_percent, 1),
                    "memory_mb": round(memory_mb, 1),
                    "child_processes": child_count,
                })
            except psutil.NoSuchProcess:
                logger.debug(f"Process for session {session_id} no longer exists")
            except psutil.AccessDenied:
                logger.warning(f"Access denied for session {session_id}")

        return result
