"""
Audit Job

Background worker that keeps conversation summaries fresh. Polls the
store for active threads, feeds the cadence tracker and regenerates
summaries that are missing or past next_due_at. It shares nothing with
the request path except ConversationSummary rows.

Usage:
    hybrid-audit            # poll forever
    hybrid-audit --once     # single pass
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime, timedelta
from typing import Optional

from dotenv import load_dotenv

from ..common.config import AuditConfig, load_config
from ..common.errors import ConfigError
from ..common.llm_client import LLMClient
from ..common.memory_store import MemoryStore
from ..common.schemas import ThreadActivity, utcnow
from .cadence import CadenceTracker
from .importance import compute_importance, hours_since
from .summarizer import ConversationSummarizer

logger = logging.getLogger("hybrid.audit.job")


class AuditJob:
    """Periodic summary regeneration over the persistence store"""

    def __init__(
        self,
        store: MemoryStore,
        summarizer: ConversationSummarizer,
        config: Optional[AuditConfig] = None,
        tracker: Optional[CadenceTracker] = None,
    ):
        self.store = store
        self.summarizer = summarizer
        self.config = config or AuditConfig()
        self.tracker = tracker or CadenceTracker(self.config)
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """
        One audit pass.

        Returns:
            Number of summaries written
        """
        now = now or utcnow()
        since = now - timedelta(seconds=self.config.thread_max_age_s)
        activities = await asyncio.to_thread(self.store.active_threads, since)

        written = 0
        for activity in activities:
            self.tracker.sync(activity)
            reason = self.tracker.trigger_reason(activity.thread_id, now.timestamp())
            if reason is None:
                continue
            try:
                if await self._audit_thread(activity, now):
                    written += 1
                    logger.info("Refreshed summary for %s (trigger: %s)", activity.thread_id, reason)
            except Exception as e:
                logger.error("Audit failed for thread %s: %s", activity.thread_id, e)
                continue
            self.tracker.mark_complete(activity.thread_id, now.timestamp())

        self.tracker.cleanup(now.timestamp())
        return written

    def thread_importance(self, activity: ThreadActivity, now: datetime) -> float:
        memory_count, has_tier1, has_tier2 = self.store.thread_memory_stats(activity.thread_id)
        return compute_importance(
            memory_count=memory_count,
            has_tier1=has_tier1,
            has_tier2=has_tier2,
            message_count=activity.message_count,
            hours_since_last=hours_since(activity.last_message_at, now),
        )

    async def _audit_thread(self, activity: ThreadActivity, now: datetime) -> bool:
        current = await asyncio.to_thread(self.store.get_summary, activity.thread_id)
        if current is not None and not current.is_fallback and not current.is_stale(now):
            return False

        importance = await asyncio.to_thread(self.thread_importance, activity, now)
        messages = await asyncio.to_thread(
            self.store.list_messages, activity.thread_id, self.config.summary_message_window
        )
        summary = await self.summarizer.summarize(activity.thread_id, messages, importance, now)
        if summary is None:
            return False
        await asyncio.to_thread(self.store.upsert_summary, summary)
        return True

    async def run_forever(self) -> None:
        while not self._stopping:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Audit pass failed: %s", e)
            await asyncio.sleep(self.config.poll_interval_s)

    def start(self) -> asyncio.Task:
        """Run as an independent task on the current loop"""
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.create_task(self.run_forever())
            logger.info("Audit job started (poll every %ds)", self.config.poll_interval_s)
        return self._task

    async def stop(self) -> None:
        self._stopping = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Audit job stopped")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run the conversation summary audit job.")
    parser.add_argument("--config", default=None, help="Path to config.json (default: ~/.hybrid/config.json)")
    parser.add_argument("--db", default=None, help="SQLite database path (overrides config).")
    parser.add_argument("--once", action="store_true", help="Run a single audit pass and exit.")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("%s", e)
        return 2

    store = MemoryStore(args.db or config.storage.db_path)
    job = AuditJob(
        store=store,
        summarizer=ConversationSummarizer(LLMClient.from_config(config.llm), config.audit),
        config=config.audit,
    )

    def _handle_shutdown(signum, frame):
        raise SystemExit(0)
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is not None:
            signal.signal(sig, _handle_shutdown)

    try:
        if args.once:
            written = asyncio.run(job.run_once())
            logger.info("Audit pass wrote %d summaries", written)
        else:
            asyncio.run(job.run_forever())
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
