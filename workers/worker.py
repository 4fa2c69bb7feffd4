"""Worker for the Acumatica sync layer.

Listens on the sync task queue and executes sync and reconciliation
workflows and activities.

Run with --queue <name> to poll a queue other than the configured default.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from activities import ALL_ACTIVITIES
from core.config import get_settings
from storage.db import init_db
from temporal_client import get_temporal_client
from workflows import ALL_WORKFLOWS


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run_worker(queue: str = None):
    """Start a worker listening on the task queue.

    Args:
        queue: Task queue to poll; defaults to the configured sync queue
    """
    settings = get_settings()
    task_queue = queue or settings.task_queue
    init_db(settings.db_path)

    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    worker = Worker(
        client,
        task_queue=task_queue,
        workflows=ALL_WORKFLOWS,
        activities=ALL_ACTIVITIES,
    )
    logger.info(f"Worker created for queue '{task_queue}':")
    logger.info(f"  - Workflows: {len(ALL_WORKFLOWS)}")
    logger.info(f"  - Activities: {len(ALL_ACTIVITIES)}")

    try:
        logger.info("Worker running... (Ctrl+C to stop)")
        await asyncio.gather(worker.run())
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="Acumatica Sync Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=None,
        help="Task queue to poll (default: SYNC_TASK_QUEUE or acumatica-sync)"
    )

    args = parser.parse_args()
    try:
        asyncio.run(run_worker(queue=args.queue))
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    main()
