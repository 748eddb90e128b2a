"""
Render Queue Worker

Runs queued pipeline jobs when PIPELINE_MODE=queue.

Run as a separate process:
    python -m app.workers.render_worker

Or run multiple workers for more throughput:
    python -m app.workers.render_worker &
    python -m app.workers.render_worker &

Project changes made here are published on the Redis change channel so
API processes can forward them to their SSE subscribers.
"""

import asyncio
import logging
from typing import Optional

from app.core.redis import RedisClient, RenderQueue
from app.core.config import settings
from app.core.notifications import bus
from app.services.pipeline import MissingParameters, run_pipeline

logger = logging.getLogger(__name__)


async def process_single_item(item: dict) -> Optional[str]:
    """Run the pipeline for one queued job"""
    project_id = item.get("project_id")

    print(f"🔄 Processing render for project {project_id}")
    RenderQueue.set_status(project_id, "processing")

    try:
        status = await asyncio.to_thread(
            run_pipeline,
            project_id,
            item.get("listing_data"),
            item.get("project_config"),
        )
    except MissingParameters as e:
        print(f"❌ Dropping malformed job for {project_id}: {e}")
        RenderQueue.set_status(project_id, "rejected", reason=str(e))
        return None
    except Exception as e:
        print(f"❌ Error processing {project_id}: {e}")
        RenderQueue.set_status(project_id, "error", reason=str(e))
        return None

    if status is None:
        print(f"⏭️ Skipped {project_id} (missing or not queued)")
        RenderQueue.set_status(project_id, "skipped")
    else:
        print(f"✅ Completed {project_id}: {status}")
        RenderQueue.set_status(project_id, status)
    return status


async def worker_loop(concurrency: Optional[int] = None):
    """Main worker loop - continuously process queue"""
    concurrency = concurrency or settings.WORKER_CONCURRENCY
    semaphore = asyncio.Semaphore(concurrency)
    running = set()

    print("🚀 Render worker started")
    print(f"📊 Concurrency: {concurrency} | Render engine: {settings.RENDER_ENGINE}")

    async def run_item(item: dict):
        try:
            await process_single_item(item)
        finally:
            semaphore.release()

    while True:
        try:
            await semaphore.acquire()

            # blpop blocks, keep it off the event loop
            item = await asyncio.to_thread(RenderQueue.dequeue, 1)

            if not item:
                semaphore.release()
                continue

            task = asyncio.create_task(run_item(item))
            running.add(task)
            task.add_done_callback(running.discard)

        except asyncio.CancelledError:
            print("\n🛑 Worker stopped")
            break
        except Exception as e:
            semaphore.release()
            print(f"❌ Worker error: {e}")
            await asyncio.sleep(5)

    if running:
        await asyncio.gather(*running, return_exceptions=True)


def run_worker():
    """Entry point for running the worker"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        RedisClient.get_client().ping()
    except Exception as e:
        print(f"❌ Render worker needs Redis: {e}")
        raise SystemExit(1)

    bus.redis_fanout = True

    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        print("\n🛑 Worker stopped")
    finally:
        RedisClient.close()


if __name__ == "__main__":
    run_worker()
