"""
Example: Tracking a job tree

This example demonstrates:
- Recording jobs at submission time, including jobs enqueued by other jobs
- Marking jobs running/complete/failed from a worker
- Reading the tree and the workflow status back from Redis
- Browsing workflow sets by status

Prerequisites:
- Redis running at localhost:6379
- pip install redis

Run:
    python tracked_workflow.py          # everything succeeds
    python tracked_workflow.py fail     # one leaf job fails
    python tracked_workflow.py report   # list tracked workflows
"""

import asyncio
import logging
import sys
import uuid

from job_hierarchy import HierarchyConfig, HierarchyTracker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

REDIS_URL = "redis://localhost:6379/0"


async def fake_work(jid: str, should_fail: bool = False) -> None:
    """Stand-in for a worker's job body."""
    await asyncio.sleep(0.2)
    if should_fail:
        raise RuntimeError(f"job {jid} blew up")


async def run_workflow(tracker: HierarchyTracker, fail_leaf: bool) -> None:
    root_jid = f"import-{uuid.uuid4().hex[:8]}"

    # The root job fans out one job per file, each of which enqueues a thumbnail job
    await tracker.submit(root_jid, metadata={"class": "ImportWorker", "args": ["batch-7"]})
    async with tracker.track(root_jid):
        for i in range(2):
            file_jid = f"{root_jid}-file-{i}"
            await tracker.submit(file_jid, parent_jid=root_jid, metadata={"class": "FileWorker"})
            await tracker.submit(f"{file_jid}-thumb", parent_jid=file_jid, metadata={"class": "ThumbWorker"})

    root = tracker.find_job(root_jid)
    leaves = await root.leaves()
    logger.info(f"Workflow {root_jid} has {len(leaves)} leaves: {[j.jid for j in leaves]}")

    # Workers pick up the remaining jobs
    for job in (await tracker.find_workflow(root_jid).jobs())[1:]:
        failing = fail_leaf and job == leaves[-1]
        try:
            async with tracker.track(job.jid):
                await fake_work(job.jid, should_fail=failing)
        except RuntimeError as e:
            logger.warning(f"Job {job.jid} failed: {e}")

    workflow = await root.workflow()
    logger.info(f"Workflow {workflow.jid} status: {(await workflow.status()).value}")
    logger.info(f"Now in the {(await workflow.workflow_set()).status} set")


async def report(tracker: HierarchyTracker) -> None:
    for wset in (tracker.running_set, tracker.complete_set, tracker.failed_set):
        logger.info(f"{wset.status}: {await wset.size()} workflow(s)")
        async for workflow in wset:
            logger.info(f"  {workflow.jid}")


async def main(mode: str) -> None:
    async with HierarchyTracker(HierarchyConfig(redis_url=REDIS_URL)) as tracker:
        if mode == "report":
            await report(tracker)
        else:
            await run_workflow(tracker, fail_leaf=(mode == "fail"))


if __name__ == "__main__":
    mode = sys.argv[1] if len(sys.argv) > 1 else "ok"
    if mode not in ("ok", "fail", "report"):
        print(f"Unknown mode: {mode}")
        print("Usage: python tracked_workflow.py [ok|fail|report]")
        sys.exit(1)
    asyncio.run(main(mode))
