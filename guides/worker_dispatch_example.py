"""Example queueing an execution for workers started with ``stepflow worker``.

Start the workers in another shell with the same environment::

    STEPFLOW_JOB_QUEUE=redis STEPFLOW_DATABASE_URL=sqlite:///stepflow.db stepflow worker

then run ``python worker_dispatch_example.py workflow.yaml``.
"""

import asyncio
import sys
from pathlib import Path

from stepflow import WorkflowEngine, get_repository, load_config
from stepflow.cli_utils.workflow import _load_workflow_file
from stepflow.jobqueue import get_job_queue


async def main():
    settings = load_config()
    definition = _load_workflow_file(Path(sys.argv[1]))

    # Queue workers are not started here; the external worker runs the job.
    engine = WorkflowEngine(
        repository=get_repository(config=settings),
        job_queue=get_job_queue(config=settings),
        settings=settings,
    )
    await engine.save_workflow(definition)
    execution_id = await engine.create_execution(definition.id)
    print(f"✅ Execution queued: {execution_id}")

    execution = await engine.wait_for_completion(execution_id, poll_interval=0.5)
    print(f"📋 Finished with status {execution.status.value}")


if __name__ == "__main__":
    asyncio.run(main())
