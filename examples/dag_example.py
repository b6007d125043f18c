#!/usr/bin/env python3
"""
examples/dag_example.py

End-to-end demo of the DAG orchestrator without any external tooling:
  1. Parses and validates examples/dags/rollout.yaml
  2. Prints the ASCII view and the dry-run plan
  3. Runs it with an in-process pipeline that simulates each feature
  4. Prints the final status table and one feature log
"""
import asyncio
import random
import sys
import tempfile
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from specflow.config import Settings
from specflow.dag.parser import YAMLParser
from specflow.dag.visualizer import render_ascii
from specflow.execution.executor import FeatureExecutor
from specflow.execution.pipeline import CallablePipeline
from specflow.execution.scheduler import RunController
from specflow.logs import resolve_log_path, stream_logs
from specflow.storage.backends.filesystem import RunStateStore
from specflow.utils.logging import setup_logging
from specflow.watch import render_status_table

DAG_FILE = Path(__file__).parent / "dags" / "rollout.yaml"


async def simulate_feature(feature, output):
    output.write_line(f"implementing {feature.id}: {feature.description}")
    for step in ("specify", "plan", "tasks", "implement"):
        await asyncio.sleep(random.uniform(0.05, 0.2))
        output.write_line(f"  {step} done")
    return 0


async def main():
    setup_logging("INFO")
    definition = YAMLParser.parse_file(DAG_FILE)
    print(render_ascii(definition))

    with tempfile.TemporaryDirectory() as tmp:
        settings = Settings(state_dir=Path(tmp) / "state", log_dir=Path(tmp) / "logs", max_parallel=2)
        store = RunStateStore(settings.state_dir)
        controller = RunController(
            store,
            FeatureExecutor(CallablePipeline(simulate_feature)),
            settings,
        )

        print(controller.dry_run_report(definition, DAG_FILE))

        run = await controller.run(definition, DAG_FILE)
        print(render_status_table(run))

        print("\n--- log of 030-account-page ---")
        await stream_logs(resolve_log_path(settings.state_dir, run, "030-account-page"))


if __name__ == "__main__":
    asyncio.run(main())
