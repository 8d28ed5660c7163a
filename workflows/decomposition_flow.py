"""
Prefect Workflow Orchestration - Monthly GMV Decomposition

Batch flow over a full cleaned snapshot:
- Load the six input streams
- Build facts, aggregates, waterfalls and drill-down
- Write curated outputs

Every stage is deterministic given its input; a retried run rewrites the same outputs.
"""

from typing import Dict, List, Optional

from prefect import flow, task, get_run_logger

from gmv_decomposition.config import get_settings
from gmv_decomposition.config.logging import configure_logging
from gmv_decomposition.ingestion.input_loader import InputLoader, InputSnapshot
from gmv_decomposition.pipeline.runner import DecompositionPipeline, PipelineResult
from gmv_decomposition.pipeline.writer import OutputWriter

settings = get_settings()


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="load_snapshot",
    description="Read the cleaned input snapshot",
    retries=3,
    retry_delay_seconds=60,
)
def load_snapshot(input_path: str, file_format: str) -> InputSnapshot:
    """Load the six cleaned input streams"""
    logger = get_run_logger()

    snapshot = InputLoader(input_path, file_format=file_format).load()
    logger.info(f"Snapshot loaded: {snapshot.row_counts}")
    return snapshot


@task(
    name="run_decomposition",
    description="Build facts, monthly tables, waterfalls and drill-down",
)
def run_decomposition(snapshot: InputSnapshot) -> PipelineResult:
    """Run the decomposition pipeline"""
    logger = get_run_logger()

    result = DecompositionPipeline().run(snapshot)
    logger.info(
        f"Decomposition complete: {result.facts.height} facts, "
        f"{result.core.height} months in {result.duration_seconds:.2f}s"
    )
    return result


@task(
    name="write_outputs",
    description="Write curated outputs",
    retries=2,
    retry_delay_seconds=30,
)
def write_outputs(result: PipelineResult, output_path: str) -> Dict[str, List[str]]:
    """Write the pipeline result to the curated zone"""
    logger = get_run_logger()

    written = OutputWriter(output_path).write_result(result)
    logger.info(f"Outputs written: {sum(len(p) for p in written.values())} files")
    return written


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="monthly_gmv_decomposition",
    description="Monthly GMV decomposition over a full cleaned snapshot",
    retries=1,
    retry_delay_seconds=300,
)
def monthly_decomposition(
    input_path: Optional[str] = None,
    output_path: Optional[str] = None,
    file_format: Optional[str] = None,
) -> dict:
    """
    Monthly GMV decomposition.

    Steps:
    1. Load the cleaned snapshot
    2. Run the decomposition (identity checks included)
    3. Write curated outputs
    """
    logger = get_run_logger()

    input_path = input_path or settings.data_lake.input_path
    output_path = output_path or settings.data_lake.output_path
    file_format = file_format or settings.data_lake.input_format

    logger.info(f"Starting GMV decomposition from {input_path}")

    snapshot = load_snapshot(input_path, file_format)
    result = run_decomposition(snapshot)
    written = write_outputs(result, output_path)

    return {
        "status": "success",
        "facts": result.facts.height,
        "months": result.core.height,
        "outputs": written,
    }


if __name__ == "__main__":
    configure_logging()
    monthly_decomposition()
