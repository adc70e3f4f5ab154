"""
ExecutionOrchestrator — persists execution plans and drives them to a
single terminal result.

  create_execution  → validate plan, persist execution + job rows, emit ready jobs
  emit_ready_jobs   → fail jobs behind failed dependencies, claim + dispatch jobs
                      whose dependencies all completed, finalize when all terminal
  on_job_terminal   → called by the worker / webhook path after every job outcome
  get_status        → status view for the API and outbound webhooks

Jobs are never blocked waiting on each other: a job is only handed to the
dispatcher once its dependencies are complete, and a dependency failure
fails it without any provider call.
"""

import logging
import uuid
from typing import Optional

from . import metrics
from .dependencies import iter_tokens
from .errors import PlanValidationError
from .models import (
    TERMINAL_JOB_STATUSES,
    ExecuteOptions,
    ExecutionPlan,
    ExecutionRecord,
    ExecutionStatus,
    ExecutionStatusResponse,
    JobProgress,
    JobRecord,
    JobStatus,
    JobStatusView,
    utc_now_iso,
)
from .store import ExecutionStore

logger = logging.getLogger(__name__)

DEPENDENCY_ERROR_KIND = "dependency"
_OPEN_EXECUTION = (ExecutionStatus.PENDING, ExecutionStatus.PROCESSING)


class ExecutionOrchestrator:
    """
    Usage:
        orchestrator = ExecutionOrchestrator(store, dispatcher, notifier)
        execution = orchestrator.create_execution(plan, options)
        status = orchestrator.get_status(execution.id)
    """

    def __init__(self, store: ExecutionStore, dispatcher=None, notifier=None):
        self.store = store
        self.dispatcher = dispatcher
        self.notifier = notifier

    # ── Submission ───────────────────────────────────────────────────────

    def create_execution(self, plan: ExecutionPlan, options: Optional[ExecuteOptions] = None) -> ExecutionRecord:
        """
        Validate and persist a plan, then start every job that has no
        unmet dependency. The returned record is durable before any job runs.

        Raises:
            PlanValidationError: duplicate ids, unknown/forward references,
                                 or a missing base execution.
        """
        options = options or ExecuteOptions()
        base_execution_id = options.base_execution_id or plan.base_execution_id
        base_job_ids = self._base_job_ids(base_execution_id)
        self.validate_plan(plan, base_job_ids)

        execution = ExecutionRecord(
            id=str(uuid.uuid4()),
            status=ExecutionStatus.PENDING,
            execution_plan=plan.model_dump(mode="json", by_alias=True),
            base_execution_id=base_execution_id,
            provider_api_keys=options.provider_api_keys,
            webhook_url=options.webhook,
            webhook_secret=options.webhook_secret,
        )
        jobs = [
            JobRecord(
                id=str(uuid.uuid4()),
                execution_id=execution.id,
                job_id=node.id,
                position=index,
                operation=node.type,
                dependencies=list(node.depends_on),
                params=node.params,
                model_id=node.params.get("modelId"),
            )
            for index, node in enumerate(plan.jobs)
        ]

        self.store.create_execution(execution, jobs)
        logger.info(f"[{execution.id}] Created execution with {len(jobs)} job(s)")

        self.emit_ready_jobs(execution.id)
        return self.store.get_execution(execution.id) or execution

    @staticmethod
    def validate_plan(plan: ExecutionPlan, base_job_ids: frozenset[str] = frozenset()):
        seen: set[str] = set()
        for node in plan.jobs:
            if node.id in seen:
                raise PlanValidationError(f"Duplicate job id: {node.id}")
            for dep in node.depends_on:
                if dep == node.id:
                    raise PlanValidationError(f"Job {node.id} depends on itself")
                if dep not in seen and dep not in base_job_ids:
                    raise PlanValidationError(
                        f"Job {node.id} depends on {dep}, which does not appear earlier in the plan"
                    )
            # A token is only resolvable if its job is a declared dependency
            for key, value in node.params.items():
                for _, dep in iter_tokens(value):
                    if dep not in node.depends_on:
                        raise PlanValidationError(
                            f"Job {node.id} references {dep} in '{key}' but does not list it in dependsOn"
                        )
            seen.add(node.id)

    def _base_job_ids(self, base_execution_id: Optional[str]) -> frozenset[str]:
        if not base_execution_id:
            return frozenset()
        if self.store.get_execution(base_execution_id) is None:
            raise PlanValidationError(f"Base execution not found: {base_execution_id}")
        return frozenset(j.job_id for j in self.store.list_jobs(base_execution_id))

    # ── Scheduling ───────────────────────────────────────────────────────

    def dependency_jobs(self, execution: ExecutionRecord, jobs: list[JobRecord]) -> dict[str, JobRecord]:
        """Plan id → job for this execution, falling back to the base execution."""
        by_id: dict[str, JobRecord] = {}
        if execution.base_execution_id:
            by_id.update({j.job_id: j for j in self.store.list_jobs(execution.base_execution_id)})
        by_id.update({j.job_id: j for j in jobs})
        return by_id

    def emit_ready_jobs(self, execution_id: str):
        execution = self.store.get_execution(execution_id)
        if execution is None:
            logger.warning(f"emit_ready_jobs: execution {execution_id} not found")
            return

        jobs = self.store.list_jobs(execution_id)
        by_id = self.dependency_jobs(execution, jobs)
        statuses = {job_id: job.status for job_id, job in by_id.items()}

        # Plan order is topological, so one pass propagates failures downstream
        for job in jobs:
            if statuses.get(job.job_id) != JobStatus.QUEUED:
                continue

            failed_dep = next((d for d in job.dependencies if statuses.get(d) == JobStatus.FAILED), None)
            if failed_dep is not None:
                if self.store.transition_job(
                    job.id,
                    {JobStatus.QUEUED},
                    JobStatus.FAILED,
                    error=f"Dependency {failed_dep} failed",
                    error_kind=DEPENDENCY_ERROR_KIND,
                    completed_at=utc_now_iso(),
                    progress=JobProgress(stage="skipped", percentage=0),
                ):
                    logger.info(f"[{execution_id}] {job.job_id} failed: dependency {failed_dep} failed")
                    metrics.inc_counter("jobs.skipped")
                statuses[job.job_id] = JobStatus.FAILED
                continue

            if not all(statuses.get(d) == JobStatus.COMPLETED for d in job.dependencies):
                continue

            claimed = self.store.transition_job(
                job.id,
                {JobStatus.QUEUED},
                JobStatus.PROCESSING,
                started_at=utc_now_iso(),
                progress=JobProgress(stage="starting", percentage=0),
            )
            if not claimed:
                # Another emitter got there first
                continue
            statuses[job.job_id] = JobStatus.PROCESSING
            self.store.transition_execution(execution_id, {ExecutionStatus.PENDING}, ExecutionStatus.PROCESSING)
            logger.info(f"[{execution_id}] Dispatching {job.job_id} ({job.operation.value})")
            if self.dispatcher is None:
                continue
            try:
                self.dispatcher.submit(job.id, job.operation.value, execution_id)
            except Exception as e:
                # Nothing will ever run this job, so fail it here and let dependents cascade
                logger.error(f"[{execution_id}] Dispatch of {job.job_id} failed: {e}", exc_info=True)
                self.store.transition_job(
                    job.id,
                    {JobStatus.PROCESSING},
                    JobStatus.FAILED,
                    error=f"Dispatch failed: {e}",
                    error_kind="internal",
                    completed_at=utc_now_iso(),
                    progress=JobProgress(stage="failed", percentage=0),
                )
                statuses[job.job_id] = JobStatus.FAILED
                metrics.inc_counter("jobs.failed")

        if all(statuses[j.job_id] in TERMINAL_JOB_STATUSES for j in jobs):
            self._finalize(execution_id)

    def on_job_terminal(self, execution_id: str):
        """Hook for every job terminal transition: start dependents, maybe finalize."""
        self.emit_ready_jobs(execution_id)

    # ── Aggregation ──────────────────────────────────────────────────────

    @staticmethod
    def final_job(jobs: list[JobRecord]) -> Optional[JobRecord]:
        """The last job in plan order that nothing else in the plan depends on."""
        depended_on = {dep for job in jobs for dep in job.dependencies}
        sinks = [job for job in jobs if job.job_id not in depended_on]
        return sinks[-1] if sinks else None

    @staticmethod
    def aggregate_error(jobs: list[JobRecord]) -> Optional[str]:
        failed = [j for j in jobs if j.status == JobStatus.FAILED]
        if not failed:
            return None
        root_causes = [j for j in failed if j.error_kind != DEPENDENCY_ERROR_KIND] or failed
        if len(root_causes) == 1:
            job = root_causes[0]
            return f"Job {job.job_id} failed: {job.error or 'unknown error'}"
        details = "; ".join(f"{j.job_id}: {j.error or 'unknown error'}" for j in root_causes)
        return f"{len(root_causes)} jobs failed: {details}"

    def _finalize(self, execution_id: str):
        jobs = self.store.list_jobs(execution_id)
        if not jobs or any(j.status not in TERMINAL_JOB_STATUSES for j in jobs):
            return

        error = self.aggregate_error(jobs)
        if error:
            finalized = self.store.transition_execution(
                execution_id, _OPEN_EXECUTION, ExecutionStatus.FAILED,
                error=error, completed_at=utc_now_iso(),
            )
        else:
            final = self.final_job(jobs)
            finalized = self.store.transition_execution(
                execution_id, _OPEN_EXECUTION, ExecutionStatus.COMPLETED,
                result=final.result if final else None, completed_at=utc_now_iso(),
            )

        if not finalized:
            return

        status = "failed" if error else "completed"
        metrics.inc_counter(f"executions.{status}")
        logger.info(f"[{execution_id}] Execution {status}" + (f": {error}" if error else ""))

        if self.notifier is not None:
            execution = self.store.get_execution(execution_id)
            if execution is not None and execution.webhook_url:
                self.notifier.schedule(execution.id)

    # ── Status ───────────────────────────────────────────────────────────

    def get_status(self, execution_id: str) -> Optional[ExecutionStatusResponse]:
        execution = self.store.get_execution(execution_id)
        if execution is None:
            return None
        jobs = self.store.list_jobs(execution_id)
        return build_status(execution, jobs)


def build_status(execution: ExecutionRecord, jobs: list[JobRecord]) -> ExecutionStatusResponse:
    total = len(jobs)
    completed = sum(1 for j in jobs if j.status == JobStatus.COMPLETED)
    finished = sum(1 for j in jobs if j.status in TERMINAL_JOB_STATUSES)

    if execution.status == ExecutionStatus.COMPLETED:
        progress = 100
    elif total:
        progress = sum(
            100 if j.status in TERMINAL_JOB_STATUSES else j.progress.percentage for j in jobs
        ) // total
    else:
        progress = 0

    current = next((j for j in jobs if j.status == JobStatus.PROCESSING), None)
    if current is None and finished:
        current = [j for j in jobs if j.status in TERMINAL_JOB_STATUSES][-1]

    return ExecutionStatusResponse(
        execution_id=execution.id,
        status=execution.status,
        progress=progress,
        total_jobs=total,
        completed_jobs=completed,
        current_job=current.job_id if current else None,
        jobs=[
            JobStatusView(
                job_id=j.job_id,
                operation=j.operation,
                status=j.status,
                stage=j.progress.stage,
                progress=100 if j.status == JobStatus.COMPLETED else j.progress.percentage,
                result=j.result,
                error=j.error,
            )
            for j in jobs
        ],
        # Partial results are never exposed on a failed execution
        result=execution.result if execution.status == ExecutionStatus.COMPLETED else None,
        error=execution.error,
        created_at=execution.created_at,
        completed_at=execution.completed_at,
    )
