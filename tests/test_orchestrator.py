import pytest

from mediaflow import metrics
from mediaflow.errors import PlanValidationError
from mediaflow.graph import compose, generate_video, merge
from mediaflow.models import (
    ExecuteOptions,
    ExecutionPlan,
    ExecutionRecord,
    ExecutionStatus,
    JobProgress,
    JobRecord,
    JobStatus,
    OperationType,
)
from mediaflow.orchestrator import ExecutionOrchestrator, build_status
from mediaflow.store import MemoryExecutionStore

from conftest import RecordingDispatcher, RecordingNotifier

MINIMAX = "minimax/video-01"


def _plan(*jobs, base_execution_id=None):
    return ExecutionPlan.model_validate({"jobs": list(jobs), "baseExecutionId": base_execution_id})


def _node(job_id, depends_on=(), op="generate"):
    return {"id": job_id, "type": op, "params": {"modelId": MINIMAX, "prompt": job_id}, "dependsOn": list(depends_on)}


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def orchestrator(store, dispatcher, notifier):
    return ExecutionOrchestrator(store, dispatcher, notifier)


class UnreachableDispatcher(RecordingDispatcher):
    def submit(self, record_id, operation, execution_id=""):
        raise ConnectionError("redis unavailable")


def _jobs_by_plan_id(store, execution_id):
    return {job.job_id: job for job in store.list_jobs(execution_id)}


def _finish(store, orchestrator, job, status=JobStatus.COMPLETED, error=None, result=None):
    store.transition_job(
        job.id,
        {JobStatus.PROCESSING, JobStatus.QUEUED},
        status,
        error=error,
        error_kind="provider" if error else None,
        result=result,
    )
    orchestrator.on_job_terminal(job.execution_id)


class TestCreateExecution:
    """Plan validation and persistence"""

    def test_persists_before_returning(self, orchestrator, store):
        """Test the execution and every job row exist after submission"""
        plan = compose(
            generate_video(MINIMAX, prompt="a"), generate_video(MINIMAX, prompt="b"), merge()
        ).to_execution_plan()

        execution = orchestrator.create_execution(plan)

        assert store.get_execution(execution.id) is not None
        jobs = store.list_jobs(execution.id)
        assert [j.job_id for j in jobs] == ["job1", "job2", "job3"]
        assert [j.position for j in jobs] == [0, 1, 2]
        assert jobs[0].model_id == MINIMAX
        assert jobs[2].operation == OperationType.MERGE
        assert execution.execution_plan["jobs"][2]["dependsOn"] == ["job1", "job2"]

    def test_dispatches_only_ready_jobs(self, orchestrator, store, dispatcher):
        """Test jobs with unmet dependencies stay queued"""
        plan = compose(
            generate_video(MINIMAX, prompt="a"), generate_video(MINIMAX, prompt="b"), merge()
        ).to_execution_plan()

        execution = orchestrator.create_execution(plan)

        jobs = _jobs_by_plan_id(store, execution.id)
        assert [s[0] for s in dispatcher.submitted] == [jobs["job1"].id, jobs["job2"].id]
        assert dispatcher.submitted[0][1] == "generate"
        assert jobs["job1"].status == JobStatus.PROCESSING
        assert jobs["job1"].started_at is not None
        assert jobs["job3"].status == JobStatus.QUEUED
        assert execution.status == ExecutionStatus.PROCESSING

    def test_options_recorded(self, orchestrator):
        """Test webhook and provider keys are stored on the execution"""
        options = ExecuteOptions(
            webhook="https://caller.test/hook",
            webhook_secret="s3cret",
            provider_api_keys={"replicate": "org-key"},
        )
        execution = orchestrator.create_execution(_plan(_node("job1")), options)
        assert execution.webhook_url == "https://caller.test/hook"
        assert execution.webhook_secret == "s3cret"
        assert execution.provider_api_keys == {"replicate": "org-key"}

    def test_duplicate_ids(self, orchestrator, store):
        """Test duplicate job ids are rejected and nothing is stored"""
        with pytest.raises(PlanValidationError, match="Duplicate job id: job1"):
            orchestrator.create_execution(_plan(_node("job1"), _node("job1")))

    def test_forward_reference(self, orchestrator):
        """Test a dependency on a later job is rejected"""
        with pytest.raises(PlanValidationError, match="does not appear earlier"):
            orchestrator.create_execution(_plan(_node("job1", ["job2"]), _node("job2")))

    def test_unknown_reference(self, orchestrator):
        """Test a dependency on a missing job is rejected"""
        with pytest.raises(PlanValidationError):
            orchestrator.create_execution(_plan(_node("job1", ["ghost"])))

    def test_self_reference(self, orchestrator):
        """Test a job cannot depend on itself"""
        with pytest.raises(PlanValidationError, match="depends on itself"):
            orchestrator.create_execution(_plan(_node("job1", ["job1"])))

    def test_token_not_in_dependencies(self, orchestrator, dispatcher):
        """Test a param token must name a job listed in dependsOn"""
        talking_head = _node("job2")
        talking_head["params"]["image"] = "_imageJobDependency:job1"
        with pytest.raises(PlanValidationError, match="references job1 in 'image'"):
            orchestrator.create_execution(_plan(_node("job1"), talking_head))
        assert dispatcher.submitted == []

    def test_token_naming_unknown_job(self, orchestrator, dispatcher):
        """Test a token for a job that does not exist is rejected"""
        node = _node("job1")
        node["params"]["audio"] = "_audioJobDependency:job99"
        with pytest.raises(PlanValidationError, match="job99"):
            orchestrator.create_execution(_plan(node))
        assert dispatcher.submitted == []

    def test_nested_token_checked(self, orchestrator):
        """Test tokens inside layer lists are checked too"""
        layer = {
            "id": "job2", "type": "layer", "dependsOn": [],
            "params": {"layers": [{"media": ["https://x/bg.mp4", "_videoJobDependency:job1"]}]},
        }
        with pytest.raises(PlanValidationError, match="references job1 in 'layers'"):
            orchestrator.create_execution(_plan(_node("job1"), layer))

    def test_declared_tokens_accepted(self, orchestrator, store):
        node = _node("job2", ["job1"])
        node["params"]["image"] = "_imageJobDependency:job1"
        execution = orchestrator.create_execution(_plan(_node("job1"), node))
        assert len(store.list_jobs(execution.id)) == 2

    def test_missing_base_execution(self, orchestrator):
        """Test an unknown base execution is rejected"""
        with pytest.raises(PlanValidationError, match="Base execution not found"):
            orchestrator.create_execution(_plan(_node("job1"), base_execution_id="nope"))

    def test_base_execution_dependencies(self, orchestrator, store, dispatcher):
        """Test jobs may depend on completed jobs of a base execution"""
        base = orchestrator.create_execution(_plan(_node("job1")))
        _finish(store, orchestrator, store.list_jobs(base.id)[0], result={"url": "https://x/base.mp4"})

        follow_up = orchestrator.create_execution(
            _plan(_node("job2", ["job1"], op="removeBackground")),
            ExecuteOptions(base_execution_id=base.id),
        )

        job2 = store.list_jobs(follow_up.id)[0]
        assert follow_up.base_execution_id == base.id
        assert job2.status == JobStatus.PROCESSING
        assert dispatcher.submitted[-1][0] == job2.id


class TestDependencyGating:
    """Failed dependencies fail dependents without dispatch"""

    def test_failure_propagates_in_one_pass(self, orchestrator, store, dispatcher):
        """Test a failure cascades down a chain immediately"""
        execution = orchestrator.create_execution(_plan(
            _node("job1"),
            _node("job2", ["job1"], op="removeBackground"),
            _node("job3", ["job2"], op="addSubtitles"),
        ))
        jobs = _jobs_by_plan_id(store, execution.id)

        _finish(store, orchestrator, jobs["job1"], JobStatus.FAILED, error="boom")

        jobs = _jobs_by_plan_id(store, execution.id)
        assert jobs["job2"].status == JobStatus.FAILED
        assert jobs["job2"].error == "Dependency job1 failed"
        assert jobs["job2"].error_kind == "dependency"
        assert jobs["job3"].error == "Dependency job2 failed"
        assert jobs["job3"].progress.stage == "skipped"
        assert len(dispatcher.submitted) == 1
        assert metrics.get_counter("jobs.skipped") == 2

        final = store.get_execution(execution.id)
        assert final.status == ExecutionStatus.FAILED
        assert final.error == "Job job1 failed: boom"

    def test_completed_dependencies_release_dependent(self, orchestrator, store, dispatcher):
        """Test a merge is dispatched only after every input completed"""
        execution = orchestrator.create_execution(_plan(
            _node("job1"), _node("job2"), _node("job3", ["job1", "job2"], op="merge"),
        ))
        jobs = _jobs_by_plan_id(store, execution.id)

        _finish(store, orchestrator, jobs["job1"], result={"url": "https://x/1.mp4"})
        assert len(dispatcher.submitted) == 2

        _finish(store, orchestrator, jobs["job2"], result={"url": "https://x/2.mp4"})
        assert dispatcher.submitted[-1] == (jobs["job3"].id, "merge", execution.id)

    def test_emit_is_idempotent(self, orchestrator, store, dispatcher):
        """Test repeated emits never dispatch a job twice"""
        execution = orchestrator.create_execution(_plan(_node("job1")))
        orchestrator.emit_ready_jobs(execution.id)
        orchestrator.emit_ready_jobs(execution.id)
        assert len(dispatcher.submitted) == 1

    def test_dispatch_failure_fails_job(self, store, notifier):
        """Test a job the dispatcher refuses fails and the execution still finalizes"""
        orchestrator = ExecutionOrchestrator(store, UnreachableDispatcher(), notifier)

        execution = orchestrator.create_execution(_plan(_node("job1"), _node("job2", ["job1"])))

        jobs = _jobs_by_plan_id(store, execution.id)
        assert jobs["job1"].status == JobStatus.FAILED
        assert jobs["job1"].error == "Dispatch failed: redis unavailable"
        assert jobs["job1"].error_kind == "internal"
        assert jobs["job2"].status == JobStatus.FAILED
        assert jobs["job2"].error_kind == "dependency"
        assert metrics.get_counter("jobs.failed") == 1

        final = store.get_execution(execution.id)
        assert final.status == ExecutionStatus.FAILED
        assert final.error == "Job job1 failed: Dispatch failed: redis unavailable"


class TestFinalization:
    """Aggregation into one terminal result"""

    def test_result_from_final_job(self, orchestrator, store, notifier):
        """Test the sink job's result becomes the execution result"""
        execution = orchestrator.create_execution(_plan(
            _node("job1"), _node("job2", ["job1"], op="removeBackground"),
        ))
        jobs = _jobs_by_plan_id(store, execution.id)
        _finish(store, orchestrator, jobs["job1"], result={"url": "https://x/raw.mp4"})
        _finish(store, orchestrator, store.get_job(jobs["job2"].id), result={"url": "https://x/clean.mp4"})

        final = store.get_execution(execution.id)
        assert final.status == ExecutionStatus.COMPLETED
        assert final.result == {"url": "https://x/clean.mp4"}
        assert final.completed_at is not None
        assert notifier.scheduled == []
        assert metrics.get_counter("executions.completed") == 1

    def test_notifier_scheduled_once(self, orchestrator, store, notifier):
        """Test a webhook is scheduled once on the terminal transition"""
        execution = orchestrator.create_execution(
            _plan(_node("job1")), ExecuteOptions(webhook="https://caller.test/hook")
        )
        job = store.list_jobs(execution.id)[0]
        _finish(store, orchestrator, job, result={"url": "https://x/v.mp4"})
        orchestrator.on_job_terminal(execution.id)

        assert notifier.scheduled == [execution.id]

    def test_multiple_root_causes(self, orchestrator, store):
        """Test several independent failures are all named"""
        execution = orchestrator.create_execution(_plan(
            _node("job1"), _node("job2"), _node("job3", ["job1", "job2"], op="merge"),
        ))
        jobs = _jobs_by_plan_id(store, execution.id)
        _finish(store, orchestrator, jobs["job1"], JobStatus.FAILED, error="quota exceeded")
        _finish(store, orchestrator, jobs["job2"], JobStatus.FAILED, error="nsfw")

        final = store.get_execution(execution.id)
        assert final.error == "2 jobs failed: job1: quota exceeded; job2: nsfw"
        assert final.result is None

    def test_terminal_status_is_final(self, orchestrator, store):
        """Test a finalized execution never changes status"""
        execution = orchestrator.create_execution(_plan(_node("job1")))
        job = store.list_jobs(execution.id)[0]
        _finish(store, orchestrator, job, JobStatus.FAILED, error="boom")

        assert not store.transition_execution(
            execution.id, (ExecutionStatus.PENDING, ExecutionStatus.PROCESSING), ExecutionStatus.COMPLETED
        )
        assert store.get_execution(execution.id).status == ExecutionStatus.FAILED

    def test_final_job_is_last_sink(self):
        """Test the last job nothing depends on is chosen"""
        jobs = [
            JobRecord(id="a", execution_id="e", job_id="job1", operation=OperationType.GENERATE),
            JobRecord(id="b", execution_id="e", job_id="job2", operation=OperationType.GENERATE),
            JobRecord(id="c", execution_id="e", job_id="job3", operation=OperationType.TRANSCRIBE,
                      dependencies=["job1"]),
        ]
        assert ExecutionOrchestrator.final_job(jobs).job_id == "job3"
        assert ExecutionOrchestrator.final_job(jobs[:2]).job_id == "job2"


class TestStatusView:
    """get_status / build_status"""

    def test_unknown_execution(self, orchestrator):
        """Test an unknown id returns None"""
        assert orchestrator.get_status("missing") is None

    def test_progress_averages_jobs(self):
        """Test progress counts terminal jobs as 100"""
        execution = ExecutionRecord(id="e", status=ExecutionStatus.PROCESSING)
        jobs = [
            JobRecord(id="a", execution_id="e", job_id="job1", operation=OperationType.GENERATE,
                      status=JobStatus.COMPLETED, result={"url": "u"}),
            JobRecord(id="b", execution_id="e", job_id="job2", operation=OperationType.GENERATE,
                      status=JobStatus.PROCESSING, progress=JobProgress(stage="generating", percentage=20)),
        ]
        view = build_status(execution, jobs)
        assert view.progress == 60
        assert view.total_jobs == 2
        assert view.completed_jobs == 1
        assert view.current_job == "job2"
        assert view.jobs[1].stage == "generating"
        assert view.result is None

    def test_completed_view(self, orchestrator, store):
        """Test a completed execution exposes its result at 100%"""
        execution = orchestrator.create_execution(_plan(_node("job1")))
        _finish(store, orchestrator, store.list_jobs(execution.id)[0], result={"url": "https://x/v.mp4"})

        view = orchestrator.get_status(execution.id)
        assert view.status == ExecutionStatus.COMPLETED
        assert view.progress == 100
        assert view.current_job == "job1"
        assert view.result == {"url": "https://x/v.mp4"}

    def test_failed_view_hides_partial_results(self, orchestrator, store):
        """Test a failed execution never exposes an upstream result"""
        execution = orchestrator.create_execution(_plan(
            _node("job1"), _node("job2"), _node("job3", ["job1", "job2"], op="merge"),
        ))
        jobs = _jobs_by_plan_id(store, execution.id)
        _finish(store, orchestrator, jobs["job1"], result={"url": "https://x/1.mp4"})
        _finish(store, orchestrator, jobs["job2"], JobStatus.FAILED, error="boom")

        view = orchestrator.get_status(execution.id)
        assert view.status == ExecutionStatus.FAILED
        assert view.result is None
        assert view.error == "Job job2 failed: boom"

    def test_wire_shape(self, orchestrator):
        """Test the view serializes with camelCase keys"""
        execution = orchestrator.create_execution(_plan(_node("job1")))
        body = orchestrator.get_status(execution.id).model_dump(mode="json", by_alias=True)
        assert {"executionId", "status", "progress", "totalJobs", "completedJobs", "currentJob"} <= set(body)


class TestMemoryStore:
    """Conditional transitions"""

    def test_first_terminal_write_wins(self):
        """Test a second terminal write is refused"""
        store = MemoryExecutionStore()
        execution = ExecutionRecord(id="e")
        job = JobRecord(id="j", execution_id="e", job_id="job1", operation=OperationType.GENERATE,
                        status=JobStatus.PROCESSING)
        store.create_execution(execution, [job])

        assert store.transition_job("j", {JobStatus.PROCESSING}, JobStatus.COMPLETED, result={"url": "u"})
        assert not store.transition_job("j", {JobStatus.PROCESSING}, JobStatus.FAILED, error="late")
        assert store.get_job("j").status == JobStatus.COMPLETED
        assert store.get_job("j").error is None

    def test_returns_copies(self):
        """Test callers cannot mutate stored records in place"""
        store = MemoryExecutionStore()
        store.create_execution(ExecutionRecord(id="e"), [])
        copy = store.get_execution("e")
        copy.error = "tampered"
        assert store.get_execution("e").error is None
