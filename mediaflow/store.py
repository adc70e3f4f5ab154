"""
Execution / job store — the single source of truth for orchestration state.

Every status change goes through `transition_*`, which only writes when the
row is still in one of the expected `from` statuses and reports whether it
did. That is what makes a late poll after a webhook (or two redundant
webhooks) a no-op: the first terminal write wins.

Backends:
  SupabaseExecutionStore — `executions` / `execution_jobs` tables; the
                           conditional write is an UPDATE filtered on status.
  MemoryExecutionStore   — lock-guarded dicts, for local runs and tests.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel
from supabase import Client, create_client

from .models import ExecutionRecord, JobRecord, utc_now_iso

logger = logging.getLogger(__name__)

EXECUTIONS_TABLE = "executions"
JOBS_TABLE = "execution_jobs"


def _to_column(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    return value


def _status_values(statuses: Iterable[Enum]) -> list[str]:
    return [s.value for s in statuses]


class ExecutionStore(ABC):

    @abstractmethod
    def create_execution(self, execution: ExecutionRecord, jobs: list[JobRecord]) -> None:
        ...

    @abstractmethod
    def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        ...

    @abstractmethod
    def update_execution(self, execution_id: str, **fields) -> None:
        ...

    @abstractmethod
    def transition_execution(self, execution_id: str, from_statuses, to_status, **fields) -> bool:
        ...

    @abstractmethod
    def list_jobs(self, execution_id: str) -> list[JobRecord]:
        ...

    @abstractmethod
    def get_job(self, record_id: str) -> Optional[JobRecord]:
        ...

    @abstractmethod
    def update_job(self, record_id: str, **fields) -> None:
        ...

    @abstractmethod
    def transition_job(self, record_id: str, from_statuses, to_status, **fields) -> bool:
        ...


# ═════════════════════════════════════════════════════════════════════════════
# In-memory backend
# ═════════════════════════════════════════════════════════════════════════════

class MemoryExecutionStore(ExecutionStore):

    def __init__(self):
        self._lock = threading.RLock()
        self._executions: dict[str, ExecutionRecord] = {}
        self._jobs: dict[str, JobRecord] = {}

    def create_execution(self, execution: ExecutionRecord, jobs: list[JobRecord]) -> None:
        with self._lock:
            self._executions[execution.id] = execution.model_copy(deep=True)
            for job in jobs:
                self._jobs[job.id] = job.model_copy(deep=True)

    def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        with self._lock:
            execution = self._executions.get(execution_id)
            return execution.model_copy(deep=True) if execution else None

    def update_execution(self, execution_id: str, **fields) -> None:
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None:
                return
            self._executions[execution_id] = execution.model_copy(
                update={**fields, "updated_at": utc_now_iso()}
            )

    def transition_execution(self, execution_id: str, from_statuses, to_status, **fields) -> bool:
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None or execution.status not in set(from_statuses):
                return False
            self._executions[execution_id] = execution.model_copy(
                update={**fields, "status": to_status, "updated_at": utc_now_iso()}
            )
            return True

    def list_jobs(self, execution_id: str) -> list[JobRecord]:
        with self._lock:
            jobs = [j for j in self._jobs.values() if j.execution_id == execution_id]
            return [j.model_copy(deep=True) for j in sorted(jobs, key=lambda j: j.position)]

    def get_job(self, record_id: str) -> Optional[JobRecord]:
        with self._lock:
            job = self._jobs.get(record_id)
            return job.model_copy(deep=True) if job else None

    def update_job(self, record_id: str, **fields) -> None:
        with self._lock:
            job = self._jobs.get(record_id)
            if job is None:
                return
            self._jobs[record_id] = job.model_copy(update=fields)

    def transition_job(self, record_id: str, from_statuses, to_status, **fields) -> bool:
        with self._lock:
            job = self._jobs.get(record_id)
            if job is None or job.status not in set(from_statuses):
                return False
            self._jobs[record_id] = job.model_copy(update={**fields, "status": to_status})
            return True


# ═════════════════════════════════════════════════════════════════════════════
# Supabase backend
# ═════════════════════════════════════════════════════════════════════════════

_supabase_client: Client | None = None


def get_supabase() -> Client:
    global _supabase_client
    if _supabase_client is None:
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(url, key)
    return _supabase_client


class SupabaseExecutionStore(ExecutionStore):

    def __init__(self, client=None):
        self._client = client

    @property
    def sb(self):
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def create_execution(self, execution: ExecutionRecord, jobs: list[JobRecord]) -> None:
        self.sb.table(EXECUTIONS_TABLE).insert(execution.model_dump(mode="json")).execute()
        if jobs:
            self.sb.table(JOBS_TABLE).insert([j.model_dump(mode="json") for j in jobs]).execute()
        logger.info(f"Persisted execution {execution.id} with {len(jobs)} job(s)")

    def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        resp = self.sb.table(EXECUTIONS_TABLE).select("*").eq("id", execution_id).limit(1).execute()
        return ExecutionRecord.model_validate(resp.data[0]) if resp.data else None

    def update_execution(self, execution_id: str, **fields) -> None:
        data = {k: _to_column(v) for k, v in fields.items()}
        data["updated_at"] = utc_now_iso()
        self.sb.table(EXECUTIONS_TABLE).update(data).eq("id", execution_id).execute()

    def transition_execution(self, execution_id: str, from_statuses, to_status, **fields) -> bool:
        data = {k: _to_column(v) for k, v in fields.items()}
        data["status"] = _to_column(to_status)
        data["updated_at"] = utc_now_iso()
        resp = (
            self.sb.table(EXECUTIONS_TABLE)
            .update(data)
            .eq("id", execution_id)
            .in_("status", _status_values(from_statuses))
            .execute()
        )
        return bool(resp.data)

    def list_jobs(self, execution_id: str) -> list[JobRecord]:
        resp = (
            self.sb.table(JOBS_TABLE)
            .select("*")
            .eq("execution_id", execution_id)
            .order("position")
            .execute()
        )
        return [JobRecord.model_validate(row) for row in resp.data or []]

    def get_job(self, record_id: str) -> Optional[JobRecord]:
        resp = self.sb.table(JOBS_TABLE).select("*").eq("id", record_id).limit(1).execute()
        return JobRecord.model_validate(resp.data[0]) if resp.data else None

    def update_job(self, record_id: str, **fields) -> None:
        data = {k: _to_column(v) for k, v in fields.items()}
        self.sb.table(JOBS_TABLE).update(data).eq("id", record_id).execute()

    def transition_job(self, record_id: str, from_statuses, to_status, **fields) -> bool:
        data = {k: _to_column(v) for k, v in fields.items()}
        data["status"] = _to_column(to_status)
        resp = (
            self.sb.table(JOBS_TABLE)
            .update(data)
            .eq("id", record_id)
            .in_("status", _status_values(from_statuses))
            .execute()
        )
        return bool(resp.data)
