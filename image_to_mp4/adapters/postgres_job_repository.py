from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

import psycopg
from psycopg.rows import dict_row

from image_to_mp4.application.ports import JobRepositoryPort
from image_to_mp4.domain.job_models import ImageJob, JobAttemptInfo, WorkerInfo


JOB_TYPE = "image_to_mp4"
MAX_ERROR_MESSAGE_LENGTH = 4000

UPSERT_WORKER_SQL = """
INSERT INTO encode_workers (
    worker_key, display_name, status, last_heartbeat_at,
    ip_address, tags_json, capacity_json, created_at, updated_at
)
VALUES (
    %(worker_key)s, %(display_name)s, %(status)s, NOW(),
    %(ip_address)s, %(tags_json)s::jsonb, %(capacity_json)s::jsonb, NOW(), NOW()
)
ON CONFLICT (worker_key) DO UPDATE SET
    display_name = EXCLUDED.display_name,
    status = EXCLUDED.status,
    last_heartbeat_at = NOW(),
    ip_address = EXCLUDED.ip_address,
    tags_json = EXCLUDED.tags_json,
    capacity_json = EXCLUDED.capacity_json,
    updated_at = NOW()
RETURNING id::text AS worker_id, worker_key, display_name
"""

# 取得と assigned への更新を1文で行い、他のワーカーとの取り合いを防ぐ
CLAIM_NEXT_JOB_SQL = """
WITH next_job AS (
    SELECT id
    FROM jobs
    WHERE status = 'queued' AND job_type = %(job_type)s
    ORDER BY priority DESC, created_at ASC
    FOR UPDATE SKIP LOCKED
    LIMIT 1
)
UPDATE jobs
SET status = 'assigned', assigned_worker_key = %(worker_key)s
FROM next_job
WHERE jobs.id = next_job.id
RETURNING jobs.id::text AS job_id, jobs.input_object_key, jobs.output_prefix
"""

INSERT_ATTEMPT_SQL = """
INSERT INTO job_attempts (job_id, attempt_no, worker_id, status, started_at)
SELECT %(job_id)s::uuid, COALESCE(MAX(attempt_no), 0) + 1, %(worker_id)s::uuid, 'running', NOW()
FROM job_attempts
WHERE job_id = %(job_id)s::uuid
RETURNING id::text AS attempt_id, attempt_no
"""

MARK_JOB_RUNNING_SQL = """
UPDATE jobs
SET status = 'running', progress_percent = 0, error_code = NULL, error_message = NULL,
    started_at = COALESCE(started_at, NOW()), finished_at = NULL
WHERE id = %(job_id)s::uuid
"""

UPDATE_PROGRESS_SQL = """
UPDATE jobs SET progress_percent = %(progress_percent)s WHERE id = %(job_id)s::uuid
"""

INSERT_ARTIFACT_SQL = """
INSERT INTO artifacts (job_id, type, object_key, content_type, size_bytes, created_at)
VALUES (%(job_id)s::uuid, %(artifact_type)s, %(object_key)s, %(content_type)s, %(size_bytes)s, NOW())
"""

FINISH_ATTEMPT_SQL = """
UPDATE job_attempts
SET status = %(status)s, finished_at = NOW(), exit_code = %(exit_code)s, error_message = %(error_message)s
WHERE id = %(attempt_id)s::uuid
"""

FINISH_JOB_SQL = """
UPDATE jobs
SET status = %(status)s,
    progress_percent = CASE WHEN %(succeeded)s THEN 100 ELSE progress_percent END,
    error_code = %(error_code)s, error_message = %(error_message)s, finished_at = NOW()
WHERE id = %(job_id)s::uuid
"""


class PostgresJobRepositoryAdapter(JobRepositoryPort):
    """PostgreSQL の jobs / job_attempts / artifacts / encode_workers を扱うアダプターです。

    各操作は1トランザクションで完結し、接続はその都度開きます。
    """

    def __init__(
        self,
        dsn: str,
        job_type: str = JOB_TYPE,
        connect: Callable[..., Any] = psycopg.connect,
    ) -> None:
        self._dsn = dsn
        self._job_type = job_type
        self._connect = connect

    def upsert_worker_heartbeat(
        self,
        worker_key: str,
        display_name: str,
        status: str,
        ip_address: Optional[str],
        tags_json_text: str,
        capacity_json_text: str,
    ) -> WorkerInfo:
        """encode_workers をUPSERTし、worker情報を返します。"""

        with self._transaction() as cur:
            cur.execute(
                UPSERT_WORKER_SQL,
                {
                    "worker_key": worker_key,
                    "display_name": display_name,
                    "status": status,
                    "ip_address": ip_address,
                    "tags_json": tags_json_text,
                    "capacity_json": capacity_json_text,
                },
            )
            row = cur.fetchone()

        return WorkerInfo(
            worker_id=str(row["worker_id"]),
            worker_key=str(row["worker_key"]),
            display_name=str(row["display_name"]),
        )

    def fetch_next_queued_job(self, worker_key: str) -> Optional[ImageJob]:
        """queued の画像ジョブを1件取得し、assigned にします。"""

        with self._transaction() as cur:
            cur.execute(CLAIM_NEXT_JOB_SQL, {"job_type": self._job_type, "worker_key": worker_key})
            row = cur.fetchone()

        if row is None:
            return None

        return ImageJob(
            job_id=str(row["job_id"]),
            input_object_key=str(row["input_object_key"]),
            output_prefix=str(row["output_prefix"]),
        )

    def start_job_attempt(self, job_id: str, worker_id: str) -> JobAttemptInfo:
        """job_attempts開始 + jobsをrunningへ更新します。"""

        with self._transaction() as cur:
            cur.execute(INSERT_ATTEMPT_SQL, {"job_id": job_id, "worker_id": worker_id})
            row = cur.fetchone()
            cur.execute(MARK_JOB_RUNNING_SQL, {"job_id": job_id})

        return JobAttemptInfo(attempt_id=str(row["attempt_id"]), attempt_no=int(row["attempt_no"]))

    def update_progress(self, job_id: str, progress_percent: int) -> None:
        with self._transaction() as cur:
            cur.execute(
                UPDATE_PROGRESS_SQL,
                {"job_id": job_id, "progress_percent": min(max(progress_percent, 0), 100)},
            )

    def add_artifact(
        self,
        job_id: str,
        artifact_type: str,
        object_key: str,
        content_type: Optional[str],
        size_bytes: Optional[int],
    ) -> None:
        with self._transaction() as cur:
            cur.execute(
                INSERT_ARTIFACT_SQL,
                {
                    "job_id": job_id,
                    "artifact_type": artifact_type,
                    "object_key": object_key,
                    "content_type": content_type,
                    "size_bytes": size_bytes,
                },
            )

    def mark_job_succeeded(self, job_id: str, attempt_id: str) -> None:
        """jobs と job_attempts を成功状態へ更新します。"""

        self._finish(job_id, attempt_id, status="succeeded", error_code=None, error_message=None, exit_code=0)

    def mark_job_failed(
        self,
        job_id: str,
        attempt_id: Optional[str],
        error_code: Optional[str],
        error_message: str,
        exit_code: Optional[int],
    ) -> None:
        """jobs と job_attempts を失敗状態へ更新します。メッセージは長さを切り詰めます。"""

        self._finish(
            job_id,
            attempt_id,
            status="failed",
            error_code=error_code,
            error_message=error_message[:MAX_ERROR_MESSAGE_LENGTH],
            exit_code=exit_code,
        )

    def _finish(
        self,
        job_id: str,
        attempt_id: Optional[str],
        status: str,
        error_code: Optional[str],
        error_message: Optional[str],
        exit_code: Optional[int],
    ) -> None:
        with self._transaction() as cur:
            if attempt_id is not None:
                cur.execute(
                    FINISH_ATTEMPT_SQL,
                    {
                        "attempt_id": attempt_id,
                        "status": status,
                        "exit_code": exit_code,
                        "error_message": error_message,
                    },
                )

            cur.execute(
                FINISH_JOB_SQL,
                {
                    "job_id": job_id,
                    "status": status,
                    "succeeded": status == "succeeded",
                    "error_code": error_code,
                    "error_message": error_message,
                },
            )

    @contextmanager
    def _transaction(self) -> Iterator[Any]:
        """接続を開き、ブロックが正常終了した場合のみ commit します。"""

        with self._connect(self._dsn, row_factory=dict_row) as conn:
            with conn.cursor() as cur:
                yield cur
            conn.commit()
