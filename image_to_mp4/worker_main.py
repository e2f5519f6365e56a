import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from image_to_mp4.adapters.composite_reporters import CompositeProgressReporter
from image_to_mp4.adapters.console_reporters import ConsoleConversionObserver, ConsoleProgressReporter
from image_to_mp4.adapters.db_progress_reporter import DbProgressReporter
from image_to_mp4.adapters.local_file_gateway import LocalFileGateway
from image_to_mp4.adapters.minio_object_storage import MinioObjectStorageAdapter
from image_to_mp4.adapters.postgres_job_repository import PostgresJobRepositoryAdapter
from image_to_mp4.application.job_runner_use_cases import RunSingleJobUseCase
from image_to_mp4.application.ports import JobRepositoryPort
from image_to_mp4.application.use_cases import ConvertImageToMp4UseCase
from image_to_mp4.bootstrap import build_convert_use_case
from image_to_mp4.domain.job_models import ImageJob, WorkerInfo
from image_to_mp4.settings import ConverterSettings, WorkerSettings


HEARTBEAT_INTERVAL_SEC = 2.0


class WorkerState:
    """ハートビートスレッドと共有するワーカー状態です。"""

    def __init__(self, initial_status: str) -> None:
        self._lock = threading.Lock()
        self._status = initial_status
        self._current_job_id: Optional[str] = None

    def set_status(self, status: str, current_job_id: Optional[str] = None) -> None:
        with self._lock:
            self._status = status
            self._current_job_id = current_job_id

    def get_snapshot(self) -> Tuple[str, Optional[str]]:
        with self._lock:
            return self._status, self._current_job_id


@dataclass(frozen=True)
class WorkerIdentity:
    """encode_workers に登録するワーカーの識別情報です。"""

    worker_key: str
    display_name: str
    ip_address: Optional[str]
    tags_json_text: str
    capacity_json_text: str

    @classmethod
    def from_settings(cls, settings: WorkerSettings) -> "WorkerIdentity":
        return cls(
            worker_key=settings.worker_key,
            display_name=settings.worker_display_name,
            ip_address=settings.worker_ip,
            tags_json_text=settings.tags_json_text,
            capacity_json_text=settings.capacity_json_text,
        )


def publish_heartbeat(
    job_repository: JobRepositoryPort,
    identity: WorkerIdentity,
    status: str,
    busy: bool = False,
) -> WorkerInfo:
    """ワーカーの状態を encode_workers へ書き込みます。"""

    display_name = identity.display_name
    if busy:
        display_name = "{0} (busy)".format(identity.display_name)

    return job_repository.upsert_worker_heartbeat(
        worker_key=identity.worker_key,
        display_name=display_name,
        status=status,
        ip_address=identity.ip_address,
        tags_json_text=identity.tags_json_text,
        capacity_json_text=identity.capacity_json_text,
    )


JobRunnerFactory = Callable[[ImageJob], RunSingleJobUseCase]


def process_next_job(
    job_repository: JobRepositoryPort,
    identity: WorkerIdentity,
    state: WorkerState,
    job_runner_factory: JobRunnerFactory,
) -> bool:
    """キューから1件取り出して処理します。ジョブが無ければ False を返します。

    ジョブの失敗は RunSingleJobUseCase が jobs に記録するため、ここでは出力して次へ進みます。
    """

    job = job_repository.fetch_next_queued_job(worker_key=identity.worker_key)
    if job is None:
        return False

    state.set_status("draining", job.job_id)
    try:
        worker = publish_heartbeat(job_repository, identity, status="draining", busy=True)
        print("[INFO] start job_id={0} worker_key={1}".format(job.job_id, worker.worker_key))

        uploaded = job_runner_factory(job).execute(job=job, worker=worker)
        print(
            "[INFO] completed job_id={0} object_key={1} size={2}".format(
                job.job_id, uploaded.video_object_key, uploaded.size_bytes
            )
        )
    except Exception as ex:
        print("[ERROR] job failed job_id={0} error={1}".format(job.job_id, ex))
    finally:
        state.set_status("online", None)

    return True


def main() -> int:
    """ワーカーのエントリポイントです。"""

    try:
        worker_settings = WorkerSettings.from_env()
        converter_settings = ConverterSettings.from_env()
    except RuntimeError as ex:
        print("[ERROR] {0}".format(ex))
        return 2

    identity = WorkerIdentity.from_settings(worker_settings)
    job_repository = PostgresJobRepositoryAdapter(dsn=worker_settings.postgres_dsn)
    object_storage = MinioObjectStorageAdapter(
        endpoint=worker_settings.minio_endpoint,
        access_key=worker_settings.minio_access_key,
        secret_key=worker_settings.minio_secret_key,
        secure=worker_settings.minio_secure,
    )
    file_gateway = LocalFileGateway()

    def job_runner_factory(job: ImageJob) -> RunSingleJobUseCase:
        # job_id ごとに DB へ進捗を書くため、レポーターはジョブ単位で作る
        progress_reporter = CompositeProgressReporter(
            [
                ConsoleProgressReporter(),
                DbProgressReporter(job_repository=job_repository, job_id=job.job_id),
            ]
        )

        def convert_use_case_factory() -> ConvertImageToMp4UseCase:
            return build_convert_use_case(
                settings=converter_settings,
                observer=ConsoleConversionObserver(),
                progress_reporter=progress_reporter,
            )

        return RunSingleJobUseCase(
            job_repository=job_repository,
            object_storage=object_storage,
            file_gateway=file_gateway,
            convert_use_case_factory=convert_use_case_factory,
            progress_reporter=progress_reporter,
            input_bucket=worker_settings.input_bucket,
            output_bucket=worker_settings.output_bucket,
            work_root=worker_settings.work_root,
            keep_work_dir=worker_settings.keep_work_dir,
        )

    state = WorkerState(initial_status="online")
    stop_event = threading.Event()
    heartbeat_thread = threading.Thread(
        target=_heartbeat_loop,
        args=(stop_event, job_repository, identity, state, HEARTBEAT_INTERVAL_SEC),
        name="worker-heartbeat",
        daemon=True,
    )
    heartbeat_thread.start()

    print("[INFO] worker started worker_key={0}".format(identity.worker_key))
    try:
        while True:
            if process_next_job(job_repository, identity, state, job_runner_factory) == False:
                time.sleep(worker_settings.idle_sleep_sec)

    except KeyboardInterrupt:
        print("[INFO] stopping worker...")

    finally:
        stop_event.set()
        heartbeat_thread.join(timeout=3.0)

        try:
            publish_heartbeat(job_repository, identity, status="offline")
        except Exception as ex:
            print("[WARN] failed to set offline heartbeat: {0}".format(ex))

    return 0


def _heartbeat_loop(
    stop_event: threading.Event,
    job_repository: JobRepositoryPort,
    identity: WorkerIdentity,
    state: WorkerState,
    interval_sec: float,
) -> None:
    """stop_event が立つまで interval_sec ごとにハートビートを送ります。"""

    while stop_event.is_set() == False:
        status, current_job_id = state.get_snapshot()
        try:
            publish_heartbeat(job_repository, identity, status=status, busy=current_job_id is not None)
        except Exception as ex:
            print("[WARN] heartbeat failed: {0}".format(ex))

        stop_event.wait(interval_sec)


if __name__ == "__main__":
    raise SystemExit(main())
