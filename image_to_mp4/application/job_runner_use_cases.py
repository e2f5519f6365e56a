from pathlib import Path
from typing import Callable

from image_to_mp4.application.ports import (
    FileGatewayPort,
    JobRepositoryPort,
    ObjectStoragePort,
    ProgressReporterPort,
)
from image_to_mp4.application.use_cases import ConvertImageToMp4UseCase
from image_to_mp4.domain.errors import ConversionError
from image_to_mp4.domain.job_models import ImageJob, UploadedJobResult, WorkerInfo
from image_to_mp4.domain.models import ConversionJob


VIDEO_CONTENT_TYPE = "video/mp4"


class RunSingleJobUseCase:
    """DBとストレージを使って1件の画像→動画ジョブを実行するユースケースです。"""

    def __init__(
        self,
        job_repository: JobRepositoryPort,
        object_storage: ObjectStoragePort,
        file_gateway: FileGatewayPort,
        convert_use_case_factory: Callable[[], ConvertImageToMp4UseCase],
        progress_reporter: ProgressReporterPort,
        input_bucket: str,
        output_bucket: str,
        work_root: Path = Path("work"),
        keep_work_dir: bool = False,
    ) -> None:
        self._job_repository = job_repository
        self._object_storage = object_storage
        self._file_gateway = file_gateway
        self._convert_use_case_factory = convert_use_case_factory
        self._progress_reporter = progress_reporter
        self._input_bucket = input_bucket
        self._output_bucket = output_bucket
        self._work_root = work_root
        self._keep_work_dir = keep_work_dir

    def execute(self, job: ImageJob, worker: WorkerInfo) -> UploadedJobResult:
        """ジョブを1件実行します。"""

        work_dir = self._work_root / job.job_id
        input_dir = work_dir / "input"
        output_dir = work_dir / "output"

        self._file_gateway.ensure_dir(input_dir)
        self._file_gateway.ensure_dir(output_dir)

        local_image_path = input_dir / ("source" + job.source_suffix)
        local_video_path = output_dir / "result.mp4"
        attempt_info = None

        try:
            attempt_info = self._job_repository.start_job_attempt(job_id=job.job_id, worker_id=worker.worker_id)

            self._progress_reporter.report_phase("download", "入力画像をストレージから取得します。")
            self._object_storage.download_file(self._input_bucket, job.input_object_key, local_image_path)

            convert_use_case = self._convert_use_case_factory()
            convert_use_case.execute(
                ConversionJob(
                    source_image_path=local_image_path,
                    destination_video_path=local_video_path,
                )
            )

            if self._file_gateway.file_exists(local_video_path) == False:
                raise RuntimeError("動画出力に失敗しました。出力ファイルが見つかりません。")

            video_object_key = job.output_object_key

            self._progress_reporter.report_phase("upload", "MP4をストレージへアップロードします。")
            self._object_storage.upload_file(
                local_path=local_video_path,
                bucket=self._output_bucket,
                key=video_object_key,
                content_type=VIDEO_CONTENT_TYPE,
            )

            video_size = local_video_path.stat().st_size

            self._job_repository.add_artifact(
                job_id=job.job_id,
                artifact_type="mp4",
                object_key=video_object_key,
                content_type=VIDEO_CONTENT_TYPE,
                size_bytes=video_size,
            )

            self._job_repository.mark_job_succeeded(
                job_id=job.job_id,
                attempt_id=attempt_info.attempt_id,
            )

        except Exception as ex:
            self._job_repository.mark_job_failed(
                job_id=job.job_id,
                attempt_id=attempt_info.attempt_id if attempt_info is not None else None,
                error_code=_error_code(ex),
                error_message=str(ex),
                exit_code=1,
            )
            raise

        finally:
            if self._keep_work_dir == False:
                self._file_gateway.remove_dir(work_dir)

        return UploadedJobResult(video_object_key=video_object_key, size_bytes=video_size)


def _error_code(error: Exception) -> str:
    """例外から jobs.error_code を決めます。"""

    if isinstance(error, ConversionError):
        return "conversion_{0}_error".format(error.category)

    return "worker_runtime_error"
