from concurrent.futures import Future
from pathlib import Path
from typing import List, Optional, Sequence

from image_to_mp4.domain.job_models import ImageJob, JobAttemptInfo, WorkerInfo
from image_to_mp4.domain.models import (
    DecodedImage,
    ExportOutcome,
    ExportStatus,
    MediaAsset,
    RasterFrame,
    VideoTrackInfo,
)


def resolved(value) -> Future:
    future: Future = Future()
    future.set_result(value)
    return future


def failed(error: BaseException) -> Future:
    future: Future = Future()
    future.set_exception(error)
    return future


class RecordingProgressReporter:
    def __init__(self) -> None:
        self.phases: List[str] = []
        self.progress: List[tuple] = []

    def report_phase(self, phase: str, message: str) -> None:
        self.phases.append(phase)

    def report_progress(self, current: int, total: int, message: str) -> None:
        self.progress.append((current, total))


class RecordingObserver:
    def __init__(self) -> None:
        self.events: List[tuple] = []

    def on_start(self, job) -> None:
        self.events.append(("start", job))

    def on_failure(self, job, error) -> None:
        self.events.append(("failure", error))

    def on_complete(self, job, result) -> None:
        self.events.append(("complete", result))

    @property
    def names(self) -> List[str]:
        return [event[0] for event in self.events]


class FakeFileGateway:
    def __init__(self, existing: Sequence[Path] = (), remove_error: Optional[OSError] = None) -> None:
        self.existing = set(existing)
        self.remove_error = remove_error
        self.removed: List[Path] = []
        self.created_dirs: List[Path] = []
        self.removed_dirs: List[Path] = []

    def ensure_dir(self, path: Path) -> None:
        self.created_dirs.append(path)

    def file_exists(self, path: Path) -> bool:
        return path in self.existing

    def remove_file(self, path: Path) -> None:
        if self.remove_error is not None:
            raise self.remove_error
        self.existing.discard(path)
        self.removed.append(path)

    def remove_dir(self, path: Path) -> None:
        self.removed_dirs.append(path)


class FakeRasterizer:
    def __init__(self, width: int = 4, height: int = 2, decode_error=None, rasterize_error=None) -> None:
        self.width = width
        self.height = height
        self.decode_error = decode_error
        self.rasterize_error = rasterize_error
        self.decode_calls = 0
        self.rasterize_calls = 0

    def decode(self, image_path: Path) -> DecodedImage:
        self.decode_calls += 1
        if self.decode_error is not None:
            raise self.decode_error
        return DecodedImage(width=self.width, height=self.height, image=None)

    def rasterize(self, image: DecodedImage) -> RasterFrame:
        self.rasterize_calls += 1
        if self.rasterize_error is not None:
            raise self.rasterize_error
        bytes_per_row = image.width * 4
        return RasterFrame(
            width=image.width,
            height=image.height,
            bytes_per_row=bytes_per_row,
            data=bytes(bytes_per_row * image.height),
        )


class FakeSession:
    """is_ready の戻り値を ready_sequence の順に返し、尽きたら always_ready に従います。"""

    def __init__(
        self,
        ready_sequence: Sequence[bool] = (),
        always_ready: bool = True,
        append_results: Sequence[bool] = (),
        error: Optional[BaseException] = None,
        finish_error: Optional[BaseException] = None,
    ) -> None:
        self._ready_sequence = list(ready_sequence)
        self._always_ready = always_ready
        self._append_results = list(append_results)
        self.error = error
        self.finish_error = finish_error
        self.ready_polls = 0
        self.appended: List[tuple] = []
        self.marked_finished = False
        self.finish_called = False
        self.aborted = False

    def is_ready_for_more_media_data(self) -> bool:
        self.ready_polls += 1
        if self._ready_sequence:
            return self._ready_sequence.pop(0)
        return self._always_ready

    def append(self, frame, presentation_time) -> bool:
        result = self._append_results.pop(0) if self._append_results else True
        if result:
            self.appended.append((frame, presentation_time))
        return result

    def mark_as_finished(self) -> None:
        self.marked_finished = True

    def finish_writing(self) -> Future:
        self.finish_called = True
        if self.finish_error is not None:
            return failed(self.finish_error)
        return resolved(Path("intermediate.mp4"))

    def abort(self) -> None:
        self.aborted = True


class FakeWriterFactory:
    def __init__(self, session: Optional[FakeSession] = None, error: Optional[BaseException] = None) -> None:
        self.session = session if session is not None else FakeSession()
        self.error = error
        self.calls: List[dict] = []

    def create_session(self, output_path, width, height, frame_rate, frame_duration):
        self.calls.append(
            dict(
                output_path=output_path,
                width=width,
                height=height,
                frame_rate=frame_rate,
                frame_duration=frame_duration,
            )
        )
        if self.error is not None:
            raise self.error
        return self.session


def make_asset(path: Path, duration_sec: float = 2.0, with_video: bool = True) -> MediaAsset:
    tracks = ()
    if with_video:
        tracks = (VideoTrackInfo(index=0, codec_name="h264", width=4, height=2),)
    return MediaAsset(path=path, duration_sec=duration_sec, video_tracks=tracks)


class FakeMediaProbe:
    def __init__(self, asset: Optional[MediaAsset] = None, error: Optional[BaseException] = None) -> None:
        self.asset = asset
        self.error = error
        self.probed: List[Path] = []

    def probe(self, media_path: Path) -> MediaAsset:
        self.probed.append(media_path)
        if self.error is not None:
            raise self.error
        if self.asset is not None:
            return self.asset
        return make_asset(media_path)


class FakeExporter:
    def __init__(self, fail_with: Optional[BaseException] = None) -> None:
        self.fail_with = fail_with
        self.exports: List[dict] = []

    def export_async(self, composition, output_path, preset, timing) -> Future:
        self.exports.append(dict(composition=composition, output_path=output_path, preset=preset, timing=timing))
        if self.fail_with is not None:
            return resolved(ExportOutcome(status=ExportStatus.FAILED, output_path=output_path, error=self.fail_with))
        return resolved(ExportOutcome(status=ExportStatus.COMPLETED, output_path=output_path))


class FakeJobRepository:
    def __init__(self, queued_jobs: Sequence[ImageJob] = ()) -> None:
        self.calls: List[tuple] = []
        self.progress: List[int] = []
        self.queued_jobs = list(queued_jobs)
        self.heartbeats: List[tuple] = []

    def upsert_worker_heartbeat(
        self, worker_key, display_name, status, ip_address, tags_json_text, capacity_json_text
    ) -> WorkerInfo:
        self.heartbeats.append((worker_key, display_name, status))
        return WorkerInfo(worker_id="worker-1", worker_key=worker_key, display_name=display_name)

    def fetch_next_queued_job(self, worker_key: str) -> Optional[ImageJob]:
        if len(self.queued_jobs) == 0:
            return None
        return self.queued_jobs.pop(0)

    def start_job_attempt(self, job_id: str, worker_id: str) -> JobAttemptInfo:
        self.calls.append(("start_job_attempt", job_id, worker_id))
        return JobAttemptInfo(attempt_id="attempt-1", attempt_no=1)

    def update_progress(self, job_id: str, progress_percent: int) -> None:
        self.progress.append(progress_percent)

    def add_artifact(self, job_id, artifact_type, object_key, content_type, size_bytes) -> None:
        self.calls.append(("add_artifact", job_id, artifact_type, object_key, content_type, size_bytes))

    def mark_job_succeeded(self, job_id: str, attempt_id: str) -> None:
        self.calls.append(("mark_job_succeeded", job_id, attempt_id))

    def mark_job_failed(self, job_id, attempt_id, error_code, error_message, exit_code) -> None:
        self.calls.append(("mark_job_failed", job_id, attempt_id, error_code, error_message, exit_code))

    @property
    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


class FakeObjectStorage:
    def __init__(self, download_error: Optional[BaseException] = None) -> None:
        self.download_error = download_error
        self.downloads: List[tuple] = []
        self.uploads: List[tuple] = []

    def download_file(self, bucket: str, key: str, local_path: Path) -> None:
        self.downloads.append((bucket, key, local_path))
        if self.download_error is not None:
            raise self.download_error
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(b"image")

    def upload_file(self, local_path: Path, bucket: str, key: str, content_type: Optional[str] = None) -> None:
        self.uploads.append((local_path, bucket, key, content_type))


WORKER = WorkerInfo(worker_id="worker-1", worker_key="host-a", display_name="host-a")
IMAGE_JOB = ImageJob(job_id="job-1", input_object_key="uploads/cat.JPG", output_prefix="results/job-1/")
