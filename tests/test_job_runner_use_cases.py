import pytest

from fakes import IMAGE_JOB, WORKER, FakeJobRepository, FakeObjectStorage, RecordingProgressReporter
from image_to_mp4.adapters.local_file_gateway import LocalFileGateway
from image_to_mp4.application.job_runner_use_cases import RunSingleJobUseCase
from image_to_mp4.domain.errors import SourceImageUnreadableError


class FakeConvertUseCase:
    def __init__(self, error=None, write_output=True) -> None:
        self.error = error
        self.write_output = write_output
        self.jobs = []

    def execute(self, job):
        self.jobs.append(job)
        if self.error is not None:
            raise self.error
        if self.write_output:
            job.destination_video_path.write_bytes(b"mp4-bytes")


def _make_runner(tmp_path, convert_use_case, storage=None, repository=None, keep_work_dir=False):
    return RunSingleJobUseCase(
        job_repository=repository if repository is not None else FakeJobRepository(),
        object_storage=storage if storage is not None else FakeObjectStorage(),
        file_gateway=LocalFileGateway(),
        convert_use_case_factory=lambda: convert_use_case,
        progress_reporter=RecordingProgressReporter(),
        input_bucket="inputs",
        output_bucket="outputs",
        work_root=tmp_path / "work",
        keep_work_dir=keep_work_dir,
    )


def test_successful_job_uploads_mp4_and_records_artifact(tmp_path):
    repository = FakeJobRepository()
    storage = FakeObjectStorage()
    convert = FakeConvertUseCase()

    uploaded = _make_runner(tmp_path, convert, storage=storage, repository=repository).execute(IMAGE_JOB, WORKER)

    job = convert.jobs[0]
    assert job.source_image_path.name == "source.jpg"
    assert job.destination_video_path.name == "result.mp4"
    assert storage.downloads[0][:2] == ("inputs", "uploads/cat.JPG")
    assert storage.uploads[0][1:] == ("outputs", "results/job-1/result.mp4", "video/mp4")
    assert uploaded.video_object_key == "results/job-1/result.mp4"
    assert uploaded.size_bytes == len(b"mp4-bytes")
    assert repository.call_names == ["start_job_attempt", "add_artifact", "mark_job_succeeded"]
    assert (tmp_path / "work" / "job-1").exists() == False


def test_work_dir_is_kept_for_debugging(tmp_path):
    _make_runner(tmp_path, FakeConvertUseCase(), keep_work_dir=True).execute(IMAGE_JOB, WORKER)

    assert (tmp_path / "work" / "job-1" / "output" / "result.mp4").exists()


def test_conversion_error_marks_job_failed(tmp_path):
    repository = FakeJobRepository()
    storage = FakeObjectStorage()
    error = SourceImageUnreadableError(tmp_path / "source.jpg", "broken")

    with pytest.raises(SourceImageUnreadableError):
        _make_runner(tmp_path, FakeConvertUseCase(error=error), storage=storage, repository=repository).execute(
            IMAGE_JOB, WORKER
        )

    failed = repository.calls[-1]
    assert failed[0] == "mark_job_failed"
    assert failed[2] == "attempt-1"
    assert failed[3] == "conversion_decode_error"
    assert failed[5] == 1
    assert storage.uploads == []


def test_download_error_marks_job_failed(tmp_path):
    repository = FakeJobRepository()
    storage = FakeObjectStorage(download_error=FileNotFoundError("missing object"))

    with pytest.raises(FileNotFoundError):
        _make_runner(tmp_path, FakeConvertUseCase(), storage=storage, repository=repository).execute(
            IMAGE_JOB, WORKER
        )

    assert repository.calls[-1][3] == "worker_runtime_error"


def test_missing_output_is_an_error(tmp_path):
    repository = FakeJobRepository()

    with pytest.raises(RuntimeError):
        _make_runner(tmp_path, FakeConvertUseCase(write_output=False), repository=repository).execute(
            IMAGE_JOB, WORKER
        )

    assert repository.call_names[-1] == "mark_job_failed"
