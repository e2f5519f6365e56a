import shutil
import subprocess
import sys

import pytest

from fakes import FakeRasterizer, RecordingProgressReporter
from image_to_mp4.adapters.ffmpeg_encoding_session import FfmpegEncodingSession
from image_to_mp4.application.frame_sequence_encoder import FrameSequenceEncoder
from image_to_mp4.domain.errors import WriterFinalizationError, WriterInitializationError
from image_to_mp4.domain.models import MediaTime, RasterFrame


# ffmpeg の代わりに sh / cat を子プロセスとして使う
pytestmark = pytest.mark.skipif(
    sys.platform == "win32" or shutil.which("sh") is None,
    reason="requires a POSIX shell",
)

STARTUP_FAILURE = "echo 'Unknown encoder libx264' >&2; exit 1"


def _frame(width=2, height=2):
    return RasterFrame(width=width, height=height, bytes_per_row=width * 4, data=bytes(width * height * 4))


def _at(frame_index):
    return MediaTime(value=frame_index * 30, timescale=30)


@pytest.fixture
def spawn(tmp_path):
    processes = []

    def _spawn(script, width=2, height=2):
        process = subprocess.Popen(
            ["sh", "-c", script],
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
        processes.append(process)
        session = FfmpegEncodingSession(
            process=process,
            output_path=tmp_path / "out.intermediate.mp4",
            width=width,
            height=height,
            frame_rate=30,
            frame_duration=30,
        )
        return session, process

    yield _spawn

    for process in processes:
        if process.poll() is None:
            process.kill()
        process.wait()
        for stream in (process.stdin, process.stderr):
            if stream is not None and stream.closed == False:
                stream.close()


def test_appends_contiguous_frames_and_finishes(spawn):
    session, _ = spawn("cat > /dev/null")

    assert session.is_ready_for_more_media_data()
    assert session.append(_frame(), _at(0))
    assert session.append(_frame(), _at(1))
    session.mark_as_finished()

    assert session.finish_writing().result(timeout=10) == session.output_path
    assert [t.seconds for t in session.presentation_times] == [0, 1]


def test_rejects_skipped_timestamp(spawn):
    session, _ = spawn("cat > /dev/null")

    assert session.append(_frame(), _at(1)) == False
    assert isinstance(session.error, ValueError)
    assert session.presentation_times == []


def test_rejects_repeated_timestamp(spawn):
    session, _ = spawn("cat > /dev/null")

    assert session.append(_frame(), _at(0))
    assert session.append(_frame(), _at(0)) == False
    assert isinstance(session.error, ValueError)
    assert len(session.presentation_times) == 1


def test_rejects_wrong_frame_size(spawn):
    session, _ = spawn("cat > /dev/null")

    assert session.append(_frame(width=4), _at(0)) == False
    assert "4x2" in str(session.error)


def test_exit_before_first_frame_is_initialization_failure(spawn):
    session, process = spawn(STARTUP_FAILURE)
    process.wait()

    assert session.is_ready_for_more_media_data() == False
    first_error = session.error
    assert session.is_ready_for_more_media_data() == False

    assert isinstance(first_error, WriterInitializationError)
    assert session.error is first_error
    assert "libx264" in str(first_error)
    assert "returncode=1" in str(first_error)


def test_exit_after_frames_keeps_stderr(spawn):
    session, process = spawn("head -c 16 > /dev/null; echo 'Conversion failed' >&2; exit 1")

    assert session.append(_frame(), _at(0))
    process.wait()

    assert session.is_ready_for_more_media_data() == False
    assert session.is_ready_for_more_media_data() == False
    assert isinstance(session.error, WriterInitializationError) == False
    assert "Conversion failed" in str(session.error)


def test_finish_writing_requires_mark_as_finished(spawn):
    session, _ = spawn("cat > /dev/null")

    with pytest.raises(RuntimeError):
        session.finish_writing()


def test_nonzero_exit_fails_finalization(spawn):
    session, _ = spawn("cat > /dev/null; echo 'moov atom not written' >&2; exit 3")

    assert session.append(_frame(), _at(0))
    session.mark_as_finished()

    with pytest.raises(WriterFinalizationError) as excinfo:
        session.finish_writing().result(timeout=10)

    assert "returncode=3" in str(excinfo.value)
    assert "moov atom not written" in str(excinfo.value)


def test_abort_stops_encoder_without_finalizing(spawn):
    session, process = spawn("cat > /dev/null")
    assert session.append(_frame(), _at(0))

    session.abort()

    assert process.returncode is not None
    assert process.returncode != 0
    assert session.is_ready_for_more_media_data() == False
    assert session.append(_frame(), _at(1)) == False
    with pytest.raises(RuntimeError):
        session.finish_writing()


def test_encoder_reports_startup_failure_with_stderr(spawn):
    session, process = spawn(STARTUP_FAILURE)
    process.wait()

    class SessionFactory:
        def create_session(self, output_path, width, height, frame_rate, frame_duration):
            return session

    sleeps = []
    encoder = FrameSequenceEncoder(
        rasterizer=FakeRasterizer(width=2, height=2),
        writer_factory=SessionFactory(),
        progress_reporter=RecordingProgressReporter(),
        sleep=sleeps.append,
    )

    with pytest.raises(WriterInitializationError) as excinfo:
        encoder.encode(session.output_path.with_name("in.png"), session.output_path)

    assert "libx264" in str(excinfo.value)
    assert sleeps == []
