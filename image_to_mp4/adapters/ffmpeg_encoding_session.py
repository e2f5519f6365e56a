import select
import subprocess
import sys
from concurrent.futures import Future
from fractions import Fraction
from pathlib import Path
from typing import List, Optional

from image_to_mp4.adapters.ffmpeg_tools import ExecutableNotFoundError, resolve_executable, wait_in_background
from image_to_mp4.application.ports import EncodingSessionPort, VideoWriterFactoryPort
from image_to_mp4.domain.errors import WriterFinalizationError, WriterInitializationError
from image_to_mp4.domain.models import MediaTime, RasterFrame, select_pixel_format


class FfmpegEncodingSession(EncodingSessionPort):
    """ffmpeg の標準入力へ生の ARGB フレームを流し込むエンコードセッションです。

    提示時刻は入力フレームレートから ffmpeg 側で決まるため、
    append では渡された時刻が連続していることだけを検証します。
    """

    def __init__(
        self,
        process: "subprocess.Popen[bytes]",
        output_path: Path,
        width: int,
        height: int,
        frame_rate: int,
        frame_duration: int,
    ) -> None:
        self._process = process
        self._output_path = output_path
        self._width = width
        self._height = height
        self._frame_rate = frame_rate
        self._frame_duration = frame_duration
        self._state = "writing"
        self._error: Optional[BaseException] = None
        self._stderr_text: Optional[str] = None
        self._presentation_times: List[MediaTime] = []

    @property
    def output_path(self) -> Path:
        return self._output_path

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def presentation_times(self) -> List[MediaTime]:
        return list(self._presentation_times)

    def is_ready_for_more_media_data(self) -> bool:
        """ffmpeg が動作中で、パイプへ書き込める場合に True を返します。"""

        if self._state != "writing":
            return False

        returncode = self._process.poll()
        if returncode is not None:
            self._record_exit(returncode)
            return False

        if sys.platform == "win32":
            # Windows のパイプは select できないため、書き込み側でブロックさせる
            return True

        _, writable, _ = select.select([], [self._process.stdin], [], 0)
        return len(writable) > 0

    def append(self, frame: RasterFrame, presentation_time: MediaTime) -> bool:
        """フレームを1枚書き込みます。"""

        if self._state != "writing":
            self._error = RuntimeError(f"セッションは書き込み中ではありません: state={self._state}")
            return False

        if frame.size != (self._width, self._height):
            self._error = ValueError(
                f"フレームサイズが一致しません: expected={self._width}x{self._height}"
                f" actual={frame.width}x{frame.height}"
            )
            return False

        expected = Fraction(len(self._presentation_times) * self._frame_duration, self._frame_rate)
        if presentation_time.seconds != expected:
            self._error = ValueError(
                f"提示時刻が連続していません: expected={float(expected):.3f}s"
                f" actual={float(presentation_time.seconds):.3f}s"
            )
            return False

        try:
            self._process.stdin.write(frame.data)
            self._process.stdin.flush()
        except (OSError, ValueError) as ex:
            stderr_text = self._read_stderr()
            returncode = self._process.poll()
            if returncode is not None:
                self._record_exit(returncode)
            if self._error is None:
                self._error = RuntimeError(f"ffmpeg への書き込みに失敗しました: {ex} stderr={stderr_text}")
            return False

        self._presentation_times.append(presentation_time)
        return True

    def mark_as_finished(self) -> None:
        if self._state != "writing":
            return

        self._state = "input_finished"
        try:
            self._process.stdin.close()
        except OSError as ex:
            # 終了コードで検出されるので、ここでは記録だけ行う
            self._error = ex

    def finish_writing(self) -> "Future[Path]":
        """ffmpeg の終了を待って書き込みを完了します。"""

        if self._state != "input_finished":
            raise RuntimeError(f"mark_as_finished の前に finish_writing は呼べません: state={self._state}")

        self._state = "finalizing"

        def _on_exit(returncode: int, stderr_text: str) -> Path:
            if returncode != 0:
                self._state = "failed"
                raise WriterFinalizationError(
                    "ffmpeg によるエンコードに失敗しました。\n"
                    f"returncode={returncode}\n\nstderr:\n{stderr_text}"
                )

            self._state = "completed"
            return self._output_path

        return wait_in_background(self._process, _on_exit, name="ffmpeg-encode-finish")

    def abort(self) -> None:
        """ffmpeg を停止します。書きかけのファイルは残ります。"""

        if self._state in ("completed", "aborted"):
            return

        self._state = "aborted"
        if self._process.poll() is None:
            self._process.kill()

        try:
            if self._process.stdin is not None:
                self._process.stdin.close()
        except OSError:
            pass

        self._process.wait()
        if self._process.stderr is not None:
            self._process.stderr.close()

    def _record_exit(self, returncode: int) -> None:
        """書き込み中に ffmpeg が終了したことを記録します。最初に記録したエラーを保持します。"""

        if self._error is not None:
            return

        stderr_text = self._read_stderr()
        if len(self._presentation_times) == 0:
            # 1フレームも受け取らずに終了した場合はエンコーダを開始できていない
            self._error = WriterInitializationError(
                "ffmpeg が起動直後に終了しました。\n"
                f"returncode={returncode}\n\nstderr:\n{stderr_text}"
            )
            return

        self._error = RuntimeError(f"ffmpeg が終了しました。returncode={returncode} stderr={stderr_text}")

    def _read_stderr(self, timeout_sec: float = 5.0) -> str:
        """終了済み（または終了間際）の ffmpeg から stderr を読み出します。読み出し結果は保持します。"""

        if self._stderr_text is not None:
            return self._stderr_text

        try:
            self._process.wait(timeout=timeout_sec)
        except subprocess.TimeoutExpired:
            return ""

        if self._process.stderr is None or self._process.stderr.closed:
            return ""

        self._stderr_text = self._process.stderr.read().decode("utf-8", errors="replace").strip()
        return self._stderr_text


class FfmpegVideoWriterFactory(VideoWriterFactoryPort):
    """ffmpeg (libx264) でエンコードセッションを作成するアダプターです。"""

    def __init__(self, ffmpeg_path: Optional[str] = None, x264_preset: str = "medium", crf: int = 10) -> None:
        self._ffmpeg_path = ffmpeg_path
        self._x264_preset = x264_preset
        self._crf = crf

    def create_session(
        self,
        output_path: Path,
        width: int,
        height: int,
        frame_rate: int,
        frame_duration: int,
    ) -> FfmpegEncodingSession:
        if output_path.parent.is_dir() == False:
            raise WriterInitializationError(f"出力先ディレクトリが存在しません: {output_path.parent}")

        try:
            ffmpeg_path = resolve_executable("ffmpeg", self._ffmpeg_path)
        except ExecutableNotFoundError as ex:
            raise WriterInitializationError(str(ex)) from ex

        command = self.build_command(ffmpeg_path, output_path, width, height, frame_rate, frame_duration)

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as ex:
            raise WriterInitializationError(f"ffmpeg を起動できません: {ex}") from ex

        return FfmpegEncodingSession(
            process=process,
            output_path=output_path,
            width=width,
            height=height,
            frame_rate=frame_rate,
            frame_duration=frame_duration,
        )

    def build_command(
        self,
        ffmpeg_path: str,
        output_path: Path,
        width: int,
        height: int,
        frame_rate: int,
        frame_duration: int,
    ) -> List[str]:
        """ffmpeg のコマンドラインを組み立てます。"""

        # frame_duration / frame_rate 秒ごとに1フレーム
        input_rate = Fraction(frame_rate, frame_duration)

        return [
            ffmpeg_path,
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-f",
            "rawvideo",
            "-pix_fmt",
            RasterFrame.PIXEL_FORMAT,
            "-video_size",
            f"{width}x{height}",
            "-framerate",
            f"{input_rate.numerator}/{input_rate.denominator}",
            "-i",
            "pipe:0",
            "-an",
            "-c:v",
            "libx264",
            "-preset",
            self._x264_preset,
            "-crf",
            str(self._crf),
            "-pix_fmt",
            select_pixel_format(width, height),
            "-video_track_timescale",
            str(frame_rate),
            "-f",
            "mp4",
            str(output_path),
        ]
