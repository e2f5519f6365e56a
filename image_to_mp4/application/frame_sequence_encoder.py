import time
from pathlib import Path
from typing import Callable, List

from image_to_mp4.application.ports import (
    EncodingSessionPort,
    ImageRasterizerPort,
    ProgressReporterPort,
    VideoWriterFactoryPort,
)
from image_to_mp4.domain.errors import (
    ConversionError,
    FrameAppendError,
    WriterFinalizationError,
    WriterInitializationError,
)
from image_to_mp4.domain.models import EncodeResult, FrameTimingConfig, MediaTime, RasterFrame


class FrameSequenceEncoder:
    """元画像を同一フレームの列としてエンコードし、1パス目の動画を作ります。"""

    def __init__(
        self,
        rasterizer: ImageRasterizerPort,
        writer_factory: VideoWriterFactoryPort,
        progress_reporter: ProgressReporterPort,
        timing: FrameTimingConfig = FrameTimingConfig(),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._rasterizer = rasterizer
        self._writer_factory = writer_factory
        self._progress_reporter = progress_reporter
        self._timing = timing
        self._sleep = sleep

    @property
    def timing(self) -> FrameTimingConfig:
        return self._timing

    def encode(self, source_image_path: Path, output_path: Path) -> EncodeResult:
        """画像を frame_count 枚のフレームとして output_path へ書き出します。"""

        self._progress_reporter.report_phase("decode", f"入力画像を読み込みます: {source_image_path}")

        # 全フレームが同一画素なので、デコードと画素バッファ化は1回だけ行う
        decoded = self._rasterizer.decode(source_image_path)
        width = decoded.width
        height = decoded.height

        self._progress_reporter.report_phase(
            "encode",
            f"H.264 で書き出します。size={width}x{height} fps={self._timing.frame_rate} frames={self._timing.frame_count}",
        )

        try:
            session = self._writer_factory.create_session(
                output_path=output_path,
                width=width,
                height=height,
                frame_rate=self._timing.frame_rate,
                frame_duration=self._timing.frame_duration,
            )
        except WriterInitializationError:
            raise
        except Exception as ex:
            raise WriterInitializationError(f"エンコードセッションを作成できません: {output_path} ({ex})") from ex

        try:
            raster_frame = self._rasterizer.rasterize(decoded)
            presentation_times = self._append_frames(session, raster_frame)
            session.mark_as_finished()
        except Exception:
            # 中間ファイルは未完了のまま残す
            session.abort()
            raise

        self._wait_for_finish(session)

        self._progress_reporter.report_phase("encode_done", f"1パス目の書き出しが完了しました: {output_path}")

        return EncodeResult(
            video_path=output_path,
            width=width,
            height=height,
            frame_count=len(presentation_times),
            presentation_times=tuple(presentation_times),
        )

    def _append_frames(self, session: EncodingSessionPort, raster_frame: RasterFrame) -> List[MediaTime]:
        """全フレームを追加し、使った提示時刻を返します。"""

        frame_count = self._timing.frame_count
        presentation_times: List[MediaTime] = []

        for frame_index in range(frame_count):
            presentation_time = self._timing.presentation_time(frame_index)
            self._append_with_retry(session, raster_frame, frame_index, presentation_time)
            presentation_times.append(presentation_time)

            self._progress_reporter.report_progress(
                current=frame_index + 1,
                total=frame_count,
                message=f"フレーム追加: t={float(presentation_time.seconds):.3f}s",
            )

        return presentation_times

    def _append_with_retry(
        self,
        session: EncodingSessionPort,
        raster_frame: RasterFrame,
        frame_index: int,
        presentation_time: MediaTime,
    ) -> None:
        """書き込み可能になるまで待ってからフレームを1枚追加します。"""

        budget = self._timing.ready_attempt_budget
        attempts = 0

        while attempts < budget:
            attempts += 1
            if session.is_ready_for_more_media_data():
                if session.append(raster_frame, presentation_time):
                    return
                break

            if session.error is not None:
                # エンコーダが停止しているので待たずに打ち切る
                break

            # 入力が詰まっているので少し待つ
            self._sleep(self._timing.ready_poll_interval_sec)

        if isinstance(session.error, WriterInitializationError):
            raise session.error

        error = FrameAppendError(frame_index, attempts, detail=_describe(session.error))
        raise error from session.error

    def _wait_for_finish(self, session: EncodingSessionPort) -> None:
        future = session.finish_writing()
        try:
            future.result()
        except ConversionError:
            raise
        except Exception as ex:
            raise WriterFinalizationError(f"1パス目の書き出しを完了できませんでした: {ex}") from ex


def _describe(error) -> str:
    if error is None:
        return ""

    return str(error)
