import subprocess
from concurrent.futures import Future
from pathlib import Path
from typing import List, Optional

from image_to_mp4.adapters.ffmpeg_tools import ExecutableNotFoundError, resolve_executable, wait_in_background
from image_to_mp4.application.ports import VideoExporterPort
from image_to_mp4.domain.errors import ExportError
from image_to_mp4.domain.models import (
    Composition,
    ExportOutcome,
    ExportPreset,
    ExportStatus,
    FrameTimingConfig,
    select_pixel_format,
)


class FfmpegVideoExporter(VideoExporterPort):
    """ffmpeg で構成を H.264/MP4 へ再エンコードするアダプターです。"""

    def __init__(self, ffmpeg_path: Optional[str] = None) -> None:
        self._ffmpeg_path = ffmpeg_path

    def export_async(
        self,
        composition: Composition,
        output_path: Path,
        preset: ExportPreset,
        timing: FrameTimingConfig,
    ) -> "Future[ExportOutcome]":
        """書き出しを開始します。失敗も ExportOutcome として返します。"""

        try:
            ffmpeg_path = resolve_executable("ffmpeg", self._ffmpeg_path)
            process = subprocess.Popen(
                self.build_command(ffmpeg_path, composition, output_path, preset, timing),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except (ExecutableNotFoundError, OSError) as ex:
            future: "Future[ExportOutcome]" = Future()
            future.set_result(ExportOutcome(status=ExportStatus.FAILED, output_path=output_path, error=ex))
            return future

        def _on_exit(returncode: int, stderr_text: str) -> ExportOutcome:
            if returncode != 0:
                error = ExportError(
                    "ffmpeg による書き出しに失敗しました。\n"
                    f"returncode={returncode}\n\nstderr:\n{stderr_text}"
                )
                return ExportOutcome(status=ExportStatus.FAILED, output_path=output_path, error=error)

            return ExportOutcome(status=ExportStatus.COMPLETED, output_path=output_path)

        return wait_in_background(process, _on_exit, name="ffmpeg-export")

    def build_command(
        self,
        ffmpeg_path: str,
        composition: Composition,
        output_path: Path,
        preset: ExportPreset,
        timing: FrameTimingConfig,
    ) -> List[str]:
        """ffmpeg のコマンドラインを組み立てます。"""

        track = composition.track
        output_rate = timing.input_frame_rate
        pixel_format = select_pixel_format(track.width, track.height)

        command = [
            ffmpeg_path,
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-ss",
            f"{composition.start_sec:.6f}",
            "-t",
            f"{composition.duration_sec:.6f}",
            "-i",
            str(composition.source_path),
            "-map",
            f"0:{track.index}",
            "-an",
            "-c:v",
            "libx264",
            "-preset",
            preset.x264_preset,
            "-crf",
            str(preset.crf),
            "-pix_fmt",
            pixel_format,
        ]

        if pixel_format == "yuv420p":
            command.extend(["-profile:v", "high"])

        command.extend(
            [
                # 固定レートで出力し、フレームの複製や間引きを起こさない
                "-r",
                f"{output_rate.numerator}/{output_rate.denominator}",
                "-video_track_timescale",
                str(timing.frame_rate),
                "-movflags",
                "+faststart",
                "-f",
                "mp4",
                str(output_path),
            ]
        )

        return command
