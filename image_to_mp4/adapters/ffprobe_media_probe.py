import json
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

from image_to_mp4.adapters.ffmpeg_tools import ExecutableNotFoundError, resolve_executable
from image_to_mp4.application.ports import MediaProbePort
from image_to_mp4.domain.errors import TrackExtractionError
from image_to_mp4.domain.models import MediaAsset, VideoTrackInfo


class FfprobeMediaProbe(MediaProbePort):
    """ffprobe でメディアファイルを解析するアダプターです。"""

    def __init__(self, ffprobe_path: Optional[str] = None) -> None:
        self._ffprobe_path = ffprobe_path

    def probe(self, media_path: Path) -> MediaAsset:
        """長さと映像トラック一覧を取得します。"""

        payload = self._run_json(
            media_path,
            [
                "-show_entries",
                "format=duration:stream=index,codec_type,codec_name,width,height",
            ],
        )

        video_tracks = []
        for stream in payload.get("streams", []):
            if stream.get("codec_type") != "video":
                continue

            video_tracks.append(
                VideoTrackInfo(
                    index=int(stream["index"]),
                    codec_name=str(stream.get("codec_name", "")),
                    width=int(stream.get("width", 0)),
                    height=int(stream.get("height", 0)),
                )
            )

        duration_text = payload.get("format", {}).get("duration")
        duration_sec = float(duration_text) if duration_text not in (None, "N/A") else 0.0

        return MediaAsset(
            path=media_path,
            duration_sec=duration_sec,
            video_tracks=tuple(video_tracks),
        )

    def _run_json(self, media_path: Path, entries: List[str]) -> Dict[str, Any]:
        try:
            ffprobe_path = resolve_executable("ffprobe", self._ffprobe_path)
        except ExecutableNotFoundError as ex:
            raise TrackExtractionError(str(ex)) from ex

        command = [ffprobe_path, "-v", "error", *entries, "-of", "json", str(media_path)]

        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
        )

        if completed.returncode != 0:
            raise TrackExtractionError(
                "ffprobe による解析に失敗しました。\n"
                f"path={media_path}\n\nstderr:\n{completed.stderr}"
            )

        try:
            return json.loads(completed.stdout or "{}")
        except json.JSONDecodeError as ex:
            raise TrackExtractionError(f"ffprobe の出力を解析できません: {ex}") from ex
