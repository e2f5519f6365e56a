import json
import subprocess
from pathlib import Path
from typing import List


def read_frame_times(media_path: Path) -> List[float]:
    """先頭の映像トラックの各フレームの提示時刻（秒）を ffprobe で読み出します。"""

    completed = subprocess.run(
        [
            "ffprobe",
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "frame=pts_time,best_effort_timestamp_time",
            "-of",
            "json",
            str(media_path),
        ],
        capture_output=True,
        text=True,
        check=True,
    )

    times = []
    for frame in json.loads(completed.stdout).get("frames", []):
        value = frame.get("pts_time", frame.get("best_effort_timestamp_time"))
        if value in (None, "N/A"):
            continue
        times.append(float(value))

    return times
