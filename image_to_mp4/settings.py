import json
import math
import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from image_to_mp4.domain.models import ExportPreset, get_export_preset


@dataclass(frozen=True)
class ConverterSettings:
    """変換パイプラインの設定です。"""

    ffmpeg_path: Optional[str] = None
    ffprobe_path: Optional[str] = None
    export_preset: ExportPreset = get_export_preset("highest")
    strict_export: bool = True
    keep_intermediate: bool = False
    ready_poll_interval_sec: float = 0.1

    @classmethod
    def from_env(cls) -> "ConverterSettings":
        """環境変数から設定を読み込みます。"""

        preset_name = get_env_str("EXPORT_PRESET", "highest")
        try:
            export_preset = get_export_preset(preset_name)
        except ValueError as ex:
            raise RuntimeError("invalid environment variable: EXPORT_PRESET={0}".format(preset_name)) from ex

        ready_poll_interval_sec = get_env_float("READY_POLL_INTERVAL_SEC", 0.1)
        if math.isfinite(ready_poll_interval_sec) == False or ready_poll_interval_sec < 0:
            raise RuntimeError(
                "invalid environment variable: READY_POLL_INTERVAL_SEC={0} (must be >= 0)".format(ready_poll_interval_sec)
            )

        return cls(
            ffmpeg_path=get_env_str("FFMPEG_PATH"),
            ffprobe_path=get_env_str("FFPROBE_PATH"),
            export_preset=export_preset,
            strict_export=get_env_bool("STRICT_EXPORT", True),
            keep_intermediate=get_env_bool("KEEP_INTERMEDIATE", False),
            ready_poll_interval_sec=ready_poll_interval_sec,
        )


def get_required_env(name: str) -> str:
    """必須環境変数を取得します。"""

    value = os.getenv(name)
    if value is None or value.strip() == "":
        raise RuntimeError("environment variable is required: {0}".format(name))

    return value


def get_env_str(name: str, default_value: Optional[str] = None) -> Optional[str]:
    """文字列の環境変数を取得します。空文字は未設定として扱います。"""

    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default_value

    return value.strip()


def get_env_bool(name: str, default_value: bool) -> bool:
    """真偽値環境変数を取得します。"""

    value = os.getenv(name)
    if value is None:
        return default_value

    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True

    if normalized in ("0", "false", "no", "off"):
        return False

    raise RuntimeError("invalid bool environment variable: {0}={1}".format(name, value))


def get_env_float(name: str, default_value: float) -> float:
    """浮動小数の環境変数を取得します。"""

    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default_value

    try:
        return float(value)
    except ValueError as ex:
        raise RuntimeError("invalid float environment variable: {0}={1}".format(name, value)) from ex


@dataclass(frozen=True)
class WorkerSettings:
    """キューワーカーの設定です。"""

    postgres_dsn: str
    minio_endpoint: str
    minio_access_key: str
    minio_secret_key: str
    input_bucket: str
    output_bucket: str
    worker_key: str
    worker_display_name: str
    minio_secure: bool = False
    worker_ip: Optional[str] = None
    tags_json_text: str = "{}"
    capacity_json_text: str = "{}"
    idle_sleep_sec: float = 2.0
    work_root: Path = Path("work")
    keep_work_dir: bool = False

    @classmethod
    def from_env(cls) -> "WorkerSettings":
        """環境変数からワーカー設定を読み込みます。ホスト名を既定の worker_key にします。"""

        worker_key = get_env_str("WORKER_KEY", socket.gethostname())

        return cls(
            postgres_dsn=get_required_env("POSTGRES_DSN"),
            minio_endpoint=get_required_env("MINIO_ENDPOINT"),
            minio_access_key=get_required_env("MINIO_ACCESS_KEY"),
            minio_secret_key=get_required_env("MINIO_SECRET_KEY"),
            input_bucket=get_required_env("JOB_INPUT_BUCKET"),
            output_bucket=get_required_env("JOB_OUTPUT_BUCKET"),
            worker_key=worker_key,
            worker_display_name=get_env_str("WORKER_DISPLAY_NAME", worker_key),
            minio_secure=get_env_bool("MINIO_SECURE", False),
            worker_ip=get_env_str("WORKER_IP_ADDRESS"),
            tags_json_text=get_env_json_text("WORKER_TAGS_JSON"),
            capacity_json_text=get_env_json_text("WORKER_CAPACITY_JSON"),
            idle_sleep_sec=get_env_float("IDLE_SLEEP_SEC", 2.0),
            work_root=Path(get_env_str("WORK_DIR", "work")),
            keep_work_dir=get_env_bool("KEEP_WORK_DIR_FOR_DEBUG", False),
        )


def get_env_json_text(name: str, default_value: str = "{}") -> str:
    """JSON 文字列の環境変数を検証して返します。"""

    value = get_env_str(name, default_value)
    try:
        json.loads(value)
    except json.JSONDecodeError as ex:
        raise RuntimeError("invalid json environment variable: {0}={1}".format(name, value)) from ex

    return value
