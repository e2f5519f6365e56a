from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from pathlib import Path
from typing import Any, Optional, Tuple


INTERMEDIATE_SUFFIX = ".intermediate.mp4"


@dataclass(frozen=True)
class ConversionJob:
    """静止画1枚からMP4を生成する変換ジョブを表します。"""

    source_image_path: Path
    destination_video_path: Path

    @property
    def intermediate_video_path(self) -> Path:
        """1パス目の書き出し先（最終出力と同じディレクトリ）を返します。"""

        destination = self.destination_video_path
        return destination.with_name(destination.stem + INTERMEDIATE_SUFFIX)


@dataclass(frozen=True)
class MediaTime:
    """整数値とタイムスケールで表す提示時刻です。"""

    value: int
    timescale: int

    @property
    def seconds(self) -> Fraction:
        return Fraction(self.value, self.timescale)


@dataclass(frozen=True)
class FrameTimingConfig:
    """フレームレートとフレーム数の設定です。既定値は固定仕様の値です。"""

    frame_rate: int = 30
    frame_count: int = 2
    seconds_per_frame: int = 1
    ready_poll_interval_sec: float = 0.1
    max_ready_attempts: Optional[int] = None

    def __post_init__(self) -> None:
        if self.frame_rate <= 0:
            raise ValueError("frame_rate は 0 より大きい値を指定してください。")

        if self.frame_count <= 0:
            raise ValueError("frame_count は 0 より大きい値を指定してください。")

        if self.seconds_per_frame <= 0:
            raise ValueError("seconds_per_frame は 0 より大きい値を指定してください。")

        if self.ready_poll_interval_sec < 0:
            raise ValueError("ready_poll_interval_sec は 0 以上を指定してください。")

        if self.max_ready_attempts is not None and self.max_ready_attempts <= 0:
            raise ValueError("max_ready_attempts は 0 より大きい値を指定してください。")

    @property
    def frame_duration(self) -> int:
        """1フレームの表示時間（タイムスケール単位）です。"""

        return self.frame_rate * self.seconds_per_frame

    @property
    def ready_attempt_budget(self) -> int:
        """1フレームあたりの書き込み可能待ちの最大試行回数です。"""

        if self.max_ready_attempts is None:
            return self.frame_rate

        return self.max_ready_attempts

    def presentation_time(self, frame_index: int) -> MediaTime:
        """frame_index 番目のフレームの提示時刻を返します。"""

        if frame_index < 0:
            raise ValueError("frame_index は 0 以上を指定してください。")

        return MediaTime(value=frame_index * self.frame_duration, timescale=self.frame_rate)

    @property
    def input_frame_rate(self) -> Fraction:
        """エンコーダ入力側のフレームレート（frames/second）です。"""

        return Fraction(self.frame_rate, self.frame_duration)


@dataclass(frozen=True)
class DecodedImage:
    """デコード済みの元画像を表します。"""

    width: int
    height: int
    image: Any = field(repr=False, compare=False)


@dataclass(frozen=True)
class RasterFrame:
    """32bit ARGB（アルファ先頭・乗算済み・デバイスRGB）の画素バッファです。"""

    width: int
    height: int
    bytes_per_row: int
    data: bytes = field(repr=False)

    PIXEL_FORMAT = "argb"
    BYTES_PER_PIXEL = 4

    def __post_init__(self) -> None:
        if len(self.data) != self.bytes_per_row * self.height:
            raise ValueError(
                "画素バッファのサイズが不正です。"
                f" expected={self.bytes_per_row * self.height} actual={len(self.data)}"
            )

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def pixel_at(self, x: int, y: int) -> Tuple[int, int, int, int]:
        """(a, r, g, b) を返します。"""

        offset = y * self.bytes_per_row + x * self.BYTES_PER_PIXEL
        a, r, g, b = self.data[offset:offset + self.BYTES_PER_PIXEL]
        return a, r, g, b


@dataclass(frozen=True)
class EncodeResult:
    """1パス目（フレーム列のエンコード）の結果です。"""

    video_path: Path
    width: int
    height: int
    frame_count: int
    presentation_times: Tuple[MediaTime, ...]


@dataclass(frozen=True)
class VideoTrackInfo:
    """コンテナ内の映像トラック情報です。"""

    index: int
    codec_name: str
    width: int
    height: int


@dataclass(frozen=True)
class MediaAsset:
    """読み込んだメディアファイルの情報です。"""

    path: Path
    duration_sec: float
    video_tracks: Tuple[VideoTrackInfo, ...]


@dataclass(frozen=True)
class Composition:
    """映像トラック1本を時刻0から全長ぶん配置した構成です。"""

    source_path: Path
    track: VideoTrackInfo
    start_sec: float
    duration_sec: float


@dataclass(frozen=True)
class ExportPreset:
    """書き出し品質のプリセットです。"""

    name: str
    x264_preset: str
    crf: int


EXPORT_PRESETS = {
    "highest": ExportPreset(name="highest", x264_preset="veryslow", crf=14),
    "high": ExportPreset(name="high", x264_preset="slow", crf=18),
    "medium": ExportPreset(name="medium", x264_preset="medium", crf=23),
}


def get_export_preset(name: str) -> ExportPreset:
    """名前から書き出しプリセットを取得します。"""

    preset = EXPORT_PRESETS.get(name.strip().lower())
    if preset is None:
        raise ValueError(
            "unknown export preset: {0} (choose from {1})".format(name, ", ".join(sorted(EXPORT_PRESETS)))
        )

    return preset


class ExportStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ExportOutcome:
    """非同期書き出しの完了状態です。"""

    status: ExportStatus
    output_path: Path
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class NormalizeResult:
    """2パス目（正規化書き出し）の結果です。"""

    output_path: Path
    duration_sec: float
    preset: ExportPreset
    export_status: ExportStatus


class ConversionState(Enum):
    """変換パイプラインの状態です。宣言順に前進のみ可能です。"""

    NOT_STARTED = 0
    PREPARING = 1
    ENCODING = 2
    NORMALIZING = 3
    COMPLETED = 4
    FAILED = 5

    @property
    def is_terminal(self) -> bool:
        return self in (ConversionState.COMPLETED, ConversionState.FAILED)


@dataclass(frozen=True)
class ConversionResult:
    """変換完了時の結果です。"""

    job: ConversionJob
    encode_result: EncodeResult
    normalize_result: NormalizeResult

    @property
    def output_path(self) -> Path:
        return self.normalize_result.output_path


def select_pixel_format(width: int, height: int) -> str:
    """H.264 出力の画素フォーマットを選びます。

    yuv420p は幅・高さが偶数の場合のみ使えるため、奇数の場合は
    元画像の寸法を保つために yuv444p を使います。
    """

    if width % 2 == 0 and height % 2 == 0:
        return "yuv420p"

    return "yuv444p"
