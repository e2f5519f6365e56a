from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ImageJob:
    """キューに積まれた画像→動画変換ジョブを表します。"""

    job_id: str
    input_object_key: str
    output_prefix: str

    @property
    def source_suffix(self) -> str:
        """入力オブジェクトの拡張子（小文字、ドット付き）を返します。"""

        name = self.input_object_key.rsplit("/", 1)[-1]
        if "." not in name:
            return ".png"

        return "." + name.rsplit(".", 1)[-1].lower()

    @property
    def output_object_key(self) -> str:
        return "{0}/result.mp4".format(self.output_prefix.rstrip("/"))


@dataclass(frozen=True)
class WorkerInfo:
    """エンコードワーカー情報を表します。"""

    worker_id: str
    worker_key: str
    display_name: str


@dataclass(frozen=True)
class JobAttemptInfo:
    """ジョブ試行情報を表します。"""

    attempt_id: str
    attempt_no: int


@dataclass(frozen=True)
class UploadedJobResult:
    """ジョブ出力のアップロード結果を表します。"""

    video_object_key: str
    size_bytes: Optional[int]
