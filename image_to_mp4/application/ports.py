from concurrent.futures import Future
from pathlib import Path
from typing import Optional, Protocol

from image_to_mp4.domain.job_models import ImageJob, JobAttemptInfo, WorkerInfo
from image_to_mp4.domain.models import (
    Composition,
    ConversionJob,
    ConversionResult,
    DecodedImage,
    ExportOutcome,
    ExportPreset,
    FrameTimingConfig,
    MediaAsset,
    MediaTime,
    RasterFrame,
)


class ProgressReporterPort(Protocol):
    """進捗通知のポートです。"""

    def report_phase(self, phase: str, message: str) -> None:
        """フェーズ開始・更新を通知します。"""

    def report_progress(self, current: int, total: int, message: str) -> None:
        """進捗率を通知します。"""


class ConversionObserverPort(Protocol):
    """変換のライフサイクル（開始・失敗・完了）を受け取るポートです。"""

    def on_start(self, job: ConversionJob) -> None:
        """変換開始直前（I/O の前）に1回だけ呼ばれます。"""

    def on_failure(self, job: ConversionJob, error: Optional[BaseException]) -> None:
        """失敗時に1回だけ呼ばれます。以後の通知はありません。"""

    def on_complete(self, job: ConversionJob, result: ConversionResult) -> None:
        """完了時に1回だけ呼ばれます。出力先には再生可能な動画があります。"""


class FileGatewayPort(Protocol):
    """ローカルファイル操作のポートです。"""

    def ensure_dir(self, path: Path) -> None:
        """ディレクトリを作成します。"""

    def file_exists(self, path: Path) -> bool:
        """ファイルが存在するかを返します。"""

    def remove_file(self, path: Path) -> None:
        """ファイルを削除します。失敗時は OSError を送出します。"""

    def remove_dir(self, path: Path) -> None:
        """ディレクトリを削除します。"""


class ImageRasterizerPort(Protocol):
    """画像のデコードと画素バッファ化のポートです。"""

    def decode(self, image_path: Path) -> DecodedImage:
        """画像をデコードします。"""

    def rasterize(self, image: DecodedImage) -> RasterFrame:
        """デコード済み画像を ARGB 画素バッファへ描画します。"""


class EncodingSessionPort(Protocol):
    """1本の映像トラックを書き込むエンコードセッションのポートです。"""

    @property
    def error(self) -> Optional[BaseException]:
        """エンコーダ側で発生したエラーを返します。"""

    def is_ready_for_more_media_data(self) -> bool:
        """次のフレームを受け付けられるかを返します。"""

    def append(self, frame: RasterFrame, presentation_time: MediaTime) -> bool:
        """フレームを追加します。失敗時は False を返します。"""

    def mark_as_finished(self) -> None:
        """入力の終了を通知します。"""

    def finish_writing(self) -> "Future[Path]":
        """非同期に書き込みを完了し、完了時に解決される Future を返します。"""

    def abort(self) -> None:
        """終了処理を行わずにセッションを破棄します。"""


class VideoWriterFactoryPort(Protocol):
    """エンコードセッションを作成するポートです。"""

    def create_session(
        self,
        output_path: Path,
        width: int,
        height: int,
        frame_rate: int,
        frame_duration: int,
    ) -> EncodingSessionPort:
        """H.264/MP4 のエンコードセッションを作成します。"""


class MediaProbePort(Protocol):
    """メディアファイルを解析するポートです。"""

    def probe(self, media_path: Path) -> MediaAsset:
        """長さと映像トラック情報を取得します。"""


class VideoExporterPort(Protocol):
    """構成を書き出すポートです。"""

    def export_async(
        self,
        composition: Composition,
        output_path: Path,
        preset: ExportPreset,
        timing: FrameTimingConfig,
    ) -> "Future[ExportOutcome]":
        """非同期に書き出し、完了時に解決される Future を返します。"""


class JobRepositoryPort(Protocol):
    """ジョブ永続化のポートです。"""

    def upsert_worker_heartbeat(
        self,
        worker_key: str,
        display_name: str,
        status: str,
        ip_address: Optional[str],
        tags_json_text: str,
        capacity_json_text: str,
    ) -> WorkerInfo:
        """ワーカー情報を登録または更新し、worker情報を返します。"""

    def fetch_next_queued_job(self, worker_key: str) -> Optional[ImageJob]:
        """実行対象ジョブを1件取得します。"""

    def start_job_attempt(self, job_id: str, worker_id: str) -> JobAttemptInfo:
        """job_attempts を開始し、jobs を running に更新します。"""

    def update_progress(self, job_id: str, progress_percent: int) -> None:
        """jobs.progress_percent を更新します。"""

    def add_artifact(
        self,
        job_id: str,
        artifact_type: str,
        object_key: str,
        content_type: Optional[str],
        size_bytes: Optional[int],
    ) -> None:
        """artifacts を追加します。"""

    def mark_job_succeeded(self, job_id: str, attempt_id: str) -> None:
        """jobs と job_attempts を成功状態に更新します。"""

    def mark_job_failed(
        self,
        job_id: str,
        attempt_id: Optional[str],
        error_code: Optional[str],
        error_message: str,
        exit_code: Optional[int],
    ) -> None:
        """jobs と job_attempts を失敗状態に更新します。"""


class ObjectStoragePort(Protocol):
    """オブジェクトストレージのポートです。"""

    def download_file(self, bucket: str, key: str, local_path: Path) -> None:
        """オブジェクトをローカルへダウンロードします。"""

    def upload_file(
        self,
        local_path: Path,
        bucket: str,
        key: str,
        content_type: Optional[str] = None,
    ) -> None:
        """ローカルファイルをアップロードします。"""
