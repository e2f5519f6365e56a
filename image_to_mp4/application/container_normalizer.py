from pathlib import Path

from image_to_mp4.application.ports import (
    FileGatewayPort,
    MediaProbePort,
    ProgressReporterPort,
    VideoExporterPort,
)
from image_to_mp4.domain.errors import ExportError, TrackExtractionError
from image_to_mp4.domain.models import (
    Composition,
    ExportPreset,
    ExportStatus,
    FrameTimingConfig,
    MediaAsset,
    NormalizeResult,
    get_export_preset,
)


class ContainerNormalizer:
    """1パス目の動画を高品質プリセットで再エンコードし、最終出力を作ります。"""

    def __init__(
        self,
        media_probe: MediaProbePort,
        exporter: VideoExporterPort,
        file_gateway: FileGatewayPort,
        progress_reporter: ProgressReporterPort,
        preset: ExportPreset = get_export_preset("highest"),
        timing: FrameTimingConfig = FrameTimingConfig(),
        strict_export: bool = True,
        keep_intermediate: bool = False,
    ) -> None:
        self._media_probe = media_probe
        self._exporter = exporter
        self._file_gateway = file_gateway
        self._progress_reporter = progress_reporter
        self._preset = preset
        self._timing = timing
        self._strict_export = strict_export
        self._keep_intermediate = keep_intermediate

    def normalize(self, intermediate_path: Path, output_path: Path) -> NormalizeResult:
        """中間ファイルを output_path へ書き出します。"""

        self._progress_reporter.report_phase("normalize", f"中間ファイルを解析します: {intermediate_path}")

        asset = self._media_probe.probe(intermediate_path)
        composition = self._build_composition(asset)

        self._progress_reporter.report_phase(
            "export",
            f"書き出しを開始します。preset={self._preset.name} duration={composition.duration_sec:.3f}s",
        )

        future = self._exporter.export_async(
            composition=composition,
            output_path=output_path,
            preset=self._preset,
            timing=self._timing,
        )
        outcome = future.result()

        if outcome.status == ExportStatus.FAILED:
            if self._strict_export:
                raise ExportError(f"書き出しに失敗しました: {output_path} ({outcome.error})") from outcome.error

            # 書き出し結果を確認しない従来動作に合わせて完了扱いにする
            self._progress_reporter.report_phase(
                "export_warn",
                f"書き出しに失敗しましたが完了として扱います: {outcome.error}",
            )
        elif self._keep_intermediate == False:
            self._remove_intermediate(intermediate_path)

        return NormalizeResult(
            output_path=output_path,
            duration_sec=composition.duration_sec,
            preset=self._preset,
            export_status=outcome.status,
        )

    def _build_composition(self, asset: MediaAsset) -> Composition:
        """先頭の映像トラックを時刻0から全長ぶん配置します。"""

        if len(asset.video_tracks) == 0:
            raise TrackExtractionError(f"映像トラックが見つかりません: {asset.path}")

        if asset.duration_sec <= 0:
            raise TrackExtractionError(f"映像トラックの長さが不正です: {asset.path} duration={asset.duration_sec}")

        return Composition(
            source_path=asset.path,
            track=asset.video_tracks[0],
            start_sec=0.0,
            duration_sec=asset.duration_sec,
        )

    def _remove_intermediate(self, intermediate_path: Path) -> None:
        try:
            self._file_gateway.remove_file(intermediate_path)
        except OSError as ex:
            # 中間ファイル削除の失敗は非致命として扱う
            self._progress_reporter.report_phase("cleanup_warn", "中間ファイル削除をスキップします: {0}".format(ex))
