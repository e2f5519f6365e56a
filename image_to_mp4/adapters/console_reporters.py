from typing import Optional

from image_to_mp4.application.ports import ConversionObserverPort, ProgressReporterPort
from image_to_mp4.domain.models import ConversionJob, ConversionResult


class ConsoleProgressReporter(ProgressReporterPort):
    """コンソール出力で進捗表示するアダプターです。"""

    def __init__(self, quiet: bool = False) -> None:
        self._quiet = quiet

    def report_phase(self, phase: str, message: str) -> None:
        """フェーズ情報を出力します。"""

        if self._quiet:
            return

        print(f"[PHASE] {phase}: {message}")

    def report_progress(self, current: int, total: int, message: str) -> None:
        """進捗を出力します。"""

        if self._quiet:
            return

        safe_total = total if total > 0 else 1
        percent = (current / safe_total) * 100.0
        print(f"[PROGRESS] {percent:.1f}% ({current}/{safe_total}) {message}")


class ConsoleConversionObserver(ConversionObserverPort):
    """変換の開始・失敗・完了をコンソールへ出力するアダプターです。"""

    def on_start(self, job: ConversionJob) -> None:
        print(f"[INFO] converting {job.source_image_path} -> {job.destination_video_path}")

    def on_failure(self, job: ConversionJob, error: Optional[BaseException]) -> None:
        if error is None:
            print(f"[ERROR] conversion failed source={job.source_image_path}")
            return

        print(f"[ERROR] conversion failed source={job.source_image_path} error={error}")

    def on_complete(self, job: ConversionJob, result: ConversionResult) -> None:
        print(f"[INFO] video saved at {result.output_path}")
