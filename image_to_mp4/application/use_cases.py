import threading
from concurrent.futures import Future
from typing import Optional

from image_to_mp4.application.container_normalizer import ContainerNormalizer
from image_to_mp4.application.frame_sequence_encoder import FrameSequenceEncoder
from image_to_mp4.application.output_preparer import OutputPreparer
from image_to_mp4.application.ports import ConversionObserverPort, ProgressReporterPort
from image_to_mp4.domain.models import ConversionJob, ConversionResult, ConversionState


class ConvertImageToMp4UseCase:
    """静止画をMP4へ変換するユースケースです。

    準備 → エンコード → 正規化 の順に1回だけ実行します。
    どこかで失敗した時点で FAILED となり、以降の段階は実行しません。
    """

    def __init__(
        self,
        output_preparer: OutputPreparer,
        frame_encoder: FrameSequenceEncoder,
        container_normalizer: ContainerNormalizer,
        observer: ConversionObserverPort,
        progress_reporter: ProgressReporterPort,
    ) -> None:
        self._output_preparer = output_preparer
        self._frame_encoder = frame_encoder
        self._container_normalizer = container_normalizer
        self._observer = observer
        self._progress_reporter = progress_reporter
        self._state = ConversionState.NOT_STARTED
        self._failure: Optional[BaseException] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> ConversionState:
        return self._state

    @property
    def failure(self) -> Optional[BaseException]:
        """FAILED になった原因の例外を返します。"""

        return self._failure

    def execute(self, job: ConversionJob) -> ConversionResult:
        """変換を同期的に実行します。失敗時は通知後に例外を再送出します。"""

        with self._lock:
            if self._state != ConversionState.NOT_STARTED:
                raise RuntimeError("このユースケースは実行済みです。ジョブごとに作成してください。")

            # 二重実行を防ぐため、ロック内で開始済みにする
            self._observer.on_start(job)
            self._transition(ConversionState.PREPARING)

        try:
            self._progress_reporter.report_phase("prepare", f"出力先を準備します: {job.destination_video_path}")
            self._output_preparer.prepare(job.destination_video_path)

            self._transition(ConversionState.ENCODING)
            encode_result = self._frame_encoder.encode(
                source_image_path=job.source_image_path,
                output_path=job.intermediate_video_path,
            )

            self._transition(ConversionState.NORMALIZING)
            normalize_result = self._container_normalizer.normalize(
                intermediate_path=encode_result.video_path,
                output_path=job.destination_video_path,
            )

        except Exception as ex:
            self._failure = ex
            self._transition(ConversionState.FAILED)
            self._observer.on_failure(job, ex)
            raise

        result = ConversionResult(
            job=job,
            encode_result=encode_result,
            normalize_result=normalize_result,
        )

        self._transition(ConversionState.COMPLETED)
        self._progress_reporter.report_phase("done", f"変換が完了しました: {result.output_path}")
        self._observer.on_complete(job, result)
        return result

    def start(self, job: ConversionJob) -> "Future[ConversionResult]":
        """別スレッドで変換を実行し、結果または例外を持つ Future を返します。"""

        future: "Future[ConversionResult]" = Future()

        def _run() -> None:
            if future.set_running_or_notify_cancel() == False:
                return

            try:
                future.set_result(self.execute(job))
            except Exception as ex:
                future.set_exception(ex)

        thread = threading.Thread(target=_run, name="image-to-mp4-conversion", daemon=True)
        thread.start()
        return future

    def _transition(self, next_state: ConversionState) -> None:
        """状態を前に進めます。後退や終了状態からの遷移は許可しません。"""

        if self._state.is_terminal:
            raise RuntimeError(f"終了状態から遷移できません: {self._state.name} -> {next_state.name}")

        if next_state != ConversionState.FAILED and next_state.value <= self._state.value:
            raise RuntimeError(f"状態は前進のみ可能です: {self._state.name} -> {next_state.name}")

        self._state = next_state
