import time
from typing import Callable, Dict

from image_to_mp4.application.ports import JobRepositoryPort, ProgressReporterPort


# フェーズ開始時点の進捗率。encode 中のフレーム追加は ENCODE_RANGE に割り当てる
PHASE_PERCENT: Dict[str, int] = {
    "download": 5,
    "prepare": 10,
    "decode": 15,
    "encode": 20,
    "encode_done": 60,
    "normalize": 65,
    "export": 70,
    "done": 95,
    "upload": 97,
}

ENCODE_RANGE = (20, 60)


class DbProgressReporter(ProgressReporterPort):
    """DBへ jobs.progress_percent を反映するアダプターです。"""

    def __init__(
        self,
        job_repository: JobRepositoryPort,
        job_id: str,
        min_interval_sec: float = 2.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._job_repository = job_repository
        self._job_id = job_id
        self._min_interval_sec = min_interval_sec
        self._clock = clock
        self._last_update_at = 0.0
        self._last_percent = -1

    def report_phase(self, phase: str, message: str) -> None:
        """既知のフェーズなら対応する進捗率を反映します。"""

        percent = PHASE_PERCENT.get(phase)
        if percent is None:
            return

        self._update(percent, force=True)

    def report_progress(self, current: int, total: int, message: str) -> None:
        safe_total = total if total > 0 else 1
        low, high = ENCODE_RANGE
        percent = low + int((float(current) / float(safe_total)) * (high - low))

        self._update(percent, force=current >= safe_total)

    def _update(self, percent: int, force: bool) -> None:
        # 進捗は後退させない
        if percent <= self._last_percent:
            return

        now = self._clock()
        if (now - self._last_update_at) < self._min_interval_sec and force == False:
            return

        self._job_repository.update_progress(
            job_id=self._job_id,
            progress_percent=percent,
        )
        self._last_update_at = now
        self._last_percent = percent
