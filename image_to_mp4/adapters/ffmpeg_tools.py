import shutil
import subprocess
import threading
from concurrent.futures import Future
from typing import Callable, Optional, TypeVar


T = TypeVar("T")


class ExecutableNotFoundError(RuntimeError):
    """ffmpeg / ffprobe が見つからない場合のエラーです。"""


def resolve_executable(name: str, explicit_path: Optional[str] = None) -> str:
    """実行ファイルのパスを解決します。"""

    candidate = explicit_path if explicit_path else name
    resolved = shutil.which(candidate)
    if resolved is None:
        raise ExecutableNotFoundError(
            f"{name} コマンドが見つかりません。"
            f" {name} をインストールして PATH を通すか、"
            f"環境変数で {name} のフルパスを指定してください。"
        )

    return resolved


def wait_in_background(
    process: "subprocess.Popen[bytes]",
    on_exit: Callable[[int, str], T],
    name: str,
) -> "Future[T]":
    """プロセス終了を別スレッドで待ち、on_exit の結果で Future を解決します。

    on_exit には終了コードと stderr の内容が渡されます。
    """

    future: "Future[T]" = Future()
    future.set_running_or_notify_cancel()

    def _wait() -> None:
        try:
            stderr_bytes = process.stderr.read() if process.stderr is not None else b""
            returncode = process.wait()
            future.set_result(on_exit(returncode, stderr_bytes.decode("utf-8", errors="replace")))
        except Exception as ex:
            future.set_exception(ex)

    thread = threading.Thread(target=_wait, name=name, daemon=True)
    thread.start()
    return future
