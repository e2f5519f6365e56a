import shutil
from pathlib import Path

from image_to_mp4.application.ports import FileGatewayPort


class LocalFileGateway(FileGatewayPort):
    """ローカルファイル操作のアダプターです。"""

    def ensure_dir(self, path: Path) -> None:
        """ディレクトリを作成します。"""

        path.mkdir(parents=True, exist_ok=True)

    def file_exists(self, path: Path) -> bool:
        """パスに何か（ファイル・ディレクトリ・リンク）があるかを返します。"""

        return path.exists() or path.is_symlink()

    def remove_file(self, path: Path) -> None:
        """ファイルを削除します。既に無い場合は何もしません。"""

        path.unlink(missing_ok=True)

    def remove_dir(self, path: Path) -> None:
        """ディレクトリを削除します。"""

        if path.exists():
            shutil.rmtree(path)
