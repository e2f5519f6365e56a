from pathlib import Path

from image_to_mp4.application.ports import FileGatewayPort
from image_to_mp4.domain.errors import OutputPreparationError


class OutputPreparer:
    """出力先に既存ファイルが残っていない状態を保証します。"""

    def __init__(self, file_gateway: FileGatewayPort) -> None:
        self._file_gateway = file_gateway

    def prepare(self, destination_path: Path) -> None:
        if self._file_gateway.file_exists(destination_path) == False:
            return

        try:
            self._file_gateway.remove_file(destination_path)
        except OSError as ex:
            raise OutputPreparationError(destination_path, str(ex)) from ex
