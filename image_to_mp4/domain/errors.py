from pathlib import Path
from typing import Optional


class ConversionError(RuntimeError):
    """変換パイプラインで発生したエラーの基底クラスです。"""

    category = "conversion"

    @property
    def cause(self) -> Optional[BaseException]:
        """原因となった例外（raise ... from で連結したもの）を返します。"""

        return self.__cause__


class OutputPreparationError(ConversionError):
    """既存の出力ファイルを削除できなかった場合のエラーです。"""

    category = "filesystem"

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__("出力先の既存ファイルを削除できませんでした: {0} ({1})".format(path, reason))
        self.path = path


class SourceImageUnreadableError(ConversionError):
    """入力画像を読み込めない場合のエラーです。"""

    category = "decode"

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__("入力画像を読み込めません: {0} ({1})".format(path, reason))
        self.path = path


class WriterInitializationError(ConversionError):
    """エンコードセッションを作成できない場合のエラーです。"""

    category = "writer"


class PixelBufferAllocationError(ConversionError):
    """画素バッファを確保できない場合のエラーです。"""

    category = "writer"


class FrameRasterizationError(ConversionError):
    """画像を画素バッファへ描画できない場合のエラーです。"""

    category = "writer"


class FrameAppendError(ConversionError):
    """フレームの追加に失敗した場合のエラーです。"""

    category = "writer"

    def __init__(self, frame_index: int, attempts: int, detail: Optional[str] = None) -> None:
        message = "Error appending image {0} times {1}.".format(frame_index, attempts)
        if detail:
            message = "{0} {1}".format(message, detail)

        super().__init__(message)
        self.frame_index = frame_index
        self.attempts = attempts


class WriterFinalizationError(ConversionError):
    """エンコードセッションの終了処理に失敗した場合のエラーです。"""

    category = "writer"


class TrackExtractionError(ConversionError):
    """中間ファイルから映像トラックを取り出せない場合のエラーです。"""

    category = "composition"


class ExportError(ConversionError):
    """正規化の書き出しに失敗した場合のエラーです。"""

    category = "export"
