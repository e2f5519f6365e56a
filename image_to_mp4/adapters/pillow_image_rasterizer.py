from pathlib import Path

import numpy as np
from PIL import Image

from image_to_mp4.application.ports import ImageRasterizerPort
from image_to_mp4.domain.errors import (
    FrameRasterizationError,
    PixelBufferAllocationError,
    SourceImageUnreadableError,
)
from image_to_mp4.domain.models import DecodedImage, RasterFrame


# 16384 x 16384 相当
DEFAULT_MAX_PIXELS = 16384 * 16384

# 16bit / 32bit 整数のグレースケール
WIDE_GRAYSCALE_MODES = ("I;16", "I;16L", "I;16B", "I;16N", "I")


class PillowImageRasterizer(ImageRasterizerPort):
    """Pillow でデコードし、numpy で ARGB 画素バッファを作るアダプターです。"""

    def __init__(self, max_pixels: int = DEFAULT_MAX_PIXELS) -> None:
        self._max_pixels = max_pixels

    def decode(self, image_path: Path) -> DecodedImage:
        """画像をデコードします。EXIF の回転情報は適用しません。"""

        try:
            with Image.open(image_path) as opened:
                opened.load()
                image = opened.copy()
        except (OSError, ValueError, Image.DecompressionBombError) as ex:
            raise SourceImageUnreadableError(Path(image_path), str(ex)) from ex

        width, height = image.size
        return DecodedImage(width=width, height=height, image=image)

    def rasterize(self, image: DecodedImage) -> RasterFrame:
        """アルファ先頭・乗算済みの 32bit ARGB へ描画します。"""

        width = image.width
        height = image.height

        if width <= 0 or height <= 0:
            raise PixelBufferAllocationError(f"Unable to create pixel buffer. size={width}x{height}")

        if width * height > self._max_pixels:
            raise PixelBufferAllocationError(
                f"Unable to create pixel buffer. size={width}x{height} max_pixels={self._max_pixels}"
            )

        try:
            buffer = np.zeros((height, width, RasterFrame.BYTES_PER_PIXEL), dtype=np.uint8)
        except MemoryError as ex:
            raise PixelBufferAllocationError(f"Unable to create pixel buffer. size={width}x{height}") from ex

        try:
            # 埋め込みICCプロファイルは使わず、デバイスRGBとして扱う
            rgba = np.asarray(_to_rgba(image.image), dtype=np.uint16)
        except (OSError, ValueError, AttributeError) as ex:
            raise FrameRasterizationError(f"画素バッファへ描画できません: {ex}") from ex

        if rgba.shape != (height, width, 4):
            raise FrameRasterizationError(f"画素バッファへ描画できません: shape={rgba.shape}")

        alpha = rgba[..., 3]
        buffer[..., 0] = alpha
        buffer[..., 1:4] = (rgba[..., :3] * alpha[..., np.newaxis] + 127) // 255

        return RasterFrame(
            width=width,
            height=height,
            bytes_per_row=width * RasterFrame.BYTES_PER_PIXEL,
            data=buffer.tobytes(),
        )


def _to_rgba(image: Image.Image) -> Image.Image:
    """RGBA へ変換します。16bit グレースケールは切り詰めずに 8bit へ縮めます。"""

    if image.mode not in WIDE_GRAYSCALE_MODES:
        return image.convert("RGBA")

    wide = np.clip(np.asarray(image, dtype=np.int64), 0, 65535)
    gray = ((wide * 255 + 32767) // 65535).astype(np.uint8)
    return Image.fromarray(gray).convert("RGBA")
