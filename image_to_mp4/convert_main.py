import argparse
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

from image_to_mp4.adapters.console_reporters import ConsoleConversionObserver, ConsoleProgressReporter
from image_to_mp4.bootstrap import build_convert_use_case
from image_to_mp4.domain.errors import ConversionError
from image_to_mp4.domain.models import EXPORT_PRESETS, ConversionJob, get_export_preset
from image_to_mp4.settings import ConverterSettings


ALLOWED_IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg")


def default_output_path(input_path: Path) -> Path:
    """入力画像の拡張子を .mp4 に置き換えたパスを返します。"""

    return input_path.with_suffix(".mp4")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image-to-mp4",
        description="Convert a still image (png/jpg) into a short silent H.264 MP4.",
    )
    parser.add_argument("input", type=Path, help="source image (png, jpg, jpeg)")
    parser.add_argument("-o", "--output", type=Path, default=None, help="output MP4 (default: INPUT with .mp4)")
    parser.add_argument(
        "--preset",
        choices=sorted(EXPORT_PRESETS),
        default=None,
        help="quality preset of the final export pass (default: EXPORT_PRESET or highest)",
    )
    parser.add_argument(
        "--parity-export",
        action="store_true",
        help="treat a failed final export as completed instead of reporting an error",
    )
    parser.add_argument("--keep-intermediate", action="store_true", help="keep the first-pass MP4")
    parser.add_argument("-q", "--quiet", action="store_true", help="do not print phase/progress lines")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """1件変換のエントリポイントです。"""

    parser = build_parser()
    args = parser.parse_args(argv)

    input_path: Path = args.input
    if input_path.suffix.lower() not in ALLOWED_IMAGE_SUFFIXES:
        parser.error("input must be one of: {0}".format(", ".join(ALLOWED_IMAGE_SUFFIXES)))

    output_path: Path = args.output if args.output is not None else default_output_path(input_path)
    if output_path.resolve() == input_path.resolve():
        parser.error("output must differ from input")

    try:
        settings = _apply_overrides(ConverterSettings.from_env(), args)
    except RuntimeError as ex:
        print("[ERROR] {0}".format(ex))
        return 2

    use_case = build_convert_use_case(
        settings=settings,
        observer=ConsoleConversionObserver(),
        progress_reporter=ConsoleProgressReporter(quiet=args.quiet),
    )

    try:
        use_case.execute(ConversionJob(source_image_path=input_path, destination_video_path=output_path))
    except ConversionError:
        # 失敗内容はオブザーバーが出力済み
        return 1

    return 0


def _apply_overrides(settings: ConverterSettings, args: argparse.Namespace) -> ConverterSettings:
    """コマンドライン引数で設定を上書きします。"""

    export_preset = settings.export_preset
    if args.preset is not None:
        export_preset = get_export_preset(args.preset)

    return replace(
        settings,
        export_preset=export_preset,
        strict_export=settings.strict_export and args.parity_export == False,
        keep_intermediate=settings.keep_intermediate or args.keep_intermediate,
    )


if __name__ == "__main__":
    raise SystemExit(main())
