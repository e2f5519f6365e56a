from image_to_mp4.adapters.ffmpeg_encoding_session import FfmpegVideoWriterFactory
from image_to_mp4.adapters.ffmpeg_video_exporter import FfmpegVideoExporter
from image_to_mp4.adapters.ffprobe_media_probe import FfprobeMediaProbe
from image_to_mp4.adapters.local_file_gateway import LocalFileGateway
from image_to_mp4.adapters.pillow_image_rasterizer import PillowImageRasterizer
from image_to_mp4.application.container_normalizer import ContainerNormalizer
from image_to_mp4.application.frame_sequence_encoder import FrameSequenceEncoder
from image_to_mp4.application.output_preparer import OutputPreparer
from image_to_mp4.application.ports import ConversionObserverPort, ProgressReporterPort
from image_to_mp4.application.use_cases import ConvertImageToMp4UseCase
from image_to_mp4.domain.models import FrameTimingConfig
from image_to_mp4.settings import ConverterSettings


def build_convert_use_case(
    settings: ConverterSettings,
    observer: ConversionObserverPort,
    progress_reporter: ProgressReporterPort,
) -> ConvertImageToMp4UseCase:
    """ffmpeg / Pillow のアダプターで変換ユースケースを組み立てます。"""

    file_gateway = LocalFileGateway()
    timing = FrameTimingConfig(ready_poll_interval_sec=settings.ready_poll_interval_sec)

    frame_encoder = FrameSequenceEncoder(
        rasterizer=PillowImageRasterizer(),
        writer_factory=FfmpegVideoWriterFactory(ffmpeg_path=settings.ffmpeg_path),
        progress_reporter=progress_reporter,
        timing=timing,
    )

    container_normalizer = ContainerNormalizer(
        media_probe=FfprobeMediaProbe(ffprobe_path=settings.ffprobe_path),
        exporter=FfmpegVideoExporter(ffmpeg_path=settings.ffmpeg_path),
        file_gateway=file_gateway,
        progress_reporter=progress_reporter,
        preset=settings.export_preset,
        timing=timing,
        strict_export=settings.strict_export,
        keep_intermediate=settings.keep_intermediate,
    )

    return ConvertImageToMp4UseCase(
        output_preparer=OutputPreparer(file_gateway),
        frame_encoder=frame_encoder,
        container_normalizer=container_normalizer,
        observer=observer,
        progress_reporter=progress_reporter,
    )
