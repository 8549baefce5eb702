"""Decoding the source image and rendering one variant per width.

Everything in this module is synchronous and CPU bound, the pipeline
runs it in a thread executor.

"""

import io
import logging
import typing

import PIL.Image
import PIL.ImageSequence

from thumbnailer import formats, models, resize

LOGGER = logging.getLogger(__name__)


class DecodeError(Exception):
    """Raised when the source bytes cannot be decoded as an image."""


class RenderError(Exception):
    """Raised when a variant cannot be encoded.

    The codec is validated before rendering starts, so this indicates
    an internal inconsistency rather than bad input.

    """


class SourceImage:
    """The decoded source image, shared read-only between renders.

    Animated sources keep every frame decoded up front, so renders running
    in parallel threads never seek the shared image.

    """

    def __init__(
        self,
        image: PIL.Image.Image,
        frames: list[PIL.Image.Image] | None = None,
        durations: list[int] | None = None,
    ) -> None:
        self._image = image
        self._frames = frames or [image]
        self.durations = durations or []
        self.loop: int | None = image.info.get('loop')

    @property
    def width(self) -> int:
        return self._image.width

    @property
    def height(self) -> int:
        return self._image.height

    @property
    def mode(self) -> str:
        return self._image.mode

    @property
    def n_frames(self) -> int:
        return len(self._frames)

    @property
    def animated(self) -> bool:
        return self.n_frames > 1

    def copy(self) -> PIL.Image.Image:
        """Return a private copy of the first frame."""
        return self._frames[0].copy()

    def copy_frames(self) -> list[PIL.Image.Image]:
        return [frame.copy() for frame in self._frames]

    def close(self) -> None:
        for frame in self._frames:
            if frame is not self._image:
                frame.close()
        self._image.close()

    def __enter__(self) -> 'SourceImage':
        return self

    def __exit__(self, *_args: typing.Any) -> None:
        self.close()


def _load_frames(
    image: PIL.Image.Image,
) -> tuple[list[PIL.Image.Image], list[int]]:
    frames, durations = [], []
    for frame in PIL.ImageSequence.Iterator(image):
        durations.append(frame.info.get('duration', 0))
        frames.append(frame.convert('RGBA'))
    image.seek(0)
    return frames, durations


def decode(data: bytes) -> SourceImage:
    """Decode and fully load image bytes, including every animation frame.

    Raises:
        DecodeError: If the bytes are empty, corrupt or not an image.

    """
    if not data:
        raise DecodeError('Source image is empty')
    try:
        image = PIL.Image.open(io.BytesIO(data))
        image.load()
        frames, durations = None, None
        if getattr(image, 'n_frames', 1) > 1:
            frames, durations = _load_frames(image)
    except (
        PIL.Image.DecompressionBombError,
        PIL.UnidentifiedImageError,
        EOFError,
        OSError,
        SyntaxError,
        ValueError,
    ) as err:
        raise DecodeError(f'Unable to decode source image: {err}') from err
    source = SourceImage(image, frames, durations)
    LOGGER.debug(
        'Decoded %s image %dx%d (%s, %d frame(s))',
        image.format,
        image.width,
        image.height,
        image.mode,
        source.n_frames,
    )
    return source


def _prepare(
    image: PIL.Image.Image,
    width: int | None,
    mode: str | None,
) -> PIL.Image.Image:
    """Resize and convert one frame, closing ``image`` if it is replaced."""
    if width is not None:
        height = resize.target_height(image.width, image.height, width)
        if height is not resize.NO_RESIZE:
            resized = image.resize(
                (width, height), PIL.Image.Resampling.LANCZOS
            )
            image.close()
            image = resized
    if mode and image.mode != mode:
        converted = image.convert(mode)
        image.close()
        image = converted
    return image


def render(
    source: SourceImage,
    spec: models.ThumbnailSpec,
    codec: formats.Codec,
    source_name: str,
    *,
    native_resize: bool = True,
    animate: bool = True,
) -> models.EncodedVariant:
    """Render one variant of the source image.

    Animated sources keep all of their frames, timing and loop count when
    the codec can store an animation. Otherwise the first frame is used.

    Args:
        source: The decoded source image, which is not modified
        spec: Target width and naming rule
        codec: Codec used to encode the result
        source_name: Blob name the output name is derived from
        native_resize: When False the full-size image is encoded and
            resizing is left to a converter
        animate: When False only the first frame is rendered

    Raises:
        RenderError: If the codec cannot be encoded.

    """
    try:
        encoder = formats.encoder_for(codec)
    except ValueError as err:
        raise RenderError(str(err)) from err

    animate = animate and encoder.animated and source.animated
    frames = source.copy_frames() if animate else [source.copy()]
    try:
        width = spec.width if native_resize else None
        for index, frame in enumerate(frames):
            frames[index] = _prepare(frame, width, encoder.mode)

        first, *rest = frames
        options = dict(encoder.options)
        if rest:
            options.update(
                save_all=True,
                append_images=rest,
                duration=source.durations,
            )
            if source.loop is not None:
                options['loop'] = source.loop

        with io.BytesIO() as buffer:
            try:
                first.save(buffer, format=encoder.format, **options)
            except (KeyError, OSError, ValueError) as err:
                raise RenderError(
                    f'Failed to encode {codec.value} variant: {err}'
                ) from err
            data = buffer.getvalue()

        return models.EncodedVariant(
            name=spec.output_name(source_name),
            width=first.width,
            height=first.height,
            content_type=encoder.content_type,
            data=data,
        )
    finally:
        for frame in frames:
            frame.close()
