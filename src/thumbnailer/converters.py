"""Alternate-format (WEBP) conversion.

A converter receives a full-size encoded image and a target width and
returns the resized WEBP bytes. Transparency is blended against a solid
background instead of being kept as an alpha channel.

"""

import asyncio
import contextlib
import functools
import io
import logging
import pathlib
import shutil
import tempfile
import typing

import PIL.Image

from thumbnailer import resize, settings

LOGGER = logging.getLogger(__name__)

Color = tuple[int, int, int]


class TransformError(Exception):
    """Raised when the alternate-format conversion fails."""


class Converter(typing.Protocol):
    async def encode(self, data: bytes, width: int | None) -> bytes:
        """Resize ``data`` to ``width`` and encode it as WEBP.

        A width of ``None`` keeps the original size.

        Raises:
            TransformError: If the conversion fails.

        """
        ...


class CWebpConverter:
    """Converts images by running the ``cwebp`` executable.

    Input and output go through a temporary directory that is removed
    whether or not the conversion succeeds.

    """

    def __init__(
        self,
        executable: str = 'cwebp',
        quality: int = 90,
        background: Color = (255, 255, 255),
        timeout: float = 30.0,
    ) -> None:
        self.executable = executable
        self.quality = quality
        self.background = background
        self.timeout = timeout

    def command(
        self,
        source: pathlib.Path,
        destination: pathlib.Path,
        width: int | None,
    ) -> list[str]:
        red, green, blue = self.background
        cmd = [
            self.executable,
            '-quiet',
            '-q',
            str(self.quality),
            '-blend_alpha',
            f'0x{red:02x}{green:02x}{blue:02x}',
        ]
        if width is not None:
            # A height of 0 lets cwebp keep the aspect ratio
            cmd += ['-resize', str(width), '0']
        cmd += [str(source), '-o', str(destination)]
        return cmd

    async def encode(self, data: bytes, width: int | None) -> bytes:
        loop = asyncio.get_event_loop()
        tmp = await loop.run_in_executor(
            None, functools.partial(tempfile.mkdtemp, prefix='thumbnailer-')
        )
        try:
            return await self._convert(pathlib.Path(tmp), data, width)
        finally:
            await loop.run_in_executor(
                None, functools.partial(shutil.rmtree, tmp, ignore_errors=True)
            )

    async def _convert(
        self,
        directory: pathlib.Path,
        data: bytes,
        width: int | None,
    ) -> bytes:
        loop = asyncio.get_event_loop()
        source = directory / 'source'
        destination = directory / 'output.webp'
        await loop.run_in_executor(None, source.write_bytes, data)
        cmd = self.command(source, destination, width)
        LOGGER.debug('Running %s', ' '.join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            raise TransformError(
                f'Unable to run {self.executable}: {err}'
            ) from err

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), self.timeout
            )
        except TimeoutError as err:
            raise TransformError(
                f'{self.executable} timed out after {self.timeout}s'
            ) from err
        finally:
            # Also reached when the task is cancelled
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        if process.returncode != 0:
            message = (stderr or stdout).decode('utf-8', 'replace')
            raise TransformError(
                f'{self.executable} exited with {process.returncode}: '
                f'{message.strip()}'
            )
        output = await loop.run_in_executor(None, _read_output, destination)
        if not output:
            raise TransformError(f'{self.executable} produced no output')
        return output


def _read_output(path: pathlib.Path) -> bytes:
    return path.read_bytes() if path.exists() else b''


class PillowWebpConverter:
    """In-process WEBP conversion with Pillow."""

    def __init__(
        self,
        quality: int = 90,
        background: Color = (255, 255, 255),
    ) -> None:
        self.quality = quality
        self.background = background

    async def encode(self, data: bytes, width: int | None) -> bytes:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None,
            _encode_webp_sync,
            data,
            width,
            self.quality,
            self.background,
        )


def _has_alpha(image: PIL.Image.Image) -> bool:
    return image.mode in ('RGBA', 'LA', 'PA') or (
        image.mode == 'P' and 'transparency' in image.info
    )


def _encode_webp_sync(
    data: bytes,
    width: int | None,
    quality: int,
    background: Color,
) -> bytes:
    try:
        with PIL.Image.open(io.BytesIO(data)) as original:
            original.load()
            if _has_alpha(original):
                with original.convert('RGBA') as rgba:
                    canvas = PIL.Image.new(
                        'RGBA', rgba.size, (*background, 255)
                    )
                    canvas.alpha_composite(rgba)
                    image = canvas.convert('RGB')
                    canvas.close()
            else:
                image = original.convert('RGB')

        try:
            if width is not None:
                height = resize.target_height(image.width, image.height, width)
                if height is not resize.NO_RESIZE:
                    resized = image.resize(
                        (width, height), PIL.Image.Resampling.LANCZOS
                    )
                    image.close()
                    image = resized
            with io.BytesIO() as buffer:
                image.save(buffer, format='WEBP', quality=quality)
                return buffer.getvalue()
        finally:
            image.close()
    except (
        PIL.Image.DecompressionBombError,
        PIL.UnidentifiedImageError,
        OSError,
        ValueError,
    ) as err:
        raise TransformError(f'WEBP conversion failed: {err}') from err


def create(config: settings.Thumbnails) -> Converter:
    """Return the converter selected in the thumbnail settings."""
    if config.converter == 'pillow':
        return PillowWebpConverter(config.webp_quality, config.background_rgb)
    return CWebpConverter(
        config.cwebp_path,
        config.webp_quality,
        config.background_rgb,
        config.transform_timeout,
    )
