"""Thumbnail pipeline orchestration.

Resolves the codec from the source name, decodes the image once and
fans out one task per configured width. Each task renders (and
optionally converts) its variant and hands it to the writer. The
pipeline only returns once every task has finished.

"""

import asyncio
import logging
import typing

from thumbnailer import (
    converters,
    formats,
    models,
    renderer,
    resize,
    settings,
)

LOGGER = logging.getLogger(__name__)


class Writer(typing.Protocol):
    async def write(self, name: str, data: bytes, content_type: str) -> None:
        """Persist a rendered variant."""
        ...


class VariantsFailed(Exception):
    """Raised after the fan-out when one or more widths failed."""

    def __init__(self, source: str, failures: list[models.VariantResult]):
        self.source = source
        self.failures = failures
        widths = ', '.join(str(failure.width) for failure in failures)
        super().__init__(
            f'{len(failures)} thumbnail variant(s) of {source} failed '
            f'(widths: {widths})'
        )

    @property
    def errors(self) -> list[BaseException]:
        return [f.error for f in self.failures if f.error is not None]


class Pipeline:
    """Derives thumbnail variants from one source image per invocation."""

    def __init__(
        self,
        config: settings.Thumbnails,
        writer: Writer,
        converter: converters.Converter | None = None,
    ) -> None:
        self.config = config
        self.writer = writer
        if converter is None and config.webp_support:
            converter = converters.create(config)
        # Only used in alternate-format (WEBP) mode
        self.converter = converter if config.webp_support else None

    def specs(self, source_extension: str) -> list[models.ThumbnailSpec]:
        """Return one spec per configured width."""
        extension = (
            formats.WEBP_EXTENSION
            if self.config.webp_support
            else source_extension
        )
        return [
            models.ThumbnailSpec(
                width=width,
                postfix=self.config.postfix,
                extension=extension,
            )
            for width in self.config.widths
        ]

    async def run(
        self,
        source_name: str,
        data: bytes | None,
    ) -> models.PipelineResult:
        """Generate and write every variant of ``source_name``.

        Returns a result with ``skipped`` set when there is no data or
        the extension is not supported.

        Raises:
            renderer.DecodeError: If the source cannot be decoded, no
                writes are attempted.
            VariantsFailed: If any width failed and
                ``skip_failed_variants`` is off. Raised only after all
                widths have finished.

        """
        result = models.PipelineResult(source=source_name)
        if data is None:
            LOGGER.info('No content for %s, skipping', source_name)
            result.skipped = True
            return result

        _base, extension = models.split_extension(source_name)
        codec = formats.resolve(extension)
        if not codec.supported:
            LOGGER.info('No encoder support for %s', source_name)
            result.skipped = True
            return result

        LOGGER.info(
            'Generating %d thumbnail(s) for %s (target extension %s)',
            len(self.config.widths),
            source_name,
            formats.WEBP_EXTENSION if self.config.webp_support else extension,
        )

        loop = asyncio.get_event_loop()
        try:
            source = await loop.run_in_executor(None, renderer.decode, data)
        except renderer.DecodeError:
            LOGGER.exception('Failed to decode %s', source_name)
            raise

        specs = self.specs(extension)
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        with source:
            results = await asyncio.gather(
                *(
                    self._variant(source, spec, codec, source_name, semaphore)
                    for spec in specs
                ),
                return_exceptions=True,
            )

        for spec, outcome in zip(specs, results, strict=True):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                LOGGER.error(
                    'Thumbnail %d of %s failed: %s',
                    spec.width,
                    source_name,
                    outcome,
                    exc_info=outcome,
                )
                result.results.append(
                    models.VariantResult(width=spec.width, error=outcome)
                )
            else:
                result.results.append(
                    models.VariantResult(width=spec.width, variant=outcome)
                )

        if result.failed and not self.config.skip_failed_variants:
            raise VariantsFailed(source_name, result.failed)
        LOGGER.info(
            'Wrote %d of %d thumbnail(s) for %s',
            len(result.written),
            len(result.results),
            source_name,
        )
        return result

    async def _variant(
        self,
        source: renderer.SourceImage,
        spec: models.ThumbnailSpec,
        codec: formats.Codec,
        source_name: str,
        semaphore: asyncio.Semaphore,
    ) -> models.EncodedVariant:
        async with semaphore:
            variant = await self._render(source, spec, codec, source_name)
            LOGGER.debug(
                'Writing %s (%dx%d, %d bytes)',
                variant.name,
                variant.width,
                variant.height,
                variant.size,
            )
            await self.writer.write(
                variant.name, variant.data, variant.content_type
            )
            return variant

    async def _render(
        self,
        source: renderer.SourceImage,
        spec: models.ThumbnailSpec,
        codec: formats.Codec,
        source_name: str,
    ) -> models.EncodedVariant:
        loop = asyncio.get_event_loop()
        if self.converter is None:
            return await loop.run_in_executor(
                None,
                lambda: renderer.render(source, spec, codec, source_name),
            )

        # cwebp cannot read GIF, hand it a lossless PNG instead. Converters
        # only read the first frame of an animation.
        intermediate = (
            formats.Codec.PNG if codec is formats.Codec.GIF else codec
        )
        full_size = await loop.run_in_executor(
            None,
            lambda: renderer.render(
                source,
                spec,
                intermediate,
                source_name,
                native_resize=False,
                animate=False,
            ),
        )
        height = resize.target_height(source.width, source.height, spec.width)
        if height is resize.NO_RESIZE:
            width, height = source.width, source.height
            data = await self.converter.encode(full_size.data, None)
        else:
            width = spec.width
            data = await self.converter.encode(full_size.data, width)
        return full_size.model_copy(
            update={
                'width': width,
                'height': height,
                'content_type': formats.content_type(formats.Codec.WEBP),
                'data': data,
            }
        )
