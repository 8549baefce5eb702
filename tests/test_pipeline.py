"""Tests for the thumbnail pipeline."""

import asyncio
import io
import unittest
from unittest import mock

import PIL.Image

from thumbnailer import converters, pipeline, renderer, settings


def _create_test_image(
    width: int = 1000,
    height: int = 800,
    fmt: str = 'PNG',
) -> bytes:
    img = PIL.Image.new('RGB', (width, height), color='blue')
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def _create_animation(
    width: int = 400,
    height: int = 200,
    frames: int = 5,
    fmt: str = 'GIF',
) -> bytes:
    """Create an animation whose frames all differ."""
    colors = ['red', 'green', 'blue', 'yellow', 'purple', 'orange']
    images = [
        PIL.Image.new('RGB', (width, height), color=colors[i % len(colors)])
        for i in range(frames)
    ]
    buffer = io.BytesIO()
    images[0].save(
        buffer,
        format=fmt,
        save_all=True,
        append_images=images[1:],
        duration=80,
        loop=0,
    )
    return buffer.getvalue()


class RecordingWriter:
    """Collects writes in memory."""

    def __init__(
        self,
        delay: float = 0,
        fail_on: str | None = None,
    ) -> None:
        self.delay = delay
        self.fail_on = fail_on
        self.writes: dict[str, tuple[bytes, str]] = {}

    async def write(self, name: str, data: bytes, content_type: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if name == self.fail_on:
            raise ConnectionError(f'Unable to write {name}')
        self.writes[name] = (data, content_type)

    def size(self, name: str) -> tuple[int, int]:
        return PIL.Image.open(io.BytesIO(self.writes[name][0])).size


class FakeConverter:
    """Records the buffers it is handed and returns fixed bytes."""

    def __init__(self, fail_width: int | None = None) -> None:
        self.fail_width = fail_width
        self.calls: list[tuple[bytes, int | None]] = []

    async def encode(self, data: bytes, width: int | None) -> bytes:
        self.calls.append((data, width))
        if width is not None and width == self.fail_width:
            raise converters.TransformError('cwebp exited with 1')
        return f'webp-{width}'.encode()


class PipelineTestCase(unittest.IsolatedAsyncioTestCase):
    """Test cases for native thumbnail generation."""

    def setUp(self) -> None:
        self.writer = RecordingWriter()
        self.config = settings.Thumbnails(widths=[100, 500])
        self.pipeline = pipeline.Pipeline(self.config, self.writer)

    async def test_generates_each_width(self) -> None:
        result = await self.pipeline.run('photo.png', _create_test_image())

        self.assertEqual(
            set(self.writer.writes),
            {'photo-thumbnail-100.png', 'photo-thumbnail-500.png'},
        )
        self.assertEqual(
            self.writer.size('photo-thumbnail-100.png'), (100, 80)
        )
        self.assertEqual(
            self.writer.size('photo-thumbnail-500.png'), (500, 400)
        )
        for _data, content_type in self.writer.writes.values():
            self.assertEqual(content_type, 'image/png')
        self.assertFalse(result.skipped)
        self.assertEqual(len(result.written), 2)
        self.assertEqual(result.failed, [])

    async def test_unsupported_extension_is_noop(self) -> None:
        result = await self.pipeline.run('icon.bmp', _create_test_image())

        self.assertEqual(self.writer.writes, {})
        self.assertTrue(result.skipped)

    async def test_unsupported_extension_is_not_decoded(self) -> None:
        with mock.patch.object(renderer, 'decode') as decode:
            await self.pipeline.run('icon.bmp', b'BM....')
        decode.assert_not_called()

    async def test_missing_content_is_noop(self) -> None:
        result = await self.pipeline.run('photo.png', None)

        self.assertEqual(self.writer.writes, {})
        self.assertTrue(result.skipped)

    async def test_decode_failure_writes_nothing(self) -> None:
        with self.assertRaises(renderer.DecodeError):
            await self.pipeline.run('photo.png', b'not really a png')
        self.assertEqual(self.writer.writes, {})

    async def test_decodes_once(self) -> None:
        config = settings.Thumbnails(widths=[50, 100, 150, 200, 250])
        thumbnail_pipeline = pipeline.Pipeline(config, self.writer)
        with mock.patch.object(
            renderer, 'decode', wraps=renderer.decode
        ) as decode:
            await thumbnail_pipeline.run('photo.png', _create_test_image())

        decode.assert_called_once()
        self.assertEqual(len(self.writer.writes), 5)

    async def test_names_are_deterministic(self) -> None:
        data = _create_test_image()
        first = await self.pipeline.run('photo.png', data)
        second = await self.pipeline.run('photo.png', data)

        self.assertEqual(
            [variant.name for variant in first.written],
            [variant.name for variant in second.written],
        )

    async def test_waits_for_every_write(self) -> None:
        writer = RecordingWriter(delay=0.05)
        thumbnail_pipeline = pipeline.Pipeline(self.config, writer)

        await thumbnail_pipeline.run('photo.png', _create_test_image())

        self.assertEqual(len(writer.writes), 2)

    async def test_width_wider_than_source(self) -> None:
        config = settings.Thumbnails(widths=[2000])
        thumbnail_pipeline = pipeline.Pipeline(config, self.writer)

        await thumbnail_pipeline.run('photo.png', _create_test_image())

        self.assertEqual(
            self.writer.size('photo-thumbnail-2000.png'), (1000, 800)
        )

    async def test_jpeg_keeps_extension_case(self) -> None:
        await self.pipeline.run(
            'uploads/PHOTO.JPG', _create_test_image(fmt='JPEG')
        )

        self.assertIn('uploads/PHOTO-thumbnail-100.JPG', self.writer.writes)
        _data, content_type = self.writer.writes[
            'uploads/PHOTO-thumbnail-100.JPG'
        ]
        self.assertEqual(content_type, 'image/jpeg')

    async def test_write_failure_does_not_stop_siblings(self) -> None:
        writer = RecordingWriter(fail_on='photo-thumbnail-100.png')
        thumbnail_pipeline = pipeline.Pipeline(self.config, writer)

        with self.assertRaises(pipeline.VariantsFailed) as ctx:
            await thumbnail_pipeline.run('photo.png', _create_test_image())

        self.assertEqual(list(writer.writes), ['photo-thumbnail-500.png'])
        self.assertEqual([f.width for f in ctx.exception.failures], [100])
        self.assertIsInstance(ctx.exception.errors[0], ConnectionError)

    async def test_skip_failed_variants(self) -> None:
        config = settings.Thumbnails(
            widths=[100, 500], skip_failed_variants=True
        )
        writer = RecordingWriter(fail_on='photo-thumbnail-500.png')
        thumbnail_pipeline = pipeline.Pipeline(config, writer)

        result = await thumbnail_pipeline.run(
            'photo.png', _create_test_image()
        )

        self.assertEqual(
            [variant.name for variant in result.written],
            ['photo-thumbnail-100.png'],
        )
        self.assertEqual([f.width for f in result.failed], [500])

    async def test_animated_gif_keeps_frames(self) -> None:
        config = settings.Thumbnails(widths=[100])
        thumbnail_pipeline = pipeline.Pipeline(config, self.writer)

        await thumbnail_pipeline.run('anim.gif', _create_animation())

        data, content_type = self.writer.writes['anim-thumbnail-100.gif']
        self.assertEqual(content_type, 'image/gif')
        img = PIL.Image.open(io.BytesIO(data))
        self.assertEqual(img.n_frames, 5)
        self.assertEqual(img.size, (100, 50))


class AlternateFormatTestCase(unittest.IsolatedAsyncioTestCase):
    """Test cases for WEBP (alternate-format) mode."""

    def setUp(self) -> None:
        self.writer = RecordingWriter()
        self.converter = FakeConverter()

    def _pipeline(self, **overrides: object) -> pipeline.Pipeline:
        config = settings.Thumbnails(webp_support=True, **overrides)
        return pipeline.Pipeline(config, self.writer, self.converter)

    async def test_converts_through_converter(self) -> None:
        thumbnail_pipeline = self._pipeline(widths=[300])

        result = await thumbnail_pipeline.run(
            'photo.png', _create_test_image()
        )

        self.assertEqual(
            self.writer.writes,
            {'photo-thumbnail-300.webp': (b'webp-300', 'image/webp')},
        )
        self.assertEqual(len(self.converter.calls), 1)
        data, width = self.converter.calls[0]
        self.assertEqual(width, 300)

        # The converter resizes, the buffer it receives is full size
        img = PIL.Image.open(io.BytesIO(data))
        self.assertEqual(img.size, (1000, 800))
        self.assertEqual(img.format, 'PNG')
        self.assertEqual(
            (result.written[0].width, result.written[0].height), (300, 240)
        )

    async def test_native_resize_not_used(self) -> None:
        thumbnail_pipeline = self._pipeline(widths=[300])
        with mock.patch.object(
            renderer, 'render', wraps=renderer.render
        ) as render:
            await thumbnail_pipeline.run('photo.png', _create_test_image())

        self.assertFalse(render.call_args.kwargs['native_resize'])

    async def test_source_extension_still_gates(self) -> None:
        thumbnail_pipeline = self._pipeline(widths=[300])

        result = await thumbnail_pipeline.run('icon.bmp', b'BM')

        self.assertTrue(result.skipped)
        self.assertEqual(self.converter.calls, [])
        self.assertEqual(self.writer.writes, {})

    async def test_no_upscale(self) -> None:
        thumbnail_pipeline = self._pipeline(widths=[2000])

        result = await thumbnail_pipeline.run(
            'photo.png', _create_test_image()
        )

        self.assertIsNone(self.converter.calls[0][1])
        self.assertEqual(
            (result.written[0].width, result.written[0].height), (1000, 800)
        )

    async def test_gif_handed_over_as_png(self) -> None:
        thumbnail_pipeline = self._pipeline(widths=[100])

        await thumbnail_pipeline.run('anim.gif', _create_test_image(fmt='GIF'))

        data, _width = self.converter.calls[0]
        self.assertEqual(PIL.Image.open(io.BytesIO(data)).format, 'PNG')
        self.assertIn('anim-thumbnail-100.webp', self.writer.writes)

    async def test_animation_handed_over_as_first_frame(self) -> None:
        thumbnail_pipeline = self._pipeline(widths=[100])

        await thumbnail_pipeline.run('anim.gif', _create_animation())

        data, width = self.converter.calls[0]
        self.assertEqual(width, 100)
        img = PIL.Image.open(io.BytesIO(data))
        self.assertEqual(img.format, 'PNG')
        self.assertEqual(getattr(img, 'n_frames', 1), 1)
        self.assertEqual(img.size, (400, 200))

    async def test_converter_failure_is_isolated(self) -> None:
        self.converter.fail_width = 200
        thumbnail_pipeline = self._pipeline(widths=[100, 200, 300])

        with self.assertRaises(pipeline.VariantsFailed) as ctx:
            await thumbnail_pipeline.run('photo.png', _create_test_image())

        self.assertEqual(
            set(self.writer.writes),
            {'photo-thumbnail-100.webp', 'photo-thumbnail-300.webp'},
        )
        self.assertIsInstance(
            ctx.exception.errors[0], converters.TransformError
        )

    async def test_converter_failure_skipped(self) -> None:
        self.converter.fail_width = 200
        thumbnail_pipeline = self._pipeline(
            widths=[100, 200], skip_failed_variants=True
        )

        result = await thumbnail_pipeline.run(
            'photo.png', _create_test_image()
        )

        self.assertEqual(len(result.written), 1)
        self.assertEqual(result.failed[0].width, 200)


class PipelineConverterSelectionTestCase(unittest.TestCase):
    def test_creates_converter_in_webp_mode(self) -> None:
        config = settings.Thumbnails(webp_support=True, converter='pillow')
        thumbnail_pipeline = pipeline.Pipeline(config, RecordingWriter())
        self.assertIsInstance(
            thumbnail_pipeline.converter, converters.PillowWebpConverter
        )

    def test_no_converter_in_native_mode(self) -> None:
        config = settings.Thumbnails(webp_support=False)
        thumbnail_pipeline = pipeline.Pipeline(
            config, RecordingWriter(), FakeConverter()
        )
        self.assertIsNone(thumbnail_pipeline.converter)

    def test_specs(self) -> None:
        config = settings.Thumbnails(widths=[10, 20], postfix='_')
        thumbnail_pipeline = pipeline.Pipeline(config, RecordingWriter())
        specs = thumbnail_pipeline.specs('.png')
        self.assertEqual([spec.width for spec in specs], [10, 20])
        self.assertEqual(specs[0].output_name('a.png'), 'a_10.png')
