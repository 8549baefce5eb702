"""Proportional thumbnail height calculation."""

import decimal
import typing

NO_RESIZE: typing.Final = None


class InvalidDimensions(ValueError):
    """Raised when image or target dimensions are not positive."""


def target_height(
    original_width: int,
    original_height: int,
    target_width: int,
) -> int | None:
    """Return the height that keeps the aspect ratio at ``target_width``.

    Rounds half away from zero. Images are never upscaled: when the
    target width is not smaller than the original width
    :data:`NO_RESIZE` is returned.

    Raises:
        InvalidDimensions: If any dimension is zero or negative.

    """
    if original_width <= 0 or original_height <= 0:
        raise InvalidDimensions(
            f'Invalid image dimensions {original_width}x{original_height}'
        )
    if target_width <= 0:
        raise InvalidDimensions(f'Invalid target width {target_width}')
    if target_width >= original_width:
        return NO_RESIZE
    height = (
        decimal.Decimal(target_width * original_height)
        / decimal.Decimal(original_width)
    ).quantize(decimal.Decimal(1), rounding=decimal.ROUND_HALF_UP)
    return max(1, int(height))
