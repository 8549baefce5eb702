"""Source extension to codec resolution.

The allow-list is closed: every member of :class:`Codec` other than
``UNSUPPORTED`` has exactly one :class:`Encoder`, so adding a format is
a change to the enum and to :func:`encoder_for` only.

"""

import dataclasses
import enum
import logging
import typing

LOGGER = logging.getLogger(__name__)

WEBP_EXTENSION = '.webp'


class Codec(enum.Enum):
    GIF = 'gif'
    JPEG = 'jpeg'
    PNG = 'png'
    WEBP = 'webp'
    UNSUPPORTED = 'unsupported'

    @property
    def supported(self) -> bool:
        return self is not Codec.UNSUPPORTED


_EXTENSIONS: dict[str, Codec] = {
    'gif': Codec.GIF,
    'jpeg': Codec.JPEG,
    'jpg': Codec.JPEG,
    'png': Codec.PNG,
    'webp': Codec.WEBP,
}


@dataclasses.dataclass(frozen=True)
class Encoder:
    """How Pillow writes a codec."""

    format: str
    content_type: str
    mode: str | None = None
    animated: bool = False
    options: dict[str, typing.Any] = dataclasses.field(default_factory=dict)


def resolve(extension: str) -> Codec:
    """Return the codec for a file extension.

    The extension may carry a leading ``.`` and is matched without
    regard to case. Anything outside the allow-list resolves to
    :attr:`Codec.UNSUPPORTED`, which is not an error.

    """
    return _EXTENSIONS.get(
        extension.strip().lstrip('.').lower(), Codec.UNSUPPORTED
    )


def encoder_for(codec: Codec) -> Encoder:
    """Return the encoder for a supported codec.

    Raises:
        ValueError: for :attr:`Codec.UNSUPPORTED`

    """
    match codec:
        case Codec.GIF:
            return Encoder('GIF', 'image/gif', animated=True)
        case Codec.JPEG:
            return Encoder(
                'JPEG', 'image/jpeg', mode='RGB', options={'quality': 90}
            )
        case Codec.PNG:
            return Encoder('PNG', 'image/png', animated=True)
        case Codec.WEBP:
            return Encoder(
                'WEBP',
                'image/webp',
                animated=True,
                options={'quality': 90},
            )
        case Codec.UNSUPPORTED:
            raise ValueError('No encoder for unsupported codec')
        case _:  # pragma: nocover
            typing.assert_never(codec)


def content_type(codec: Codec) -> str:
    return encoder_for(codec).content_type
