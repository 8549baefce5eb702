import re
import typing

import pydantic
import pydantic_settings

_HEX_COLOR = re.compile(r'^[0-9a-f]{6}$')


class Thumbnails(pydantic_settings.BaseSettings):
    """Thumbnail generation settings.

    Passed explicitly to :class:`thumbnailer.pipeline.Pipeline`, the
    pipeline never reads the environment itself.

    """

    model_config = pydantic_settings.SettingsConfigDict(
        env_prefix='THUMBNAIL_',
        case_sensitive=False,
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        populate_by_name=True,
    )

    widths: typing.Annotated[
        list[pydantic.PositiveInt], pydantic_settings.NoDecode
    ] = pydantic.Field(default_factory=lambda: [128, 256, 512], min_length=1)
    container: str = 'thumbnails'
    postfix: str = '-thumbnail-'

    # Alternate-format mode: every variant is produced as WEBP
    webp_support: bool = pydantic.Field(
        default=False,
        validation_alias=pydantic.AliasChoices(
            'webp_support', 'thumbnail_webp_support'
        ),
    )
    converter: typing.Literal['cwebp', 'pillow'] = 'cwebp'
    cwebp_path: str = 'cwebp'
    webp_quality: int = pydantic.Field(default=90, ge=1, le=100)
    background: str = 'ffffff'
    transform_timeout: float = 30.0

    skip_failed_variants: bool = False
    max_concurrency: int = pydantic.Field(default=4, ge=1)

    @pydantic.field_validator('widths', mode='before')
    @classmethod
    def split_widths(cls, value: typing.Any) -> typing.Any:
        """Accept the comma-separated form, e.g. ``100,500``."""
        if isinstance(value, str):
            value = value.strip()
            if value.startswith('['):
                return pydantic.TypeAdapter(list[int]).validate_json(value)
            return [part.strip() for part in value.split(',') if part.strip()]
        return value

    @pydantic.field_validator('widths', mode='after')
    @classmethod
    def deduplicate_widths(cls, value: list[int]) -> list[int]:
        return list(dict.fromkeys(value))

    @pydantic.field_validator('background', mode='before')
    @classmethod
    def normalize_background(cls, value: typing.Any) -> typing.Any:
        if isinstance(value, str):
            value = value.strip().lower().removeprefix('#').removeprefix('0x')
            if not _HEX_COLOR.match(value):
                raise ValueError(
                    f'Background must be a 6 digit hex color, got {value!r}'
                )
        return value

    @property
    def background_rgb(self) -> tuple[int, int, int]:
        return (
            int(self.background[0:2], 16),
            int(self.background[2:4], 16),
            int(self.background[4:6], 16),
        )


class Storage(pydantic_settings.BaseSettings):
    """S3-compatible object storage settings."""

    model_config = pydantic_settings.SettingsConfigDict(
        env_prefix='STORAGE_',
        case_sensitive=False,
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
    )

    endpoint_url: str | None = None
    access_key: str | None = None
    secret_key: str | None = None
    region: str = 'us-east-1'
    create_bucket_on_init: bool = False


class ServerConfig(pydantic_settings.BaseSettings):
    model_config = pydantic_settings.SettingsConfigDict(
        env_prefix='THUMBNAILER_',
        case_sensitive=False,
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
    )
    environment: str = 'development'
    host: str = 'localhost'
    port: int = 8000


# Module-level singleton so every request shares one configuration
_thumbnail_settings: Thumbnails | None = None


def get_thumbnail_settings() -> Thumbnails:
    """Get the singleton Thumbnails settings instance.

    Returns:
        The singleton Thumbnails settings instance.

    """
    global _thumbnail_settings
    if _thumbnail_settings is None:
        _thumbnail_settings = Thumbnails()
    return _thumbnail_settings
