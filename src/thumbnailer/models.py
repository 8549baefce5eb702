import dataclasses
import posixpath
import typing

import pydantic

__all__ = [
    'BlobReference',
    'EncodedVariant',
    'PipelineResult',
    'ThumbnailSpec',
    'VariantResult',
    'split_extension',
]


def split_extension(name: str) -> tuple[str, str]:
    """Split a blob name into its base name and extension (with ``.``)."""
    return posixpath.splitext(name)


class BlobReference(pydantic.BaseModel):
    """Location of a created blob, parsed from a notification."""

    model_config = pydantic.ConfigDict(frozen=True)

    container: str
    name: str
    url: str | None = None


class ThumbnailSpec(pydantic.BaseModel):
    """One requested output width and the rule used to name it."""

    model_config = pydantic.ConfigDict(frozen=True)

    width: pydantic.PositiveInt
    postfix: str = '-thumbnail-'
    extension: str

    def output_name(self, source_name: str) -> str:
        """Return ``{base}{postfix}{width}{extension}`` for a source name.

        Only the trailing extension of the source name is replaced,
        directories in the name are kept.

        """
        base, _extension = split_extension(source_name)
        return f'{base}{self.postfix}{self.width}{self.extension}'


class EncodedVariant(pydantic.BaseModel):
    """A rendered thumbnail ready to be written."""

    model_config = pydantic.ConfigDict(frozen=True)

    name: str
    width: int
    height: int
    content_type: str
    data: bytes = pydantic.Field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclasses.dataclass(frozen=True)
class VariantResult:
    width: int
    variant: EncodedVariant | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclasses.dataclass
class PipelineResult:
    """Outcome of one pipeline invocation, available after all writes."""

    source: str
    results: list[VariantResult] = dataclasses.field(default_factory=list)
    skipped: bool = False

    @property
    def written(self) -> list[EncodedVariant]:
        return [r.variant for r in self.results if r.variant is not None]

    @property
    def failed(self) -> list[VariantResult]:
        return [r for r in self.results if not r.ok]

    def summary(self) -> dict[str, typing.Any]:
        return {
            'source': self.source,
            'skipped': self.skipped,
            'written': [variant.name for variant in self.written],
            'failed': {
                str(result.width): str(result.error) for result in self.failed
            },
        }
