import asyncio
import logging.config
import pathlib
import tomllib
import typing
from importlib import resources

import typer
import uvicorn

from thumbnailer import pipeline, renderer, settings, storage, version

main = typer.Typer()


class UvicornParameters(typing.TypedDict):
    factory: bool
    host: str
    log_config: dict[str, typing.Any]
    port: int
    reload: typing.NotRequired[bool]
    reload_dirs: typing.NotRequired[list[str]]
    reload_excludes: typing.NotRequired[list[str]]
    proxy_headers: typing.NotRequired[bool]
    headers: typing.NotRequired[list[tuple[str, str]]]
    date_header: typing.NotRequired[bool]
    server_header: typing.NotRequired[bool]
    ws: typing.Literal[
        'auto', 'none', 'websockets', 'websockets-sansio', 'wsproto'
    ]


def load_log_config(*, debug: bool = False) -> dict[str, typing.Any]:
    """Load the packaged logging configuration."""
    log_config_file = resources.files('thumbnailer') / 'log-config.toml'
    log_config = tomllib.loads(log_config_file.read_text())
    if debug:
        loggers = typing.cast(
            'dict[str, dict[str, object]]',
            log_config.setdefault('loggers', {}),
        )
        loggers.setdefault('thumbnailer', {})
        loggers['thumbnailer']['level'] = 'DEBUG'
    return log_config


@main.command()
def serve(
    *,
    dev: bool = False,
) -> None:
    """Start the HTTP server receiving blob notifications"""
    config = settings.ServerConfig()
    development = dev or config.environment == 'development'
    log_config = load_log_config(debug=development)

    params: UvicornParameters = {
        'factory': True,
        'host': config.host,
        'port': config.port,
        'log_config': log_config,
        'proxy_headers': True,
        'headers': [('Server', f'blob-thumbnailer/{version}')],
        'date_header': True,
        'server_header': False,
        'ws': 'none',
    }

    if development:
        params.update(
            {
                'reload': True,
                'reload_dirs': [
                    str(pathlib.Path.cwd() / 'src' / 'thumbnailer')
                ],
                'reload_excludes': ['**/*.pyc'],
            }
        )

    uvicorn.run('thumbnailer.app:create_app', **params)


@main.command()
def generate(
    source: typing.Annotated[
        pathlib.Path,
        typer.Argument(exists=True, dir_okay=False, readable=True),
    ],
    output: typing.Annotated[
        pathlib.Path, typer.Option('--output', '-o', file_okay=False)
    ] = pathlib.Path('thumbnails'),
    width: typing.Annotated[
        list[int] | None, typer.Option('--width', '-w')
    ] = None,
    webp: bool = False,
    verbose: bool = False,
) -> None:
    """Generate thumbnails for a local image file into a directory."""
    logging.config.dictConfig(load_log_config(debug=verbose))

    overrides: dict[str, typing.Any] = {}
    if width:
        overrides['widths'] = width
    if webp:
        overrides['webp_support'] = True
    config = settings.Thumbnails(**overrides)

    thumbnail_pipeline = pipeline.Pipeline(
        config, storage.DirectoryWriter(output)
    )
    try:
        result = asyncio.run(
            thumbnail_pipeline.run(source.name, source.read_bytes())
        )
    except (renderer.DecodeError, pipeline.VariantsFailed) as err:
        typer.echo(f'✗ {err}', err=True)
        raise typer.Exit(code=1) from err

    if result.skipped:
        typer.echo(f'⚠ {source.name} is not a supported image, skipped')
        return
    for variant in result.written:
        typer.echo(
            f'  ✓ {output / variant.name} '
            f'({variant.width}x{variant.height}, {variant.content_type})'
        )
    for failure in result.failed:
        typer.echo(f'  ✗ width {failure.width}: {failure.error}', err=True)
