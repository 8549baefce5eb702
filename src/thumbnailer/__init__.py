from importlib import metadata

try:
    version = metadata.version('blob-thumbnailer')
except metadata.PackageNotFoundError:  # pragma: nocover
    version = '0.0.0'

__all__ = ['version']
