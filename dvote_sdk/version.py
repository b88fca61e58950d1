"""
Version information for the DVote SDK.
"""
import importlib.metadata
import pathlib

import tomli

_DISTRIBUTION = "dvote-sdk"

# Installed package metadata wins; a source checkout reads pyproject.toml
try:
    __version__ = importlib.metadata.version(_DISTRIBUTION)
except importlib.metadata.PackageNotFoundError:
    try:
        path = pathlib.Path(__file__).parent.parent / "pyproject.toml"
        with path.open("rb") as f:
            data = tomli.load(f)
        __version__ = data["project"]["version"]
    except (FileNotFoundError, KeyError):
        __version__ = "0.0.0+unknown"
