"""kryten-counters — Chat command counters and milestone service."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kryten-counters")
except PackageNotFoundError:
    __version__ = "0.0.0"
