"""CI Visibility client: models test runs as an event stream and ships it to the test cycle intake."""

from ddci.version import __version__


__all__ = ["__version__"]
