"""patchright-daemon: isolated browser sessions behind a single Unix socket."""

__version__ = "0.1.0"
