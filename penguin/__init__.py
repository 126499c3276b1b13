"""Dev server with auto-reload, static file serving and reverse proxy support."""

__version__ = "0.2.7"