"""Documentation-site generator: Markdown sources in, routed page data out."""

__version__ = "0.1.0"
