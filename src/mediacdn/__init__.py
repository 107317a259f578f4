"""Two-tier media CDN: a caching edge node in front of a filesystem origin."""

__version__ = "0.1.0"
