"""SiteCore: offline-first data layer for the site workforce apps."""

__version__ = "0.1.0"
