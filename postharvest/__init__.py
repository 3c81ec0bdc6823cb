"""postharvest: browser-driven harvesting of LinkedIn content search results into SQLite."""

__version__ = "0.1.0"
