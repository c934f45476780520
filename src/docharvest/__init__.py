"""Paginated search harvester: fetch result pages, extract links, download documents."""

__version__ = "0.1.0"
