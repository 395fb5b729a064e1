"""Command-line device simulator reporting progress to dweet.io and Google Sheets."""

__version__ = "0.1.0"
