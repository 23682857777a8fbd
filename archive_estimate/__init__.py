"""Estimate archivable mailbox size over Microsoft Graph."""

__version__ = "0.1.0"
