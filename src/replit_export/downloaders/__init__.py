"""Replit export downloaders package.

This package contains the clients that talk to replit.com:
- ReplCatalog (GraphQL listing of the user's Repls)
- ReplExporter (concurrent archive downloads)
"""

from replit_export.downloaders.base.protocol import (
    BatchResult,
    ExportError,
    TransferOutcome,
    TransferStatus,
)

__all__ = [
    "BatchResult",
    "ExportError",
    "TransferOutcome",
    "TransferStatus",
]
