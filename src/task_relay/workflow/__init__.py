"""Task lifecycle, delegation ledger and workflow service."""
