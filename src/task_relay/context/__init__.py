"""Context snapshots, digests and cached diffs."""
