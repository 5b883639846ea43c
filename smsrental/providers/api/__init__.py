"""HTTP API provider adapters."""
