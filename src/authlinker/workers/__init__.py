"""Background workers (arq)."""
