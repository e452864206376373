"""Health and readiness endpoints."""
