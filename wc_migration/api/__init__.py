"""HTTP API for migrations and the wizard."""
