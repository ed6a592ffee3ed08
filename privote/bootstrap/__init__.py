"""Bootstrap wiring: picks real adapters or stubs from the environment."""
