"""Low-level SQLite helpers shared by the lifecycle services."""

__all__: list[str] = []
