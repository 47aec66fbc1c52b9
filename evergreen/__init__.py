"""evergreenOS core: multi-tenant entity store with per-user isolation."""

__version__ = "0.1.0"
