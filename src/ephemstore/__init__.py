"""ephemstore - ephemeral object store with signed-request authentication."""

__version__ = "1.0.0"
