"""ephemstore API routes."""
