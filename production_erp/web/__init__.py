"""Web interface for production tracking."""
