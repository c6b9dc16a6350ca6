"""Database-backed services used by the real-time hub and the HTTP routes."""
