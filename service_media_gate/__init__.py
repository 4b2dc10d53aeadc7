"""Media Gate service for the access layer."""
