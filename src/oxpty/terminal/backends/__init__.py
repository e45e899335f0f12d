"""Platform PTY backends."""
