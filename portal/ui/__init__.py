"""Terminal user interfaces."""
