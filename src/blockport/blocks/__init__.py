"""Block acquisition and integration."""
