"""Message bus."""
