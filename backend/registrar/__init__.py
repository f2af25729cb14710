"""University course registration service."""
