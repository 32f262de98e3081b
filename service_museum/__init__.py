"""Museum Access Layer collection service."""
