# (c) Copyright Datacraft, 2026
"""Two-factor authentication service."""
