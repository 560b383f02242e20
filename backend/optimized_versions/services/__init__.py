"""Collaborators around the job engine: Jellyfin access and retention."""
