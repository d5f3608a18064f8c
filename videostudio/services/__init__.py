"""Service layer for the video studio backend."""
