"""
Utilities package for SurfaceStore

Logging setup, filename helpers and clipboard access.
"""
