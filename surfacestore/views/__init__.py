"""
Views package for SurfaceStore

Dialogs shown while saving.
"""
