"""
Models package for SurfaceStore

This package contains the surface output components:
- Surface: captured image plus annotation elements
- EncodePipeline: effects, alpha removal and color reduction before encoding
- ContainerWriter / load_container: native container format
- TempFileCache: expiring registry of temporary files
- SurfaceOutput: file level save and load operations
- SettingsManager: output configuration
"""
