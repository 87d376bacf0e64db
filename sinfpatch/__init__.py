"""sinfpatch: inject DRM sinf blobs and iTunesMetadata into IPA archives in place."""

__version__ = "0.1.0"
