"""patchvault — carry numbered patches from a source tree to a target tree."""

__version__ = "0.1.0"
