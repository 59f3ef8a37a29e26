"""Match frames between two videos with perceptual hashes and plan a dubbed audio timeline."""

__version__ = "1.0.0"

__all__ = ["cli", "detection", "dubbing", "framespan", "matching", "phash", "video"]