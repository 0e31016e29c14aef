"""
Geo-tagged selfie verification.

Checks that an uploaded selfie was taken recently, near the location the
client claims, and actually contains a face.
"""

__version__ = "1.0.0"
