"""
facescan - live face capture and verification engine.

Register a visitor's reference face, or verify a live face against a stored
reference, from a local webcam.
"""

__version__ = "0.1.0"
