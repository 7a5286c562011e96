"""Chapter translation engine.

This package focuses on producing, per chapter:
- merged, reading-ordered text blocks for every page image
- translated text aligned to those blocks
- one translations JSON artifact

OCR models, translation services and overlay rendering are collaborators.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
