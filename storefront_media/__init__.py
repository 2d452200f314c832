"""
Storefront Media Ingestion

Remote image ingestion and transcoding for the storefront admin panel:
validate URL -> bounded fetch -> verify -> transcode -> upload, plus a
concurrent best-effort batch deleter for stored images.
"""

__version__ = "1.0.0"
