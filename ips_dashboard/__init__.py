"""IPS operator console: client-side sync engine for the image prewarm service"""

__version__ = "0.3.0"
