"""
plughost - launch out-of-process plugins over a one-line stdout handshake.
"""

__version__ = "0.1.0"
__logo__ = "🔌"
