"""
prunarr: retention rules and deletion queue for self-hosted media libraries.
"""

__version__ = "0.1.0"
