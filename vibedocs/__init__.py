"""VibeDocs - a live-reloading browser for the markdown docs of local projects."""

from .version_info import __version__

__all__ = ['__version__']
