"""LifeTales: spoken memories woven into illustrated story chapters."""

__version__ = "0.1.0"
