"""
FORMBOT — performance auto-fix publisher for rendered form artifacts.

Turns analyzer findings into file patches on a dedicated branch and
keeps exactly one pull request per originating change up to date.
"""

from formbot.identity import __codename__, __tagline__, __version__

__all__ = ["__codename__", "__tagline__", "__version__"]
