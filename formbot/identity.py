"""FORMBOT identity constants."""

__version__ = "0.3.0"
__codename__ = "FORMBOT"
__tagline__ = "Fast forms. Fixed automatically."

BANNER = r"""
  ___ ___  ___ __  __ ___  ___ _____
 | __/ _ \| _ \  \/  | _ )/ _ \_   _|
 | _| (_) |   / |\/| | _ \ (_) || |
 |_| \___/|_|_\_|  |_|___/\___/ |_|
"""
