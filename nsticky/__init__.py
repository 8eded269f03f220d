"""
nsticky

Sticky windows for the niri window manager: a daemon that keeps marked
windows on whichever workspace is active, and a CLI to manage them.
"""

__version__ = "0.1.0"
