"""modpatcher - patch an installed Android game so it loads a mod runtime.

Pipeline: back up OBBs and player data, optionally downgrade with binary
diffs, rewrite and re-sign the APK, reinstall it, then restore state.
"""

from .version import load_version

__version__ = load_version()
