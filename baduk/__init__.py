"""Play Baduk against GnuGo over GTP, with SGF game records."""

__version__ = "0.3.0"
