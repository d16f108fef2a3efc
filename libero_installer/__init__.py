"""Interactive disk preparation for the Libero Gentoo installer."""

__version__ = "0.3.0"
