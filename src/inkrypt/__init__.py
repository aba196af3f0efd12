"""inkrypt — local vault management with filesystem change notifications."""

__version__ = "0.1.0"
