"""pki-lifecycle: Root → Intermediate → leaf certificate authority lifecycle manager."""

__version__ = "0.1.0"
