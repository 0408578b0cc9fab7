"""Entity relationship & deduplication engine for CRM contacts and companies."""

__version__ = "0.1.0"
