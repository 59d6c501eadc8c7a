"""doccrawl: resumable, batch-scheduled documentation site crawler."""

__version__ = "0.1.0"
