"""Product attention insights: AI explanation job queue and worker."""

__version__ = "1.0.0"
