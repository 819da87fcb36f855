"""agentvault — Zero-knowledge credentials and a verify-then-act secret vault for AI agents."""

__version__ = "0.1.0"
