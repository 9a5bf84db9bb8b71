"""acphost — desktop host for an Agent Client Protocol adapter."""

__version__ = "0.1.0"
