"""Live voice-note transcription relay."""

__version__ = "0.3.0"
