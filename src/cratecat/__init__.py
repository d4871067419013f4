"""cratecat - plan DJ crates from loose prompts with catalog filtering and Gemini."""

__version__ = "0.1.0"
