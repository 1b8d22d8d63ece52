"""presencesync - rich presence bridge for MPRIS media players."""

__version__ = "0.4.0"
