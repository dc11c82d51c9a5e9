"""Parse, aggregate, persist and compare CI test and coverage reports."""

__version__ = "0.3.0"
