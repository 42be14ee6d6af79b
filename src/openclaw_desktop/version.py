"""Single source of truth for the package version."""

__version__ = "0.4.0"

# Provenance marker written into every generated gateway config.
GENERATOR_NAME = "openclaw-desktop"
