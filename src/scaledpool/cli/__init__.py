"""Command line interface for scaledpool."""
