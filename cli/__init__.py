"""Command line entrypoints for MutaView."""
