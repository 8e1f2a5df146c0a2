"""Core building blocks: codec, hash chain, types, errors and settings."""
