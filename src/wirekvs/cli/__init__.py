"""WireKVS CLI.

Usage:
    wirekvs get KEY              Read a value
    wirekvs set KEY VALUE        Write a value
    wirekvs delete KEY           Delete a key
    wirekvs entries              List all entries
    wirekvs watch                Stream live changes
    wirekvs db list|create|delete
"""

from wirekvs.cli.main import app, main

__all__ = ["app", "main"]
