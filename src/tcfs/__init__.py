"""
TCFS - Time Capsule File System.

Locks a file until a chosen moment. The file is encrypted with AES-256-GCM
into a capsule kept in a local store; the capsule can only be opened once
its unlock time (minus an optional grace period) has passed.

Example usage:
    $ tcfs init --owner alice@example.com
    $ tcfs lock letter.txt --unlock-at 2030-01-01T00:00:00Z
    $ tcfs status letter.txt
    $ tcfs unlock letter.txt
"""

__version__ = "0.1.0"
__author__ = "TCFS Contributors"

__all__ = [
    "__version__",
    "__author__",
]
