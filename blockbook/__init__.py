"""
Blockbook payments backend.

Provides:
- REST endpoints for creating, reading, listing and cancelling payment requests
- A settlement listener that marks requests paid when a matching ERC-20
  Transfer shows up on-chain
- An operator CLI (serve, listen, init-db, check)
"""

__version__ = "0.1.0"
