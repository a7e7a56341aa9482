"""devhost - macOS remote development host CLI

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Idempotent: re-query, then reconcile
- Fail fast with helpful guidance

The devhost CLI provisions a macOS host so it stays reachable over Tailscale
and SSH, and drops the caller into a persistent tmux session on that host.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
