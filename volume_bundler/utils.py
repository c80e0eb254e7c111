"""
Utility functions for the volume bundler.
"""
import random
import sys
from typing import Dict, Optional, Union

from solders.pubkey import Pubkey


def get_terminal_colors() -> Dict[str, str]:
    """
    Get ANSI color codes for terminal output.

    Returns empty strings if output is not a TTY (e.g., redirected to file).
    This keeps volume_bundler.log free of ANSI escape codes.

    Returns:
        Dictionary with color codes: GREEN, CYAN, YELLOW, RED, DIM, RESET
    """
    use_color = sys.stdout.isatty()
    return {
        'GREEN': '\033[92m' if use_color else '',   # Lamport amounts, counts, slots
        'CYAN': '\033[96m' if use_color else '',    # Wallet / market / bundle identifiers
        'YELLOW': '\033[93m' if use_color else '',  # Tips, fees, retry attempts
        'RED': '\033[91m' if use_color else '',     # Errors, dropped bundles, abandoned wallets
        'DIM': '\033[90m' if use_color else '',     # Secondary / service messages
        'RESET': '\033[0m' if use_color else ''
    }


def short_key(key: Union[Pubkey, str], length: int = 8) -> str:
    """Public key prefix used in log lines and file names."""
    return str(key)[:length]


def apply_jitter(value: float, jitter: float = 0.3, rng: Optional[random.Random] = None) -> float:
    """
    Scale a delay by a random factor in [1 - jitter, 1 + jitter].

    Args:
        value: Base delay in seconds
        jitter: Relative jitter (0.3 = ±30%)
        rng: Optional random source (tests pass a seeded instance)

    Returns:
        Jittered delay, never negative
    """
    rng = rng or random
    return max(0.0, value * (1 + rng.uniform(-jitter, jitter)))


def lamports_to_sol(lamports: int) -> float:
    return lamports / 1e9
