"""
Token Estimation Utilities.

Context assembly budgets on a fixed character heuristic: one token is
assumed to be four characters, rounded up. The same estimate is used for
every block so budgets and reported counts always agree.
"""

import math

APPROX_CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """
    Estimate tokens for a piece of text.

    Args:
        text: Text to estimate

    Returns:
        ceil(len(text) / 4), 0 for empty text
    """
    if not text:
        return 0
    return math.ceil(len(text) / APPROX_CHARS_PER_TOKEN)
