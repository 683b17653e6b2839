"""
Segmenter - Split outbound text into transmit-ready SMS segments
================================================================

Lengths are counted in Python ``str`` units (Unicode code points).
Cuts are plain character-count cuts; word boundaries are not kept.
"""

from typing import List

SEGMENT_MAX_LENGTH = 160


def segment(body: str, max_length: int = SEGMENT_MAX_LENGTH) -> List[str]:
    """
    Split a message into ordered segments of at most ``max_length``.

    Every segment except possibly the last is exactly ``max_length``
    long, and joining the segments in order gives back ``body``.

    Args:
        body: Text to split
        max_length: Maximum segment length

    Returns:
        List of segments; empty for an empty body

    Raises:
        ValueError: If max_length is not a positive integer
    """
    if isinstance(max_length, bool) or not isinstance(max_length, int) or max_length < 1:
        raise ValueError(f"max_length must be a positive integer, got {max_length!r}")

    if not body:
        return []

    if len(body) <= max_length:
        return [body]

    return [body[i:i + max_length] for i in range(0, len(body), max_length)]
