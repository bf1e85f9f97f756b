"""Radar presentation side: sweep / discover / fade state machine per chain.

The engine only ever reads transfers handed to it from the feed store; it
never touches the network.
"""

__all__ = [
    "engine",
    "stats",
    "render",
]
