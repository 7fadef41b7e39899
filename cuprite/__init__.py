"""
Cuprite core package.

Drives a running browser over its remote debugging protocol and exposes
page and element operations on top of a command dispatcher.
"""

__all__ = [
    "browser",
    "exceptions",
    "schemas",
    "utils",
]
