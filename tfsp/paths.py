import os
from pathlib import Path
from typing import Optional, Union

from .errors import PathTraversal

"""
paths.py: confine client supplied paths to the store root.

Same idea as the download confinement in the old client node, but stricter:
we resolve symlinks and `..` first, then look at the path *relative* to the
root. Anything that needs a `..` to get there is outside.
"""

PathLike = Union[str, "os.PathLike[str]"]


def resolve(root: PathLike, requested: Optional[str]) -> Path:
    """
    Canonicalize `requested` against `root` and return the absolute path.

    Raises:
        PathTraversal: if the canonical result is not inside `root`.
    """
    base = Path(root).resolve()
    candidate = (base / (requested or ".")).resolve()

    try:
        rel = os.path.relpath(candidate, base)
    except ValueError:
        # Different drive on Windows; cannot be under root.
        raise PathTraversal(f"Access denied: path '{requested}' is outside the file store.")

    parts = Path(rel).parts
    if rel != "." and (os.path.isabs(rel) or ".." in parts):
        raise PathTraversal(f"Access denied: path '{requested}' is outside the file store.")
    return candidate


def is_inside(root: PathLike, requested: Optional[str]) -> bool:
    """Boolean form of resolve(), handy for guards and tests."""
    try:
        resolve(root, requested)
    except PathTraversal:
        return False
    return True
