"""Zotero-Write-Token generation for unversioned batch writes."""

import hashlib
import random
import time


def create_write_token() -> str:
    """Create a random 32-character hex token identifying one write request."""
    seed = f"{time.time_ns()}{random.random()}"
    return hashlib.sha1(seed.encode()).hexdigest()[:32]
