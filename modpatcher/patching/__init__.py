"""Downgrade support.

- bsdiff patch application gated on the source CRC32
- Sequencing of diff downloads and application for a version pair
"""

from .patcher import (
    BsPatch,
    PatchResult,
    apply_diff,
)
from .downgrade import Downgrader

__all__ = [
    "BsPatch",
    "PatchResult",
    "apply_diff",
    "Downgrader",
]
