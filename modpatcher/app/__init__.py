"""Install orchestration and the frontend request API."""

from .installer import ModInstaller
from .rollback import CompensationStack, RollbackReport

__all__ = ["ModInstaller", "CompensationStack", "RollbackReport"]
