"""Provider routing core.

Directory, quota arithmetic, failure policy, reserve policy and scoring.
The router and summary reporter depend on the outbound ports and are
imported from their own modules.
"""

from ai_router.shared.providers.types import (
    ExecutionRequest,
    HealthState,
    ProviderConfig,
    QuotaSnapshot,
    RoutedResult,
)
from ai_router.shared.providers.directory import DirectoryLoader, ProviderDirectory
from ai_router.shared.providers.health import FailurePolicy, classify_exception
from ai_router.shared.providers.quota import QuotaPolicy
from ai_router.shared.providers.reserve import ReservePolicy
from ai_router.shared.providers.scorer import Scorer, ScoringPolicy

__all__ = [
    "DirectoryLoader",
    "ExecutionRequest",
    "FailurePolicy",
    "HealthState",
    "ProviderConfig",
    "ProviderDirectory",
    "QuotaPolicy",
    "QuotaSnapshot",
    "ReservePolicy",
    "RoutedResult",
    "Scorer",
    "ScoringPolicy",
    "classify_exception",
]
