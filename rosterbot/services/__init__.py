"""
Roster fetch layer - resilient member roster retrieval.

Provides:
- RosterService: Strategy race with circuit breaker and cache fallback
- RosterCache: Roster snapshots over a TTL store (memory or Redis)
- CircuitBreaker: Per-partition failure gate
- StrategyExecutor / ResultSelector: Deadline-bounded strategy race
- CacheWarmer: Background progressive refresh
"""

from rosterbot.services.errors import (
    ServiceError,
    StrategyTimeout,
    StrategyError,
    NoStrategySucceeded,
    CacheUnavailable,
    DirectoryError,
)
from rosterbot.datasource.models import Member, MemberSet
from rosterbot.services.cache import (
    CacheEntry,
    MemoryTTLStore,
    RedisTTLStore,
    RosterCache,
    RosterCacheConfig,
    TTLStore,
)
from rosterbot.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from rosterbot.services.strategies import (
    FetchConfig,
    FetchRequest,
    Strategy,
    StrategyFactory,
    StrategyKind,
)
from rosterbot.services.executor import (
    ResultSelector,
    StrategyExecutor,
    StrategyOutcome,
)
from rosterbot.services.metrics import FetchMetrics
from rosterbot.services.warmer import CacheWarmer, WarmerConfig
from rosterbot.services.roster import (
    RosterService,
    create_roster_service,
    create_store,
)

__all__ = [
    # Errors
    "ServiceError",
    "StrategyTimeout",
    "StrategyError",
    "NoStrategySucceeded",
    "CacheUnavailable",
    "DirectoryError",
    # Models
    "CacheEntry",
    "Member",
    "MemberSet",
    # Cache
    "MemoryTTLStore",
    "RedisTTLStore",
    "RosterCache",
    "RosterCacheConfig",
    "TTLStore",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Strategies
    "FetchConfig",
    "FetchRequest",
    "Strategy",
    "StrategyFactory",
    "StrategyKind",
    "ResultSelector",
    "StrategyExecutor",
    "StrategyOutcome",
    # Metrics
    "FetchMetrics",
    # Warmer
    "CacheWarmer",
    "WarmerConfig",
    # Service
    "RosterService",
    "create_roster_service",
    "create_store",
]
