from importlib import import_module

__all__ = [
    "leaderboard_service",
    "LeaderboardService",
    "identity_cache",
    "IdentityCacheService",
    "ChainLedgerReader",
    "IdentityEnricher",
    "CacheStore",
]

_LAZY_EXPORTS = {
    "leaderboard_service": ("services.leaderboard", "leaderboard_service"),
    "LeaderboardService": ("services.leaderboard", "LeaderboardService"),
    "identity_cache": ("services.identity_cache", "identity_cache"),
    "IdentityCacheService": ("services.identity_cache", "IdentityCacheService"),
    "ChainLedgerReader": ("services.ledger_reader", "ChainLedgerReader"),
    "IdentityEnricher": ("services.identity", "IdentityEnricher"),
    "CacheStore": ("services.cache_store", "CacheStore"),
}


def __getattr__(name):
    if name not in _LAZY_EXPORTS:
        raise AttributeError(f"module 'services' has no attribute {name!r}")

    module_name, attr_name = _LAZY_EXPORTS[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
