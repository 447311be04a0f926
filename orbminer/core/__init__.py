from orbminer.core.exceptions import (
    BalanceInsufficient,
    ChainRejection,
    CircuitBreakerOpen,
    ConfigurationError,
    DecodeError,
    OperationCancelled,
    ProviderMisconfigured,
    RetriesExhausted,
    TransientNetworkError,
    TruncatedRecord,
    UpstreamBadResponse,
    UpstreamError,
    UpstreamRateLimited,
)
from orbminer.core.fixtures import load_fixture, load_json_fixture, load_versioned_yaml
from orbminer.core.request_spec import JsonRpcSpec, RequestSpec, canonicalize_query

__all__ = [
    "BalanceInsufficient",
    "ChainRejection",
    "CircuitBreakerOpen",
    "ConfigurationError",
    "DecodeError",
    "JsonRpcSpec",
    "OperationCancelled",
    "ProviderMisconfigured",
    "RequestSpec",
    "RetriesExhausted",
    "TransientNetworkError",
    "TruncatedRecord",
    "UpstreamBadResponse",
    "UpstreamError",
    "UpstreamRateLimited",
    "canonicalize_query",
    "load_fixture",
    "load_json_fixture",
    "load_versioned_yaml",
]
