"""
The main konverge module for all the exported functions & classes.
"""
from konverge._cogs.clients.auth import (
    APIContext,
    ConnectionInfo,
    LoginError,
)
from konverge._cogs.clients.errors import (
    APIClientError,
    APIConflictError,
    APIError,
    APIForbiddenError,
    APINotFoundError,
    APIServerError,
    APITooManyRequestsError,
    APIUnauthorizedError,
)
from konverge._cogs.configs.configuration import (
    NetworkingSettings,
    PollingSettings,
    ProviderSettings,
)
from konverge._cogs.structs.clusters import (
    DEFAULT_POOL_TAG,
    ClusterSpec,
    ClusterState,
    NodePoolSpec,
    NodePoolState,
    NodeState,
    flatten_cluster,
    flatten_node_pool,
    generate_node_pools,
)
from konverge._core.actions.clusters import (
    ClusterError,
    create_cluster,
    delete_cluster,
    fetch_cluster_status,
    read_cluster,
    update_cluster,
    wait_for_cluster,
)
from konverge._core.actions.loggers import (
    ClusterLogger,
    LogFormat,
    configure,
)
from konverge._core.engines.convergence import (
    ConvergenceCancelledError,
    ConvergenceError,
    ConvergenceResult,
    ConvergenceTimeoutError,
    Observation,
    Outcome,
    PollSpec,
    ResourceNotFoundError,
    TransportError,
    UnexpectedStateError,
    backoff,
    poll,
    wait_for,
)

__all__ = [
    'APIContext', 'ConnectionInfo', 'LoginError',
    'APIError', 'APIClientError', 'APIServerError',
    'APIUnauthorizedError', 'APIForbiddenError', 'APINotFoundError',
    'APIConflictError', 'APITooManyRequestsError',
    'ProviderSettings', 'NetworkingSettings', 'PollingSettings',
    'DEFAULT_POOL_TAG',
    'ClusterSpec', 'NodePoolSpec',
    'ClusterState', 'NodePoolState', 'NodeState',
    'generate_node_pools', 'flatten_node_pool', 'flatten_cluster',
    'ClusterError',
    'create_cluster', 'read_cluster', 'update_cluster', 'delete_cluster',
    'wait_for_cluster', 'fetch_cluster_status',
    'ClusterLogger', 'LogFormat', 'configure',
    'PollSpec', 'Observation', 'Outcome', 'ConvergenceResult',
    'ConvergenceError', 'ResourceNotFoundError', 'UnexpectedStateError',
    'ConvergenceTimeoutError', 'ConvergenceCancelledError', 'TransportError',
    'poll', 'wait_for', 'backoff',
]
