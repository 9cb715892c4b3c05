"""
The lifecycle of the managed Kubernetes clusters: create, read, update, delete.

Every operation takes the declared state (:class:`clusters.ClusterSpec`) and/or
the id of an existing cluster, performs the API calls, and returns the observed
state (:class:`clusters.ClusterState`) as it is after the operation.

The creation blocks until the cluster is provisioned and becomes ``"active"``:
the cluster is not usable before that (e.g. it has no kube-config yet).
"""
import asyncio
import dataclasses

from konverge._cogs.clients import api, auth, errors
from konverge._cogs.configs import configuration
from konverge._cogs.helpers import typedefs
from konverge._cogs.structs import clusters
from konverge._core.actions import loggers
from konverge._core.engines import convergence

# The statuses of a cluster while it is being provisioned, and when it is ready.
ACTIVE_STATE = 'active'
PENDING_STATES = frozenset({'pending'})


class ClusterError(Exception):
    """ A failed lifecycle operation on a cluster, explained for humans. """


def fetch_cluster_status(
        cluster_id: str,
        *,
        context: auth.APIContext,
        settings: configuration.ProviderSettings,
        logger: typedefs.Logger,
) -> convergence.Fetcher:
    """
    Make a status-checking callback for the convergence engine.

    The API's not-found errors are not caught here: they are counted
    by the engine against its not-found budget.
    """
    async def fetch() -> convergence.Observation:
        raw = await api.get(f'/kubernetes/clusters/{cluster_id}',
                            context=context, settings=settings, logger=logger)
        cluster = raw['vke_cluster']
        logger.debug(f"The cluster status is {cluster.get('status')!r}.")
        return convergence.Observation(state=cluster.get('status', ''), raw=cluster)
    return fetch


async def wait_for_cluster(
        cluster_id: str,
        *,
        target: str = ACTIVE_STATE,
        transient_states: frozenset[str] = PENDING_STATES,
        context: auth.APIContext,
        settings: configuration.ProviderSettings,
        stopper: asyncio.Event | None = None,
        logger: typedefs.Logger,
) -> convergence.Observation:
    logger.info(f"Waiting for the cluster to have the status {target!r}.")
    spec = convergence.PollSpec.from_settings(
        settings.polling,
        target=target,
        transient_states=transient_states,
    )
    fetch = fetch_cluster_status(cluster_id, context=context, settings=settings, logger=logger)
    try:
        return await convergence.wait_for(spec, fetch, stopper=stopper, logger=logger)
    except convergence.ConvergenceError as e:
        raise ClusterError(
            f"Error while waiting for the cluster {cluster_id} to be {target!r}: {e}") from e


async def create_cluster(
        spec: clusters.ClusterSpec,
        *,
        context: auth.APIContext,
        settings: configuration.ProviderSettings,
        stopper: asyncio.Event | None = None,
        logger: typedefs.Logger,
) -> clusters.ClusterState:
    payload: dict[str, object] = {
        'label': spec.label,
        'region': spec.region,
        'version': spec.version,
    }
    if spec.node_pools:
        payload['node_pools'] = clusters.generate_node_pools(spec.node_pools)
    try:
        raw = await api.post('/kubernetes/clusters', payload=payload,
                             context=context, settings=settings, logger=logger)
    except errors.APIError as e:
        raise ClusterError(f"Error creating the cluster: {e}") from e

    cluster_id: str = raw['vke_cluster']['id']
    if isinstance(logger, loggers.ClusterLogger):
        logger = logger.with_id(cluster_id)
    logger.info(f"The cluster {cluster_id} is created.")

    await wait_for_cluster(cluster_id, context=context, settings=settings,
                           stopper=stopper, logger=logger)

    state = await read_cluster(cluster_id, context=context, settings=settings, logger=logger)
    if state is None:
        raise ClusterError(f"The cluster {cluster_id} has disappeared right after its creation.")
    return state


async def read_cluster(
        cluster_id: str,
        *,
        context: auth.APIContext,
        settings: configuration.ProviderSettings,
        logger: typedefs.Logger,
) -> clusters.ClusterState | None:
    """
    Read the observed state of a cluster, or ``None`` if the cluster is gone.
    """
    try:
        raw = await api.get(f'/kubernetes/clusters/{cluster_id}',
                            context=context, settings=settings, logger=logger)
    except errors.APIUnauthorizedError as e:
        raise ClusterError(f"API authorization error: {e}") from e
    except errors.APINotFoundError:
        logger.warning(f"The cluster {cluster_id} is not found.")
        return None
    except errors.APIError as e:
        raise ClusterError(f"Error getting the cluster {cluster_id}: {e}") from e

    try:
        config = await api.get(f'/kubernetes/clusters/{cluster_id}/config',
                               context=context, settings=settings, logger=logger)
    except errors.APIError as e:
        raise ClusterError(f"Could not get the kube-config of the cluster {cluster_id}: {e}") from e

    # The kube-config can be absent (an empty body) while the cluster is not ready yet.
    kube_config = config.get('kube_config') if config else None
    return clusters.flatten_cluster(raw['vke_cluster'], kube_config=kube_config)


async def update_cluster(
        cluster_id: str,
        old: clusters.ClusterSpec,
        new: clusters.ClusterSpec,
        *,
        context: auth.APIContext,
        settings: configuration.ProviderSettings,
        logger: typedefs.Logger,
) -> clusters.ClusterState | None:
    """
    Bring the cluster from the old declared state to the new declared state.

    Only the label and the managed node pool can be changed in place.
    The region and the version cannot: such clusters must be re-created.
    """
    if (old.region, old.version) != (new.region, new.version):
        raise ClusterError(f"The region & version of the cluster {cluster_id} cannot be changed: "
                           f"{old.region}/{old.version} -> {new.region}/{new.version}.")

    if old.label != new.label:
        logger.info(f"Renaming the cluster: {old.label!r} -> {new.label!r}")
        try:
            await api.put(f'/kubernetes/clusters/{cluster_id}', payload={'label': new.label},
                          context=context, settings=settings, logger=logger)
        except errors.APIError as e:
            raise ClusterError(f"Error updating the cluster {cluster_id}: {e}") from e

    old_pool, new_pool = old.node_pool, new.node_pool
    if old_pool is not None and new_pool is not None and _pool_changed(old_pool, new_pool):
        pool_id = _get_pool_id(cluster_id, old_pool)
        logger.info(f"Updating the node pool {pool_id}.")
        try:
            await api.patch(f'/kubernetes/clusters/{cluster_id}/node-pools/{pool_id}',
                            payload=clusters.generate_node_pool_update(new_pool),
                            context=context, settings=settings, logger=logger)
        except errors.APIError as e:
            raise ClusterError(f"Error updating the node pool of the cluster {cluster_id}: {e}") from e

    # The old pool is present, but the new one is not: the pool is removed.
    elif old_pool is not None and new_pool is None:
        pool_id = _get_pool_id(cluster_id, old_pool)
        logger.info(f"Deleting the node pool {pool_id}.")
        try:
            await api.delete(f'/kubernetes/clusters/{cluster_id}/node-pools/{pool_id}',
                             context=context, settings=settings, logger=logger)
        except errors.APIError as e:
            raise ClusterError(f"Error deleting the node pool of the cluster {cluster_id}: {e}") from e

    # The old pool is absent, but the new one is present: the pool is added.
    elif old_pool is None and new_pool is not None:
        logger.info(f"Creating the node pool {new_pool.label!r}.")
        payload, = clusters.generate_node_pools([new_pool])
        try:
            await api.post(f'/kubernetes/clusters/{cluster_id}/node-pools', payload=payload,
                           context=context, settings=settings, logger=logger)
        except errors.APIError as e:
            raise ClusterError(f"Error creating the node pool of the cluster {cluster_id}: {e}") from e

    return await read_cluster(cluster_id, context=context, settings=settings, logger=logger)


async def delete_cluster(
        cluster_id: str,
        *,
        context: auth.APIContext,
        settings: configuration.ProviderSettings,
        logger: typedefs.Logger,
) -> None:
    logger.info(f"Deleting the cluster {cluster_id}.")
    try:
        await api.delete(f'/kubernetes/clusters/{cluster_id}',
                         context=context, settings=settings, logger=logger)
    except errors.APIError as e:
        raise ClusterError(f"Error deleting the cluster {cluster_id}: {e}") from e


def _pool_changed(old: clusters.NodePoolSpec, new: clusters.NodePoolSpec) -> bool:
    # The new declaration usually does not know the pool's id, so it is not compared.
    return dataclasses.replace(new, id=old.id) != old


def _get_pool_id(cluster_id: str, pool: clusters.NodePoolSpec) -> str:
    if pool.id is None:
        raise ClusterError(f"The node pool of the cluster {cluster_id} has no id; "
                           f"re-read the cluster to get the actual node pool.")
    return pool.id
