import asyncio

import pytest

from konverge._cogs.structs.clusters import DEFAULT_POOL_TAG, ClusterSpec, NodePoolSpec
from konverge._core.actions.clusters import ClusterError, create_cluster, delete_cluster, \
                                            read_cluster, update_cluster, wait_for_cluster
from konverge._core.engines.convergence import ConvergenceCancelledError, \
                                               UnexpectedStateError


def vke_cluster(status='active', **kwargs):
    return {'vke_cluster': dict({
        'id': 'cluster1',
        'label': 'my-cluster',
        'region': 'ewr',
        'version': 'v1.30.0+1',
        'status': status,
        'date_created': '2024-01-01T00:00:00+00:00',
        'cluster_subnet': '10.244.0.0/16',
        'service_subnet': '10.96.0.0/12',
        'ip': '192.0.2.10',
        'endpoint': 'cluster1.vultr-k8s.com',
        'node_pools': [{
            'id': 'pool1',
            'label': 'workers',
            'plan': 'vc2-2c-4gb',
            'status': status,
            'tag': DEFAULT_POOL_TAG,
            'node_quantity': 2,
            'nodes': [],
        }],
    }, **kwargs)}


KUBE_CONFIG = {'kube_config': 'a3ViZWNvbmZpZw=='}

POOL = NodePoolSpec(label='workers', plan='vc2-2c-4gb', node_quantity=2)
SPEC = ClusterSpec(label='my-cluster', region='ewr', version='v1.30.0+1', node_pools=[POOL])


async def test_creation_waits_until_active_and_reads_the_cluster(
        api_mock, context, settings, logger, assert_logs):
    created = api_mock('post', '/kubernetes/clusters', vke_cluster(status='pending'), status=201)
    pending = api_mock('get', '/kubernetes/clusters/cluster1', vke_cluster(status='pending'), repeat=2)
    active = api_mock('get', '/kubernetes/clusters/cluster1', vke_cluster(status='active'), repeat=2)
    config = api_mock('get', '/kubernetes/clusters/cluster1/config', KUBE_CONFIG)

    state = await create_cluster(SPEC, context=context, settings=settings, logger=logger)

    assert state.id == 'cluster1'
    assert state.status == 'active'
    assert state.kube_config == 'a3ViZWNvbmZpZw=='
    assert [pool.id for pool in state.node_pools] == ['pool1']

    assert len(created.requests) == 1
    assert created.requests[0].data == {
        'label': 'my-cluster',
        'region': 'ewr',
        'version': 'v1.30.0+1',
        'node_pools': [{
            'node_quantity': 2,
            'label': 'workers',
            'plan': 'vc2-2c-4gb',
            'tag': DEFAULT_POOL_TAG,
            'auto_scaler': False,
            'min_nodes': 0,
            'max_nodes': 0,
        }],
    }
    assert len(pending.requests) == 2
    assert len(active.requests) == 2  # one by the waiting, one by the reading
    assert len(config.requests) == 1
    assert_logs([
        r"The cluster cluster1 is created\.",
        r"Waiting for the cluster to have the status 'active'\.",
        r"The resource has reached the state 'active'\.",
    ])


async def test_creation_without_pools_sends_no_pools(api_mock, context, settings, logger):
    created = api_mock('post', '/kubernetes/clusters', vke_cluster(node_pools=[]), status=201)
    api_mock('get', '/kubernetes/clusters/cluster1', vke_cluster(node_pools=[]), repeat=2)
    api_mock('get', '/kubernetes/clusters/cluster1/config', KUBE_CONFIG)

    spec = ClusterSpec(label='my-cluster', region='ewr', version='v1.30.0+1')
    state = await create_cluster(spec, context=context, settings=settings, logger=logger)

    assert state.node_pools == ()
    assert 'node_pools' not in created.requests[0].data


async def test_creation_api_errors_are_explained(api_mock, context, settings, logger):
    api_mock('post', '/kubernetes/clusters', {'error': 'Invalid region', 'status': 400}, status=400)
    with pytest.raises(ClusterError, match=r"Error creating the cluster: 400: Invalid region"):
        await create_cluster(SPEC, context=context, settings=settings, logger=logger)


async def test_creation_fails_on_unexpected_states(api_mock, context, settings, logger):
    api_mock('post', '/kubernetes/clusters', vke_cluster(status='pending'), status=201)
    api_mock('get', '/kubernetes/clusters/cluster1', vke_cluster(status='error'))

    with pytest.raises(ClusterError) as err:
        await create_cluster(SPEC, context=context, settings=settings, logger=logger)

    assert str(err.value).startswith("Error while waiting for the cluster cluster1 to be 'active': ")
    assert isinstance(err.value.__cause__, UnexpectedStateError)
    assert err.value.__cause__.state == 'error'


async def test_waiting_tolerates_the_not_found_budget(api_mock, context, settings, logger):
    missing = api_mock('get', '/kubernetes/clusters/cluster1', {'error': 'Not found'}, status=404, repeat=2)
    active = api_mock('get', '/kubernetes/clusters/cluster1', vke_cluster(status='active'))

    settings.polling.not_found_budget = 2
    observation = await wait_for_cluster('cluster1', context=context, settings=settings, logger=logger)

    assert observation.state == 'active'
    assert observation.raw['id'] == 'cluster1'
    assert len(missing.requests) == 2
    assert len(active.requests) == 1


async def test_waiting_is_cancelled_by_a_stopper(context, settings, logger):
    stopper = asyncio.Event()
    stopper.set()
    with pytest.raises(ClusterError) as err:
        await wait_for_cluster('cluster1', context=context, settings=settings,
                               stopper=stopper, logger=logger)
    assert isinstance(err.value.__cause__, ConvergenceCancelledError)


async def test_reading_an_existing_cluster(api_mock, context, settings, logger):
    api_mock('get', '/kubernetes/clusters/cluster1', vke_cluster())
    api_mock('get', '/kubernetes/clusters/cluster1/config', KUBE_CONFIG)

    state = await read_cluster('cluster1', context=context, settings=settings, logger=logger)

    assert state is not None
    assert state.label == 'my-cluster'
    assert state.endpoint == 'cluster1.vultr-k8s.com'
    assert state.kube_config == 'a3ViZWNvbmZpZw=='


async def test_reading_a_cluster_without_a_kube_config(api_mock, context, settings, logger):
    api_mock('get', '/kubernetes/clusters/cluster1', vke_cluster(status='pending'))
    api_mock('get', '/kubernetes/clusters/cluster1/config', status=204)

    state = await read_cluster('cluster1', context=context, settings=settings, logger=logger)

    assert state is not None
    assert state.status == 'pending'
    assert state.kube_config is None


async def test_reading_an_absent_cluster_is_none(api_mock, context, settings, logger, assert_logs):
    api_mock('get', '/kubernetes/clusters/cluster1', {'error': 'Not found', 'status': 404}, status=404)

    state = await read_cluster('cluster1', context=context, settings=settings, logger=logger)

    assert state is None
    assert_logs([r"The cluster cluster1 is not found\."])


async def test_reading_with_bad_credentials(api_mock, context, settings, logger):
    api_mock('get', '/kubernetes/clusters/cluster1', {'error': 'Unauthorized'}, status=401)
    with pytest.raises(ClusterError, match=r"API authorization error: 401: Unauthorized"):
        await read_cluster('cluster1', context=context, settings=settings, logger=logger)


async def test_reading_fails_on_other_errors(api_mock, context, settings, logger):
    api_mock('get', '/kubernetes/clusters/cluster1', {'error': 'Forbidden'}, status=403)
    with pytest.raises(ClusterError, match=r"Error getting the cluster cluster1: 403: Forbidden"):
        await read_cluster('cluster1', context=context, settings=settings, logger=logger)


async def test_updating_the_label(api_mock, context, settings, logger):
    renamed = api_mock('put', '/kubernetes/clusters/cluster1', status=204)
    api_mock('get', '/kubernetes/clusters/cluster1', vke_cluster(label='new-name'))
    api_mock('get', '/kubernetes/clusters/cluster1/config', KUBE_CONFIG)

    old = ClusterSpec(label='my-cluster', region='ewr', version='v1', node_pools=[POOL])
    new = ClusterSpec(label='new-name', region='ewr', version='v1', node_pools=[POOL])
    state = await update_cluster('cluster1', old, new,
                                 context=context, settings=settings, logger=logger)

    assert state is not None
    assert state.label == 'new-name'
    assert [r.data for r in renamed.requests] == [{'label': 'new-name'}]


async def test_updating_the_pool_without_the_tag(api_mock, context, settings, logger):
    patched = api_mock('patch', '/kubernetes/clusters/cluster1/node-pools/pool1', {'node_pool': {}})
    api_mock('get', '/kubernetes/clusters/cluster1', vke_cluster())
    api_mock('get', '/kubernetes/clusters/cluster1/config', KUBE_CONFIG)

    old = ClusterSpec(label='my-cluster', region='ewr', version='v1',
                      node_pools=[NodePoolSpec(id='pool1', label='workers', plan='vc2-2c-4gb', node_quantity=2)])
    new = ClusterSpec(label='my-cluster', region='ewr', version='v1',
                      node_pools=[NodePoolSpec(label='workers', plan='vc2-2c-4gb', node_quantity=5,
                                               auto_scaler=True, min_nodes=3, max_nodes=7)])
    await update_cluster('cluster1', old, new, context=context, settings=settings, logger=logger)

    assert [r.data for r in patched.requests] == [{
        'node_quantity': 5,
        'auto_scaler': True,
        'min_nodes': 3,
        'max_nodes': 7,
    }]


async def test_unchanged_pools_are_not_patched(api_mock, context, settings, logger, aresponses):
    api_mock('get', '/kubernetes/clusters/cluster1', vke_cluster())
    api_mock('get', '/kubernetes/clusters/cluster1/config', KUBE_CONFIG)

    old = ClusterSpec(label='my-cluster', region='ewr', version='v1',
                      node_pools=[NodePoolSpec(id='pool1', label='workers', plan='vc2-2c-4gb', node_quantity=2)])
    new = ClusterSpec(label='my-cluster', region='ewr', version='v1', node_pools=[POOL])
    await update_cluster('cluster1', old, new, context=context, settings=settings, logger=logger)

    aresponses.assert_plan_strictly_followed()


async def test_removing_the_pool(api_mock, context, settings, logger):
    deleted = api_mock('delete', '/kubernetes/clusters/cluster1/node-pools/pool1', status=204)
    api_mock('get', '/kubernetes/clusters/cluster1', vke_cluster(node_pools=[]))
    api_mock('get', '/kubernetes/clusters/cluster1/config', KUBE_CONFIG)

    old = ClusterSpec(label='my-cluster', region='ewr', version='v1',
                      node_pools=[NodePoolSpec(id='pool1', label='workers', plan='vc2-2c-4gb', node_quantity=2)])
    new = ClusterSpec(label='my-cluster', region='ewr', version='v1')
    state = await update_cluster('cluster1', old, new,
                                 context=context, settings=settings, logger=logger)

    assert state is not None
    assert state.node_pools == ()
    assert len(deleted.requests) == 1


async def test_adding_the_pool_with_the_tag(api_mock, context, settings, logger):
    created = api_mock('post', '/kubernetes/clusters/cluster1/node-pools', {'node_pool': {}}, status=201)
    api_mock('get', '/kubernetes/clusters/cluster1', vke_cluster())
    api_mock('get', '/kubernetes/clusters/cluster1/config', KUBE_CONFIG)

    old = ClusterSpec(label='my-cluster', region='ewr', version='v1')
    new = ClusterSpec(label='my-cluster', region='ewr', version='v1', node_pools=[POOL])
    await update_cluster('cluster1', old, new, context=context, settings=settings, logger=logger)

    assert [r.data for r in created.requests] == [{
        'node_quantity': 2,
        'label': 'workers',
        'plan': 'vc2-2c-4gb',
        'tag': DEFAULT_POOL_TAG,
        'auto_scaler': False,
        'min_nodes': 0,
        'max_nodes': 0,
    }]


async def test_pools_without_ids_cannot_be_changed(context, settings, logger):
    old = ClusterSpec(label='my-cluster', region='ewr', version='v1', node_pools=[POOL])
    new = ClusterSpec(label='my-cluster', region='ewr', version='v1')
    with pytest.raises(ClusterError, match=r"has no id"):
        await update_cluster('cluster1', old, new, context=context, settings=settings, logger=logger)


@pytest.mark.parametrize('region, version', [
    pytest.param('ams', 'v1', id='region'),
    pytest.param('ewr', 'v2', id='version'),
])
async def test_region_and_version_cannot_be_changed(context, settings, logger, region, version):
    old = ClusterSpec(label='my-cluster', region='ewr', version='v1')
    new = ClusterSpec(label='my-cluster', region=region, version=version)
    with pytest.raises(ClusterError, match=r"cannot be changed"):
        await update_cluster('cluster1', old, new, context=context, settings=settings, logger=logger)


async def test_deleting(api_mock, context, settings, logger):
    deleted = api_mock('delete', '/kubernetes/clusters/cluster1', status=204)
    await delete_cluster('cluster1', context=context, settings=settings, logger=logger)
    assert len(deleted.requests) == 1


async def test_deleting_errors_are_explained(api_mock, context, settings, logger):
    api_mock('delete', '/kubernetes/clusters/cluster1', {'error': 'Boom'}, status=500)
    with pytest.raises(ClusterError, match=r"Error deleting the cluster cluster1: 500: Boom"):
        await delete_cluster('cluster1', context=context, settings=settings, logger=logger)
