import functools
import logging

import click.testing
import pytest

from konverge._cogs.clients.auth import ConnectionInfo
from konverge._cogs.structs.clusters import ClusterState, NodePoolState
from konverge.cli import CLIControls, main

CLUSTER_YAML = """
label: my-cluster
region: ewr
version: v1.30.0+1
node_pools:
  - label: workers
    plan: vc2-2c-4gb
    node_quantity: 2
"""


@pytest.fixture(autouse=True)
def _restore_root_logging():
    # Every CLI invocation configures the root logger; it must not leak to other tests.
    logger = logging.getLogger()
    handlers, level = logger.handlers[:], logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


@pytest.fixture()
def cluster_file(tmp_path):
    path = tmp_path / 'cluster.yaml'
    path.write_text(CLUSTER_YAML)
    return str(path)


@pytest.fixture()
def controls(settings):
    info = ConnectionInfo(server='http://fake-host/v2', api_key='fake-key')
    return CLIControls(info=info, settings=settings)


@pytest.fixture()
def runner():
    runner = click.testing.CliRunner()
    return runner


@pytest.fixture()
def invoke(runner, controls):
    return functools.partial(runner.invoke, main, obj=controls)


@pytest.fixture()
def cluster_state():
    return ClusterState(
        id='cluster1',
        label='my-cluster',
        region='ewr',
        version='v1.30.0+1',
        status='active',
        date_created='2024-01-01T00:00:00+00:00',
        cluster_subnet='10.244.0.0/16',
        service_subnet='10.96.0.0/12',
        ip='192.0.2.10',
        endpoint='cluster1.vultr-k8s.com',
        node_pools=(NodePoolState(
            id='pool1',
            label='workers',
            plan='vc2-2c-4gb',
            status='active',
            tag='tf-vke-default',
            node_quantity=2,
            auto_scaler=False,
            min_nodes=0,
            max_nodes=0,
            date_created='2024-01-01T00:00:00+00:00',
            date_updated='2024-01-01T00:00:00+00:00',
        ),),
        kube_config='a3ViZWNvbmZpZw==',
    )
