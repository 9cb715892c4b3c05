"""
The declared and the observed states of the managed Kubernetes clusters.

The declared state (:class:`ClusterSpec`) comes from the user's configuration.
The observed state (:class:`ClusterState`) is flattened from the raw payloads
of the cloud API. Neither of them is ever persisted here: it is the caller's
business to store and compare them.

A cluster can have many node pools, but only one of them is managed here:
the one marked with :data:`DEFAULT_POOL_TAG`. All other pools (e.g. created
manually via the web console) are ignored and never touched.
"""
import dataclasses
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from typing_extensions import NotRequired, TypedDict

DEFAULT_POOL_TAG = 'tf-vke-default'


class RawNodePoolRequest(TypedDict):
    node_quantity: int
    label: str
    plan: str
    tag: str
    auto_scaler: NotRequired[bool]
    min_nodes: NotRequired[int]
    max_nodes: NotRequired[int]


class RawNodePoolUpdate(TypedDict):
    node_quantity: int
    auto_scaler: bool
    min_nodes: int
    max_nodes: int


@dataclasses.dataclass(frozen=True)
class NodePoolSpec:
    label: str
    plan: str
    node_quantity: int
    auto_scaler: bool = False
    min_nodes: int = 0
    max_nodes: int = 0
    id: str | None = None  # known only for the existing pools, never sent on creation.

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NodePoolSpec":
        missing = {'label', 'plan', 'node_quantity'} - set(data)
        if missing:
            raise ValueError(f"The node pool misses the required fields: {sorted(missing)!r}")
        return cls(
            label=str(data['label']),
            plan=str(data['plan']),
            node_quantity=int(data['node_quantity']),
            auto_scaler=bool(data.get('auto_scaler', False)),
            min_nodes=int(data.get('min_nodes', 0)),
            max_nodes=int(data.get('max_nodes', 0)),
            id=data.get('id'),
        )


@dataclasses.dataclass(frozen=True)
class ClusterSpec:
    label: str
    region: str
    version: str
    node_pools: Sequence[NodePoolSpec] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, 'node_pools', tuple(self.node_pools))
        if len(self.node_pools) > 1:
            raise ValueError(f"Only one node pool can be declared, got {len(self.node_pools)}.")

    @property
    def node_pool(self) -> NodePoolSpec | None:
        return self.node_pools[0] if self.node_pools else None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClusterSpec":
        missing = {'label', 'region', 'version'} - set(data)
        if missing:
            raise ValueError(f"The cluster misses the required fields: {sorted(missing)!r}")
        return cls(
            label=str(data['label']),
            region=str(data['region']),
            version=str(data['version']),
            node_pools=[NodePoolSpec.from_dict(pool) for pool in data.get('node_pools') or []],
        )


@dataclasses.dataclass(frozen=True)
class NodeState:
    id: str
    label: str
    status: str
    date_created: str


@dataclasses.dataclass(frozen=True)
class NodePoolState:
    id: str
    label: str
    plan: str
    status: str
    tag: str
    node_quantity: int
    auto_scaler: bool
    min_nodes: int
    max_nodes: int
    date_created: str
    date_updated: str
    nodes: Sequence[NodeState] = ()

    def as_spec(self) -> NodePoolSpec:
        return NodePoolSpec(
            id=self.id,
            label=self.label,
            plan=self.plan,
            node_quantity=self.node_quantity,
            auto_scaler=self.auto_scaler,
            min_nodes=self.min_nodes,
            max_nodes=self.max_nodes,
        )


@dataclasses.dataclass(frozen=True)
class ClusterState:
    id: str
    label: str
    region: str
    version: str
    status: str
    date_created: str
    cluster_subnet: str
    service_subnet: str
    ip: str
    endpoint: str
    node_pools: Sequence[NodePoolState] = ()
    kube_config: str | None = None  # base64-encoded, as returned by the API.

    def as_spec(self) -> ClusterSpec:
        return ClusterSpec(
            label=self.label,
            region=self.region,
            version=self.version,
            node_pools=[pool.as_spec() for pool in self.node_pools],
        )


def generate_node_pools(pools: Iterable[NodePoolSpec]) -> list[RawNodePoolRequest]:
    return [
        RawNodePoolRequest(
            node_quantity=pool.node_quantity,
            label=pool.label,
            plan=pool.plan,
            tag=DEFAULT_POOL_TAG,
            auto_scaler=pool.auto_scaler,
            min_nodes=pool.min_nodes,
            max_nodes=pool.max_nodes,
        )
        for pool in pools
    ]


def generate_node_pool_update(pool: NodePoolSpec) -> RawNodePoolUpdate:
    # The tag is never updated: it is needed to find the managed pool later.
    return RawNodePoolUpdate(
        node_quantity=pool.node_quantity,
        auto_scaler=pool.auto_scaler,
        min_nodes=pool.min_nodes,
        max_nodes=pool.max_nodes,
    )


def flatten_node_pool(raw: Mapping[str, Any]) -> NodePoolState:
    return NodePoolState(
        id=raw.get('id', ''),
        label=raw.get('label', ''),
        plan=raw.get('plan', ''),
        status=raw.get('status', ''),
        tag=raw.get('tag', ''),
        node_quantity=raw.get('node_quantity', 0),
        auto_scaler=raw.get('auto_scaler', False),
        min_nodes=raw.get('min_nodes', 0),
        max_nodes=raw.get('max_nodes', 0),
        date_created=raw.get('date_created', ''),
        date_updated=raw.get('date_updated', ''),
        nodes=tuple(
            NodeState(
                id=node.get('id', ''),
                label=node.get('label', ''),
                status=node.get('status', ''),
                date_created=node.get('date_created', ''),
            )
            for node in raw.get('nodes') or []
        ),
    )


def flatten_cluster(raw: Mapping[str, Any], *, kube_config: str | None = None) -> ClusterState:
    # Only the managed pool is reported; the first one if there are several (which is not normal).
    managed_pools = [pool for pool in raw.get('node_pools') or [] if pool.get('tag') == DEFAULT_POOL_TAG]
    return ClusterState(
        id=raw.get('id', ''),
        label=raw.get('label', ''),
        region=raw.get('region', ''),
        version=raw.get('version', ''),
        status=raw.get('status', ''),
        date_created=raw.get('date_created', ''),
        cluster_subnet=raw.get('cluster_subnet', ''),
        service_subnet=raw.get('service_subnet', ''),
        ip=raw.get('ip', ''),
        endpoint=raw.get('endpoint', ''),
        node_pools=tuple(flatten_node_pool(pool) for pool in managed_pools[:1]),
        kube_config=kube_config,
    )
