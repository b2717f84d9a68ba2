#!/usr/bin/env python3
"""
ZFS vdev topology as device info metrics.

Reads the pool configuration from `zpool status -j` (OpenZFS 2.3 or later) and reports one
device_zfs_info series per leaf vdev.
"""

import json
import logging
from dataclasses import dataclass, field

from device_command import DEFAULT_TIMEOUT, run_command
from device_labels import NAMESPACE, LabelSet, metric_line, render

logger = logging.getLogger(__name__)

ZPOOL_STATUS_CMD = ('zpool', 'status', '-j', '--json-int')


@dataclass
class VdevNode:
    name: str
    type: str
    guid: int = 0
    devices: list['VdevNode'] = field(default_factory=list)
    cache: list['VdevNode'] = field(default_factory=list)
    spares: list['VdevNode'] = field(default_factory=list)
    log: 'VdevNode | None' = None

    def children(self):
        yield from self.devices
        yield from self.cache
        yield from self.spares
        if self.log is not None:
            yield self.log

    @property
    def is_leaf(self):
        # guid 0 marks placeholders such as an empty raidz slot
        return not self.devices and self.guid != 0


@dataclass
class VdevLeaf:
    type: str
    pool: str
    path: str
    device: str
    guid: int

    def labels(self) -> LabelSet:
        return LabelSet((
            ('type', self.type),
            ('pool', self.pool),
            ('path', self.path),
            ('device', self.device),
            ('guid', str(self.guid)),
        ))


def iter_leaves(pool: str, root: VdevNode):
    """Yield every leaf vdev below root exactly once.

    Depth-first pre-order; the children of a node are visited as primary devices, cache devices,
    spares and finally the log subtree. Leaves report their own name, not an ancestry path.
    """
    pending = [root]
    while pending:
        node = pending.pop()
        pending.extend(reversed(list(node.children())))

        if node.is_leaf:
            yield VdevLeaf(
                type=node.type,
                pool=pool,
                path=node.name,
                device=node.name.split('/')[-1],
                guid=node.guid,
            )


def _vdev_node(key, raw) -> VdevNode:
    # Disks and files carry their device path; interior vdevs only have a name.
    return VdevNode(
        name=raw.get('path') or raw.get('name') or key,
        type=raw.get('vdev_type', ''),
        guid=int(raw.get('guid') or 0),
        devices=[_vdev_node(k, v) for k, v in raw.get('vdevs', {}).items()],
    )


@dataclass
class Pool:
    name: str
    status: dict

    def vdev_tree(self) -> VdevNode:
        roots = list(self.status['vdevs'].items())
        if len(roots) != 1:
            raise ValueError(f'expected a single root vdev, found {len(roots)}')
        root = _vdev_node(*roots[0])

        # allocation classes are top-level vdevs of the root, listed beside it
        for vdev_class in ('special', 'dedup'):
            root.devices.extend(_vdev_node(k, v) for k, v in self.status.get(vdev_class, {}).items())

        root.cache = [_vdev_node(k, v) for k, v in self.status.get('l2cache', {}).items()]
        root.spares = [_vdev_node(k, v) for k, v in self.status.get('spares', {}).items()]
        logs = [_vdev_node(k, v) for k, v in self.status.get('logs', {}).items()]
        if logs:
            root.log = VdevNode(name='logs', type='logs', devices=logs)
        return root


def zpool_status_parse(content: str) -> list[Pool]:
    document = json.loads(content)
    return [Pool(name=name, status=status) for name, status in (document.get('pools') or {}).items()]


def zpool_status(timeout=DEFAULT_TIMEOUT) -> list[Pool]:
    return zpool_status_parse(run_command(ZPOOL_STATUS_CMD, timeout=timeout))


def zfs_lines(timeout=DEFAULT_TIMEOUT, pools=None):
    if pools is None:
        pools = zpool_status(timeout)

    for pool in pools:
        try:
            root = pool.vdev_tree()
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error("zfs pool %s vdev tree failed: %r", pool.name, e)
            continue

        for leaf in iter_leaves(pool.name, root):
            yield metric_line(NAMESPACE, 'zfs', 'info', leaf.labels())


if __name__ == '__main__':
    print(render(zfs_lines()), end='')
