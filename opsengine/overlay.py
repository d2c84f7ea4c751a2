"""Host directory and filesystem overlay compositor.

A player's view of a host filesystem is resolved on demand as a stack of
layers: the host's base filesystem, then the overlay of every active
operation that targets the host in activation order (later activation wins on
the same path), then the player's own deletions. Nothing is cached, so
activating or completing an operation changes the very next read.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .loader import parse_filesystem
from .model import FilesystemNode, normalize_path, parent_path
from .state import PlayerProgressState


@dataclass
class Host:
    id: str
    ip: str
    label: str = ""
    filesystem: Dict[str, FilesystemNode] = field(default_factory=dict)


class HostDirectory:
    """In-memory index of the base hosts, by id and by IP."""

    def __init__(self, hosts: Iterable[Host] = ()):
        self._by_id: Dict[str, Host] = {}
        self._by_ip: Dict[str, Host] = {}
        for host in hosts:
            self.add(host)

    def add(self, host: Host) -> None:
        self._by_id[host.id] = host
        self._by_ip[host.ip] = host

    def get(self, host_id: Optional[str]) -> Optional[Host]:
        if host_id is None:
            return None
        return self._by_id.get(host_id)

    def by_ip(self, ip: Optional[str]) -> Optional[Host]:
        if ip is None:
            return None
        return self._by_ip.get(ip)

    def __contains__(self, host_id: str) -> bool:
        return host_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)

    @classmethod
    def from_records(cls, records: List[dict]) -> "HostDirectory":
        return cls(
            Host(
                id=r["id"],
                ip=r["ip"],
                label=r.get("label", ""),
                filesystem=parse_filesystem(r.get("filesystem") or {}),
            )
            for r in records
        )


def overlay_layers(host_id: str, state: PlayerProgressState, registry) -> List[Dict[str, FilesystemNode]]:
    """Overlay deltas for ``host_id`` from active operations, oldest activation first."""
    layers = []
    for operation_id, _entry in state.active_in_order():
        operation = registry.get(operation_id)
        if operation is None:
            continue
        delta = operation.filesystem_overlays.get(host_id)
        if delta:
            layers.append(delta)
    return layers


def compose_filesystem(host_id: str, state: PlayerProgressState, registry,
                       hosts: HostDirectory) -> Dict[str, FilesystemNode]:
    """Compose the full ``path -> node`` view of a host for a player.

    Args:
        host_id: Host to compose
        state: Player progress state (active operations, deletions)
        registry: Operation registry used to look up overlays
        hosts: Base host directory

    Returns:
        New mapping; the base filesystem and the overlays are never mutated
    """
    host = hosts.get(host_id)
    composed: Dict[str, FilesystemNode] = dict(host.filesystem) if host else {}
    for layer in overlay_layers(host_id, state, registry):
        composed.update(layer)

    for path in state.deleted_paths.get(host_id, ()):
        node = composed.get(path)
        if node is not None and node.is_file:
            del composed[path]

    return {path: _with_children(node, composed) for path, node in composed.items()}


def _with_children(node: FilesystemNode, composed: Dict[str, FilesystemNode]) -> FilesystemNode:
    if node.is_file:
        return node
    # Declared children that still exist, plus anything a layer put under this dir
    names = [
        name for name in (node.children or [])
        if normalize_path(f"{node.path}/{name}") in composed
    ]
    for path in composed:
        if path != "/" and path != node.path and parent_path(path) == node.path:
            name = path.rsplit("/", 1)[-1]
            if name not in names:
                names.append(name)
    return FilesystemNode(type="dir", path=node.path, children=names, content=None)


def resolve(host_id: str, path: str, state: PlayerProgressState, registry,
            hosts: HostDirectory) -> Optional[FilesystemNode]:
    """Resolve a single path on a host; None means not found."""
    return compose_filesystem(host_id, state, registry, hosts).get(normalize_path(path))


def file_exists(host_id: Optional[str], path: str, state: PlayerProgressState, registry,
                hosts: HostDirectory) -> bool:
    if host_id is None:
        return False
    node = resolve(host_id, path, state, registry, hosts)
    return node is not None and node.is_file
