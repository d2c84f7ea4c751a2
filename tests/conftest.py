"""Shared fixtures: a two-host world and the SR-201 / SR-202 operation pair."""

import copy
import itertools
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from opsengine.engine import OperationEngine
from opsengine.loader import parse_operation
from opsengine.overlay import HostDirectory
from opsengine.registry import OperationRegistry
from opsengine.state import PlayerProgressState

HOST_RECORDS = [
    {
        "id": "relay-01",
        "ip": "10.0.0.5",
        "label": "Relay",
        "filesystem": {
            "/": {"type": "dir", "children": ["etc", "var"]},
            "/etc": {"type": "dir", "children": ["motd"]},
            "/etc/motd": {"type": "file", "content": "relay node"},
            "/var": {"type": "dir", "children": ["log"]},
            "/var/log": {"type": "dir", "children": ["auth.log"]},
            "/var/log/auth.log": {"type": "file", "content": "sshd: accepted key"},
        },
    },
    {
        "id": "archive-02",
        "ip": "10.0.0.12",
        "filesystem": {
            "/": {"type": "dir", "children": ["srv"]},
            "/srv": {"type": "dir", "children": []},
        },
    },
]

SR201 = {
    "id": "SR-201",
    "title": "Signal Recon",
    "trigger": {"type": "ON_FIRST_SESSION_OPEN"},
    "default_host_id": "relay-01",
    "steps": [{"id": "scan", "type": "SCAN_HOST", "params": {"target_ip": "10.0.0.5"}}],
    "rewards": {"credits": 200, "completion_flag": "quest_SR201_completed"},
    "filesystem_overlays": {
        "relay-01": {
            "/home": {"type": "dir", "children": ["operator"]},
            "/home/operator": {"type": "dir", "children": ["notes.txt"]},
            "/home/operator/notes.txt": {"type": "file", "content": "keys rotate at 04:00"},
        }
    },
    "narrative": {
        "handler": "Vega",
        "activation": {"subject": "{title}", "body": "Start with 10.0.0.5."},
    },
}

SR202 = {
    "id": "SR-202",
    "title": "Scrub the Relay",
    "trigger": {"type": "ON_OPERATIONS_COMPLETED", "operation_ids": ["SR-201"]},
    "default_host_id": "relay-01",
    "steps": [
        {"id": "connect", "type": "CONNECT_HOST", "params": {"target_ip": "10.0.0.5"}},
        {"id": "wipe", "type": "DELETE_FILE", "params": {"file_path": "/var/log/auth.log"}},
        {"id": "leave", "type": "DISCONNECT_HOST"},
    ],
    "rewards": {"credits": 350, "flags": ["relay_clean"], "unlocks_commands": ["trace"]},
}


def operation_record(operation_id, steps=None, trigger=None, **fields):
    """Build a minimal operation record; defaults to a session-open ACK operation."""
    record = {
        "id": operation_id,
        "title": f"Operation {operation_id}",
        "trigger": trigger or {"type": "ON_FIRST_SESSION_OPEN"},
        "steps": steps or [{"id": "ack", "type": "ACKNOWLEDGE_COMMAND"}],
    }
    record.update(fields)
    return record


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("OPS_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_operation():
    def _make(operation_id, steps=None, trigger=None, **fields):
        return parse_operation(operation_record(operation_id, steps, trigger, **fields))
    return _make


@pytest.fixture
def hosts():
    return HostDirectory.from_records(copy.deepcopy(HOST_RECORDS))


@pytest.fixture
def registry(hosts):
    reg = OperationRegistry(hosts=hosts, strict=False)
    report = reg.ingest([copy.deepcopy(SR201), copy.deepcopy(SR202)])
    assert report.ok
    return reg


@pytest.fixture
def state():
    return PlayerProgressState(player_id="p1")


@pytest.fixture
def clock():
    ticks = itertools.count(1000)
    return lambda: float(next(ticks))


@pytest.fixture
def engine(registry, hosts, clock):
    return OperationEngine(registry, hosts=hosts, clock=clock)
