"""Bootstrap utilities: load hosts and operations and build the engine."""
from __future__ import annotations
import logging
from pathlib import Path

from config import get_http_timeout, get_log_level, get_players_dir, get_registry_url
from opsengine.engine import OperationEngine
from opsengine.loader import fetch_operation_records, load_host_records, load_operation_records
from opsengine.overlay import HostDirectory
from opsengine.persistence import JsonPlayerStore, PlayerStore
from opsengine.registry import OperationRegistry

logger = logging.getLogger(__name__)

ASSETS_DIR = Path(__file__).resolve().parent.parent / "assets"
OPERATIONS_FILE = ASSETS_DIR / "operations.json"
HOSTS_FILE = ASSETS_DIR / "hosts.json"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, level or get_log_level(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_hosts(path: Path = HOSTS_FILE) -> HostDirectory:
    return HostDirectory.from_records(load_host_records(str(path)))


def load_registry(hosts: HostDirectory, path: Path = OPERATIONS_FILE,
                  url: str | None = None) -> OperationRegistry:
    """Build the operation registry from the HTTP endpoint (if configured) or the bundled file.

    Rejected records are logged and skipped; the rest of the batch is published.
    """
    url = url if url is not None else get_registry_url()
    if url:
        records = fetch_operation_records(url, timeout=get_http_timeout())
    else:
        records = load_operation_records(str(path))
    registry = OperationRegistry(hosts=hosts)
    report = registry.ingest(records)
    if not report.ok:
        logger.warning("%d operation records rejected: %s", len(report.rejected), ", ".join(report.rejected))
    logger.info("Loaded %d operations", len(registry))
    return registry


def build_engine(store: PlayerStore | None = None, operations_path: Path = OPERATIONS_FILE,
                 hosts_path: Path = HOSTS_FILE, url: str | None = None) -> OperationEngine:
    hosts = load_hosts(hosts_path)
    registry = load_registry(hosts, operations_path, url)
    if store is None:
        store = JsonPlayerStore(get_players_dir())
    return OperationEngine(registry, hosts=hosts, store=store)
