"""Create test devices directly in the platform database and dump their tokens."""
from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import psycopg2

from ingestbench.config import BenchConfig
from ingestbench.store import StoreError, connection_kwargs

LOGGER = logging.getLogger(__name__)

INSERT_DEVICE_SQL = """
INSERT INTO devices (
    id, "name", voucher, tenant_id, is_enabled, activate_flag,
    created_at, update_at, device_number, "label",
    additional_info, protocol_config, is_online, access_way
) VALUES (
    %s, %s, %s, %s, '', 'active',
    %s, %s, %s, '',
    '{}'::json, '{}'::json, 0, 'A'
)
"""


@dataclass(frozen=True)
class Device:
    id: str
    name: str
    token: str
    voucher: str
    created_at: datetime


def generate_device(prefix: str, number: str, index: int) -> Device:
    token = str(uuid.uuid4())
    return Device(
        id=str(uuid.uuid4()),
        name=f"{prefix}_{number}_{index}",
        token=token,
        voucher=json.dumps({"username": token}),
        created_at=datetime.now(timezone.utc),
    )


def build_devices(count: int, prefix: str, number: str) -> List[Device]:
    if count <= 0:
        raise ValueError("Device count must be greater than zero")
    return [generate_device(prefix, number, index) for index in range(count)]


def insert_devices(conn, devices: Sequence[Device], tenant_id: str, batch_size: int) -> None:
    """Insert devices, committing one transaction per batch."""
    total = len(devices)
    if not total:
        return
    batch = batch_size if 0 < batch_size <= total else total
    LOGGER.info("Creating %d devices (batch size %d)...", total, batch)
    started = time.perf_counter()
    for offset in range(0, total, batch):
        chunk = devices[offset : offset + batch]
        rows = [
            (d.id, d.name, d.voucher, tenant_id, d.created_at, d.created_at, d.id) for d in chunk
        ]
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.executemany(INSERT_DEVICE_SQL, rows)
        except psycopg2.Error as exc:
            raise StoreError(f"Inserting devices {offset}..{offset + len(chunk) - 1} failed: {exc}") from exc
        done = offset + len(chunk)
        LOGGER.info("Progress: %.1f%% (%d/%d)", done * 100.0 / total, done, total)
    elapsed = max(time.perf_counter() - started, 1e-9)
    LOGGER.info("Created %d devices in %.2fs, %.2f devices/s", total, elapsed, total / elapsed)


def write_lines(path: Path, lines: Iterable[str], append: bool) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = "a" if append else "w"
    with path.open(mode, encoding="utf-8") as handle:
        for line in lines:
            handle.write(f"{line}\n")


def save_device_files(
    devices: Sequence[Device],
    output_dir: Path,
    id_file: str = "device_id.txt",
    token_file: str = "device_tokens.txt",
    append: bool = True,
) -> Tuple[Path, Path]:
    id_path = output_dir / id_file
    token_path = output_dir / token_file
    write_lines(id_path, (device.id for device in devices), append)
    LOGGER.info("Device ids written to %s", id_path)
    write_lines(token_path, (device.token for device in devices), append)
    LOGGER.info("Device tokens written to %s", token_path)
    return id_path, token_path


def provision(
    config: BenchConfig,
    count: int,
    tenant_id: str,
    prefix: str = "bench",
    number: str = "1",
    batch_size: int = 100,
    output_dir: Path = Path("data"),
    id_file: str = "device_id.txt",
    token_file: str = "device_tokens.txt",
    append: bool = True,
    connection: Optional[object] = None,
) -> List[Device]:
    devices = build_devices(count, prefix, number)
    conn = connection
    if conn is None:
        try:
            conn = psycopg2.connect(**connection_kwargs(config))
        except psycopg2.Error as exc:
            raise StoreError(f"Cannot connect to database {config.db_name}@{config.db_host}: {exc}") from exc
    try:
        insert_devices(conn, devices, tenant_id, batch_size)
    finally:
        if connection is None:
            conn.close()
    save_device_files(devices, output_dir, id_file, token_file, append)
    return devices
