from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from main import create_app
from security.identity import build_device_info
from transfer.manager import TransferManager
from transfer.models import DeviceInfo


@pytest.fixture
def device_info() -> DeviceInfo:
    return build_device_info("FAKE-FINGERPRINT", alias="Tester", protocol="http")


@pytest.fixture
def clipboard() -> list[str]:
    return []


@pytest.fixture
def save_dir(tmp_path: Path) -> Path:
    return tmp_path / "uploads"


@pytest.fixture
def manager(device_info: DeviceInfo, save_dir: Path, clipboard: list[str]) -> TransferManager:
    return TransferManager(
        device_info,
        save_dir=save_dir,
        clipboard_writer=clipboard.append,
        scheme="http",
    )


@pytest.fixture
def client(manager: TransferManager):
    with TestClient(create_app(manager)) as test_client:
        yield test_client
