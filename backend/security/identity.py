"""
Device identity for the local peer.
"""

import random

from config import (
    DEVICE_ALIAS,
    DEVICE_MODEL,
    DEVICE_TYPE,
    LOCALSEND_PORT,
    PROTOCOL_VERSION,
)
from transfer.models import DeviceInfo

ADJECTIVES = [
    "Neon", "Cosmic", "Turbo", "Silent", "Electric", "Quantum",
    "Hidden", "Mystic", "Clever", "Swift", "Brave", "Pixel",
]

ANIMALS = [
    "Fox", "Panda", "Gopher", "Bear", "Snail", "Owl",
    "Wolf", "Tiger", "Hawk", "Dolphin", "Penguin", "Falcon",
]


def random_alias() -> str:
    return f"{random.choice(ADJECTIVES)} {random.choice(ANIMALS)}"


def build_device_info(
    fingerprint: str,
    port: int = LOCALSEND_PORT,
    protocol: str = "https",
    alias: str | None = None,
) -> DeviceInfo:
    """Describe this process as a LocalSend peer."""
    return DeviceInfo(
        alias=alias or DEVICE_ALIAS or random_alias(),
        version=PROTOCOL_VERSION,
        device_model=DEVICE_MODEL,
        device_type=DEVICE_TYPE,
        fingerprint=fingerprint,
        port=port,
        protocol=protocol,
        download=False,
    )
