"""
Profile loading for :class:`peerlink.PeerConfig`.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from . import DEFAULT_STORE_URL, PeerConfig
from .rtc.ice import IceConfig

LOG = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"

ENV_PROFILE_VAR = "PEERLINK_PROFILE"
ENV_STORE_URL_VAR = "PEERLINK_STORE_URL"


def read_profiles(path: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    target = path or PROFILES_PATH
    try:
        with target.open("r", encoding="utf-8") as handle:
            profiles = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        profiles = {}
    if not isinstance(profiles, dict):
        raise ValueError(f"{target} must contain a mapping of profiles")
    return profiles


def load_config(
    profile: Optional[str] = None,
    *,
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> PeerConfig:
    """
    Resolve a profile into a :class:`PeerConfig`.

    ``PEERLINK_PROFILE`` picks the profile when none is given and
    ``PEERLINK_STORE_URL`` overrides the profile's store URL.
    """

    env = os.environ if environ is None else environ
    name = profile or env.get(ENV_PROFILE_VAR) or "default"
    profiles = read_profiles(path)
    if name not in profiles:
        if name != "default":
            raise KeyError(f"unknown profile '{name}'")
        LOG.debug("No 'default' profile found; using built-in defaults")
    data = profiles.get(name) or {}

    store_url = env.get(ENV_STORE_URL_VAR) or data.get("store_url") or DEFAULT_STORE_URL
    return PeerConfig(
        profile=name,
        ice=IceConfig.from_dict(data.get("ice")),
        store_url=str(store_url),
        poll_interval=float(data.get("poll_interval", 0.25)),
    )


__all__ = ["CONFIG_DIR", "PROFILES_PATH", "load_config", "read_profiles"]
