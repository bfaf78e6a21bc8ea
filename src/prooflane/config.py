"""Pipeline configuration loader.

Module-level constants come straight from the environment (``.env`` honored via
python-dotenv). ``load_config()`` builds a ``PipelineConfig`` from an optional
``config/pipeline.yml`` first, then environment overrides.
"""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

# Ledger access points (comma separated, tried in order, cyclic on transient failure)
LEDGER_ENDPOINTS = [u.strip() for u in os.getenv("LEDGER_ENDPOINTS", "").split(",") if u.strip()]
EXPLORER_TX_URL = os.getenv("EXPLORER_TX_URL", "https://sepolia.arbiscan.io/tx/{receipt_id}")
ATTESTOR_SIGNING_KEY = os.getenv("ATTESTOR_SIGNING_KEY", "keys/attestor_ed25519_sk.pem")

SESSION_STORE = os.getenv("SESSION_STORE", "memory")  # memory|redis
SESSION_TTL_SEC = int(os.getenv("SESSION_TTL_SEC", "3600"))
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CANDIDATE_DIR = os.getenv("CANDIDATE_DIR", "var/proofs")
LEDGER_EMULATOR = os.getenv("LEDGER_EMULATOR", "false").lower() == "true"

_DEF_PATH = os.path.join(os.getcwd(), "config", "pipeline.yml")

_ENV_MAP = {
    "query_timeout": ("LEDGER_QUERY_TIMEOUT_SEC", float),
    "submit_timeout": ("LEDGER_SUBMIT_TIMEOUT_SEC", float),
    "confirm_timeout": ("LEDGER_CONFIRM_TIMEOUT_SEC", float),
    "max_attempts": ("ATTEST_MAX_ATTEMPTS", int),
    "backoff_base": ("ATTEST_BACKOFF_BASE_SEC", float),
    "backoff_max": ("ATTEST_BACKOFF_MAX_SEC", float),
    "inter_item_delay": ("ATTEST_INTER_ITEM_DELAY_SEC", float),
    "collect_timeout": ("PHASE_TIMEOUT_COLLECT_SEC", float),
    "verify_timeout": ("PHASE_TIMEOUT_VERIFY_SEC", float),
    "attest_timeout": ("PHASE_TIMEOUT_ATTEST_SEC", float),
    "verify_call_timeout": ("VERIFY_CALL_TIMEOUT_SEC", float),
    "session_ttl": ("SESSION_TTL_SEC", int),
    "event_channel_size": ("EVENT_CHANNEL_SIZE", int),
}


class PipelineConfig(BaseModel):
    ledger_endpoints: List[str] = Field(default_factory=list)
    query_timeout: float = 5.0
    submit_timeout: float = 15.0
    confirm_timeout: float = 60.0
    max_attempts: int = 4
    backoff_base: float = 0.5
    backoff_max: float = 8.0
    inter_item_delay: float = 0.25

    collect_timeout: float = 60.0
    verify_timeout: float = 30.0
    attest_timeout: float = 120.0
    verify_call_timeout: float = 10.0

    session_store: str = "memory"
    session_ttl: int = 3600
    redis_url: str = "redis://localhost:6379/0"
    candidate_dir: str = "var/proofs"
    explorer_tx_url: Optional[str] = None
    attestor_signing_key: str = "keys/attestor_ed25519_sk.pem"
    event_channel_size: int = 256

    # proof system name -> base URL of a remote verification service
    verifier_urls: Dict[str, str] = Field(default_factory=dict)
    structural_stark: bool = True


def _parse_verifier_urls(raw: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for item in raw.split(","):
        if "=" not in item:
            continue
        name, url = item.split("=", 1)
        if name.strip() and url.strip():
            out[name.strip().lower()] = url.strip()
    return out


def load_config(path: Optional[str] = None) -> PipelineConfig:
    data: Dict[str, Any] = {}
    cfg_path = path or _DEF_PATH
    if os.path.exists(cfg_path):
        with open(cfg_path, "r", encoding="utf-8") as f:
            file_cfg = yaml.safe_load(f) or {}
        if isinstance(file_cfg, dict):
            data.update(file_cfg)
    for k, (env, cast) in _ENV_MAP.items():
        if env in os.environ:
            data[k] = cast(os.environ[env])
    if "LEDGER_ENDPOINTS" in os.environ:
        data["ledger_endpoints"] = [u.strip() for u in os.environ["LEDGER_ENDPOINTS"].split(",") if u.strip()]
    if "VERIFIER_URLS" in os.environ:
        data["verifier_urls"] = _parse_verifier_urls(os.environ["VERIFIER_URLS"])
    if "STRUCTURAL_STARK" in os.environ:
        data["structural_stark"] = os.environ["STRUCTURAL_STARK"].lower() == "true"
    data.setdefault("session_store", os.getenv("SESSION_STORE", SESSION_STORE))
    data.setdefault("redis_url", os.getenv("REDIS_URL", REDIS_URL))
    data.setdefault("candidate_dir", os.getenv("CANDIDATE_DIR", CANDIDATE_DIR))
    data.setdefault("explorer_tx_url", os.getenv("EXPLORER_TX_URL", EXPLORER_TX_URL) or None)
    data.setdefault("attestor_signing_key", ATTESTOR_SIGNING_KEY)
    return PipelineConfig(**data)
