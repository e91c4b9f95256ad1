# -*- coding: utf-8 -*-
"""
=============================================================================
Deviation Monitor - Entrypoint
=============================================================================

Watches one or more rebalancing bots through the backend REST API and serves
their deviation analytics on the local dashboard.

Flow:
    * Load .env, then config/monitor.yaml (merged over DEFAULTS).
    * One DeviationView per bot: load coin allowlist, initial manual refresh.
    * Silent auto-refresh every refresh.auto_interval_s while the view is idle.
    * SIGINT/SIGTERM: stop timers, cancel in-flight requests, close the
      dashboard and the HTTP session.

Usage:
    python -m run.monitor --config config/monitor.yaml
    python -m run.monitor --bot-id 3 --port 8081
=============================================================================
"""
from __future__ import annotations

import asyncio
import argparse
import copy
import logging
import os
import signal
import sys
from typing import Any, Dict, List, Optional

# Load environment variables from .env file (before reading tokens)
from dotenv import load_dotenv
load_dotenv()

import yaml

from backend.client import BackendClient
from core.dashboard import Dashboard
from core.refresh import RefreshPolicy
from core.view import DeviationView

DEFAULTS: Dict[str, Any] = {
    "log_level": "INFO",
    "backend": {
        "base_url": "http://localhost:8000/api",
        "token_env": "MONITOR_API_TOKEN",
        "timeout_s": 30.0,
        "force_ipv4": False,
    },
    "refresh": {
        "enabled": True,
        "auto_interval_s": 60.0,
    },
    "view": {
        "page_size": 10,
        "time_range": "24h",
    },
    "dashboard": {
        "enabled": True,
        "port": 8080,
    },
    "bots": [],
}


# ---------- Logging ----------


def _setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not root.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)5s | %(name)s | %(message)s",
                "%H:%M:%S",
            )
        )
        root.addHandler(h)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))


# ---------- Config ----------


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def _load_config(path: Optional[str]) -> Dict[str, Any]:
    """DEFAULTS overridden by the YAML file; a missing file means defaults only."""
    if not path or not os.path.exists(path):
        if path:
            logging.getLogger("config").warning(f"[CONFIG] {path} not found, using defaults")
        return copy.deepcopy(DEFAULTS)
    with open(path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return _merge(DEFAULTS, cfg)


def _bot_ids(cfg: Dict[str, Any], cli_ids: Optional[List[int]]) -> List[int]:
    if cli_ids:
        return list(cli_ids)
    out: List[int] = []
    for b in cfg.get("bots") or []:
        out.append(int(b["id"]) if isinstance(b, dict) else int(b))
    return out


def build_views(cfg: Dict[str, Any], client: BackendClient, bot_ids: List[int]) -> List[DeviationView]:
    view_cfg = cfg["view"]
    return [
        DeviationView(
            bot_id,
            client,
            page_size=int(view_cfg["page_size"]),
            time_range=str(view_cfg["time_range"]),
            timeout_s=float(cfg["backend"]["timeout_s"]),
        )
        for bot_id in bot_ids
    ]


async def _prime(view: DeviationView) -> None:
    log = logging.getLogger("monitor")
    coins = await view.load_coins()
    state = await view.refresh(RefreshPolicy.MANUAL)
    if state.error_message:
        log.warning(f"[MONITOR] bot {view.bot_id}: initial load failed: {state.error_message}")
    else:
        log.info(f"[MONITOR] bot {view.bot_id}: {len(view.data.records)} pairs, coins={','.join(coins)}")


async def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="Deviation analytics monitor")
    ap.add_argument("--config", default="config/monitor.yaml")
    ap.add_argument("--bot-id", type=int, action="append", dest="bot_ids",
                    help="bot to monitor (repeatable); overrides config bots")
    ap.add_argument("--port", type=int, default=None)
    args = ap.parse_args(argv)

    cfg = _load_config(args.config)
    _setup_logging(cfg.get("log_level", "INFO"))
    log = logging.getLogger("monitor")

    bot_ids = _bot_ids(cfg, args.bot_ids)
    if not bot_ids:
        log.error("[MONITOR] no bots configured (set `bots:` in config or pass --bot-id)")
        return

    client = BackendClient(cfg["backend"])
    await client.start()
    views = build_views(cfg, client, bot_ids)

    dash: Optional[Dashboard] = None
    if cfg["dashboard"].get("enabled", True):
        dash = Dashboard(port=args.port or int(cfg["dashboard"]["port"]))
        for v in views:
            dash.add_view(v)
        await dash.start()

    await asyncio.gather(*[_prime(v) for v in views])

    if cfg["refresh"].get("enabled", True):
        interval = float(cfg["refresh"]["auto_interval_s"])
        for v in views:
            v.start_auto_refresh(interval)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)):
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    log.info(f"[MONITOR] watching bots {bot_ids}")
    await stop.wait()

    # ========== GRACEFUL SHUTDOWN ==========
    logging.getLogger("shutdown").warning("[SHUTDOWN] Signal received. Cleaning up...")
    for v in views:
        await v.close()
    if dash:
        await dash.stop()
    await client.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
