"""
resonance.api.__main__ — Entry point for ``python -m resonance.api``
=====================================================================

Serves :data:`resonance.api.main.app` with uvicorn on the
``dashboard_port`` from ``config.yaml``.
"""

from __future__ import annotations

import os

import uvicorn

from resonance.api.deps import get_config


def main() -> None:
    cfg = get_config()
    uvicorn.run(
        "resonance.api.main:app",
        host=os.getenv("API_HOST", "127.0.0.1"),
        port=cfg.dashboard_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
