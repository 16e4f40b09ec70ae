from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

BASE_DIR = Path(__file__).resolve().parent

REPLY_STRATEGIES = ("model", "template")


@dataclass(frozen=True)
class Settings:
    """Configuration container for the external API, catalog, CORS, and runtime limits."""
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    openai_realtime_model: str = "gpt-4o-realtime-preview"
    openai_realtime_voice: str = "alloy"
    openai_timeout_sec: float = 30.0
    allowed_origins: Tuple[str, ...] = field(default_factory=tuple)
    base_product_url: str = "https://bayagallery.com/art/"
    checkout_query: str = "?buy=1"
    catalog_path: Path = (BASE_DIR / ".." / "data" / "baya_catalog.json").resolve()
    prompts_dir: Path = (BASE_DIR / "prompts").resolve()
    host: str = "0.0.0.0"
    port: int = 3000
    reply_strategy: str = "model"
    session_ttl_sec: int = 3600
    max_sessions: int = 500
    history_limit: int = 8
    search_limit: int = 3


def parse_origins(raw: str) -> Tuple[str, ...]:
    """Split a comma-separated origin list, dropping blanks and trailing slashes."""
    return tuple(part.strip().rstrip("/") for part in (raw or "").split(",") if part.strip())


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Invalid numeric env values raise ValueError; an unknown
        REPLY_STRATEGY raises ValueError.
    If Removed: App cannot configure the external API, catalog, or CORS.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve the catalog path first; everything else is a flat env lookup.
    catalog_env = os.getenv("CATALOG_PATH")
    if catalog_env:
        catalog_path = Path(catalog_env)
    else:
        catalog_path = (BASE_DIR / ".." / "data" / "baya_catalog.json").resolve()

    strategy = os.getenv("REPLY_STRATEGY", "model").strip().lower()
    if strategy not in REPLY_STRATEGIES:
        raise ValueError(f"REPLY_STRATEGY must be one of {', '.join(REPLY_STRATEGIES)}")

    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
        openai_realtime_model=os.getenv("OPENAI_REALTIME_MODEL", "gpt-4o-realtime-preview"),
        openai_realtime_voice=os.getenv("OPENAI_REALTIME_VOICE", "alloy"),
        openai_timeout_sec=float(os.getenv("OPENAI_TIMEOUT_SEC", "30")),
        allowed_origins=parse_origins(os.getenv("ALLOWED_ORIGIN", "")),
        base_product_url=os.getenv("BASE_PRODUCT_URL", "https://bayagallery.com/art/"),
        checkout_query=os.getenv("CHECKOUT_QUERY", "?buy=1"),
        catalog_path=catalog_path,
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        reply_strategy=strategy,
        session_ttl_sec=int(os.getenv("SESSION_TTL_SEC", "3600")),
        max_sessions=int(os.getenv("MAX_SESSIONS", "500")),
        history_limit=int(os.getenv("HISTORY_LIMIT", "8")),
        search_limit=int(os.getenv("SEARCH_LIMIT", "3")),
    )
