# backend/lmsdb/serve.py
"""
`lmsdb-serve` entry point.

Every worker process keeps its own engine per branch store, so scaling out
with WEB_CONCURRENCY multiplies the connection pools (DB_POOL_SIZE each).
"""
import logging
import os
from typing import Any, Dict, Mapping, Optional

import uvicorn

logger = logging.getLogger(__name__)

APP_PATH = "lmsdb.main:app"
PLACEHOLDER_SECRET = "CHANGE_ME_IN_PRODUCTION"

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "false").lower() in _TRUTHY


def uvicorn_options(env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Translate the process environment into uvicorn.run() keyword arguments.

    Raises SystemExit for settings that would start a broken server.
    """
    env = os.environ if env is None else env
    reload_enabled = _flag(env, "RELOAD")
    workers = int(env.get("WEB_CONCURRENCY", "1"))
    if workers < 1:
        raise SystemExit("WEB_CONCURRENCY must be at least 1.")
    if reload_enabled and workers > 1:
        logger.warning("RELOAD is set; ignoring WEB_CONCURRENCY=%s", workers)
        workers = 1

    if not reload_enabled and env.get("SECRET_KEY", PLACEHOLDER_SECRET) == PLACEHOLDER_SECRET:
        raise SystemExit("SECRET_KEY must be set outside of reload (development) mode.")

    options: Dict[str, Any] = {
        "host": env.get("HOST", "0.0.0.0"),
        "port": int(env.get("PORT", "8000")),
        "reload": reload_enabled,
        "workers": workers,
        "log_level": env.get("LOG_LEVEL", "info").lower(),
        "proxy_headers": True,
        "forwarded_allow_ips": env.get("FORWARDED_ALLOW_IPS", "*"),
    }

    certfile = env.get("SSL_CERTFILE")
    keyfile = env.get("SSL_KEYFILE")
    if bool(certfile) != bool(keyfile):
        raise SystemExit("SSL_CERTFILE and SSL_KEYFILE must be set together.")
    if certfile:
        options["ssl_certfile"] = certfile
        options["ssl_keyfile"] = keyfile
        if env.get("SSL_KEYFILE_PASSWORD"):
            options["ssl_keyfile_password"] = env["SSL_KEYFILE_PASSWORD"]
        if not _flag(env, "SESSION_COOKIE_SECURE"):
            # Session and site cookies would still go out without the Secure flag.
            logger.warning("Serving TLS with SESSION_COOKIE_SECURE off")
    return options


def main() -> None:
    uvicorn.run(APP_PATH, **uvicorn_options())


if __name__ == "__main__":
    main()
