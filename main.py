#!/usr/bin/env python3
"""KineAI API server."""

import uvicorn

from core.config import settings


def main() -> None:
    """Serve the API with uvicorn."""
    uvicorn.run(
        "api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        proxy_headers=settings.trust_proxy_headers,
        forwarded_allow_ips=",".join(settings.trusted_proxies),
        log_config=None,
    )


if __name__ == "__main__":
    main()
