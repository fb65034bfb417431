from __future__ import annotations

import uvicorn

from bills_agent.core.config import load_settings


def main() -> None:
    settings = load_settings()
    uvicorn.run("bills_agent.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
