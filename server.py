from __future__ import annotations

import os

import uvicorn

from indieauth.app import create_app


def main() -> None:
    host = os.getenv("INDIEAUTH_HOST", "127.0.0.1")
    port = int(os.getenv("INDIEAUTH_PORT", "8000"))
    app = create_app()
    uvicorn.run(app, host=host, port=port, proxy_headers=True)


if __name__ == "__main__":
    main()
