import os

import uvicorn


if __name__ == "__main__":
    # Keep reload OFF by default; set BACKEND_RELOAD=true for hot reload.
    reload_enabled = os.getenv("BACKEND_RELOAD", "false").lower() == "true"
    backend_host = os.getenv("BACKEND_HOST", "127.0.0.1")
    backend_port = int(os.getenv("BACKEND_PORT", "8000"))
    uvicorn.run(
        "school_portal.app:create_app",
        factory=True,
        host=backend_host,
        port=backend_port,
        reload=reload_enabled,
    )
