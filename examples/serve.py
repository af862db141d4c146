"""Run the HTTP API locally."""

import uvicorn

if __name__ == "__main__":
    uvicorn.run("zeno_core.api.app:create_app", factory=True, host="127.0.0.1", port=8000)
