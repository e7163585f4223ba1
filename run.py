import os
import logging
import uvicorn

logging.basicConfig(level=logging.DEBUG, format="%(levelname)-5s [%(name)s] %(message)s")
# aiosqlite logs every statement at DEBUG
logging.getLogger("aiosqlite").setLevel(logging.INFO)

if __name__ == "__main__":
    uvicorn.run(
        "app.server:app",
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "8000")),
        reload=os.environ.get("DEV_RELOAD", "0") == "1",
    )
