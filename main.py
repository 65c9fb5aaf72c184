import logging
import os

import uvicorn

logging.getLogger().handlers.clear()
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(message)s",
    datefmt="%H:%M:%S",
)

if __name__ == "__main__":
    logging.info("Starting outreach server (scheduler runs inside the API process)")
    uvicorn.run(
        "outreach_server.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
