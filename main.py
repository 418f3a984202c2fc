import logging
import time

import uvicorn
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware

from sandbox_healer.api.sandbox import router as sandbox_router
from sandbox_healer.core.config import API_HOST, API_PORT, CORS_ORIGINS
from sandbox_healer.utils.logging_config import setup_logging

setup_logging(level=logging.INFO)
logger = logging.getLogger("main")

app = FastAPI(title="Sandbox Build-Test-Heal API")


# ---------------------------------------------------------------------------
# Request logging
# ---------------------------------------------------------------------------
class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        route = f"{request.method} {request.url.path}"
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("%s crashed after %.1fms", route, (time.perf_counter() - started) * 1000)
            raise
        logger.info("%s -> %d (%.1fms)", route, response.status_code, (time.perf_counter() - started) * 1000)
        return response


app.add_middleware(RequestLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    return {"status": "ok"}


app.include_router(sandbox_router)

if __name__ == "__main__":
    uvicorn.run("main:app", host=API_HOST, port=API_PORT, reload=True)
