from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
import time

from src.api.routers.admin import router as admin_router
from src.api.routers.ft import router as ft_router
from src.api.routers.nft import router as nft_router
from src.api.routers.sft import router as sft_router
from src.api.routers.status import router as status_router
from src.config import settings
from src.utils.exceptions import TokenException
from src.utils.logging import setup_logging

setup_logging()
logger = structlog.get_logger()

app = FastAPI(
    title="Token Metadata API",
    description="Metadata for SIP-010, SIP-009 and SIP-013 tokens",
    version=settings.SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["ETag"],
)

app.include_router(status_router, tags=["Status"])
app.include_router(ft_router, tags=["Tokens"])
app.include_router(nft_router, tags=["Tokens"])
app.include_router(sft_router, tags=["Tokens"])
app.include_router(admin_router, tags=["Admin"])


@app.exception_handler(TokenException)
async def token_exception_handler(request: Request, exc: TokenException):
    # A fresh response: no Cache-Control or ETag, negative results are never cached.
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.middleware("http")
async def log_requests(request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    logger.info(
        "Request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        process_time=round(process_time, 3),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
