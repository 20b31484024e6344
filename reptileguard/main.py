# reptileguard/main.py
from __future__ import annotations

import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.responses import RedirectResponse

# env must be populated before the service modules read their settings
load_dotenv()

from reptileguard.errors import ReptileGuardError, StoreUnavailable  # noqa: E402
from reptileguard.routes.identify import router as identify_router  # noqa: E402
from reptileguard.routes.report import router as report_router  # noqa: E402
from reptileguard.routes.user import router as user_router  # noqa: E402

log = logging.getLogger("uvicorn.error")


def _mount_prefix(raw: str) -> str:
    """'api/' -> '/api', '' -> ''. Routers carry their own /user, /reports."""
    raw = raw.strip().rstrip("/")
    if raw and not raw.startswith("/"):
        raw = "/" + raw
    return raw


def _cors_settings(origins: str | None) -> Dict[str, Any]:
    # CORS_ORIGINS="https://app.reptileguard.org,https://staging.reptileguard.org";
    # unset means any localhost port (Vite / Expo dev servers)
    settings: Dict[str, Any] = {
        "allow_methods": ["*"],
        "allow_headers": ["*"],
        "allow_credentials": True,
    }
    if origins:
        settings["allow_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
    else:
        settings["allow_origin_regex"] = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"
    return settings


API_PREFIX = _mount_prefix(os.getenv("API_PREFIX", ""))

app = FastAPI(
    title="ReptileGuard API",
    version="1.0.0",
    description="Reptile sighting reports, species identification and the wildlife officer rescue workflow.",
)

cors = _cors_settings(os.getenv("CORS_ORIGINS"))
app.add_middleware(CORSMiddleware, **cors)
log.info("CORS: %s", cors)


@app.exception_handler(ReptileGuardError)
async def domain_error(request: Request, exc: ReptileGuardError) -> JSONResponse:
    if isinstance(exc, StoreUnavailable):
        log.warning("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


for router in (user_router, report_router, identify_router):
    app.include_router(router, prefix=API_PREFIX)


@app.get("/", include_in_schema=False)
def index() -> RedirectResponse:
    return RedirectResponse(url="/docs")


@app.get(API_PREFIX + "/health", tags=["meta"])
def health():
    return {"status": "ok", "prefix": API_PREFIX}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "reptileguard.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "1") == "1",
    )
