from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from perfreview.api.competencies import router as competencies_router
from perfreview.api.cycles import router as cycles_router
from perfreview.api.evaluations import router as evaluations_router
from perfreview.api.health import router as health_router
from perfreview.core.app_logger import get_logger, setup_logging
from perfreview.core.config import settings
from perfreview.core.errors import PerfReviewError

setup_logging()
logger = get_logger("api")

app = FastAPI(title="Performance Review Engine")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PerfReviewError)
async def handle_engine_error(request: Request, exc: PerfReviewError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


app.include_router(health_router)
app.include_router(competencies_router)
app.include_router(cycles_router)
app.include_router(evaluations_router)
