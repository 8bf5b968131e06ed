import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import DomainError
from app.core.logging import setup_logging
from app.routers.completions import router as completions_router
from app.routers.exercises import router as exercises_router
from app.routers.planned_classes import router as planned_classes_router
from app.routers.routines import router as routines_router
from app.routers.statistics import router as statistics_router

setup_logging()
logger = logging.getLogger(__name__)


app = FastAPI(title="Boxing Academy API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        # Drop the "body"/"query" prefix, keep the field path
        loc = [str(part) for part in err["loc"][1:]] or [str(err["loc"][0])]
        errors.setdefault(".".join(loc), []).append(err["msg"])
    logger.info("Rejected request to %s: %s", request.url.path, list(errors))
    return JSONResponse(
        status_code=422,
        content={"error": "validation_error", "message": "Invalid request", "errors": errors},
    )


app.include_router(exercises_router)
app.include_router(routines_router)
app.include_router(completions_router)
app.include_router(planned_classes_router)
app.include_router(statistics_router)


@app.get("/health")
def health():
    return {"ok": True}
