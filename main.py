from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from config import Config
from routers import threads, messages, contracts, listings, payments
from services.errors import WorkflowError

app = FastAPI(title="Deal Room API", version="1.0.0", description="Buyer/seller negotiation, contracts and checkout")

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

Config.validate_identity_configuration()

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Request shape failures share the validation_error kind.
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": errors, "code": "validation_error"})


app.include_router(threads.router, prefix="/threads", tags=["Threads"])
app.include_router(messages.router, tags=["Messages"])
app.include_router(contracts.router, tags=["Contracts"])
app.include_router(listings.router, prefix="/listings", tags=["Listings"])
app.include_router(payments.router, tags=["Payments"])


@app.get("/", tags=["Health"])
def health_check():
    logger.info("Health check requested")
    return {"message": "Deal Room API is up and running"}
