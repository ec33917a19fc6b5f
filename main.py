import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from core.config import settings
from core.database import init_db
from core.exceptions import PaymentError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from routers import payments

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("🚀 Starting Online Payment API Server...")
    init_db()
    sources = ", ".join(settings.ONLINE_PAYMENT_SOURCES) or "none"
    logger.info(f"Online payment sources: {sources}")
    yield
    # Shutdown
    logger.info("🛑 Shutting down Server...")

app = FastAPI(
    title="Library Online Payment API",
    description="Online payment of library fees through external payment services",
    version="1.0.0",
    lifespan=lifespan
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(payments.router)

# Validation exception handler
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    error_details = [{"field": ".".join(str(loc) for loc in e["loc"]), "message": e["msg"]} for e in errors]
    return JSONResponse(
        status_code=422,
        content={"detail": error_details, "message": "Validation error"}
    )

# Configuration and persistence errors
@app.exception_handler(PaymentError)
async def payment_exception_handler(request: Request, exc: PaymentError):
    logger.error(f"Online payment error handling {request.url.path}: {exc.message}")
    content = {"detail": "online_payment_failed"}
    if settings.ENVIRONMENT != "production":
        content["error"] = exc.to_dict()["error"]
        content["message"] = exc.message
    return JSONResponse(status_code=500, content=content)

# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global Error handling {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error.", "message": str(exc) if settings.ENVIRONMENT != "production" else "An unexpected error occurred."}
    )

@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "online-payment", "version": "1.0.0"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.SERVER_HOST, port=settings.SERVER_PORT, reload=(settings.ENVIRONMENT=="development"))
