from contextlib import asynccontextmanager
from typing import Dict, Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from graph_navigator.services.query_processor import QueryProcessor, ChatRequest
from graph_navigator.logging_config import setup_logging, get_logger
from graph_navigator.config import (
    LOG_LEVEL,
    CORS_ORIGINS,
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_HEADERS,
    CORS_MAX_AGE
)

# Setup logging with secret redaction
setup_logging(log_level=LOG_LEVEL, enable_redaction=True)
logger = get_logger("graph_navigator")

# Initialize query processor
query_processor = QueryProcessor()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown events."""
    logger.info("Starting Graph Navigator API...")
    yield
    await query_processor.close()
    logger.info("Shutdown complete")

# Create FastAPI app with lifespan handler
app = FastAPI(
    title="Graph Navigator API",
    description="Natural-language question answering over a knowledge graph",
    version="1.0.0",
    lifespan=lifespan
)

logger.info(f"🔒 CORS:mode - Allowing origins: {CORS_ORIGINS}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
    max_age=CORS_MAX_AGE,
)


def _validation_message(error: ValidationError) -> str:
    if not error.errors():
        return "Invalid request format"

    msg = error.errors()[0].get("msg", "")
    if "Potentially malicious content detected" in msg:
        return "Request blocked for security reasons"
    if "Query cannot be empty" in msg:
        return "Query cannot be empty"
    if "Query too long" in msg:
        return "Query exceeds maximum length"
    return "Invalid request format"


@app.post("/api/chat", response_model=Dict[str, Any])
async def chat(http_request: Request) -> Any:
    """
    Answer one natural-language question against the graph.

    Body: {"query": "...", "history": [{"type": "user", "content": "..."}]}
    """
    try:
        request_data = await http_request.json()
        request = ChatRequest(**request_data)
    except ValidationError as e:
        error_msg = _validation_message(e)
        logger.warning(f"Validation failed: {error_msg}")
        return JSONResponse(status_code=400, content={"success": False, "message": error_msg})
    except (ValueError, TypeError) as e:
        logger.warning(f"Malformed request body: {e}")
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Invalid request format"}
        )

    try:
        return await query_processor.process(request)
    except Exception as e:
        logger.exception(f"Unexpected error in API endpoint: {e}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "An unexpected error occurred"}
        )


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {"status": "healthy", "service": "graph-navigator"}
