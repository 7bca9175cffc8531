#!/usr/bin/env python3
"""
AWS Lambda entry point: the scheduling FastAPI app behind Mangum.
For local runs use: uvicorn app.main:app --reload
"""
from mangum import Mangum

from app.core.logging import get_logger
from app.main import app

logger = get_logger(__name__)

asgi_handler = Mangum(app, lifespan="off")


def lambda_handler(event, context):
    """Convert the API Gateway event to ASGI and back."""
    logger.info(
        "lambda_event",
        method=event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method", "UNKNOWN"),
        path=event.get("path") or event.get("rawPath", "/"),
    )
    response = asgi_handler(event, context)
    logger.info("lambda_response", status_code=response.get("statusCode"))
    return response
