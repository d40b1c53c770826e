import json
import logging
import os
from datetime import datetime

import azure.functions as func
from bson import ObjectId

from .errors import DashboardError, ValidationError


def cors_headers():
    return {
        "Access-Control-Allow-Origin": os.getenv("ALLOWED_ORIGIN", "*"),
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
    }


def json_serial(obj):
    """JSON serializer for objects not serializable by default json code"""
    if isinstance(obj, datetime):
        iso = obj.isoformat()
        if obj.tzinfo is None:
            return iso + "Z"
        return iso
    if isinstance(obj, ObjectId):
        return str(obj)
    return str(obj)


def respond(body=None, status=200):
    return func.HttpResponse(
        json.dumps(body, default=json_serial) if body is not None else "",
        status_code=status,
        mimetype="application/json",
        headers=cors_headers()
    )


def options_response():
    return func.HttpResponse("", status_code=204, headers=cors_headers())


def error_response(err: DashboardError):
    if err.status_code >= 500:
        logging.error(f"{type(err).__name__}: {err.message} details={err.details}")
    else:
        logging.info(f"{type(err).__name__}: {err.message}")
    return respond(err.to_dict(), status=err.status_code)


def internal_error(e: Exception, where: str):
    logging.error(f"Error in {where}: {e}", exc_info=True)
    return respond({"error": "Internal server error", "details": str(e)}, status=500)


def get_json_body(req: func.HttpRequest, required=True):
    """Parsed JSON object body, or None when absent and not required."""
    raw = req.get_body()
    if not raw:
        if required:
            raise ValidationError("Request body is required")
        return None
    try:
        body = req.get_json()
    except ValueError:
        raise ValidationError("Invalid JSON")
    if not isinstance(body, dict):
        raise ValidationError("JSON body must be an object")
    return body
