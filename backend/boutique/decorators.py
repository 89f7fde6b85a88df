# Overview: Request decorators for API routes: tenant context and engine error mapping.

from functools import wraps
from flask import current_app, g, jsonify

from .context import context_from_request
from .validation import (
    ConcurrencyConflict,
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)


def require_business(f):
    """
    Resolve the tenant and establish the engine context.

    Sets g.ctx to a fresh EngineContext for this request only.

    Returns 400 when the X-Business-Id header is missing or malformed and 404
    when the business does not exist or is inactive.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            g.ctx = context_from_request()
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400
        except NotFoundError as e:
            return jsonify({"error": str(e)}), 404
        return f(*args, **kwargs)

    return decorated_function


def engine_errors(f):
    """
    Translate engine exceptions into JSON error responses.

    - ValidationError       -> 400
    - NotFoundError         -> 404
    - ConflictError         -> 409
    - ConcurrencyConflict   -> 409 (retries already exhausted)
    - StorageError          -> 500, logged with traceback
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400
        except NotFoundError as e:
            return jsonify({"error": str(e)}), 404
        except ConflictError as e:
            return jsonify({"error": str(e)}), 409
        except ConcurrencyConflict as e:
            current_app.logger.warning("Concurrency conflict not resolved by retry: %s", e)
            return jsonify({"error": "Stock was changed concurrently, please retry", "detail": str(e)}), 409
        except StorageError:
            current_app.logger.exception("Storage failure while handling request")
            return jsonify({"error": "Storage error"}), 500

    return decorated_function
