"""Backend utility functions for the offline sync API."""
from flask import jsonify
import logging


logger = logging.getLogger(__name__)


def api_error(message, status_code=400, log_level='warning', details=None, **extra):
    """
    Standardized API error response with consistent logging.

    Args:
        message (str): Error message for the client
        status_code (int): HTTP status code
        log_level (str): Logging level ('debug', 'info', 'warning', 'error', 'critical')
        details (dict, optional): Additional details for logging
        **extra: Additional keys merged into the JSON body (e.g. fields, errorType)

    Returns:
        Flask response: JSON error response
    """
    # Log the error with appropriate level
    log_func = getattr(logger, log_level, logger.warning)
    if details:
        log_func(f"API Error ({status_code}): {message} - Details: {details}")
    else:
        log_func(f"API Error ({status_code}): {message}")

    body = {'error': message}
    body.update(extra)
    return jsonify(body), status_code


def handle_api_exception(e, operation="operation", status_code=500):
    """
    Handle exceptions in API endpoints with consistent logging and responses.

    Args:
        e (Exception): The exception that occurred
        operation (str): Description of the operation being performed
        status_code (int): HTTP status code to return

    Returns:
        Flask response: JSON error response
    """
    logger.error(f"Exception during {operation}: {str(e)}", exc_info=True)
    return api_error(f"Failed to {operation}", status_code, 'error', errorType='internal_error')
