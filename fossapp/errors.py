"""Error types shared by the service layer and the JSON routes."""

import functools
import logging

import requests
from flask import jsonify

from .validation import ValidationError


class ActionError(Exception):
    """A failure that is reported to the caller as ``{success: false}``."""

    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class NotFound(ActionError):
    def __init__(self, message: str) -> None:
        super().__init__(message, 404)


class IntegrationError(Exception):
    """An external API (Drive or APS) answered with an error."""

    def __init__(self, service: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code


def json_action(view):
    """Wrap a view so service errors come back as ``{success: false, error}``."""

    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        try:
            return view(*args, **kwargs)
        except ValidationError as e:
            return jsonify(success=False, error=str(e)), 400
        except ActionError as e:
            return jsonify(success=False, error=e.message), e.status
        except IntegrationError as e:
            logging.error("%s", e)
            return jsonify(success=False, error=str(e)), 502
        except requests.RequestException as e:
            logging.error("Network error: %s", e)
            return jsonify(success=False, error=f"Network error: {e}"), 502

    return wrapper
