import secrets
from functools import wraps

from flask import Response, current_app, request

from file_exchange.logging_config import logger


class Authenticator:
    """Decides whether a request may use the admin console."""

    def authenticate(self, req) -> bool:
        raise NotImplementedError

    def credentials(self, req) -> dict:
        """Query parameters to carry over onto links the console renders."""
        return {}


class StaticKeyAuthenticator(Authenticator):
    """Shared secret passed as a query parameter, e.g. ``/admin?key=...``."""

    def __init__(self, key: str, param: str = "key"):
        self.key = key
        self.param = param

    def authenticate(self, req) -> bool:
        supplied = req.args.get(self.param, "")
        return secrets.compare_digest(supplied.encode("utf-8"), self.key.encode("utf-8"))

    def credentials(self, req) -> dict:
        return {self.param: req.args.get(self.param, "")}


def get_authenticator() -> Authenticator:
    return current_app.extensions["file_exchange.authenticator"]


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not get_authenticator().authenticate(request):
            logger.warning("Rejected admin request for %s from %s", request.path, request.remote_addr)
            return Response("Access denied", status=403, mimetype="text/plain")
        return view(*args, **kwargs)
    return wrapped
