# -*- encoding: utf-8 -*-
"""
AA Onboard
aa_onboard.http_server module

HTTP endpoint mapping verified emails to account addresses.

Uses falcon (WSGI). Clients POST {"email", "address"} to /return-account and
receive the stored record. The call is idempotent: once an email has a
record, every later call returns that same record whatever address it
carries. CORS is enabled so a browser front end on another origin can call
it directly.
"""

import logging

import falcon
from web3 import Web3

from aa_onboard.registry import RegistryError

logger = logging.getLogger(__name__)


def _bad_request(resp, message):
    resp.status = falcon.HTTP_400
    resp.content_type = falcon.MEDIA_JSON
    resp.media = {"error": message}


class ReturnAccountResource:
    """Falcon resource for POST /return-account."""

    def __init__(self, registry):
        self.registry = registry

    def on_post(self, req, resp):
        try:
            body = req.get_media()
        except falcon.MediaNotFoundError:
            _bad_request(resp, "Empty request body")
            return
        except falcon.MediaMalformedError:
            _bad_request(resp, "Request body is not valid JSON")
            return
        if not isinstance(body, dict):
            _bad_request(resp, "Request body must be a JSON object")
            return

        email = body.get("email")
        address = body.get("address")
        if not isinstance(email, str) or "@" not in email:
            _bad_request(resp, "A valid email is required")
            return
        if not isinstance(address, str) or not Web3.is_address(address):
            _bad_request(resp, "A valid account address is required")
            return

        try:
            record = self.registry.return_account(
                email, Web3.to_checksum_address(address)
            )
        except RegistryError as exc:
            logger.error("Registry failure for %s: %s", email, exc)
            resp.status = falcon.HTTP_500
            resp.content_type = falcon.MEDIA_JSON
            resp.media = {"error": "Account storage failed"}
            return

        resp.status = falcon.HTTP_200
        resp.content_type = falcon.MEDIA_JSON
        resp.media = record.to_dict()


class HealthResource:
    """Simple health check endpoint at GET /health."""

    def on_get(self, req, resp):
        resp.status = falcon.HTTP_200
        resp.content_type = falcon.MEDIA_JSON
        resp.media = {"status": "ok"}


def create_app(registry):
    """Create and return a falcon WSGI application.

    Args:
        registry: AccountRegistry backing /return-account.

    Returns:
        A falcon.App instance ready to be served.
    """
    app = falcon.App(cors_enable=True)
    app.add_route("/return-account", ReturnAccountResource(registry))
    app.add_route("/health", HealthResource())
    return app
