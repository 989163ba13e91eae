# -*- encoding: utf-8 -*-
"""
AA Onboard
aa_onboard.client module

HTTP client for the /return-account endpoint.
"""

import logging

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10  # seconds


class RegistryClientError(Exception):
    """The registry endpoint was unreachable or answered with an error."""


class RegistryClient:
    """Posts email/address pairs to a running registry service."""

    def __init__(self, base_url, timeout=DEFAULT_TIMEOUT, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def return_account(self, email, address):
        """Register ``address`` for ``email`` unless the email is already known.

        Returns:
            The stored record as a dict: id, email, address, createdAt.

        Raises:
            RegistryClientError: on a connection failure or non-2xx response,
                or a body that is not JSON.
        """
        url = f"{self.base_url}/return-account"
        try:
            resp = self.session.post(
                url,
                json={"email": email, "address": address},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise RegistryClientError(f"POST {url} failed: {exc}") from exc

        if not resp.ok:
            raise RegistryClientError(
                f"POST {url} returned {resp.status_code}: {resp.text}"
            )
        try:
            record = resp.json()
        except ValueError as exc:
            raise RegistryClientError(
                f"POST {url} returned a non-JSON body: {resp.text[:200]!r}"
            ) from exc
        logger.info("Registry returned account %s for %s", record.get("address"), email)
        return record
