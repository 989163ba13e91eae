# -*- encoding: utf-8 -*-
"""
AA Onboard
aa_onboard.service module

Wires the onboarding components together and runs the HTTP service:
  - Web3 connection, EntryPoint event source and receipt poller
  - SimpleAccountFactory resolver
  - Account registry and the falcon WSGI app (served via wsgiref)

Configuration is loaded from environment variables with sensible defaults.
"""

import logging
import os
import threading

from web3 import Web3

from aa_onboard.accounts import AccountResolver
from aa_onboard.event_source import Web3EventSource
from aa_onboard.http_server import create_app
from aa_onboard.receipts import ReceiptPoller
from aa_onboard.registry import AccountRegistry

logger = logging.getLogger("aa_onboard")

# Default configuration values
DEFAULTS = {
    "PORT": "3001",
    "ETH_RPC_URL": "http://127.0.0.1:8545",
    "ENTRY_POINT_ADDRESS": "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789",
    "SIMPLE_ACCOUNT_FACTORY": "0x9406Cc6185a346906296840746125a0E44976454",
    "ACCOUNT_SALT": "0",
    "ACCOUNTS_DB": "accounts.json",
    "RECEIPT_TIMEOUT_MS": "30000",
    "RECEIPT_POLL_INTERVAL_MS": "5000",
    "REGISTRY_URL": "http://localhost:3001",
    "GOOGLE_CLIENT_ID": "",
}

INT_KEYS = ("PORT", "ACCOUNT_SALT", "RECEIPT_TIMEOUT_MS", "RECEIPT_POLL_INTERVAL_MS")


def load_config(environ=None):
    """Load service configuration from environment variables.

    Args:
        environ: mapping to read instead of os.environ.

    Returns:
        dict with all configuration values.

    Raises:
        ValueError: if a numeric setting is not an integer.
    """
    if environ is None:
        environ = os.environ
    config = {}
    for key, default in DEFAULTS.items():
        config[key] = environ.get(key, default)
    for key in INT_KEYS:
        try:
            config[key] = int(config[key])
        except ValueError:
            raise ValueError(f"{key} must be an integer, got {config[key]!r}") from None
    return config


def setup_web3(config):
    """Create a Web3 instance for the configured RPC endpoint.

    The connection is not checked here: the receipt poller tolerates an
    unreachable node, and the registry endpoint does not need one.
    """
    return Web3(Web3.HTTPProvider(config["ETH_RPC_URL"]))


def build_chain_components(config, w3=None):
    """Build the chain-facing components.

    Returns:
        dict with keys: w3, event_source, poller, resolver
    """
    if w3 is None:
        w3 = setup_web3(config)
    event_source = Web3EventSource(w3, config["ENTRY_POINT_ADDRESS"])
    return {
        "w3": w3,
        "event_source": event_source,
        "poller": ReceiptPoller(event_source),
        "resolver": AccountResolver(
            w3,
            config["ENTRY_POINT_ADDRESS"],
            config["SIMPLE_ACCOUNT_FACTORY"],
            salt=config["ACCOUNT_SALT"],
        ),
    }


def build_service(config=None, w3=None):
    """Wire together all service components.

    Args:
        config: dict from load_config(). Loaded from env if None.
        w3: optional pre-built Web3 instance.

    Returns:
        dict with keys: app, registry, config, w3, event_source, poller, resolver
    """
    if config is None:
        config = load_config()

    db_path = config["ACCOUNTS_DB"] or None
    registry = AccountRegistry(db_path)
    service = build_chain_components(config, w3=w3)
    service.update({
        "app": create_app(registry),
        "registry": registry,
        "config": config,
    })
    return service


class ServiceLoop:
    """Serves the falcon WSGI app until stopped."""

    def __init__(self, service):
        self.service = service
        self.config = service["config"]
        self._stop_event = threading.Event()
        self._http_thread = None
        self._httpd = None

    def _make_server(self):
        from wsgiref.simple_server import make_server, WSGIRequestHandler

        class QuietHandler(WSGIRequestHandler):
            def log_request(self, code="-", size="-"):
                logger.debug("%s %s", self.requestline, code)

        port = self.config["PORT"]
        self._httpd = make_server("0.0.0.0", port, self.service["app"],
                                  handler_class=QuietHandler)
        logger.info("HTTP server listening on port %d", port)
        return self._httpd

    def start(self):
        """Start the HTTP server thread and block until stop() or Ctrl-C."""
        httpd = self._make_server()
        self._http_thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        self._http_thread.start()
        logger.info(
            "Registry ready (%d accounts, store: %s)",
            len(self.service["registry"]),
            self.config["ACCOUNTS_DB"] or "memory",
        )
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            logger.info("Shutting down...")
        finally:
            self.stop()

    def stop(self):
        """Signal the loop and HTTP server to stop."""
        self._stop_event.set()
        httpd, self._httpd = self._httpd, None
        if httpd is not None:
            httpd.shutdown()
            httpd.server_close()

    @property
    def port(self):
        """The bound port, or None before start()."""
        return self._httpd.server_port if self._httpd is not None else None


def run_service(config=None):
    """Build and run the service (blocking)."""
    service = build_service(config=config)
    loop = ServiceLoop(service)
    loop.start()
