# reflection_token/monitoring.py
import time
import socket
from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry
from prometheus_client.exposition import make_wsgi_app
from wsgiref.simple_server import make_server, WSGIServer
from socketserver import ThreadingMixIn
import threading
import logging

logger = logging.getLogger(__name__)

# Create a threaded WSGI server for the Prometheus metrics
class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """A WSGI server that runs in a separate thread to not block the main application."""
    allow_reuse_address = True
    pass

class Monitor:
    def __init__(self, token, host="127.0.0.1", port=9090):
        self.token = token
        self.host = host
        self.port = port
        self.server = None
        self.thread = None

        # Isolated registry per token so tests and multiple tokens don't collide
        self.registry = CollectorRegistry()

        self.transfer_counter = Counter('reflection_transfers_total', 'Transfers processed', ['status'], registry=self.registry)
        self.transfer_latency = Histogram('reflection_transfer_latency_seconds', 'Time to process a transfer', registry=self.registry)
        self.conversion_counter = Counter('reflection_swap_and_liquify_total', 'Swap and liquify conversions', ['status'], registry=self.registry)
        self.total_fees = Gauge('reflection_total_fees', 'Tax fees collected (token units)', registry=self.registry)
        self.rate = Gauge('reflection_rate', 'Shares per token', registry=self.registry)
        self.contract_balance = Gauge('reflection_contract_balance', 'Tokens awaiting conversion', registry=self.registry)
        self.excluded_accounts = Gauge('reflection_excluded_accounts', 'Accounts excluded from reward', registry=self.registry)

    def start_server(self):
        """Manually creates and starts the Prometheus HTTP server with retry logic."""
        app = make_wsgi_app(self.registry)

        max_retries = 5
        retry_delay = 2

        for attempt in range(max_retries):
            try:
                self.server = make_server(self.host, self.port, app, ThreadingWSGIServer)
                self.server.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

                self.thread = threading.Thread(target=self.server.serve_forever)
                self.thread.daemon = True
                self.thread.start()
                logger.info(f"Prometheus server started on http://{self.host}:{self.port}")
                return
            except OSError as e:
                if e.errno == 98:  # Address already in use
                    if attempt < max_retries - 1:
                        logger.warning(f"Port {self.port} in use, retrying in {retry_delay}s (attempt {attempt+1}/{max_retries})...")
                        time.sleep(retry_delay)
                    else:
                        logger.error(f"Failed to bind to port {self.port} after {max_retries} attempts")
                        raise
                else:
                    raise

    def stop_server(self):
        """Stops the HTTP server."""
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            logger.info("Prometheus server stopped.")

    def update(self):
        ledger = self.token.ledger
        self.total_fees.set(ledger.total_fees)
        self.rate.set(float(ledger.current_rate()))
        self.contract_balance.set(self.token.balance_of(self.token.address))
        self.excluded_accounts.set(len(ledger.excluded))

    def record_transfer(self, status: str, latency: float):
        self.transfer_counter.labels(status=status).inc()
        self.transfer_latency.observe(latency)

    def record_conversion(self, status: str):
        self.conversion_counter.labels(status=status).inc()
