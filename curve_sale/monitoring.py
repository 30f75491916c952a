# curve_sale/monitoring.py
import time
import psutil
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
    allow_reuse_address = True  # Allow reusing the address immediately
    pass

class SaleMonitor:
    def __init__(self, host="127.0.0.1", port=9090, registry: CollectorRegistry = None):
        self.host = host
        self.port = port
        self.server = None
        self.thread = None

        # Isolated registry per monitor so several sales can run in one process
        self.registry = registry or CollectorRegistry()

        self.trade_counter = Counter('sale_trades_total', 'Trades processed by the sale engine', ['side', 'status'], registry=self.registry)
        self.trade_latency = Histogram('sale_trade_latency_seconds', 'Time to process a trade', registry=self.registry)
        self.token_reserve = Gauge('sale_token_reserve', 'Virtual token reserve (smallest units)', registry=self.registry)
        self.currency_reserve = Gauge('sale_currency_reserve', 'Virtual currency reserve (smallest units)', registry=self.registry)
        self.issued_supply = Gauge('sale_issued_supply', 'Tokens issued by the sale', registry=self.registry)
        self.pending_withdrawals = Gauge('sale_pending_withdrawals', 'Currency owed to sellers', registry=self.registry)
        self.migrated = Gauge('sale_migrated', '1 once the sale has migrated to the venue', registry=self.registry)
        self.unique_holders = Gauge('sale_unique_holders', 'Distinct trading addresses', registry=self.registry)
        self.active_users = Gauge('sale_active_users', 'Admitted participants', registry=self.registry)
        self.cpu_usage = Gauge('system_cpu_percent', 'Current CPU usage percent', registry=self.registry)
        self.memory_usage = Gauge('system_memory_percent', 'Current memory usage percent', registry=self.registry)

    @classmethod
    def from_config(cls, config) -> 'SaleMonitor':
        monitor = cls(host=config.host, port=config.port)
        if config.enabled:
            monitor.start_server()
        return monitor

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

    def update(self, engine):
        """Refresh gauges from an engine's committed state."""
        stats = engine.get_stats()
        self.token_reserve.set(stats['token_reserve'])
        self.currency_reserve.set(stats['currency_reserve'])
        self.issued_supply.set(stats['issued_supply'])
        self.pending_withdrawals.set(stats['pending_withdrawals'])
        self.migrated.set(1 if stats['migrated'] else 0)
        self.unique_holders.set(stats['unique_holders'])
        self.active_users.set(stats['active_users'])

        self.cpu_usage.set(psutil.cpu_percent())
        self.memory_usage.set(psutil.virtual_memory().percent)

    def record_trade(self, side: str, status: str, latency: float):
        self.trade_counter.labels(side=side, status=status).inc()
        self.trade_latency.observe(latency)
