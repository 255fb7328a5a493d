"""
Metrics collector menggunakan Prometheus.
File ini mengumpulkan data performa client seperti
command latency, I/O errors, dan hasil lock acquisition.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest
import time


class MetricsCollector:
    """
    Class untuk mengumpulkan metrics client.
    Menggunakan Prometheus format untuk monitoring.
    """

    def __init__(self):
        # Counter: jumlah command yang dikirim per command name
        self.command_count = Counter(
            'resply_commands_total',
            'Total number of commands sent',
            ['command']
        )

        # Histogram: distribusi round-trip time per command
        self.command_latency = Histogram(
            'resply_command_latency_seconds',
            'Command round-trip latency in seconds',
            ['command']
        )

        self.io_errors = Counter(
            'resply_io_errors_total',
            'Total number of transport failures',
            ['operation']
        )

        self.lock_attempts = Counter(
            'resply_lock_attempts_total',
            'Redlock acquisition attempts by outcome',
            ['outcome']
        )

        self.pubsub_messages = Counter(
            'resply_pubsub_messages_total',
            'Pub/sub messages dispatched to callbacks'
        )

        # Gauge: nilai yang bisa naik/turun
        self.open_connections = Gauge(
            'resply_open_connections',
            'Number of open connections'
        )

    def record_command(self, command: str, duration: float):
        """
        Record command metrics.

        Args:
            command: Nama command (lowercase)
            duration: Round-trip duration in seconds
        """
        self.command_count.labels(command=command).inc()
        self.command_latency.labels(command=command).observe(duration)

    def record_io_error(self, operation: str):
        """Record transport failure (connect, read, write)"""
        self.io_errors.labels(operation=operation).inc()

    def record_lock_attempt(self, acquired: bool):
        """Record hasil satu putaran Redlock"""
        self.lock_attempts.labels(outcome='acquired' if acquired else 'failed').inc()

    def record_pubsub_message(self):
        self.pubsub_messages.inc()

    def connection_opened(self):
        self.open_connections.inc()

    def connection_closed(self):
        self.open_connections.dec()

    def get_metrics(self) -> bytes:
        """
        Export metrics dalam Prometheus format.
        Returns: Metrics data dalam bytes
        """
        return generate_latest()


# Context manager untuk measure command time
class measure_time:
    """
    Context manager untuk mengukur execution time.

    Contoh penggunaan:
        with measure_time() as timer:
            result = await connection.command('ping')
        print(f"Execution time: {timer.elapsed}s")
    """

    def __init__(self):
        self.start_time = None
        self.elapsed = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self.start_time
        return False


# Singleton instance
metrics = MetricsCollector()
