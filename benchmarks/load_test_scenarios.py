"""
Load testing scenarios menggunakan Locust, lewat HTTP adapter.

Cara menjalankan:
  python -m resply proxy --listen-port 8080
  locust -f benchmarks/load_test_scenarios.py --host=http://localhost:8080
"""

from locust import HttpUser, task, between, events
import random
import time


class CommandUser(HttpUser):
    """
    Simulate user yang mengirim single command (SET/GET/INCR).
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        """Called saat user start"""
        self.user_id = random.randint(1, 1000)
        self.keys = [f"key_{i}" for i in range(100)]

    def _command(self, *args, name=None):
        with self.client.post(
            "/api/command",
            json={'command': list(args)},
            name=name or f"/api/command [{args[0]}]",
            catch_response=True
        ) as response:
            if response.status_code != 200:
                response.failure(f"HTTP {response.status_code}")
                return None

            result = response.json()['result']
            if result['type'] in ('protocol_error', 'io_error'):
                response.failure(f"{result['type']}: {result['value']}")
            else:
                response.success()
            return result

    @task(5)
    def get_key(self):
        self._command('get', random.choice(self.keys))

    @task(2)
    def set_key(self):
        value = f"value_{self.user_id}_{time.time()}"
        self._command('set', random.choice(self.keys), value)

    @task(1)
    def incr_counter(self):
        self._command('incr', f"counter_{self.user_id % 10}")


class PipelineUser(HttpUser):
    """
    Simulate user yang mengirim batch command dalam satu pipeline.
    """
    wait_time = between(0.2, 1.0)

    def on_start(self):
        self.batch_size = random.choice([5, 10, 50])

    @task(3)
    def incr_batch(self):
        key = f"pipeline_{random.randint(1, 20)}"
        commands = [['incr', key] for _ in range(self.batch_size)]

        with self.client.post(
            "/api/pipeline",
            json={'commands': commands},
            catch_response=True
        ) as response:
            if response.status_code != 200:
                response.failure(f"HTTP {response.status_code}")
                return

            results = response.json()['results']
            values = [r['value'] for r in results]
            # Reply harus berurutan sesuai command
            if len(values) != self.batch_size or values != sorted(values):
                response.failure(f"Out of order replies: {values}")
            else:
                response.success()

    @task(1)
    def check_status(self):
        """Check proxy status"""
        self.client.get("/api/status")


# Event handlers untuk custom metrics
@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("Load test starting...")


@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    print("Load test complete!")
    print(f"Total requests: {environment.stats.total.num_requests}")
    print(f"Failure rate: {environment.stats.total.fail_ratio:.2%}")
