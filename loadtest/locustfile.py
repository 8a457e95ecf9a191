"""Locust load test suite for the Harmony backend.

Two user personas:
- Scanner (70%): encrypted QR scans with a strictly increasing code, plus
  the incremental activity sync a client runs after each scan
- Dashboard (30%): graphs and the archive-backed export

Run loadtest/seed_data.py first; it writes the ids and tokens used here.
QR_ENCRYPTION_KEY must match the server's key.

Target metrics:
- p95 scan latency < 150ms
- zero REPLAY_DETECTED responses (each scanner owns its device)
"""

import itertools
import json
import random
import time
from pathlib import Path

from locust import task, between, events
from locust.contrib.fasthttp import FastHttpUser

from harmony.core.config import get_settings
from harmony.services.qr_codec import QRAction, QRCodec, QRCodecConfig, QRPayload

SEED = json.loads((Path(__file__).parent / "seed.json").read_text())
WORKSPACE_ID = SEED["workspaceId"]

_codec = QRCodec(QRCodecConfig.from_settings(get_settings()))
_scanner_slots = itertools.cycle(SEED["scanners"])


class HarmonyScanner(FastHttpUser):
    """Member scanning their own device.

    Weight: 70% of traffic
    """

    weight = 7
    wait_time = between(1, 3)

    def on_start(self):
        scanner = next(_scanner_slots)
        self.device_id = scanner["deviceId"]
        self.headers = {"Authorization": f"Bearer {scanner['token']}"}
        # Millisecond clock start keeps codes above any earlier run's
        self.codes = itertools.count(int(time.time() * 1000))
        self.synced_at = None

    def _payload(self) -> str:
        return _codec.encrypt(QRPayload(self.device_id, "SMART_BIN", QRAction.SCAN, next(self.codes)))

    @task(6)
    def scan_in_workspace(self):
        with self.client.post(
            f"/api/v1/workspaces/{WORKSPACE_ID}/scan",
            json={"encryptedPayload": self._payload()},
            headers=self.headers,
            name="POST /workspaces/{id}/scan",
            catch_response=True,
        ) as response:
            if response.status_code != 200:
                response.failure(f"scan rejected: {response.text}")

    @task(2)
    def scan_global(self):
        self.client.post(
            "/api/v1/scan",
            json={"encryptedPayload": self._payload()},
            headers=self.headers,
            name="POST /scan",
        )

    @task(4)
    def sync_activities(self):
        params = {"limit": 50}
        if self.synced_at:
            params["since"] = self.synced_at
        response = self.client.get(
            f"/api/v1/workspaces/{WORKSPACE_ID}/activities",
            params=params,
            headers=self.headers,
            name="GET /workspaces/{id}/activities",
        )
        if response.status_code == 200:
            self.synced_at = response.json().get("syncedAt")


class HarmonyDashboard(FastHttpUser):
    """Owner browsing charts and exports.

    Weight: 30% of traffic
    """

    weight = 3
    wait_time = between(3, 8)

    def on_start(self):
        self.headers = {"Authorization": f"Bearer {SEED['ownerToken']}"}

    @task(5)
    def view_graph(self):
        graph_range = random.choice(["today", "yesterday", "7days", "30days"])
        self.client.get(
            f"/api/v1/workspaces/{WORKSPACE_ID}/activities/graph",
            params={"range": graph_range},
            headers=self.headers,
            name="GET /workspaces/{id}/activities/graph",
        )

    @task(1)
    def export_all(self):
        self.client.post(
            f"/api/v1/workspaces/{WORKSPACE_ID}/activities/export",
            json={"ownership": "ALL"},
            headers=self.headers,
            name="POST /workspaces/{id}/activities/export",
        )

    @task(1)
    def export_info(self):
        self.client.get(
            f"/api/v1/workspaces/{WORKSPACE_ID}/activities/export-info",
            headers=self.headers,
            name="GET /workspaces/{id}/activities/export-info",
        )


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print(f"Load test starting against workspace {WORKSPACE_ID} "
          f"with {len(SEED['scanners'])} seeded scanners")
