import uuid

from locust import HttpUser, task, between

class DashboardUser(HttpUser):
    wait_time = between(1, 3)

    def on_start(self):
        self.channel_id = f"0x{uuid.uuid4().hex[:40]}"
        payload = {"status": "active", "leader": "0x" + "1" * 40}
        self.client.put(f"/api/channels/{self.channel_id}", json=payload)

    @task(3)
    def list_submitted_proofs(self):
        self.client.get(
            f"/api/channels/{self.channel_id}/proofs",
            params={"type": "submitted"},
            name="/api/channels/[id]/proofs",
        )

    @task(1)
    def reserve_slot(self):
        self.client.post(
            f"/api/channels/{self.channel_id}/proofs/reserve",
            name="/api/channels/[id]/proofs/reserve",
        )
