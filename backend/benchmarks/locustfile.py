import uuid

from locust import HttpUser, task, between


class ShopOwner(HttpUser):
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = {"X-Actor-Id": str(uuid.uuid4()), "X-Actor-Role": "shop_owner"}
        r = self.client.post("/api/shops/", json={"name": "bench shop", "category": "grocery"}, headers=self.headers)
        self.shop_id = r.json().get("id")

    @task(3)
    def list_shops(self):
        self.client.get("/api/shops/", headers=self.headers)

    @task(1)
    def submit_document(self):
        data = {"shop_id": self.shop_id, "document_type": "business_license", "file_url": "s3://bench/license.pdf"}
        self.client.post("/api/documents/", json=data, headers=self.headers)


class Browser(HttpUser):
    wait_time = between(1, 3)

    @task
    def browse(self):
        self.client.get("/api/shops/")
