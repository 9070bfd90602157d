import random

from locust import HttpUser, task, between

from storefront.cart import Cart


class Shopper(HttpUser):
    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Each simulated shopper gets its own account and cart
        uname = f"shopper_{random.randint(1, 1_000_000)}"
        self.client.post(
            "/auth/signup",
            json={"username": uname, "password": "loadtest-pw", "email": f"{uname}@example.com"},
        )
        self.cart = Cart()
        self.product_ids = []

    @task(5)
    def browse(self):
        r = self.client.get("/products")
        if r.status_code == 200:
            self.product_ids = [p["id"] for p in r.json()]

    @task(3)
    def add_to_cart(self):
        if self.product_ids:
            self.cart.add(random.choice(self.product_ids), random.randint(1, 3))

    @task(1)
    def checkout(self):
        if not len(self.cart):
            return
        # Hits the configured gateway; point STRIPE_SECRET_KEY at a test-mode key
        r = self.client.post("/checkout", json=self.cart.to_payload())
        if r.status_code == 200:
            self.cart.clear()

    @task(1)
    def order_history(self):
        self.client.get("/orders")
