#!/usr/bin/env python3
"""
Traffic generator for the storefront service.
Simulates shoppers browsing the catalog, filling carts, placing and cancelling orders
"""

import random
import threading
import time
import uuid
from datetime import datetime

import requests

API_URL = "http://localhost:8000"

SORTS = ["newest", "price_asc", "price_desc", "popular", "rating"]
PAYMENT_METHODS = ["card", "paypal", "cash_on_delivery"]
CITIES = [("Austin", "TX", "US"), ("Leeds", "West Yorkshire", "GB"), ("Dhaka", "Dhaka", "BD")]

# Weight for actions
ACTION_WEIGHTS = {
    "browse": 0.4,
    "add_to_cart": 0.3,
    "checkout": 0.15,
    "view_orders": 0.1,
    "cancel_order": 0.05,
}


def log(message):
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    print(f"[{timestamp}] {message}")


def random_address(name):
    city, state, country = random.choice(CITIES)
    return {
        "full_name": name,
        "phone": f"+1555{random.randint(1000000, 9999999)}",
        "address": f"{random.randint(1, 999)} Market Street",
        "city": city,
        "state": state,
        "postal_code": str(random.randint(10000, 99999)),
        "country": country,
    }


class Shopper:
    def __init__(self, shopper_id, registered=True):
        self.shopper_id = shopper_id
        self.registered = registered
        self.name = f"Shopper {shopper_id}"
        self.token = None
        self.session_id = str(uuid.uuid4())
        self.products = []
        self.order_ids = []

    @property
    def headers(self):
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {"X-Session-Id": self.session_id}

    def register(self):
        if not self.registered:
            log(f"{self.shopper_id}: Anonymous shopper (session cart)")
            return False
        try:
            response = requests.post(
                f"{API_URL}/api/auth/register",
                json={
                    "name": self.name,
                    "email": f"{self.shopper_id}-{uuid.uuid4().hex[:6]}@example.com",
                    "password": "correct-horse-battery",
                    "newsletter": random.random() < 0.3,
                },
                timeout=5
            )
            if response.status_code == 201:
                self.token = response.json()["token"]
                log(f"{self.shopper_id}: Registered")
                return True
            log(f"{self.shopper_id}: Registration failed - {response.status_code}")
        except requests.RequestException as e:
            log(f"{self.shopper_id}: Registration error - {e}")
        return False

    def fetch_products(self):
        try:
            response = requests.get(
                f"{API_URL}/api/products",
                params={"sort": random.choice(SORTS), "limit": 50},
                timeout=5
            )
            if response.status_code == 200:
                self.products = response.json()["products"]
                log(f"{self.shopper_id}: Fetched {len(self.products)} products")
                return True
        except requests.RequestException as e:
            log(f"{self.shopper_id}: Failed to fetch products - {e}")
        return False

    def browse_products(self):
        if not self.products:
            self.fetch_products()
        if not self.products:
            return False

        product = random.choice(self.products)
        try:
            response = requests.get(f"{API_URL}/api/products/{product['slug']}", timeout=5)
            if response.status_code == 200:
                log(f"{self.shopper_id}: Browsing {product['name']}")
                return True
        except requests.RequestException as e:
            log(f"{self.shopper_id}: Failed to browse product - {e}")
        return False

    def add_to_cart(self):
        if not self.products:
            self.fetch_products()
        if not self.products:
            return False

        product = random.choice(self.products)
        try:
            response = requests.post(
                f"{API_URL}/api/cart/add",
                json={"product_id": product["id"], "quantity": random.randint(1, 3)},
                headers=self.headers,
                timeout=5
            )
            if response.status_code == 200:
                log(f"{self.shopper_id}: Added {product['name']} to cart")
                return True
            log(f"{self.shopper_id}: Failed to add to cart - {response.status_code}")
        except requests.RequestException as e:
            log(f"{self.shopper_id}: Failed to add to cart - {e}")
        return False

    def checkout(self):
        """Order whatever is in the cart."""
        try:
            cart = requests.get(f"{API_URL}/api/cart", headers=self.headers, timeout=5).json()["cart"]
            if not cart["items"]:
                return False

            payload = {
                "items": [
                    {"product_id": item["product_id"], "quantity": item["quantity"], "variant": item["variant"]}
                    for item in cart["items"]
                ],
                "shipping_address": random_address(self.name),
                "payment_method": random.choice(PAYMENT_METHODS),
            }
            if random.random() < 0.2:
                payload["coupon_code"] = "WELCOME10"

            response = requests.post(f"{API_URL}/api/orders", json=payload, headers=self.headers, timeout=10)
            if response.status_code == 201:
                order = response.json()["order"]
                self.order_ids.append(order["id"])
                log(f"{self.shopper_id}: Checkout successful - {order['order_number']} total {order['total']}")
                return True
            log(f"{self.shopper_id}: Checkout failed - {response.status_code} {response.json().get('error')}")
        except requests.RequestException as e:
            log(f"{self.shopper_id}: Checkout failed - {e}")
        return False

    def view_orders(self):
        try:
            response = requests.get(f"{API_URL}/api/orders", headers=self.headers, timeout=5)
            if response.status_code == 200:
                log(f"{self.shopper_id}: Viewing {len(response.json()['orders'])} orders")
                return True
        except requests.RequestException as e:
            log(f"{self.shopper_id}: Failed to view orders - {e}")
        return False

    def cancel_order(self):
        if not self.order_ids:
            return False
        order_id = self.order_ids.pop(random.randrange(len(self.order_ids)))
        try:
            response = requests.post(
                f"{API_URL}/api/orders/{order_id}/cancel",
                json={"reason": "Changed my mind"},
                headers=self.headers,
                timeout=5
            )
            log(f"{self.shopper_id}: Cancel order {order_id} - {response.status_code}")
            return response.status_code == 200
        except requests.RequestException as e:
            log(f"{self.shopper_id}: Failed to cancel order - {e}")
        return False

    def random_action(self):
        action = random.choices(list(ACTION_WEIGHTS), weights=list(ACTION_WEIGHTS.values()))[0]
        return getattr(self, {"browse": "browse_products"}.get(action, action))()


def shopper_session(shopper_id, duration_seconds, shopper_type="browser"):
    """
    Simulate a shopper session

    shopper_type:
    - "browser": Just browses products (50%)
    - "cart_abandoner": Fills an anonymous cart and leaves (30%)
    - "buyer": Registers and places orders (20%)
    """
    shopper = Shopper(shopper_id, registered=(shopper_type == "buyer"))
    end_time = time.time() + duration_seconds

    shopper.fetch_products()
    for _ in range(random.randint(2, 5)):
        shopper.browse_products()
        time.sleep(random.uniform(0.5, 1.5))

    if shopper_type == "browser":
        while time.time() < end_time:
            shopper.browse_products()
            time.sleep(random.uniform(0.3, 0.8))

    elif shopper_type == "cart_abandoner":
        for _ in range(random.randint(1, 3)):
            shopper.add_to_cart()
            time.sleep(random.uniform(0.3, 0.8))
        log(f"{shopper_id}: Leaving with a full cart")

    elif shopper_type == "buyer":
        shopper.register()
        for _ in range(random.randint(1, 3)):
            shopper.add_to_cart()
            time.sleep(random.uniform(0.3, 0.8))
        shopper.checkout()

        while time.time() < end_time:
            shopper.random_action()
            time.sleep(random.uniform(0.5, 1.5))


def generate_traffic(num_concurrent_shoppers=5, session_duration=60):
    """Generate traffic with multiple concurrent shoppers"""
    log(f"Starting traffic generation with {num_concurrent_shoppers} concurrent shoppers")
    log(f"Session duration: {session_duration} seconds")

    threads = []
    try:
        while True:
            while len([t for t in threads if t.is_alive()]) < num_concurrent_shoppers:
                shopper_id = f"shopper_{random.randint(1000, 9999)}"
                rand = random.random()
                if rand < 0.50:
                    shopper_type = "browser"
                elif rand < 0.80:
                    shopper_type = "cart_abandoner"
                else:
                    shopper_type = "buyer"

                thread = threading.Thread(
                    target=shopper_session,
                    args=(shopper_id, session_duration, shopper_type)
                )
                thread.start()
                threads.append(thread)

                time.sleep(random.uniform(1, 3))

            threads = [t for t in threads if t.is_alive()]
            time.sleep(5)

    except KeyboardInterrupt:
        log("Stopping traffic generation...")
        for thread in threads:
            thread.join(timeout=10)
        log("Traffic generation stopped")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Generate traffic for the storefront service")
    parser.add_argument("--users", type=int, default=5, help="Number of concurrent shoppers (default: 5)")
    parser.add_argument("--duration", type=int, default=60, help="Session duration in seconds (default: 60)")
    parser.add_argument("--url", type=str, default="http://localhost:8000", help="API URL (default: http://localhost:8000)")

    args = parser.parse_args()
    API_URL = args.url

    log("=" * 60)
    log("Storefront Traffic Generator")
    log("=" * 60)
    log(f"API URL: {API_URL}")
    log(f"Concurrent Shoppers: {args.users}")
    log(f"Session Duration: {args.duration}s")
    log("=" * 60)

    generate_traffic(args.users, args.duration)
