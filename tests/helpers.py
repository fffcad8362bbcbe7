import unittest
from unittest import mock

import mongomock
from fastapi.testclient import TestClient

import config
import database
from themes import classify_product

POSTAGE = {
    "letter": {"label": "Large letter", "price": 3.5},
    "pickup": {"label": "Pickup", "price": 0.0},
}


def make_product(inventory_id, item_no, name, price, qty, **extra):
    doc = {
        "inventoryId": inventory_id,
        "itemNo": item_no,
        "name": name,
        "type": "MINIFIG",
        "condition": "U",
        "price": price,
        "qty": qty,
        "imageUrl": None,
    }
    doc.update(classify_product(doc))
    doc.update(extra)
    return doc


class MongoTestCase(unittest.TestCase):
    """Runs each test against a fresh in-memory database."""

    def setUp(self):
        self.db = mongomock.MongoClient()["bricklink_test"]
        patcher = mock.patch.object(database, "db", self.db)
        patcher.start()
        self.addCleanup(patcher.stop)

        postage = mock.patch.object(config, "POSTAGE_OPTIONS", dict(POSTAGE))
        postage.start()
        self.addCleanup(postage.stop)

    @property
    def products(self):
        return self.db[config.PRODUCTS_COLLECTION]

    @property
    def orders(self):
        return self.db[config.ORDERS_COLLECTION]

    def qty_of(self, inventory_id):
        return self.products.find_one({"inventoryId": inventory_id})["qty"]


class ApiTestCase(MongoTestCase):

    def setUp(self):
        super().setUp()
        from main import app
        self.client = TestClient(app)

    def patch_config(self, **values):
        for name, value in values.items():
            patcher = mock.patch.object(config, name, value)
            patcher.start()
            self.addCleanup(patcher.stop)
