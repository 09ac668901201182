import os
import unittest
from datetime import date
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")

from fastapi.testclient import TestClient

from backend.database import create_database_engine, init_db
from backend.main import app, get_engine


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_database_engine("sqlite://")
        init_db(self.engine)
        app.dependency_overrides[get_engine] = lambda: self.engine
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.engine.dispose()

    def register(self, email: str = "ana@example.com") -> dict:
        response = self.client.post(
            "/auth/register", json={"email": email, "password": "secret1"}
        )
        self.assertEqual(response.status_code, 201, response.text)
        user = response.json()
        self.headers = {"x-user-id": user["id"]}
        return user

    def category_id(self, name: str) -> str:
        response = self.client.get("/financial/categories", headers=self.headers)
        for category in response.json():
            if category["name"] == name:
                return category["id"]
        raise AssertionError(f"missing category {name}")


class AuthApiTests(ApiTestCase):
    def test_register_normalizes_email_and_seeds_categories(self) -> None:
        user = self.register("Ana@Example.COM ")

        self.assertEqual(user["email"], "ana@example.com")
        categories = self.client.get("/financial/categories", headers=self.headers).json()
        self.assertEqual(len(categories), 10)
        self.assertIn(("Groceries", "expense"), {(c["name"], c["type"]) for c in categories})

    def test_duplicate_email_conflicts(self) -> None:
        self.register()

        response = self.client.post(
            "/auth/register", json={"email": "ana@example.com", "password": "secret1"}
        )

        self.assertEqual(response.status_code, 409)

    def test_short_password_rejected(self) -> None:
        response = self.client.post(
            "/auth/register", json={"email": "ana@example.com", "password": "123"}
        )

        self.assertEqual(response.status_code, 400)

    def test_login(self) -> None:
        user = self.register()

        ok = self.client.post("/auth/login", json={"email": "ANA@example.com", "password": "secret1"})
        bad = self.client.post("/auth/login", json={"email": "ana@example.com", "password": "nope99"})

        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json()["id"], user["id"])
        self.assertEqual(bad.status_code, 401)

    def test_identity_header_required(self) -> None:
        missing = self.client.get("/financial/categories")
        unknown = self.client.get("/financial/categories", headers={"x-user-id": "ghost"})

        self.assertEqual(missing.status_code, 401)
        self.assertEqual(unknown.status_code, 404)


class TransactionApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.register()
        self.groceries = self.category_id("Groceries")
        self.salary = self.category_id("Salary")

    def post_transaction(self, **overrides):
        payload = {
            "description": "Market",
            "amount": 100,
            "type": "expense",
            "category_id": self.groceries,
            "transaction_date": "2024-03-15",
        }
        payload.update(overrides)
        return self.client.post("/financial/transactions", json=payload, headers=self.headers)

    def test_single_transaction_is_normalized(self) -> None:
        response = self.post_transaction(recurrence_start_date="2024-01-01")

        self.assertEqual(response.status_code, 201, response.text)
        body = response.json()
        self.assertEqual(Decimal(str(body["amount"])), Decimal("100"))
        self.assertEqual(body["total_installments"], 1)
        self.assertEqual(body["paid_installments"], 1)
        self.assertEqual(body["start_date"], "2024-03-15")
        self.assertIsNone(body["recurrence_start_date"])

    def test_installment_defaults(self) -> None:
        response = self.post_transaction(
            description="Laptop",
            amount=300,
            transaction_date="2024-01-10",
            is_installment=True,
            installments={"total_installments": 3},
        )

        self.assertEqual(response.status_code, 201, response.text)
        body = response.json()
        self.assertTrue(body["is_installment"])
        self.assertEqual(body["total_installments"], 3)
        self.assertEqual(body["paid_installments"], 0)
        self.assertEqual(body["start_date"], "2024-01-10")

    def test_invalid_payloads(self) -> None:
        both = self.post_transaction(
            is_installment=True,
            is_recurrent=True,
            recurrence_start_date="2024-01-01",
            installments={"total_installments": 3},
        )
        too_many = self.post_transaction(is_installment=True, installments={"total_installments": 49})
        no_anchor = self.post_transaction(is_recurrent=True)
        negative = self.post_transaction(amount=-5)
        bad_type = self.post_transaction(type="transfer")
        camel_case = self.post_transaction(isInstallment=True)

        self.assertEqual(both.status_code, 400)
        self.assertEqual(too_many.status_code, 400)
        self.assertEqual(no_anchor.status_code, 400)
        self.assertEqual(negative.status_code, 400)
        self.assertEqual(bad_type.status_code, 400)
        self.assertEqual(camel_case.status_code, 422)

    def test_foreign_category_rejected(self) -> None:
        response = self.post_transaction(category_id="not-mine")

        self.assertEqual(response.status_code, 404)

    def test_monthly_view_and_plans(self) -> None:
        self.post_transaction()
        self.post_transaction(
            description="Laptop",
            amount=300,
            transaction_date="2024-01-10",
            is_installment=True,
            installments={"total_installments": 3},
        )
        self.post_transaction(
            description="Salary",
            amount=1500,
            type="revenue",
            category_id=self.salary,
            transaction_date="2024-01-15",
            is_recurrent=True,
            recurrence_start_date="2024-01-15",
        )

        response = self.client.get(
            "/financial/summary/monthly-view",
            params={"year": 2024, "month": 3},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual((body["year"], body["month"]), (2024, 3))
        descriptions = sorted(entry["description"] for entry in body["transactions"])
        self.assertEqual(descriptions, ["Laptop (3/3)", "Market", "Salary"])
        self.assertEqual(
            body["summary"], {"totalRevenue": 1500.0, "totalExpense": 200.0, "balance": 1300.0}
        )

        earlier = self.client.get(
            "/financial/summary/monthly-view",
            params={"year": 2023, "month": 12},
            headers=self.headers,
        ).json()
        self.assertEqual(earlier["transactions"], [])

        plans = self.client.get(
            "/financial/summary/installment-plans", headers=self.headers
        ).json()["installmentPlans"]
        self.assertEqual(len(plans), 1)
        self.assertEqual(plans[0]["totalInstallments"], 3)
        self.assertEqual(plans[0]["paidInstallments"], 0)
        self.assertEqual(plans[0]["remainingInstallments"], 3)
        self.assertEqual(plans[0]["startDate"], "2024-01-10")
        self.assertEqual(plans[0]["status"], "overdue")

    def test_monthly_view_rejects_bad_month(self) -> None:
        response = self.client.get(
            "/financial/summary/monthly-view",
            params={"year": 2024, "month": 13},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 400)

    def test_monthly_view_checks_parameters_before_identity(self) -> None:
        response = self.client.get(
            "/financial/summary/monthly-view",
            params={"year": 2024, "month": 0},
            headers={"x-user-id": "ghost"},
        )

        self.assertEqual(response.status_code, 400)

    def test_update_list_and_delete(self) -> None:
        created = self.post_transaction().json()

        updated = self.client.put(
            f"/financial/transactions/{created['id']}",
            json={
                "description": "Market run",
                "amount": 80,
                "type": "expense",
                "category_id": self.groceries,
                "transaction_date": "2024-03-20",
            },
            headers=self.headers,
        )
        listed = self.client.get(
            "/financial/transactions",
            params={"start_date": "2024-03-01", "end_date": "2024-03-31"},
            headers=self.headers,
        )
        deleted = self.client.delete(f"/financial/transactions/{created['id']}", headers=self.headers)
        missing = self.client.delete(f"/financial/transactions/{created['id']}", headers=self.headers)

        self.assertEqual(updated.status_code, 200, updated.text)
        self.assertEqual(updated.json()["description"], "Market run")
        self.assertEqual([row["id"] for row in listed.json()], [created["id"]])
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(missing.status_code, 404)


class ShoppingApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.register()
        category = self.client.post(
            "/shopping/categories", json={"name": "Produce"}, headers=self.headers
        )
        self.assertEqual(category.status_code, 201, category.text)
        self.shopping_category = category.json()["id"]

    def create_product(self, name: str, unit: str = "kg"):
        return self.client.post(
            "/shopping/products",
            json={"name": name, "unit": unit, "category_id": self.shopping_category},
            headers=self.headers,
        )

    def test_product_unit_validated(self) -> None:
        self.assertEqual(self.create_product("Rice", unit="bag").status_code, 400)
        self.assertEqual(self.create_product("Rice").status_code, 201)

    def test_complete_list_creates_expense(self) -> None:
        apples = self.create_product("Apples").json()["id"]
        milk = self.create_product("Milk", unit="l").json()["id"]
        shopping_list = self.client.post(
            "/shopping/lists", json={"name": "Weekly"}, headers=self.headers
        ).json()
        list_id = shopping_list["id"]

        single = self.client.post(
            f"/shopping/lists/{list_id}/items",
            json={"product_id": apples, "quantity": 2, "price": 10},
            headers=self.headers,
        )
        batch = self.client.post(
            f"/shopping/lists/{list_id}/items",
            json=[{"product_id": milk, "quantity": 1, "price": 3}],
            headers=self.headers,
        )
        self.assertEqual(single.status_code, 201, single.text)
        self.assertEqual(batch.status_code, 201, batch.text)
        milk_item = batch.json()[0]["id"]

        completed = self.client.post(
            f"/shopping/lists/{list_id}/complete",
            json={"items": [{"id": milk_item, "price": 5.5}]},
            headers=self.headers,
        )

        self.assertEqual(completed.status_code, 200, completed.text)
        body = completed.json()
        self.assertEqual(body["list"]["status"], "completed")
        self.assertEqual(Decimal(str(body["list"]["total_amount"])), Decimal("25.50"))
        self.assertEqual(body["transaction"]["description"], "Shopping: Weekly")
        self.assertEqual(Decimal(str(body["transaction"]["amount"])), Decimal("25.50"))
        self.assertEqual(body["transaction"]["category_id"], self.category_id("Groceries"))
        self.assertEqual(body["transaction"]["transaction_date"], date.today().isoformat())
        self.assertEqual({item["product_name"] for item in body["list"]["items"]}, {"Apples", "Milk"})

        again = self.client.post(f"/shopping/lists/{list_id}/complete", headers=self.headers)
        self.assertEqual(again.status_code, 409)

        today = date.today()
        view = self.client.get(
            "/financial/summary/monthly-view",
            params={"year": today.year, "month": today.month},
            headers=self.headers,
        ).json()
        self.assertEqual(view["summary"]["totalExpense"], 25.5)

        self.client.delete(f"/shopping/lists/{list_id}", headers=self.headers)
        remaining = self.client.get("/financial/transactions", headers=self.headers).json()
        self.assertEqual(remaining, [])

    def test_sync_replaces_items(self) -> None:
        apples = self.create_product("Apples").json()["id"]
        milk = self.create_product("Milk", unit="l").json()["id"]
        list_id = self.client.post(
            "/shopping/lists", json={"name": "Weekly"}, headers=self.headers
        ).json()["id"]
        self.client.post(
            f"/shopping/lists/{list_id}/items",
            json={"product_id": apples, "quantity": 2, "price": 10},
            headers=self.headers,
        )

        synced = self.client.put(
            f"/shopping/lists/{list_id}",
            json={"name": "Weekend", "items": [{"product_id": milk, "quantity": 3}]},
            headers=self.headers,
        )

        self.assertEqual(synced.status_code, 200, synced.text)
        body = synced.json()
        self.assertEqual(body["name"], "Weekend")
        self.assertEqual([item["product_name"] for item in body["items"]], ["Milk"])

    def test_referenced_rows_cannot_be_deleted(self) -> None:
        apples = self.create_product("Apples").json()["id"]
        list_id = self.client.post(
            "/shopping/lists", json={"name": "Weekly"}, headers=self.headers
        ).json()["id"]
        self.client.post(
            f"/shopping/lists/{list_id}/items",
            json={"product_id": apples, "quantity": 1, "price": 2},
            headers=self.headers,
        )

        category = self.client.delete(
            f"/shopping/categories/{self.shopping_category}", headers=self.headers
        )
        product = self.client.delete(f"/shopping/products/{apples}", headers=self.headers)

        self.assertEqual(category.status_code, 409)
        self.assertEqual(product.status_code, 409)

    def test_complete_requires_expense_category(self) -> None:
        apples = self.create_product("Apples").json()["id"]
        list_id = self.client.post(
            "/shopping/lists", json={"name": "Weekly"}, headers=self.headers
        ).json()["id"]
        self.client.post(
            f"/shopping/lists/{list_id}/items",
            json={"product_id": apples, "quantity": 1, "price": 2},
            headers=self.headers,
        )
        with self.engine.begin() as conn:
            conn.exec_driver_sql("DELETE FROM financial_categories WHERE name = 'Groceries'")

        response = self.client.post(f"/shopping/lists/{list_id}/complete", headers=self.headers)
        detail = self.client.get(f"/shopping/lists/{list_id}", headers=self.headers).json()

        self.assertEqual(response.status_code, 404)
        self.assertEqual(detail["status"], "pending")


if __name__ == "__main__":
    unittest.main()
