# offline_books/demo/seed_demo_data.py

from typing import Dict

from offline_books.storage.repository import Books, open_books


def seed_demo_data(books: Books) -> Dict[str, int]:
    """Fill the store with a small, realistic dataset.

    Returns:
        Number of records created per kind
    """
    smith = books.clients.create(
        name="Jane Smith",
        phone="270-555-0142",
        email="jane.smith@example.com",
        address="1200 Frederica St, Owensboro, KY",
    )
    jones = books.clients.create(
        name="Robert Jones",
        phone="270-555-0199",
        address="45 Parrish Ave, Owensboro, KY",
    )

    spring = books.estimates.create(
        client_id=smith.client_id,
        items=[
            {"description": "Weekly mowing", "quantity": 4, "unit_price": 45.0},
            {"description": "Spring cleanup", "quantity": 1, "unit_price": 150.0},
        ],
    )
    books.estimates.update_status(spring.estimate_id, "approved")
    books.estimates.create(
        client_id=jones.client_id,
        items=[{"description": "Hedge trimming", "quantity": 3, "unit_price": 35.0}],
        status="sent",
    )

    books.invoices.create(books.estimates.convert_to_invoice(spring.estimate_id))
    paid = books.invoices.create(
        client_id=jones.client_id,
        items=[{"description": "Leaf removal", "quantity": 2, "unit_price": 60.0}],
    )
    books.invoices.mark_as_paid(paid.invoice_id)

    return {"clients": 2, "estimates": 2, "invoices": 2}


if __name__ == "__main__":
    with open_books() as demo_books:
        seed_demo_data(demo_books)
    print("Demo data inserted")
