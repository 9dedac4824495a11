import json
import logging
import os
import threading

import httpx

from storefront.events import LowStockDetected, OrderCancelled, OrderCreated
from storefront.models.invoice import OrderInvoice
from storefront.services import order_service
from storefront.services.invoice_service import InvoiceGenerator, TextInvoiceRenderer, get_latest_invoice
from storefront.services.notification_service import NotificationDispatcher, build_dispatcher
from storefront.services.webhook_service import WebhookNotifier, build_payload

from conftest import STAFF_HEADERS, customer_headers, order_payload

CANCELLED = OrderCancelled(order_id="o-1", order_number="ORD-1", reason="Changed mind")


class TestDispatcher:
    def test_handlers_are_isolated(self, recorder, caplog):
        dispatcher = NotificationDispatcher()

        def broken(event):
            raise RuntimeError("boom")

        dispatcher.subscribe(OrderCancelled, broken)
        dispatcher.subscribe(OrderCancelled, recorder)

        with caplog.at_level(logging.ERROR):
            dispatcher.publish(CANCELLED)

        assert recorder.events == [CANCELLED]
        assert "failed for OrderCancelled" in caplog.text

    def test_subscriptions_by_type(self, recorder):
        dispatcher = NotificationDispatcher()
        everything = []
        dispatcher.subscribe(LowStockDetected, recorder)
        dispatcher.subscribe_all(everything.append)

        dispatcher.publish(CANCELLED)

        assert recorder.events == []
        assert everything == [CANCELLED]

    def test_worker_pool_delivery(self):
        dispatcher = build_dispatcher(workers=2)
        delivered = threading.Event()
        dispatcher.subscribe(OrderCancelled, lambda event: delivered.set())

        dispatcher.publish(CANCELLED)
        dispatcher.shutdown()

        assert delivered.is_set()


class TestWebhooks:
    def test_posts_event_payload(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        notifier = WebhookNotifier(urls=["https://hooks.example.com/a"], transport=httpx.MockTransport(handler))

        results = notifier(CANCELLED)

        assert results == [{"url": "https://hooks.example.com/a", "status": 200, "success": True}]
        body = json.loads(seen[0].content)
        assert body["event"] == "OrderCancelled"
        assert body["data"]["order_number"] == "ORD-1"
        assert body["data"]["reason"] == "Changed mind"

    def test_failures_are_reported_not_raised(self):
        def handler(request):
            if request.url.host == "down.example.com":
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(500)

        notifier = WebhookNotifier(
            urls=["https://down.example.com/", "https://broken.example.com/"],
            transport=httpx.MockTransport(handler),
        )

        down, broken = notifier.send(CANCELLED)

        assert down["success"] is False and "refused" in down["error"]
        assert broken == {"url": "https://broken.example.com/", "status": 500, "success": False}

    def test_no_urls_sends_nothing(self):
        def handler(request):
            raise AssertionError("no request expected")

        assert WebhookNotifier(urls=[], transport=httpx.MockTransport(handler)).send(CANCELLED) == []

    def test_payload_carries_timestamp(self):
        payload = build_payload(CANCELLED)
        assert payload["occurred_at"] == CANCELLED.occurred_at.isoformat()


class TestInvoices:
    def test_generated_after_order_commit(self, db, session_factory, make_product, make_order_data, tmp_path):
        dispatcher = NotificationDispatcher()
        dispatcher.subscribe(OrderCreated, InvoiceGenerator(session_factory, TextInvoiceRenderer(str(tmp_path))))
        product = make_product(quantity=10, price="12.50")

        order = order_service.create_order(db, make_order_data((product.id, 2)), dispatcher=dispatcher)

        invoice = get_latest_invoice(db, order.id)
        assert invoice is not None
        assert invoice.invoice_number.startswith("INV-")
        with open(invoice.file_path, encoding="utf-8") as fh:
            text = fh.read()
        assert order.order_number in text
        assert "25.00" in text

    def test_renderer_failure_keeps_order(self, db, session_factory, make_product, make_order_data):
        class BrokenRenderer:
            def render_invoice(self, invoice_number, order):
                raise OSError("disk full")

        dispatcher = NotificationDispatcher()
        dispatcher.subscribe(OrderCreated, InvoiceGenerator(session_factory, BrokenRenderer()))
        product = make_product(quantity=10)

        order = order_service.create_order(db, make_order_data((product.id, 1)), dispatcher=dispatcher)

        assert order_service.get_order(db, order.id) is not None
        assert db.query(OrderInvoice).count() == 0

    def test_download(self, client, session_factory, tmp_path):
        client.app.state.dispatcher.subscribe(
            OrderCreated, InvoiceGenerator(session_factory, TextInvoiceRenderer(str(tmp_path)))
        )
        product = client.post(
            "/api/v1/products", json={"sku": "INV-1", "name": "Lamp", "price": "30.00", "quantity": 5},
            headers=STAFF_HEADERS,
        ).json()
        order = client.post(
            "/api/v1/orders", json=order_payload((product["id"], 1)), headers=customer_headers()
        ).json()

        response = client.get(f"/api/v1/orders/{order['id']}/invoice", headers=customer_headers())

        assert response.status_code == 200
        assert order["order_number"] in response.text
        assert os.listdir(tmp_path)
