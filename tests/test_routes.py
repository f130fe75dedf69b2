"""
API route tests through the FastAPI TestClient.

Database sessions are mocked; the authenticated user is injected by
overriding get_auth_result (see conftest.py).
"""

from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from backoffice.db.models import AuditLog, Resource, Testimonial, User
from backoffice.exceptions import DeliveryError, WebhookVerificationError
from backoffice.models.api import InvoiceStatus, PendingPaymentStatus
from backoffice.services.audit import to_epoch_millis
from backoffice.services.payment_provider import CheckoutSession, WebhookEvent


def _session(**overrides) -> CheckoutSession:
    data = {
        "session_id": "cs_test_123",
        "url": "https://checkout.stripe.com/c/pay/cs_test_123",
        "payment_status": "paid",
        "amount_total_minor": 12500,
        "currency": "usd",
        "customer_email": "jordan@example.com",
        "metadata": {},
    }
    data.update(overrides)
    return CheckoutSession(**data)


# ============================================================================
# Authorization
# ============================================================================


class TestAuthorization:
    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("get", "/invoices"),
            ("get", "/payment/admin/payments"),
            ("get", "/audit/recent"),
            ("get", "/analytics/dashboard"),
            ("get", "/leads"),
            ("post", "/payment/admin/expire-overdue"),
            ("get", "/admin/resources"),
        ],
    )
    def test_anonymous_is_unauthorized(self, anon_client: TestClient, method: str, path: str):
        response = getattr(anon_client, method)(path)
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("get", "/invoices"),
            ("get", "/audit/logs"),
            ("post", "/audit/purge"),
            ("post", "/auth/purge-tokens"),
            ("get", "/admin/testimonials"),
        ],
    )
    def test_non_admin_is_forbidden(self, user_client: TestClient, method: str, path: str):
        response = getattr(user_client, method)(path)
        assert response.status_code == 403
        assert response.json() == {"error": "Forbidden - Admin access required"}

    def test_me_for_regular_user(self, user_client: TestClient):
        response = user_client.get("/auth/me")
        assert response.status_code == 200
        assert response.json()["user"] == {"uid": "kp_user_002", "email": "client@example.com", "role": "user"}

    def test_me_without_credential(self, anon_client: TestClient):
        assert anon_client.get("/auth/me").status_code == 401


# ============================================================================
# Invoices
# ============================================================================


class TestInvoiceRoutes:
    def test_list(self, admin_client: TestClient, db_session: AsyncMock, invoice_factory, make_result, fixed_now):
        past_due = invoice_factory(status=InvoiceStatus.SENT, due_date=fixed_now - timedelta(days=2))
        db_session.execute = AsyncMock(side_effect=[make_result(scalar_one=1), make_result(scalars=[past_due])])

        response = admin_client.get("/invoices", params={"status": "overdue"})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        invoice = body["invoices"][0]
        assert invoice["invoiceNumber"] == "INV-202603-0042"
        assert invoice["status"] == "overdue"
        assert invoice["storedStatus"] == "sent"
        assert invoice["items"][0]["unitPrice"] == 50.0

    def test_list_invalid_status(self, admin_client: TestClient):
        response = admin_client.get("/invoices", params={"status": "archived"})
        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid status 'archived'")

    def test_generate(self, admin_client: TestClient, db_session: AsyncMock):
        response = admin_client.post(
            "/invoice/generate",
            json={
                "clientName": "Jordan Rivera",
                "clientEmail": "jordan@example.com",
                "items": [{"description": "Coaching session", "quantity": 2, "unitPrice": 50}],
                "taxRate": 10,
            },
        )

        assert response.status_code == 200
        invoice = response.json()["invoice"]
        assert invoice["subtotal"] == 100.0
        assert invoice["taxAmount"] == 10.0
        assert invoice["total"] == 110.0
        assert invoice["status"] == "draft"
        added = [call.args[0] for call in db_session.add.call_args_list]
        assert any(isinstance(row, AuditLog) and row.action == "create" for row in added)

    def test_generate_validation_error_format(self, admin_client: TestClient):
        response = admin_client.post("/invoice/generate", json={"clientName": "Jordan"})
        assert response.status_code == 400
        assert response.json()["error"].startswith("clientEmail:")

    def test_generate_domain_validation(self, admin_client: TestClient):
        response = admin_client.post(
            "/invoice/generate",
            json={"clientName": "Jordan", "clientEmail": "jordan@example.com", "items": []},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "At least one line item is required"}

    def test_update_status_conflict(self, admin_client: TestClient, db_session: AsyncMock, invoice_factory):
        invoice = invoice_factory(status=InvoiceStatus.PAID)
        db_session.get = AsyncMock(return_value=invoice)

        response = admin_client.post(
            "/invoice/update-status", json={"invoiceId": str(invoice.id), "status": "sent"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Cannot change invoice status from paid to sent"}

    def test_update_status(self, admin_client: TestClient, db_session: AsyncMock, draft_invoice):
        db_session.get = AsyncMock(return_value=draft_invoice)

        response = admin_client.post(
            "/invoice/update-status", json={"invoiceId": str(draft_invoice.id), "status": "sent"}
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Invoice status updated to sent"}

    def test_delete_missing(self, admin_client: TestClient, db_session: AsyncMock):
        response = admin_client.delete(f"/invoice/delete/{uuid4()}")
        assert response.status_code == 404
        assert response.json() == {"error": "Invoice not found"}
        db_session.add.assert_not_called()

    def test_download(self, admin_client: TestClient, db_session: AsyncMock, draft_invoice):
        db_session.get = AsyncMock(return_value=draft_invoice)

        response = admin_client.get(f"/invoice/download/{draft_invoice.id}")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert 'filename="invoice-INV-202603-0042.pdf"' in response.headers["content-disposition"]
        assert response.content.startswith(b"%PDF")

    def test_send_email(self, admin_client: TestClient, db_session: AsyncMock, email_service, draft_invoice):
        db_session.get = AsyncMock(return_value=draft_invoice)

        response = admin_client.post(
            "/invoice/send-email",
            data={"invoiceId": str(draft_invoice.id), "message": "  See attached  "},
            files={"document": ("custom.pdf", b"%PDF-custom", "application/pdf")},
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Invoice sent to jordan@example.com"
        outbound = email_service.send.call_args[0][0]
        assert outbound.attachments[0].content == b"%PDF-custom"
        assert draft_invoice.status == "sent"

    def test_send_email_delivery_failure(
        self, admin_client: TestClient, db_session: AsyncMock, email_service, draft_invoice
    ):
        db_session.get = AsyncMock(return_value=draft_invoice)
        email_service.send = AsyncMock(side_effect=DeliveryError("Failed to send email: timeout"))

        response = admin_client.post("/invoice/send-email", data={"invoiceId": str(draft_invoice.id)})

        assert response.status_code == 502
        assert response.json() == {"error": "Failed to send email: timeout"}
        assert draft_invoice.status == "draft"


# ============================================================================
# Payments
# ============================================================================


class TestPaymentRoutes:
    def test_pending_requires_email(self, anon_client: TestClient):
        response = anon_client.get("/payment/pending")
        assert response.status_code == 400
        assert response.json() == {"error": "Email is required"}

    def test_pending_lookup(self, anon_client: TestClient, db_session: AsyncMock, pending_payment, make_result):
        db_session.execute = AsyncMock(return_value=make_result(scalar=pending_payment))

        response = anon_client.get("/payment/pending", params={"email": "jordan@example.com"})

        assert response.status_code == 200
        payment = response.json()["payment"]
        assert payment["baseAmount"] == 100.0
        assert payment["status"] == "pending"

    def test_pending_expired(
        self, anon_client: TestClient, db_session: AsyncMock, payment_factory, make_result, fixed_now
    ):
        payment = payment_factory(expires_at=fixed_now - timedelta(days=1))
        db_session.execute = AsyncMock(return_value=make_result(scalar=payment))

        response = anon_client.get("/payment/pending", params={"email": "jordan@example.com"})

        assert response.status_code == 410
        assert response.json() == {"error": "Payment request has expired"}

    def test_user_status_requires_email(self, anon_client: TestClient):
        response = anon_client.get("/payment/user-status", params={"email": " "})
        assert response.status_code == 400
        assert response.json() == {"error": "Email is required"}

    def test_user_status_with_open_invoice(
        self, anon_client: TestClient, db_session: AsyncMock, invoice_factory, make_result
    ):
        invoice = invoice_factory(status=InvoiceStatus.SENT)
        db_session.execute = AsyncMock(side_effect=[make_result(scalar=None), make_result(scalar=invoice)])
        db_session.scalar = AsyncMock(return_value=1)

        response = anon_client.get("/payment/user-status", params={"email": "jordan@example.com"})

        assert response.status_code == 200
        body = response.json()
        assert body["hasPendingPayment"] is False
        assert body["pendingPayment"] is None
        assert body["hasCompletedPayment"] is True
        assert body["hasLatestInvoicePending"] is True
        assert body["latestInvoice"]["invoiceNumber"] == "INV-202603-0042"
        assert body["shouldShowPaymentButton"] is True

    def test_user_status_nothing_to_pay(self, anon_client: TestClient):
        response = anon_client.get("/payment/user-status", params={"email": "new@example.com"})

        body = response.json()
        assert body["hasPendingPayment"] is False
        assert body["hasLatestInvoicePending"] is False
        assert body["shouldShowPaymentButton"] is False

    def test_checkout_fixed_option(self, anon_client: TestClient, services):
        services.payments.create_checkout_session = AsyncMock(return_value=_session(payment_status="unpaid"))

        response = anon_client.post("/payment/create-checkout-session", json={"option": "Consultation"})

        assert response.status_code == 200
        assert response.json() == {
            "sessionId": "cs_test_123",
            "url": "https://checkout.stripe.com/c/pay/cs_test_123",
        }
        request = services.payments.create_checkout_session.call_args[0][0]
        assert request.amount_minor == 15000
        assert request.metadata == {"option": "consultation"}
        assert request.success_url == "https://coach.example.com/payment/success?session_id={CHECKOUT_SESSION_ID}"

    def test_checkout_invalid_option(self, anon_client: TestClient):
        response = anon_client.post("/payment/create-checkout-session", json={"option": "gold"})
        assert response.status_code == 400
        assert "consultation, workshop, retreat, custom" in response.json()["error"]

    def test_checkout_custom_below_base(
        self, anon_client: TestClient, db_session: AsyncMock, services, pending_payment
    ):
        db_session.get = AsyncMock(return_value=pending_payment)

        response = anon_client.post(
            "/payment/create-checkout-session",
            json={"option": "custom", "pendingPaymentId": str(pending_payment.id), "amount": 80},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Amount must be at least 100.00"}
        services.payments.create_checkout_session.assert_not_awaited()

    def test_checkout_custom_with_bonus(
        self, anon_client: TestClient, db_session: AsyncMock, services, pending_payment
    ):
        db_session.get = AsyncMock(return_value=pending_payment)
        services.payments.create_checkout_session = AsyncMock(return_value=_session(payment_status="unpaid"))

        response = anon_client.post(
            "/payment/create-checkout-session",
            json={"option": "custom", "pendingPaymentId": str(pending_payment.id), "amount": 125},
        )

        assert response.status_code == 200
        request = services.payments.create_checkout_session.call_args[0][0]
        assert request.amount_minor == 12500
        assert request.metadata["pending_payment_id"] == str(pending_payment.id)
        assert request.metadata["base_amount"] == "100.00"

    def test_webhook_completes_pending_payment(
        self, anon_client: TestClient, db_session: AsyncMock, services, email_service, pending_payment
    ):
        db_session.get = AsyncMock(return_value=pending_payment)
        services.payments.verify_webhook = AsyncMock(
            return_value=WebhookEvent(
                event_id="evt_1",
                event_type="checkout.session.completed",
                session=_session(metadata={"pending_payment_id": str(pending_payment.id)}),
            )
        )

        first = anon_client.post("/payment/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"})
        second = anon_client.post("/payment/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"})

        assert first.json() == {"received": True}
        assert second.status_code == 200
        assert pending_payment.status == PendingPaymentStatus.COMPLETED.value
        assert pending_payment.amount_paid == Decimal("125.00")
        assert pending_payment.bonus_amount == Decimal("25.00")
        assert email_service.send.await_count == 1
        assert email_service.send.call_args.kwargs["template"] == "payment_confirmation"
        services.payments.verify_webhook.assert_awaited_with(b"{}", "t=1,v1=abc")

    def test_webhook_marks_linked_invoice_paid(
        self, anon_client: TestClient, db_session: AsyncMock, services, invoice_factory, make_result
    ):
        invoice = invoice_factory(status=InvoiceStatus.SENT)
        db_session.execute = AsyncMock(
            side_effect=[make_result(scalars=[]), make_result(scalar=invoice)]
        )
        services.payments.verify_webhook = AsyncMock(
            return_value=WebhookEvent(
                event_id="evt_2",
                event_type="checkout.session.completed",
                session=_session(metadata={"invoice_number": "INV-202603-0042"}),
            )
        )

        response = anon_client.post("/payment/webhook", content=b"{}")

        assert response.status_code == 200
        assert invoice.status == "paid"

    def test_webhook_ignores_other_events(self, anon_client: TestClient, db_session: AsyncMock, services):
        services.payments.verify_webhook = AsyncMock(
            return_value=WebhookEvent(event_id="evt_3", event_type="charge.refunded")
        )
        response = anon_client.post("/payment/webhook", content=b"{}")
        assert response.status_code == 200
        db_session.commit.assert_not_awaited()

    def test_webhook_bad_signature(self, anon_client: TestClient, services):
        services.payments.verify_webhook = AsyncMock(side_effect=WebhookVerificationError("Invalid signature"))
        response = anon_client.post("/payment/webhook", content=b"{}", headers={"Stripe-Signature": "bad"})
        assert response.status_code == 400
        assert response.json() == {"error": "Webhook verification error: Invalid signature"}

    def test_confirm_unpaid_session(self, anon_client: TestClient, services):
        services.payments.retrieve_checkout_session = AsyncMock(return_value=_session(payment_status="unpaid"))
        response = anon_client.post("/payment/confirm", json={"sessionId": "cs_test_123"})
        assert response.status_code == 400
        assert response.json() == {"error": "Payment has not been completed"}

    def test_confirm_reports_bonus(
        self, anon_client: TestClient, db_session: AsyncMock, services, pending_payment
    ):
        db_session.get = AsyncMock(return_value=pending_payment)
        services.payments.retrieve_checkout_session = AsyncMock(
            return_value=_session(metadata={"pending_payment_id": str(pending_payment.id)})
        )

        response = anon_client.post("/payment/confirm", json={"sessionId": "cs_test_123"})

        assert response.status_code == 200
        body = response.json()
        assert body["amountPaid"] == 125.0
        assert body["baseAmount"] == 100.0
        assert body["bonusAmount"] == 25.0

    def test_admin_update_completed_payment(
        self, admin_client: TestClient, db_session: AsyncMock, payment_factory
    ):
        payment = payment_factory(status=PendingPaymentStatus.COMPLETED)
        db_session.get = AsyncMock(return_value=payment)

        response = admin_client.put(
            "/payment/admin/update-payment", json={"paymentId": str(payment.id), "baseAmount": 150}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Cannot edit a payment that is completed"}

    def test_admin_update_notifies(
        self, admin_client: TestClient, db_session: AsyncMock, email_service, pending_payment
    ):
        db_session.get = AsyncMock(return_value=pending_payment)

        response = admin_client.put(
            "/payment/admin/update-payment", json={"paymentId": str(pending_payment.id), "baseAmount": 150}
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Payment updated and client notified"
        email_service.send.assert_awaited_once()

    def test_admin_expire_overdue(self, admin_client: TestClient, db_session: AsyncMock, make_result):
        db_session.execute = AsyncMock(return_value=make_result(rowcount=2))
        response = admin_client.post("/payment/admin/expire-overdue")
        assert response.status_code == 200
        assert response.json()["expired"] == 2

    def test_create_link(self, admin_client: TestClient, db_session: AsyncMock, services, pending_payment):
        db_session.get = AsyncMock(return_value=pending_payment)
        services.payments.create_checkout_session = AsyncMock(return_value=_session(payment_status="unpaid"))

        response = admin_client.post("/payment/create-link", json={"pendingPaymentId": str(pending_payment.id)})

        assert response.status_code == 200
        assert response.json()["paymentUrl"] == "https://checkout.stripe.com/c/pay/cs_test_123"


# ============================================================================
# Audit, analytics, leads and email
# ============================================================================


class TestAuditRoutes:
    def test_recent(self, admin_client: TestClient, db_session: AsyncMock, make_result, fixed_now: datetime):
        entry = AuditLog(
            id=uuid4(),
            user_id="kp_admin_001",
            user_email="admin@example.com",
            action="update",
            entity="invoice",
            entity_id="abc",
            details={"title": "Invoice emailed to client"},
            timestamp=to_epoch_millis(fixed_now - timedelta(minutes=5)),
        )
        db_session.execute = AsyncMock(return_value=make_result(scalars=[entry]))

        response = admin_client.get("/audit/recent", params={"limit": 5})

        assert response.status_code == 200
        assert response.json()["activities"] == [
            {
                "action": "update invoice: Invoice emailed to client",
                "time": "5 minutes ago",
                "entityType": "invoice",
                "entityTitle": "Invoice emailed to client",
            }
        ]

    def test_export(self, admin_client: TestClient, db_session: AsyncMock, make_result):
        db_session.execute = AsyncMock(return_value=make_result(scalars=[]))
        response = admin_client.get("/audit/export")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.text.startswith("timestamp,user_email,action")

    def test_purge_uses_retention_default(self, admin_client: TestClient, db_session: AsyncMock, make_result):
        db_session.execute = AsyncMock(return_value=make_result(rowcount=4))
        response = admin_client.post("/audit/purge")
        assert response.status_code == 200
        assert response.json() == {"success": True, "deleted": 4}


class TestAnalyticsRoutes:
    def test_invalid_period(self, admin_client: TestClient):
        response = admin_client.get("/analytics/dashboard", params={"period": "decade"})
        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid period 'decade'")


class TestLeadRoutes:
    def test_contact_validation(self, anon_client: TestClient, db_session: AsyncMock):
        response = anon_client.post(
            "/contact",
            json={"firstName": "Ada", "lastName": "Byron", "email": "nope", "challenges": "Scaling my team"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Please enter a valid email address"}
        db_session.add.assert_not_called()

    def test_contact_success(self, anon_client: TestClient, db_session: AsyncMock):
        response = anon_client.post(
            "/contact",
            json={
                "firstName": "Ada",
                "lastName": "Byron",
                "email": "ada@example.com",
                "challenges": "Scaling my leadership team",
            },
        )
        assert response.status_code == 200
        assert response.json()["success"] is True
        db_session.commit.assert_awaited()


# ============================================================================
# Content
# ============================================================================


def _resource(**overrides) -> Resource:
    data = {
        "id": uuid4(),
        "title": "Leading Through Change",
        "description": "A field guide for first-time managers.",
        "resource_type": "pdf",
        "category": "leadership",
        "file_url": "https://cdn.example.com/guide.pdf",
        "thumbnail_url": None,
        "file_size": None,
        "download_count": 3,
        "is_published": True,
        "featured": True,
        "created_at": datetime(2026, 3, 1),
        "updated_at": datetime(2026, 3, 1),
    }
    data.update(overrides)
    return Resource(**data)


def _testimonial(**overrides) -> Testimonial:
    data = {
        "id": uuid4(),
        "client_name": "Sam Okafor",
        "company": "Northwind",
        "content": "Our leadership team finally speaks the same language.",
        "rating": 5,
        "is_public": True,
        "created_at": datetime(2026, 2, 1),
        "updated_at": datetime(2026, 2, 1),
    }
    data.update(overrides)
    return Testimonial(**data)


class TestContentRoutes:
    def test_list_resources(self, anon_client: TestClient, db_session: AsyncMock, make_result):
        db_session.execute = AsyncMock(return_value=make_result(scalars=[_resource()]))

        response = anon_client.get("/content/resources", params={"category": "leadership", "type": "pdf"})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["resources"][0]["type"] == "pdf"
        assert body["resources"][0]["fileUrl"] == "https://cdn.example.com/guide.pdf"

    def test_list_resources_unknown_category(self, anon_client: TestClient):
        assert anon_client.get("/content/resources", params={"category": "gardening"}).status_code == 400

    def test_get_unpublished_resource(self, anon_client: TestClient, db_session: AsyncMock):
        db_session.get = AsyncMock(return_value=_resource(is_published=False))

        response = anon_client.get(f"/content/resources/{uuid4()}")

        assert response.status_code == 404
        assert response.json() == {"error": "Resource not found"}

    def test_resource_download(self, anon_client: TestClient, db_session: AsyncMock):
        db_session.get = AsyncMock(return_value=_resource())

        response = anon_client.post(f"/resources/{uuid4()}/download")

        assert response.status_code == 200
        assert response.json()["fileUrl"] == "https://cdn.example.com/guide.pdf"
        db_session.commit.assert_awaited_once()

    def test_resource_download_missing(self, anon_client: TestClient):
        response = anon_client.post(f"/resources/{uuid4()}/download")
        assert response.status_code == 404
        assert response.json() == {"error": "Resource not found"}

    def test_admin_creates_resource(self, admin_client: TestClient, db_session: AsyncMock):
        response = admin_client.post(
            "/admin/resources",
            json={
                "title": "Team Charter",
                "description": "Template",
                "type": "template",
                "category": "team-building",
                "fileUrl": "https://cdn.example.com/charter.docx",
            },
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert db_session.add.call_args_list[0][0][0].resource_type == "template"

    def test_public_testimonials(self, anon_client: TestClient, db_session: AsyncMock, make_result):
        db_session.execute = AsyncMock(return_value=make_result(scalars=[_testimonial()]))

        response = anon_client.get("/testimonials")

        assert response.status_code == 200
        testimonial = response.json()["testimonials"][0]
        assert testimonial["clientName"] == "Sam Okafor"
        assert testimonial["isPublic"] is True

    def test_homepage_testimonials_limit(self, anon_client: TestClient, db_session: AsyncMock):
        response = anon_client.get("/testimonials/homepage")

        assert response.status_code == 200
        assert response.json() == {"testimonials": [], "total": 0}
        assert db_session.execute.call_args[0][0]._limit_clause.value == 3

    def test_admin_creates_testimonial(self, admin_client: TestClient, db_session: AsyncMock):
        response = admin_client.post(
            "/admin/testimonials",
            json={"clientName": "Sam", "company": "Northwind", "content": "Great coach.", "rating": 4},
        )

        assert response.status_code == 200
        row = db_session.add.call_args_list[0][0][0]
        assert isinstance(row, Testimonial)
        assert row.is_public is False

    def test_admin_testimonial_bad_rating(self, admin_client: TestClient, db_session: AsyncMock):
        response = admin_client.post(
            "/admin/testimonials",
            json={"clientName": "Sam", "company": "Northwind", "content": "Great coach.", "rating": 7},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Rating must be between 1 and 5"}
        db_session.add.assert_not_called()

    def test_admin_updates_testimonial(self, admin_client: TestClient, db_session: AsyncMock):
        db_session.get = AsyncMock(return_value=_testimonial())

        response = admin_client.put(f"/admin/testimonials/{uuid4()}", json={"isPublic": False})

        assert response.status_code == 200
        assert response.json()["isPublic"] is False

    def test_admin_deletes_testimonial(self, admin_client: TestClient, db_session: AsyncMock):
        testimonial = _testimonial()
        db_session.get = AsyncMock(return_value=testimonial)

        response = admin_client.delete(f"/admin/testimonials/{testimonial.id}")

        assert response.status_code == 200
        assert response.json()["message"] == "Testimonial deleted"
        db_session.delete.assert_awaited_once_with(testimonial)

    def test_non_admin_cannot_manage_testimonials(self, user_client: TestClient):
        response = user_client.post("/admin/testimonials", json={"clientName": "Sam"})
        assert response.status_code == 403


class TestEmailRoutes:
    def test_send_test_email(self, admin_client: TestClient, email_service):
        response = admin_client.post("/email/test", json={"to": "admin@example.com"})
        assert response.status_code == 200
        assert email_service.send.call_args.kwargs["template"] == "test"

    def test_send_test_email_failure(self, admin_client: TestClient, email_service):
        email_service.send = AsyncMock(side_effect=DeliveryError("Email sender is not configured"))
        response = admin_client.post("/email/test", json={"to": "admin@example.com"})
        assert response.status_code == 502
        assert response.json() == {"error": "Email sender is not configured"}


class TestAuthRoutes:
    def test_login_redirects_to_provider(self, anon_client: TestClient, services):
        services.auth.build_login_url = MagicMock(return_value="https://id.example.com/authorize?state=s")

        response = anon_client.get("/auth/login", params={"redirect_uri": "/admin/leads"}, follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "https://id.example.com/authorize?state=s"
        redirect, callback = services.auth.build_login_url.call_args[0]
        assert redirect == "/admin/leads"
        assert callback.endswith("/auth/callback")

    def test_login_callback_ignores_host_header(self, anon_client: TestClient, services):
        services.auth.build_login_url = MagicMock(return_value="https://id.example.com/authorize?state=s")

        anon_client.get(
            "/auth/login",
            headers={"Host": "attacker.example.net", "X-Forwarded-Proto": "http"},
            follow_redirects=False,
        )

        _, callback = services.auth.build_login_url.call_args[0]
        assert callback == "https://coach.example.com/auth/callback"

    def test_update_profile(self, user_client: TestClient, services):
        services.auth.update_profile = AsyncMock(
            return_value=User(
                uid="kp_user_002",
                email="client@example.com",
                display_name="Jordan Rivera",
                phone="+15550100",
                organization="Northwind",
                role="user",
            )
        )

        response = user_client.post(
            "/auth/update-profile",
            json={"firstName": "Jordan", "lastName": "Rivera", "phone": "+15550100", "organization": "Northwind"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Profile updated successfully"
        assert body["user"]["displayName"] == "Jordan Rivera"
        assert body["user"]["organization"] == "Northwind"
        user, first, last, _ = services.auth.update_profile.call_args[0]
        assert (user.uid, first, last) == ("kp_user_002", "Jordan", "Rivera")
        assert services.auth.update_profile.call_args.kwargs["phone"] == "+15550100"

    def test_update_profile_requires_sign_in(self, anon_client: TestClient):
        response = anon_client.post("/auth/update-profile", json={"firstName": "A", "lastName": "B"})
        assert response.status_code == 401

    def test_logout_clears_cookies(self, anon_client: TestClient, services):
        services.auth.logout = AsyncMock()

        response = anon_client.post("/auth/logout")

        assert response.status_code == 200
        assert response.json()["message"] == "Logged out successfully"
        set_cookie = response.headers.get_list("set-cookie")
        assert any(header.startswith("auth_token=") for header in set_cookie)
        services.auth.logout.assert_awaited_once_with(None)
