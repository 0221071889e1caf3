"""
Checkout tests.

Verifies:
- A checkout writes order, items and the created event, and clears the cart
- Voucher discounts are re-evaluated at checkout time
- Nothing is written when any precondition fails
"""

import pytest

from app.extensions import change_feed
from app.change_feed import ADMIN_CHANNEL
from app.models import CartItem, Order, OrderEvent, OrderItem
from app.services import change_feed_service, checkout_service
from app.services.checkout_service import CheckoutDraft, CheckoutError
from app.validation import ValidationError

from conftest import add_cart_line, make_order, make_voucher


def _counts(session):
    return (
        session.query(Order).count(),
        session.query(OrderItem).count(),
        session.query(OrderEvent).count(),
    )


class TestCheckout:

    def test_reference_order_with_percent_voucher(self, db_session, customer, milk_tea, percent_voucher):
        add_cart_line(db_session, customer, milk_tea, quantity=2, base_price=35000, topping_total=12000)

        order = checkout_service.checkout(
            customer.id, CheckoutDraft(voucher_id=percent_voucher.id), current_hour=12
        )

        assert order.status == "pending"
        assert order.subtotal == 94000
        assert order.discount_amount == 9400
        assert order.total_price == 84600
        assert order.voucher_code == "SAVE10"
        assert order.payment_method == "cod"
        assert order.receiver_name == "Trần Thị Lan"
        assert db_session.query(CartItem).filter_by(user_id=customer.id).count() == 0

        items = db_session.query(OrderItem).filter_by(order_id=order.id).all()
        assert len(items) == 1
        assert items[0].product_name == "Trà sữa trân châu"
        assert items[0].total_price == 94000

        events = db_session.query(OrderEvent).filter_by(order_id=order.id).all()
        assert [(e.event_type, e.from_status, e.to_status) for e in events] == [
            ("order.created", None, "pending")
        ]

    def test_voucher_by_code(self, db_session, customer, milk_tea, percent_voucher):
        add_cart_line(db_session, customer, milk_tea)
        order = checkout_service.checkout(
            customer.id, CheckoutDraft(voucher_code=" save10 "), current_hour=12
        )
        assert order.discount_amount == 3000

    def test_fixed_voucher_above_subtotal_makes_order_free(self, db_session, customer, flan):
        big = make_voucher(db_session, code="BIGFIX", discount_type="fixed", discount_value=50000)
        add_cart_line(db_session, customer, flan, base_price=12000)

        order = checkout_service.checkout(customer.id, CheckoutDraft(voucher_id=big.id), current_hour=12)

        assert order.subtotal == 12000
        assert order.discount_amount == 12000
        assert order.total_price == 0

    def test_receiver_override(self, db_session, customer, milk_tea):
        add_cart_line(db_session, customer, milk_tea)
        draft = CheckoutDraft(payment_method="momo", receiver_name="Người nhận khác", shipping_address="99 Lý Tự Trọng")
        order = checkout_service.checkout(customer.id, draft)

        assert order.payment_method == "momo"
        assert order.receiver_name == "Người nhận khác"
        assert order.receiver_phone == "0901234567"
        assert order.shipping_address == "99 Lý Tự Trọng"

    def test_publishes_after_commit(self, db_session, customer, milk_tea):
        received = []
        change_feed.subscribe(ADMIN_CHANNEL, received.append)
        add_cart_line(db_session, customer, milk_tea)

        order = checkout_service.checkout(customer.id, CheckoutDraft())

        assert len(received) == 1
        assert received[0].order_id == order.id
        assert received[0].event_type == "order.created"


class TestCheckoutRejections:

    def test_empty_cart(self, db_session, customer):
        with pytest.raises(CheckoutError):
            checkout_service.checkout(customer.id, CheckoutDraft())
        assert _counts(db_session) == (0, 0, 0)

    def test_ineligible_voucher_writes_nothing(self, db_session, customer, milk_tea):
        welcome = make_voucher(db_session, code="WELCOME", for_new_user=True)
        make_order(db_session, customer, status="completed")
        add_cart_line(db_session, customer, milk_tea)
        before = _counts(db_session)

        with pytest.raises(CheckoutError) as exc:
            checkout_service.checkout(customer.id, CheckoutDraft(voucher_id=welcome.id), current_hour=12)

        assert exc.value.details["reasons"] == ["NOT_NEW_USER"]
        assert _counts(db_session) == before
        assert db_session.query(CartItem).filter_by(user_id=customer.id).count() == 1

    def test_below_minimum(self, db_session, customer, milk_tea):
        big = make_voucher(db_session, code="MIN100K", min_order_value=100000)
        add_cart_line(db_session, customer, milk_tea)
        with pytest.raises(CheckoutError):
            checkout_service.checkout(customer.id, CheckoutDraft(voucher_id=big.id), current_hour=12)

    def test_unknown_voucher(self, db_session, customer, milk_tea):
        add_cart_line(db_session, customer, milk_tea)
        with pytest.raises(CheckoutError):
            checkout_service.checkout(customer.id, CheckoutDraft(voucher_id=4040))

    def test_unknown_payment_method(self, db_session, customer, milk_tea):
        add_cart_line(db_session, customer, milk_tea)
        with pytest.raises(ValidationError):
            checkout_service.checkout(customer.id, CheckoutDraft(payment_method="cash"))

    def test_incomplete_profile(self, db_session, admin, milk_tea):
        add_cart_line(db_session, admin, milk_tea)
        with pytest.raises(ValidationError):
            checkout_service.checkout(admin.id, CheckoutDraft())
        assert _counts(db_session) == (0, 0, 0)

    def test_anonymous(self, db_session):
        with pytest.raises(CheckoutError):
            checkout_service.checkout(None, CheckoutDraft())

    def test_failure_after_flush_rolls_back_everything(self, db_session, customer, milk_tea, monkeypatch):
        add_cart_line(db_session, customer, milk_tea)
        received = []
        change_feed.subscribe(ADMIN_CHANNEL, received.append)

        def fail_to_record(*args, **kwargs):
            raise RuntimeError("event log unavailable")

        monkeypatch.setattr(change_feed_service, "record_event", fail_to_record)

        with pytest.raises(RuntimeError):
            checkout_service.checkout(customer.id, CheckoutDraft())

        assert _counts(db_session) == (0, 0, 0)
        assert db_session.query(CartItem).filter_by(user_id=customer.id).count() == 1
        assert received == []

    def test_bad_voucher_id_type(self):
        with pytest.raises(ValidationError):
            CheckoutDraft.from_payload({"voucher_id": "3"})

    @pytest.mark.parametrize("payload", [
        {"receiver_name": 5},
        {"receiver_phone": 912345678},
        {"shipping_address": ["12 Lê Lợi"]},
        {"voucher_code": 10},
        {"payment_method": {"type": "cod"}},
    ])
    def test_non_string_fields(self, payload):
        with pytest.raises(ValidationError, match="must be a string"):
            CheckoutDraft.from_payload(payload)

    def test_receiver_strings_pass_through(self):
        draft = CheckoutDraft.from_payload({"receiver_name": "Lan", "receiver_phone": None})
        assert draft.receiver_name == "Lan"
        assert draft.receiver_phone is None


class TestQuote:

    def test_quote_writes_nothing(self, db_session, customer, milk_tea, percent_voucher):
        add_cart_line(db_session, customer, milk_tea, quantity=2, base_price=35000, topping_total=12000)

        result = checkout_service.quote(customer.id, CheckoutDraft(voucher_id=percent_voucher.id), current_hour=12)

        assert result.to_dict()["total_price"] == 84600
        assert result.voucher.id == percent_voucher.id
        assert _counts(db_session) == (0, 0, 0)

    def test_quote_without_voucher(self, db_session, customer, milk_tea):
        add_cart_line(db_session, customer, milk_tea)
        result = checkout_service.quote(customer.id, CheckoutDraft())
        assert (result.subtotal, result.discount_amount, result.total_price) == (30000, 0, 30000)
