"""
Pytest fixtures for the order engine backend tests.

Provides test database setup, account/catalog/voucher fixtures and test client.
"""

import pytest
from app import create_app
from app.extensions import db, change_feed
from app.models import CartItem, Order, Product, Topping, Voucher
from app.models.auth import ROLE_ADMIN, ROLE_CUSTOMER
from app.services.auth_service import create_user
from app.services import session_service


PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SIZE_UPCHARGE': 5000,
        'STORE_TIMEZONE': 'Asia/Ho_Chi_Minh',
        'CHANGE_FEED_STREAM_TIMEOUT': 0.05,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database (and an empty change feed) for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        change_feed.reset()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        change_feed.reset()


def _make_user(username: str, role: str = ROLE_CUSTOMER, **profile):
    return create_user(
        username,
        f"{username}@shop.test",
        PASSWORD,
        role=role,
        bcrypt_rounds=4,
        **profile,
    )


@pytest.fixture(scope='function')
def customer(db_session):
    """Customer with a complete receiver profile."""
    return _make_user(
        "lan",
        full_name="Trần Thị Lan",
        phone="0901234567",
        address="12 Nguyễn Huệ, Quận 1",
    )


@pytest.fixture(scope='function')
def other_customer(db_session):
    return _make_user(
        "minh",
        full_name="Lê Văn Minh",
        phone="0907654321",
        address="34 Hai Bà Trưng, Quận 3",
    )


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user("shopadmin", role=ROLE_ADMIN, full_name="Shop Admin")


@pytest.fixture(scope='function')
def milk_tea(db_session):
    """Sized drink: M (no upcharge), L (+5000), XL (+10000)."""
    product = Product(name="Trà sữa trân châu", image="products/milk-tea.png", price=30000, sizes=["M", "L", "XL"])
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def flan(db_session):
    """Unsized product with a sale price."""
    product = Product(name="Bánh flan", price=15000, sale_price=12000, sizes=None)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def toppings(db_session):
    pearl = Topping(name="Trân châu đen", price=5000)
    cheese = Topping(name="Thạch phô mai", price=7000)
    db_session.add_all([pearl, cheese])
    db_session.commit()
    return pearl, cheese


def make_voucher(session, **fields) -> Voucher:
    data = {
        "code": "SAVE10",
        "title": "Giảm 10%",
        "discount_type": "percent",
        "discount_value": 10,
    }
    data.update(fields)
    voucher = Voucher(**data)
    session.add(voucher)
    session.commit()
    return voucher


@pytest.fixture(scope='function')
def percent_voucher(db_session):
    return make_voucher(db_session)


def add_cart_line(session, user, product, *, quantity=1, base_price=None, topping_total=0, size=None):
    """Insert a cart line directly, with totals consistent with the snapshot rule."""
    base = product.price if base_price is None else base_price
    item = CartItem(
        user_id=user.id,
        product_id=product.id,
        size=size,
        quantity=quantity,
        base_price=base,
        toppings=[],
        topping_total=topping_total,
        total_price=(base + topping_total) * quantity,
    )
    session.add(item)
    session.commit()
    return item


def make_order(session, user, *, status="pending", subtotal=50000, voucher=None) -> Order:
    """Insert an order row directly (history for eligibility tests)."""
    order = Order(
        user_id=user.id,
        subtotal=subtotal,
        discount_amount=0,
        total_price=subtotal,
        voucher_id=voucher.id if voucher else None,
        voucher_code=voucher.code if voucher else None,
        payment_method="cod",
        receiver_name="Receiver",
        receiver_phone="0900000000",
        shipping_address="Somewhere",
        status=status,
        cancel_reason="Đặt nhầm sản phẩm" if status == "cancelled" else None,
    )
    session.add(order)
    session.commit()
    return order


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(user) -> dict:
    """Issue a session directly (no HTTP round trip) and return its headers."""
    _, token = session_service.create_session(user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def customer_headers(customer):
    return headers_for(customer)


@pytest.fixture(scope='function')
def other_headers(other_customer):
    return headers_for(other_customer)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return headers_for(admin)
