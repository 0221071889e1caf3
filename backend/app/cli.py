# Overview: Flask CLI command groups for bootstrap, accounts and order inspection.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` when running migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Idempotent demo data: admin + customer accounts, drinks with size tiers,
#   toppings and sample vouchers.
#
# Users:
# - python -m flask users list
# - python -m flask users create --username admin --email admin@shop.local --password "Password123" --role admin
# - python -m flask users deactivate <username>
#
# Orders:
# - python -m flask orders list [--status pending]

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Order, Product, Topping, User, Voucher
from .models.auth import ROLE_ADMIN, ROLE_CUSTOMER
from .services.auth_service import create_user, PasswordValidationError
from .services.session_service import revoke_user_sessions
from .services.order_lifecycle_service import VALID_STATUSES, OrderLifecycleError, list_orders


DEMO_PASSWORD = "Password123"

DEMO_PRODUCTS = [
    {"name": "Trà sữa trân châu", "price": 30000, "sale_price": None, "sizes": ["M", "L", "XL"]},
    {"name": "Cà phê sữa đá", "price": 25000, "sale_price": 22000, "sizes": ["M", "L"]},
    {"name": "Bánh flan", "price": 15000, "sale_price": None, "sizes": None},
]

DEMO_TOPPINGS = [
    {"name": "Trân châu đen", "price": 5000},
    {"name": "Thạch phô mai", "price": 7000},
    {"name": "Kem cheese", "price": 10000},
]

DEMO_VOUCHERS = [
    {
        "code": "WELCOME10",
        "title": "Giảm 10% đơn đầu tiên",
        "discount_type": "percent",
        "discount_value": 10,
        "for_new_user": True,
        "max_usage_per_user": 1,
    },
    {
        "code": "FREESHIP20K",
        "title": "Giảm 20.000đ cho đơn từ 100.000đ",
        "discount_type": "fixed",
        "discount_value": 20000,
        "min_order_value": 100000,
    },
    {
        "code": "NIGHTOWL",
        "title": "Giảm 15% đơn đêm khuya",
        "discount_type": "percent",
        "discount_value": 15,
        "start_hour": 22,
        "end_hour": 2,
    },
]


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create every table that does not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' to add demo data.")


def _ensure_user(username: str, email: str, role: str, **profile) -> User:
    user = db.session.query(User).filter_by(username=username).first()
    if user:
        click.echo(f"PASS User '{username}' already exists")
        return user
    user = create_user(username, email, DEMO_PASSWORD, role=role, **profile)
    click.echo(f"PASS Created {role}: {username} / {DEMO_PASSWORD}")
    return user


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Seed demo accounts and catalog.

    SECURITY: demo passwords are public; never run this against production.
    """
    click.echo("START Seeding demo data...")
    db.create_all()

    _ensure_user("admin", "admin@shop.local", ROLE_ADMIN, full_name="Shop Admin")
    _ensure_user(
        "customer",
        "customer@shop.local",
        ROLE_CUSTOMER,
        full_name="Nguyễn Văn A",
        phone="0900000000",
        address="1 Lê Lợi, Quận 1, TP.HCM",
    )

    for data in DEMO_PRODUCTS:
        if not db.session.query(Product).filter_by(name=data["name"]).first():
            db.session.add(Product(**data))
            click.echo(f"PASS Product: {data['name']}")
    for data in DEMO_TOPPINGS:
        if not db.session.query(Topping).filter_by(name=data["name"]).first():
            db.session.add(Topping(**data))
            click.echo(f"PASS Topping: {data['name']}")
    for data in DEMO_VOUCHERS:
        if not db.session.query(Voucher).filter_by(code=data["code"]).first():
            db.session.add(Voucher(**data))
            click.echo(f"PASS Voucher: {data['code']}")

    db.session.commit()
    click.echo("DONE Demo data ready")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their role."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Role'}")
    click.echo("="*80)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {user.role}")

    click.echo("="*80 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([ROLE_CUSTOMER, ROLE_ADMIN]), default=ROLE_CUSTOMER, show_default=True)
@with_appcontext
def create_user_cli(username, email, password, role):
    """
    Create a new account.

    Password must be 8+ characters and mix letters and digits.
    """
    try:
        user = create_user(username=username, email=email, password=password, role=role)
        click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}'")
        click.echo("SECURITY Password securely hashed with bcrypt")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('deactivate')
@click.argument('username')
@with_appcontext
def deactivate_user_cli(username):
    """Disable an account and close all of its open sessions."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL No user named '{username}'")
        return
    user.is_active = False
    db.session.commit()
    closed = revoke_user_sessions(user.id, reason="Account deactivated")
    click.echo(f"PASS Deactivated {user.username}; revoked {closed} session(s)")


@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('list')
@click.option('--status', type=click.Choice(sorted(VALID_STATUSES)), help='Filter by status')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def list_orders_cli(status, limit):
    """List orders, newest first."""
    try:
        orders = list_orders(status)[:limit]
    except OrderLifecycleError as e:
        click.echo(f"FAIL {e}")
        return

    if not orders:
        click.echo("No orders found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<6} {'User':<6} {'Status':<11} {'Subtotal':>10} {'Discount':>10} {'Total':>10}  {'Voucher'}")
    click.echo("="*90)

    for order in orders:
        click.echo(
            f"{order.id:<6} {order.user_id:<6} {order.status:<11} "
            f"{order.subtotal:>10} {order.discount_amount:>10} {order.total_price:>10}  "
            f"{order.voucher_code or '-'}"
        )

    click.echo("="*90 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(orders_group)
