"""
Pytest fixtures for invoicing backend tests.

Provides the app with an in-memory database, a fake fiscal authority, and
SKU / account factories.
"""

import threading
from datetime import timedelta

import pytest

from invoicing import create_app
from invoicing.errors import AuthorityRejected
from invoicing.extensions import db
from invoicing.services import account_service, inventory_service
from invoicing.services.fiscal_client import AuthorizationResult


class FakeFiscalAuthority:
    """
    In-process stand-in for FiscalAuthorityClient.

    Keeps one sequence per (point_of_sale, voucher_type) and, like the real
    authority, refuses any number that is not last + 1. `fail_with` makes
    the next authorization raise the given error.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self):
        with self._lock:
            self.last_numbers = {}
            self.requests = []
            self.fail_with = None

    def get_last_voucher_number(self, point_of_sale, voucher_type):
        with self._lock:
            return self.last_numbers.get((point_of_sale, voucher_type), 0)

    def request_authorization(self, request):
        with self._lock:
            self.requests.append(request)
            if self.fail_with is not None:
                exc, self.fail_with = self.fail_with, None
                raise exc

            key = (request.point_of_sale, request.voucher_type)
            expected = self.last_numbers.get(key, 0) + 1
            if request.voucher_number != expected:
                raise AuthorityRejected(
                    f"El numero de comprobante informado debe ser {expected}",
                    {"requested_voucher_number": request.voucher_number},
                    code="10016",
                )
            self.last_numbers[key] = request.voucher_number

        code = f"7{request.voucher_type:03d}{request.point_of_sale:05d}{request.voucher_number:05d}"
        return AuthorizationResult(
            authorization_code=code,
            authorization_expires_on=request.issue_date + timedelta(days=10),
            voucher_number=request.voucher_number,
            raw={"result": "A", "authorization_code": code},
        )


@pytest.fixture(scope='session')
def fake_authority():
    return FakeFiscalAuthority()


@pytest.fixture(scope='session')
def app(fake_authority):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INVOICE_TAX_RATE_BPS': 2100,
        'FISCAL_TIMEZONE': 'America/Argentina/Buenos_Aires',
    }, fiscal_client=fake_authority)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app, fake_authority):
    """Fresh database (and authority sequences) for each test."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        fake_authority.reset()

        yield db.session

        db.session.rollback()


@pytest.fixture
def authority(db_session, fake_authority):
    return fake_authority


@pytest.fixture
def make_sku(db_session):
    counter = {"n": 0}

    def _make(stock=10, price_cents=7500, **kwargs):
        counter["n"] += 1
        kwargs.setdefault("sku", f"SKU-{counter['n']:03d}")
        return inventory_service.create_sku(unit_price_cents=price_cents, initial_stock=stock, **kwargs)

    return _make


@pytest.fixture
def make_account(db_session):
    counter = {"n": 0}

    def _make(credit_limit_cents=1_000_000, **kwargs):
        counter["n"] += 1
        kwargs.setdefault("name", f"Customer {counter['n']}")
        kwargs.setdefault("document_type", "DNI")
        kwargs.setdefault("document_number", f"30{counter['n']:06d}")
        return account_service.create_account(credit_limit_cents=credit_limit_cents, **kwargs)

    return _make
