import pytest
from decimal import Decimal

from cafe_pos import create_app
from cafe_pos.database import get_session
from cafe_pos.models import Product, DiningTable, Customer
from cafe_pos.services.catalog_service import CatalogService
from cafe_pos.services.data_api import DataApi
from cafe_pos.services.kitchen_service import KitchenDispatcher, KitchenQueue
from cafe_pos.services.receipt_service import ReceiptRenderer
from cafe_pos.services.recovery_service import RecoveryStore
from cafe_pos.services.storage_service import MemoryStorage
from cafe_pos.services.terminal_service import PosTerminal


PRODUCTS = [
    {'id': 'CF01', 'name': 'Cà phê sữa', 'price': '50000', 'category': 'Coffee', 'unit': 'cup', 'active': True},
    {'id': 'TR01', 'name': 'Trà đào', 'price': '45000', 'category': 'Tea', 'unit': 'cup', 'active': True},
    {'id': 'BK01', 'name': 'Bánh mì', 'price': '30000', 'category': 'Food', 'unit': 'piece', 'active': True},
    {'id': 'OLD1', 'name': 'Retired drink', 'price': '10000', 'category': 'Coffee', 'unit': 'cup', 'active': False},
]

TABLES = [
    {'id': 'TAKEAWAY', 'name': 'Takeaway', 'capacity': 0, 'is_takeaway': True, 'active': True},
    {'id': 'T1', 'name': 'Table 1', 'capacity': 4, 'is_takeaway': False, 'active': True},
    {'id': 'T2', 'name': 'Table 2', 'capacity': 4, 'is_takeaway': False, 'active': True},
    {'id': 'T3', 'name': 'Table 3', 'capacity': 6, 'is_takeaway': False, 'active': True},
]

CUSTOMERS = [
    {'id': 'KH001', 'name': 'Nguyễn Văn An', 'phone': '0901000001', 'tier': 'regular',
     'points': 10, 'lifetime_spend': '19950000', 'invoice_refs': '', 'active': True},
    {'id': 'KH002', 'name': 'Trần Thị Bình', 'phone': '0901000002', 'tier': 'vip',
     'points': 500, 'lifetime_spend': '22000000', 'invoice_refs': 'INV1', 'active': True},
    {'id': 'KH003', 'name': 'Lê Minh Châu', 'phone': '0901000003', 'tier': 'diamond',
     'points': 2000, 'lifetime_spend': '61000000', 'invoice_refs': '', 'active': True},
]


class FakeDataApi(DataApi):
    """
    Scripted in-memory data API.

    `fail(entity, operation, after=n)` lets the next n matching calls
    succeed, then fails one: a {'success': False} response by default,
    a raised ConnectionError with raises=True.
    """

    def __init__(self, records=None):
        self.records = {entity: [dict(r) for r in rows] for entity, rows in (records or {}).items()}
        self.calls = []
        self._failures = []

    def fail(self, entity, operation, after=0, raises=False, message='remote error'):
        self._failures.append({
            'entity': entity, 'operation': operation, 'after': after,
            'raises': raises, 'message': message,
        })

    def request(self, entity, operation, payload=None):
        payload = payload or {}
        self.calls.append((entity, operation, payload))

        for failure in self._failures:
            if failure['entity'] != entity or failure['operation'] != operation:
                continue
            if failure['after'] > 0:
                failure['after'] -= 1
                break
            self._failures.remove(failure)
            if failure['raises']:
                raise ConnectionError(failure['message'])
            return {'success': False, 'message': failure['message']}

        rows = self.records.setdefault(entity, [])
        if operation == 'getall':
            return [dict(r) for r in rows]
        if operation == 'find':
            filters = payload.get('filter') or {}
            return [dict(r) for r in rows if all(r.get(k) == v for k, v in filters.items())]
        if operation == 'create':
            rows.append(dict(payload))
            return {'success': True, 'id': payload.get('id')}
        if operation == 'update':
            for row in rows:
                if row['id'] == payload.get('id'):
                    row.update(payload)
                    return {'success': True, 'id': row['id']}
            return {'success': False, 'message': 'not found'}
        if operation == 'delete':
            self.records[entity] = [r for r in rows if r['id'] != payload.get('id')]
            return {'success': True}
        return {'success': False, 'message': f'unsupported {operation}'}

    def writes(self, entity, operation='create'):
        return [p for e, o, p in self.calls if e == entity and o == operation]


@pytest.fixture
def fake_api():
    return FakeDataApi({'products': PRODUCTS, 'tables': TABLES, 'customers': CUSTOMERS})


@pytest.fixture
def storage():
    return MemoryStorage('test')


@pytest.fixture
def kitchen_queue():
    return KitchenQueue(served_ttl=60)


@pytest.fixture
def terminal(fake_api, storage, kitchen_queue):
    """A synced terminal with an operator, built without Flask."""
    terminal = PosTerminal(
        fake_api,
        storage,
        CatalogService(fake_api, takeaway_table_id='TAKEAWAY'),
        RecoveryStore(storage, key='posState'),
        KitchenDispatcher(queue=kitchen_queue),
        receipt_renderer=ReceiptRenderer(),
        business_info={'name': 'Cafe Test', 'address': '1 Lê Lợi', 'phone': '028 000'},
    )
    terminal.sync()
    terminal.set_operator('Lan')
    return terminal


@pytest.fixture
def app():
    """Application instance on in-memory sqlite and memory storage."""
    app = create_app('config.TestingConfig')
    yield app


@pytest.fixture
def session(app):
    """Database session of the test app."""
    session = get_session()
    yield session
    session.rollback()
    session.remove()


@pytest.fixture
def seeded_app(app, session):
    """App with demo tables, products and customers loaded into the terminal."""
    for table in TABLES:
        session.add(DiningTable(id=table['id'], name=table['name'], capacity=table['capacity'],
                                is_takeaway=table['is_takeaway']))
    for product in PRODUCTS:
        session.add(Product(id=product['id'], name=product['name'], price=Decimal(product['price']),
                            category=product['category'], unit=product['unit'], active=product['active']))
    for customer in CUSTOMERS:
        session.add(Customer(id=customer['id'], name=customer['name'], phone=customer['phone'],
                             tier=customer['tier'], points=customer['points'],
                             lifetime_spend=Decimal(customer['lifetime_spend']),
                             invoice_refs=customer['invoice_refs']))
    session.commit()

    with app.app_context():
        from cafe_pos.services.terminal_service import get_terminal
        get_terminal().sync()
    return app


@pytest.fixture
def client(seeded_app):
    """Test client with catalog loaded."""
    return seeded_app.test_client()
