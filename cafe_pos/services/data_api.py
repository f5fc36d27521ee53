"""
Remote data API clients.

Generic contract: request(entity, operation, payload) where operation is
one of getall/find/create/update/delete. Reads return a list of records,
writes return {'success': bool, 'message': str?}. Anything other than
{'success': True}, or a raised exception, is a failed write.
"""
import json
import logging
from decimal import Decimal
from datetime import datetime, date
from typing import Any, Dict, List, Optional, Union

import requests
from flask import Flask, current_app
from sqlalchemy.exc import SQLAlchemyError

from cafe_pos.exceptions import RemoteWriteError
from cafe_pos.models import Product, DiningTable, Customer, Invoice, InvoiceLine

logger = logging.getLogger(__name__)

READ_OPERATIONS = ('getall', 'find')
WRITE_OPERATIONS = ('create', 'update', 'delete')

Response = Union[List[Dict[str, Any]], Dict[str, Any]]


def is_write_success(response: Any) -> bool:
    return isinstance(response, dict) and response.get('success') is True


class DataApi:
    """Base class: subclasses implement `request`."""

    def request(self, entity: str, operation: str, payload: Optional[Dict[str, Any]] = None) -> Response:
        raise NotImplementedError

    def getall(self, entity: str) -> List[Dict[str, Any]]:
        response = self.request(entity, 'getall', {})
        return response if isinstance(response, list) else []

    def find(self, entity: str, **filters) -> List[Dict[str, Any]]:
        response = self.request(entity, 'find', {'filter': filters})
        return response if isinstance(response, list) else []

    def write(self, entity: str, operation: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Perform a write and insist on {'success': True}.

        Raises:
            RemoteWriteError: on a falsy response or any raised exception.
        """
        try:
            response = self.request(entity, operation, payload)
        except Exception as e:
            logger.error(f"[DATA_API] {operation} {entity} raised: {e}")
            raise RemoteWriteError(f'{operation} {entity} failed: {e}')

        if not is_write_success(response):
            message = response.get('message') if isinstance(response, dict) else None
            logger.error(f"[DATA_API] {operation} {entity} rejected: {message or response!r}")
            raise RemoteWriteError(f'{operation} {entity} failed: {message or "unknown error"}')
        return response


def _row_to_dict(row) -> Dict[str, Any]:
    return {column.name: getattr(row, column.name) for column in row.__table__.columns}


class SqlDataApi(DataApi):
    """Data API backed by the application's SQLAlchemy models."""

    ENTITY_MODELS = {
        'products': Product,
        'tables': DiningTable,
        'customers': Customer,
        'invoices': Invoice,
        'invoice_lines': InvoiceLine,
    }

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def request(self, entity: str, operation: str, payload: Optional[Dict[str, Any]] = None) -> Response:
        model = self.ENTITY_MODELS.get(entity)
        if model is None:
            return {'success': False, 'message': f'Unknown entity {entity}'}

        payload = payload or {}
        operation = operation.lower()
        session = self._session_factory()

        if operation == 'getall':
            return [_row_to_dict(row) for row in session.query(model).all()]
        if operation == 'find':
            query = session.query(model)
            for key, value in (payload.get('filter') or {}).items():
                query = query.filter(getattr(model, key) == value)
            return [_row_to_dict(row) for row in query.all()]

        try:
            if operation == 'create':
                row = model(**self._columns(model, payload))
                session.add(row)
                session.commit()
                return {'success': True, 'id': row.id}

            row = session.query(model).filter(model.id == payload.get('id')).first()
            if row is None:
                return {'success': False, 'message': f'{entity} {payload.get("id")} not found'}

            if operation == 'update':
                for key, value in self._columns(model, payload).items():
                    if key != 'id':
                        setattr(row, key, value)
                session.commit()
                return {'success': True, 'id': row.id}
            if operation == 'delete':
                session.delete(row)
                session.commit()
                return {'success': True, 'id': payload.get('id')}
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[DATA_API] SQL {operation} on {entity} failed: {e}")
            return {'success': False, 'message': str(e.__cause__ or e)}

        return {'success': False, 'message': f'Unsupported operation {operation}'}

    @staticmethod
    def _columns(model, payload: Dict[str, Any]) -> Dict[str, Any]:
        names = {column.name for column in model.__table__.columns}
        return {key: value for key, value in payload.items() if key in names}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


class HttpDataApi(DataApi):
    """Data API client for a remote JSON endpoint: POST {base_url}/{entity}."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 10,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {'Content-Type': 'application/json'}
        if token:
            self.headers['Authorization'] = f'Bearer {token}'

    def request(self, entity: str, operation: str, payload: Optional[Dict[str, Any]] = None) -> Response:
        """
        Raises:
            requests.RequestException: network errors and non-2xx responses.
        """
        url = f"{self.base_url}/{entity}"
        body = json.dumps({'action': operation, 'data': payload or {}}, default=_json_default)
        response = self.session.post(url, data=body, headers=self.headers, timeout=self.timeout)
        response.raise_for_status()
        return response.json()


def init_data_api(app: Flask) -> DataApi:
    """Create the data API selected by DATA_API_BACKEND."""
    if app.config.get('DATA_API_BACKEND', 'sql') == 'http':
        api = HttpDataApi(
            app.config['DATA_API_URL'],
            token=app.config.get('DATA_API_TOKEN'),
            timeout=app.config.get('DATA_API_TIMEOUT', 10),
        )
        logger.info(f"[DATA_API] Using remote API at {api.base_url}")
    else:
        from cafe_pos.database import get_session
        api = SqlDataApi(get_session)
    app.extensions['data_api'] = api
    return api


def get_data_api() -> DataApi:
    api = current_app.extensions.get('data_api')
    if api is None:
        raise RuntimeError("Data API not initialized.")
    return api
