"""POS blueprint: JSON API for the order screen of one terminal."""
from io import BytesIO
from typing import Any, Dict, Optional
from decimal import Decimal

from flask import Blueprint, request, jsonify, send_file, current_app

from cafe_pos.exceptions import UserInputError, InvalidAmountError, NotFoundError
from cafe_pos.services.terminal_service import get_terminal
from cafe_pos.utils.number_format import parse_amount

pos_bp = Blueprint('pos', __name__, url_prefix='/pos')


def _payload() -> Dict[str, Any]:
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _required(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None or str(value).strip() == '':
        raise UserInputError(f'Missing {key}')
    return str(value).strip()


def _integer(payload: Dict[str, Any], key: str) -> int:
    raw = _required(payload, key)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise UserInputError(f'{key} must be an integer')


def _amount(raw: Any, field: str, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if raw is None or raw == '':
        return default
    try:
        return parse_amount(raw)
    except ValueError:
        raise InvalidAmountError(f'Invalid {field}: {raw!r}')


def _state_response(status_code: int = 200, **extra):
    body = {'status': 'success'}
    body.update(extra)
    body['state'] = get_terminal().state()
    return jsonify(body), status_code


@pos_bp.after_request
def snapshot_after_mutation(response):
    """Persist the recovery snapshot after every request that may have changed orders."""
    if request.method == 'POST':
        try:
            get_terminal().snapshot()
        except Exception as e:
            current_app.logger.error(f"[RECOVERY] Snapshot after {request.path} failed: {e}")
    return response


# ============================================================================
# Session: catalog, operator, customer
# ============================================================================

@pos_bp.route('/state', methods=['GET'])
def state():
    return jsonify(get_terminal().state())


@pos_bp.route('/sync', methods=['POST'])
def sync():
    """Reload products, customers and tables from the data API."""
    counts = get_terminal().sync()
    current_app.logger.info(f"[POS] Catalog synced: {counts}")
    return _state_response(synced=counts)


@pos_bp.route('/products', methods=['GET'])
def products():
    terminal = get_terminal()
    results = terminal.catalog.search(request.args.get('q', ''), request.args.get('category', ''))
    return jsonify({
        'products': [product.to_dict() for product in results],
        'categories': terminal.catalog.categories,
    })


@pos_bp.route('/customers', methods=['GET'])
def customers():
    return jsonify({'customers': [c.to_dict() for c in get_terminal().catalog.customers]})


@pos_bp.route('/operator', methods=['POST'])
def operator():
    get_terminal().set_operator(_payload().get('name'))
    return _state_response()


@pos_bp.route('/customer', methods=['POST'])
def customer():
    """Attach a customer by id; an empty id detaches."""
    get_terminal().select_customer(_payload().get('customer_id'))
    return _state_response()


# ============================================================================
# Tables
# ============================================================================

@pos_bp.route('/tables/<table_id>/select', methods=['POST'])
def select_table(table_id: str):
    get_terminal().select_table(table_id)
    return _state_response()


@pos_bp.route('/tables/deselect', methods=['POST'])
def deselect_table():
    get_terminal().deselect_table()
    return _state_response()


@pos_bp.route('/transfer', methods=['POST'])
def transfer():
    target = get_terminal().transfer(_required(_payload(), 'target_table_id'))
    current_app.logger.info(f"[POS] Order moved to {target.id}")
    return _state_response()


# ============================================================================
# Cart
# ============================================================================

@pos_bp.route('/cart/add', methods=['POST'])
def cart_add():
    item = get_terminal().add_item(_required(_payload(), 'product_id'))
    return _state_response(item=item.to_dict())


@pos_bp.route('/cart/remove', methods=['POST'])
def cart_remove():
    get_terminal().remove_item(_required(_payload(), 'product_id'))
    return _state_response()


@pos_bp.route('/cart/adjust', methods=['POST'])
def cart_adjust():
    payload = _payload()
    get_terminal().adjust_quantity(_required(payload, 'product_id'), _integer(payload, 'delta'))
    return _state_response()


@pos_bp.route('/cart/quantity', methods=['POST'])
def cart_quantity():
    payload = _payload()
    get_terminal().set_quantity(_required(payload, 'product_id'), _integer(payload, 'quantity'))
    return _state_response()


@pos_bp.route('/cart/note', methods=['POST'])
def cart_note():
    payload = _payload()
    get_terminal().set_note(_required(payload, 'product_id'), str(payload.get('note') or ''))
    return _state_response()


@pos_bp.route('/cart/clear', methods=['POST'])
def cart_clear():
    get_terminal().clear_cart()
    return _state_response()


# ============================================================================
# Checkout
# ============================================================================

@pos_bp.route('/checkout/preview', methods=['GET'])
def checkout_preview():
    discount = _amount(request.args.get('discount'), 'discount', Decimal('0'))
    breakdown = get_terminal().preview(discount)
    return jsonify({'status': 'success', 'breakdown': breakdown.to_dict()})


@pos_bp.route('/checkout', methods=['POST'])
def checkout():
    """
    Settle the selected table.

    Body: amount_tendered, discount?, payment_method?, note?, idempotency_key?
    Retrying with the idempotency_key of a failed attempt resumes it.
    """
    payload = _payload()
    result = get_terminal().checkout(
        amount_tendered=_amount(payload.get('amount_tendered'), 'amount_tendered'),
        manual_discount=_amount(payload.get('discount'), 'discount', Decimal('0')),
        payment_method=payload.get('payment_method'),
        note=str(payload.get('note') or ''),
        idempotency_key=payload.get('idempotency_key') or None,
    )
    return _state_response(201, result=result.to_dict())


@pos_bp.route('/kitchen', methods=['POST'])
def send_to_kitchen():
    order, warning = get_terminal().send_to_kitchen(str(_payload().get('notes') or ''))
    return jsonify({'status': 'success', 'order': order, 'warning': warning}), 202


@pos_bp.route('/settlements/pending', methods=['GET'])
def pending_settlements():
    pending = get_terminal().coordinator.pending_settlements()
    return jsonify({'settlements': pending, 'count': len(pending)})


@pos_bp.route('/receipt/<invoice_id>.pdf', methods=['GET'])
def receipt_pdf(invoice_id: str):
    pdf = get_terminal().receipt(invoice_id)
    if pdf is None:
        raise NotFoundError(f'No receipt kept for invoice {invoice_id}')
    return send_file(
        BytesIO(pdf),
        mimetype='application/pdf',
        as_attachment=False,
        download_name=f'receipt_{invoice_id}.pdf'
    )
