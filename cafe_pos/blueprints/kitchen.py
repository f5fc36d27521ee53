"""Kitchen blueprint: the in-process kitchen queue polled by the kitchen display."""
from flask import Blueprint, request, jsonify, current_app

from cafe_pos.exceptions import UserInputError
from cafe_pos.services.terminal_service import get_kitchen_queue

kitchen_bp = Blueprint('kitchen', __name__, url_prefix='/kitchen')


@kitchen_bp.route('/orders', methods=['GET'])
def orders():
    """Orders not yet served, oldest first."""
    return jsonify({'orders': get_kitchen_queue().active()})


@kitchen_bp.route('/new-order', methods=['POST'])
def new_order():
    payload = request.get_json(silent=True) or {}
    if not payload.get('id') or not isinstance(payload.get('items'), list):
        raise UserInputError('An order needs an id and a list of items')
    order = get_kitchen_queue().add(payload)
    return jsonify({'status': 'success', 'order': order}), 201


@kitchen_bp.route('/update-order', methods=['POST'])
def update_order():
    payload = request.get_json(silent=True) or {}
    order_id = payload.get('orderId')
    status = payload.get('status')
    if not order_id or not status:
        raise UserInputError('orderId and status are required')

    try:
        order = get_kitchen_queue().update_status(order_id, status)
    except ValueError as e:
        raise UserInputError(str(e))

    current_app.logger.info(f"[KITCHEN] Order {order_id} -> {status}")
    return jsonify({'status': 'success', 'order': order})
