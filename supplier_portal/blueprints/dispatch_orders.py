"""Dispatch orders blueprint - JSON API for composing and submitting dispatch orders."""
import json
import re
from typing import Any, Dict, List, Tuple

from botocore.exceptions import BotoCoreError, ClientError
from flask import Blueprint, current_app, jsonify, request

from supplier_portal.database import get_session
from supplier_portal.exceptions import BusinessLogicError, ImageUploadFailed, PersistenceFailed
from supplier_portal.blueprints.metrics import dispatch_image_uploads_total, record_outcome
from supplier_portal.services.catalog_service import load_catalog
from supplier_portal.services.dispatch_draft_service import OrderDraft
from supplier_portal.services.dispatch_order_store import DispatchOrderStore
from supplier_portal.services.storage_service import ItemImageTransport
from supplier_portal.services.submission_service import OutcomeStatus, SubmissionOrchestrator

dispatch_orders_bp = Blueprint('dispatch_orders', __name__, url_prefix='/dispatch-orders')

IMAGE_FIELD = re.compile(r'^images-(\d+)$')


def _registry_options() -> Dict[str, Any]:
    config = current_app.config
    options = {
        'allowed_mime_types': config.get('ALLOWED_MIME_TYPES'),
        'max_image_size': config.get('MAX_UPLOAD_SIZE'),
        'max_images_per_item': config.get('MAX_IMAGES_PER_ITEM'),
    }
    return {key: value for key, value in options.items() if value is not None}


def _image_transport(store: DispatchOrderStore) -> ItemImageTransport:
    return ItemImageTransport(store)


def _read_submission() -> Tuple[Dict[str, Any], Dict[int, list]]:
    """
    Order data plus uploaded files grouped by item position.

    Accepts a JSON body, or multipart form data with the order JSON in
    ``payload`` and each item's files under ``images-<position>``.
    """
    if request.is_json:
        return request.get_json() or {}, {}

    raw = request.form.get('payload')
    if not raw:
        raise BusinessLogicError("Order data is required")
    try:
        payload = json.loads(raw)
    except ValueError:
        raise BusinessLogicError("Order data is not valid JSON")

    files: Dict[int, list] = {}
    for field in request.files:
        match = IMAGE_FIELD.match(field)
        if match:
            files[int(match.group(1))] = [f for f in request.files.getlist(field) if f and f.filename]
    return payload, files


def _queue_images(draft: OrderDraft, files: Dict[int, list]) -> List[Dict[str, Any]]:
    rejected = []
    for index in sorted(files):
        if index >= len(draft.registry):
            raise BusinessLogicError(f"Images were sent for item {index}, which does not exist")
        _, messages = draft.registry.add_pending_images(index, files[index])
        rejected.extend({'item_index': index, 'message': message} for message in messages)
    return rejected


def _submit(draft: OrderDraft, store: DispatchOrderStore, rejected: list, success_status: int):
    orchestrator = SubmissionOrchestrator(draft, store, _image_transport(store))
    outcome = orchestrator.run()
    record_outcome(outcome)

    body = outcome.to_dict()
    body['rejected_images'] = rejected

    if outcome.status == OutcomeStatus.FAILED:
        failed_persisting = any(isinstance(e, PersistenceFailed) for e in outcome.errors)
        return jsonify(body), 502 if failed_persisting else 422

    current_app.logger.info(f"[SUBMIT] Order {outcome.order_id}: {outcome.message}")
    return jsonify(body), success_status


@dispatch_orders_bp.route('/catalog', methods=['GET'])
def catalog():
    """Product types and logistics companies for the order form."""
    return jsonify(load_catalog(get_session()).to_dict())


@dispatch_orders_bp.route('', methods=['GET'])
def list_orders():
    store = DispatchOrderStore(get_session())
    return jsonify({'orders': store.list_orders(request.args.get('status'))})


@dispatch_orders_bp.route('/validate', methods=['POST'])
def validate():
    """Check a draft without saving it; every violation is reported."""
    payload = request.get_json(silent=True) or {}
    draft = OrderDraft.from_payload(payload, catalog=load_catalog(get_session()), **_registry_options())
    violations = draft.validate()
    return jsonify({
        'valid': not violations,
        'errors': [violation.to_dict() for violation in violations],
        'totals': draft.totals(),
    })


@dispatch_orders_bp.route('', methods=['POST'])
def create():
    """Create a dispatch order and upload its images."""
    session = get_session()
    payload, files = _read_submission()
    draft = OrderDraft.from_payload(payload, catalog=load_catalog(session), **_registry_options())
    rejected = _queue_images(draft, files)
    return _submit(draft, DispatchOrderStore(session), rejected, 201)


@dispatch_orders_bp.route('/<int:order_id>', methods=['GET'])
def detail(order_id: int):
    store = DispatchOrderStore(get_session())
    return jsonify(store.get_order(order_id))


@dispatch_orders_bp.route('/<int:order_id>', methods=['PUT'])
def update(order_id: int):
    """
    Replace a pending order.

    Items that do not list ``images`` keep the images of the matching
    saved item (same code, otherwise same position).
    """
    session = get_session()
    store = DispatchOrderStore(session)
    catalog_data = load_catalog(session)
    editable = current_app.config.get('EDITABLE_ORDER_STATUSES', ('pending',))

    previous = OrderDraft.hydrate(store.get_order(order_id), editable, catalog=catalog_data, **_registry_options())
    payload, files = _read_submission()
    draft = OrderDraft.from_payload(payload, previous=previous, catalog=catalog_data, **_registry_options())
    draft.registry.restore_previews()
    rejected = _queue_images(draft, files)
    return _submit(draft, store, rejected, 200)


@dispatch_orders_bp.route('/<int:order_id>/items/<int:item_index>/image', methods=['POST'])
def upload_item_image(order_id: int, item_index: int):
    """Upload a single item image, e.g. to retry one that failed during submission."""
    file = request.files.get('image')
    if not file or not file.filename:
        raise BusinessLogicError("Image file is required")

    store = DispatchOrderStore(get_session())
    store.get_order(order_id)
    try:
        result = _image_transport(store).upload_item_image(order_id, item_index, file)
    except ValueError as e:
        dispatch_image_uploads_total.labels(status='error').inc()
        raise BusinessLogicError(str(e))
    except (ClientError, BotoCoreError) as e:
        dispatch_image_uploads_total.labels(status='error').inc()
        raise ImageUploadFailed(file.filename, str(e), item_index)

    dispatch_image_uploads_total.labels(status='success').inc()
    return jsonify({'status': 'success', 'url': result['url']}), 201


@dispatch_orders_bp.route('/<int:order_id>/status', methods=['PATCH'])
def update_status(order_id: int):
    data = request.get_json(silent=True) or {}
    status = data.get('status')
    if not status:
        raise BusinessLogicError("Status is required")
    store = DispatchOrderStore(get_session())
    return jsonify(store.update_status(order_id, status))


@dispatch_orders_bp.route('/<int:order_id>', methods=['DELETE'])
def delete(order_id: int):
    DispatchOrderStore(get_session()).delete_order(order_id)
    return jsonify({'status': 'success', 'id': order_id})
