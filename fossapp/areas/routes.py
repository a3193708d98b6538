# fossapp/areas/routes.py

from flask import Blueprint, jsonify, request

from fossapp.areas import services
from fossapp.errors import json_action
from fossapp.validation import ValidationError

bp = Blueprint('areas', __name__)


def _payload():
    return request.get_json(silent=True) or {}


@bp.route('/project/<project_id>')
@json_action
def list_areas(project_id):
    return jsonify(success=True, data=services.list_areas(project_id))


@bp.route('/', methods=['POST'])
@json_action
def create_area():
    return jsonify(success=True, data=services.create_area(_payload())), 201


@bp.route('/<area_id>', methods=['PATCH', 'PUT'])
@json_action
def update_area(area_id):
    return jsonify(success=True, data=services.update_area(area_id, _payload()))


@bp.route('/<area_id>', methods=['DELETE'])
@json_action
def delete_area(area_id):
    services.delete_area(area_id)
    return jsonify(success=True)


@bp.route('/<area_id>/versions')
@json_action
def list_versions(area_id):
    return jsonify(success=True, data=services.list_versions(area_id))


@bp.route('/<area_id>/versions', methods=['POST'])
@json_action
def create_version(area_id):
    data = _payload()
    copy_from = data.get('copy_from_version')
    if copy_from is not None:
        try:
            copy_from = int(copy_from)
        except (TypeError, ValueError):
            raise ValidationError("copy_from_version must be a version number")
    version = services.create_version(
        area_id,
        copy_from_version=copy_from,
        version_name=data.get('version_name'),
        notes=data.get('notes'),
    )
    return jsonify(success=True, data=version), 201


@bp.route('/versions/<version_id>')
@json_action
def get_version(version_id):
    return jsonify(success=True, data=services.get_version_summary(version_id))


@bp.route('/versions/<version_id>', methods=['PATCH', 'PUT'])
@json_action
def update_version(version_id):
    return jsonify(success=True, data=services.update_version(version_id, _payload()))


@bp.route('/versions/<version_id>', methods=['DELETE'])
@json_action
def delete_version(version_id):
    services.delete_version(version_id)
    return jsonify(success=True)


@bp.route('/versions/<version_id>/products')
@json_action
def list_version_products(version_id):
    return jsonify(success=True, data=services.list_version_products(version_id))


@bp.route('/versions/<version_id>/products', methods=['POST'])
@json_action
def add_version_product(version_id):
    return jsonify(success=True, data=services.add_product_to_version(version_id, _payload())), 201


@bp.route('/versions/<version_id>/products/<item_id>', methods=['PATCH'])
@json_action
def update_version_product(version_id, item_id):
    data = services.update_version_product(version_id, item_id, _payload())
    return jsonify(success=True, data=data)


@bp.route('/versions/<version_id>/products/<item_id>', methods=['DELETE'])
@json_action
def remove_version_product(version_id, item_id):
    services.remove_version_product(version_id, item_id)
    return jsonify(success=True)


@bp.route('/versions/<version_id>/floor-plan', methods=['POST'])
@json_action
def upload_floor_plan(version_id):
    f = request.files.get('file')
    if f is None or not f.filename:
        raise ValidationError("No file provided")
    result = services.upload_floor_plan(version_id, f.filename, f.read())
    return jsonify(success=True, data=result)


@bp.route('/versions/<version_id>/floor-plan/status')
@json_action
def floor_plan_status(version_id):
    return jsonify(success=True, data=services.refresh_floor_plan_status(version_id))


@bp.route('/versions/<version_id>/floor-plan', methods=['DELETE'])
@json_action
def delete_floor_plan(version_id):
    services.delete_floor_plan(version_id)
    return jsonify(success=True)
