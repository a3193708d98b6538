# fossapp/projects/routes.py

from flask import Blueprint, jsonify, request

from fossapp.errors import json_action
from fossapp.projects import services

bp = Blueprint('projects', __name__)


@bp.route('/')
@json_action
def list_projects():
    result = services.list_projects(
        page=request.args.get('page', 1),
        page_size=request.args.get('pageSize', 20),
        sort_by=request.args.get('sortBy', 'created_at'),
        sort_order=request.args.get('sortOrder', 'desc'),
        search=request.args.get('q'),
    )
    return jsonify(success=True, data=result)


@bp.route('/', methods=['POST'])
@json_action
def create_project():
    data = request.get_json(silent=True) or {}
    project = services.create_project(data)
    return jsonify(success=True, data=project), 201


@bp.route('/<project_id>')
@json_action
def get_project(project_id):
    return jsonify(success=True, data=services.get_project(project_id))


@bp.route('/<project_id>', methods=['PATCH', 'PUT'])
@json_action
def update_project(project_id):
    data = request.get_json(silent=True) or {}
    return jsonify(success=True, data=services.update_project(project_id, data))


@bp.route('/<project_id>', methods=['DELETE'])
@json_action
def delete_project(project_id):
    return jsonify(success=True, data=services.delete_project(project_id))


@bp.route('/<project_id>/archive', methods=['POST'])
@json_action
def archive_project(project_id):
    return jsonify(success=True, data=services.archive_project(project_id))


@bp.route('/<project_id>/files')
@json_action
def list_project_files(project_id):
    files = services.list_project_files(project_id, request.args.get('path', ''))
    return jsonify(success=True, data=files)


@bp.route('/<project_id>/products', methods=['POST'])
@json_action
def add_product(project_id):
    data = request.get_json(silent=True) or {}
    return jsonify(success=True, data=services.add_product_to_project(project_id, data)), 201


@bp.route('/products/<item_id>', methods=['PATCH'])
@json_action
def update_product(item_id):
    data = request.get_json(silent=True) or {}
    return jsonify(success=True, data=services.update_project_product(item_id, data))


@bp.route('/products/<item_id>', methods=['DELETE'])
@json_action
def remove_product(item_id):
    services.remove_project_product(item_id)
    return jsonify(success=True)
