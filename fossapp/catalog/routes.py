# fossapp/catalog/routes.py

from flask import Blueprint, jsonify, request

from fossapp.catalog.utils import (
    dashboard_stats,
    get_customer,
    get_product,
    list_customers,
    product_facets,
    search_customers,
    search_products,
    supplier_stats,
    top_families,
)
from fossapp.errors import json_action

bp = Blueprint('catalog', __name__)


def _product_filter_args():
    return {
        'supplier': request.args.get('supplier'),
        'family': request.args.get('family'),
        'class_name': request.args.get('class'),
    }


@bp.route('/products/search')
@json_action
def product_search():
    """
    Product search.
    Returns { products: [...], total, page, pageSize, totalPages }.
    """
    result = search_products(
        request.args.get('q', ''),
        page=request.args.get('page', 1),
        page_size=request.args.get('pageSize', 24),
        **_product_filter_args(),
    )
    return jsonify(success=True, data=result)


@bp.route('/products/facets')
@json_action
def product_facet_counts():
    """Counts per supplier, family and class for the active filters."""
    data = product_facets(request.args.get('q', ''), **_product_filter_args())
    return jsonify(success=True, data=data)


@bp.route('/products/<product_id>')
@json_action
def product_detail(product_id):
    return jsonify(success=True, data=get_product(product_id))


@bp.route('/customers/search')
@json_action
def customer_search():
    return jsonify(success=True, data=search_customers(request.args.get('q', '')))


@bp.route('/customers')
@json_action
def customer_list():
    result = list_customers(
        page=request.args.get('page', 1),
        page_size=request.args.get('pageSize', 50),
        sort_by=request.args.get('sortBy', 'name'),
        sort_order=request.args.get('sortOrder', 'asc'),
    )
    return jsonify(success=True, data=result)


@bp.route('/customers/<customer_id>')
@json_action
def customer_detail(customer_id):
    return jsonify(success=True, data=get_customer(customer_id))


@bp.route('/dashboard')
@json_action
def dashboard():
    limit = request.args.get('limit', 10, type=int)
    return jsonify(
        success=True,
        data={
            'stats': dashboard_stats(),
            'suppliers': supplier_stats(),
            'families': top_families(limit),
        },
    )
