# fossapp/catalog/utils.py

"""Catalog, customer and dashboard queries."""

from fossapp import db
from fossapp.errors import NotFound
from fossapp.models import Customer, Product, Project
from fossapp.validation import (
    SORT_ORDERS,
    ValidationError,
    validate_choice,
    validate_customer_id,
    validate_page,
    validate_search_query,
    validate_uuid,
)

CUSTOMER_SEARCH_LIMIT = 20
ACTIVE_PROJECT_STATUSES = ('draft', 'quotation', 'approved', 'in_progress')


def _product_filters(q='', supplier=None, family=None, class_name=None) -> list:
    """WHERE clauses for a free-text term plus exact supplier/family/class matches."""
    conditions = []
    term = validate_search_query(q)
    if term:
        like = f"%{term}%"
        conditions.append(db.or_(
            Product.foss_pid.ilike(like),
            Product.description_short.ilike(like),
            Product.family.ilike(like),
            Product.supplier_name.ilike(like),
        ))
    for column, value in ((Product.supplier_name, supplier),
                          (Product.family, family),
                          (Product.class_name, class_name)):
        value = validate_search_query(value)
        if value:
            conditions.append(column == value)
    return conditions


def search_products(q: str, page: int = 1, page_size: int = 24, supplier=None, family=None,
                    class_name=None) -> dict:
    """Case-insensitive search over code, description, family and supplier."""
    page, page_size = validate_page(page, page_size)
    query = Product.query.filter(*_product_filters(q, supplier, family, class_name))
    total = query.count()
    rows = (
        query.order_by(Product.foss_pid)
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        'products': [p.to_dict() for p in rows],
        'total': total,
        'page': page,
        'pageSize': page_size,
        'totalPages': (total + page_size - 1) // page_size,
    }


def get_product(product_id) -> dict:
    product = db.session.get(Product, validate_uuid(product_id, 'product ID'))
    if product is None:
        raise NotFound("Product not found")
    return product.to_dict()


def search_customers(q: str) -> list:
    term = validate_search_query(q)
    if not term:
        return []
    like = f"%{term}%"
    rows = (
        Customer.query.filter(db.or_(
            Customer.name.ilike(like),
            Customer.name_en.ilike(like),
            Customer.customer_code.ilike(like),
            Customer.email.ilike(like),
            Customer.city.ilike(like),
        ))
        .order_by(Customer.name)
        .limit(CUSTOMER_SEARCH_LIMIT)
        .all()
    )
    return [c.to_dict() for c in rows]


def get_customer(customer_id) -> dict:
    customer = db.session.get(Customer, validate_customer_id(customer_id))
    if customer is None:
        raise NotFound("Customer not found")
    return customer.to_dict()


def list_customers(page=1, page_size=50, sort_by='name', sort_order='asc') -> dict:
    page, page_size = validate_page(page, page_size)
    if sort_by not in ('name', 'customer_code', 'city', 'created_at'):
        raise ValidationError(f"Cannot sort by {sort_by}")
    validate_choice(sort_order, SORT_ORDERS, 'sort order')
    column = getattr(Customer, sort_by)
    total = Customer.query.count()
    rows = (
        Customer.query.order_by(column.asc() if sort_order == 'asc' else column.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        'customers': [c.to_dict() for c in rows],
        'total': total,
        'page': page,
        'pageSize': page_size,
        'totalPages': (total + page_size - 1) // page_size,
    }


def dashboard_stats() -> dict:
    count = db.func.count
    return {
        'totalProducts': db.session.scalar(db.select(count(Product.id))),
        'totalSuppliers': db.session.scalar(db.select(count(db.distinct(Product.supplier_name)))),
        'totalFamilies': db.session.scalar(db.select(count(db.distinct(Product.family)))),
        'totalProjects': db.session.scalar(db.select(count(Project.id))),
        'activeProjects': db.session.scalar(
            db.select(count(Project.id)).where(
                Project.status.in_(ACTIVE_PROJECT_STATUSES), Project.is_archived.is_(False)
            )
        ),
    }


def supplier_stats() -> list:
    rows = db.session.execute(
        db.select(Product.supplier_name, db.func.count(Product.id).label('n'))
        .where(Product.supplier_name.isnot(None))
        .group_by(Product.supplier_name)
        .order_by(db.desc('n'))
    ).all()
    return [{'supplier_name': name, 'product_count': n} for name, n in rows]


def top_families(limit: int = 10) -> list:
    rows = db.session.execute(
        db.select(Product.family, db.func.count(Product.id).label('n'))
        .where(Product.family.isnot(None))
        .group_by(Product.family)
        .order_by(db.desc('n'))
        .limit(limit)
    ).all()
    return [{'family': family, 'product_count': n} for family, n in rows]


PRODUCT_FACETS = (
    ('supplier', Product.supplier_name),
    ('family', Product.family),
    ('class', Product.class_name),
)


def product_facets(q='', supplier=None, family=None, class_name=None) -> dict:
    """Product counts per supplier, family and class within the current filters."""
    conditions = _product_filters(q, supplier, family, class_name)
    facets = {}
    for key, column in PRODUCT_FACETS:
        rows = db.session.execute(
            db.select(column, db.func.count(Product.id).label('n'))
            .where(column.isnot(None), *conditions)
            .group_by(column)
            .order_by(db.desc('n'), column)
        ).all()
        facets[key] = [{'value': value, 'product_count': n} for value, n in rows]
    return facets
