"""Project lifecycle: database rows first, Drive and OSS follow best effort."""

import logging
import os
from datetime import date, datetime

import requests
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from fossapp import db
from fossapp.areas.services import build_project_product, version_summary
from fossapp.context import get_services
from fossapp.errors import ActionError, IntegrationError, NotFound
from fossapp.integrations.aps import bucket_name_for_project
from fossapp.models import (
    AreaVersion,
    Customer,
    Project,
    ProjectArea,
    ProjectContact,
    ProjectDocument,
    ProjectPhase,
    ProjectProduct,
)
from fossapp.validation import (
    PRIORITIES,
    PROJECT_STATUSES,
    SORT_ORDERS,
    ValidationError,
    validate_choice,
    validate_customer_id,
    validate_discount,
    validate_page,
    validate_price,
    validate_project_code,
    validate_quantity,
    validate_search_query,
    validate_uuid,
)

EXTERNAL_ERRORS = (IntegrationError, requests.RequestException)

TEXT_FIELDS = (
    'name', 'name_en', 'description', 'street_address', 'postal_code', 'city',
    'region', 'prefecture', 'country', 'project_type', 'project_category',
    'currency', 'project_manager', 'architect_firm', 'electrical_engineer',
    'lighting_designer', 'notes',
)
NUMBER_FIELDS = ('building_area_sqm', 'estimated_budget')
DATE_FIELDS = ('start_date', 'expected_completion_date', 'actual_completion_date')
SORTABLE = {
    'created_at': Project.created_at,
    'project_code': Project.project_code,
    'name': Project.name,
    'status': Project.status,
}
CODE_ATTEMPTS = 3


def generate_project_code(now: datetime | None = None) -> str:
    """Next ``YYMM-NNN`` code for the month of ``now``."""
    prefix = (now or datetime.now()).strftime('%y%m')
    codes = db.session.scalars(
        db.select(Project.project_code).where(Project.project_code.like(f'{prefix}-%'))
    ).all()
    highest = 0
    for code in codes:
        suffix = code.split('-', 1)[1]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f'{prefix}-{highest + 1:03d}'


def _parse_date(value, label):
    if value in (None, ''):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid {label}")


def _apply_fields(project: Project, data: dict) -> None:
    for field in TEXT_FIELDS:
        if field in data:
            value = data[field]
            setattr(project, field, value.strip() if isinstance(value, str) else value)
    for field in NUMBER_FIELDS:
        if field in data:
            setattr(project, field, validate_price(data[field]))
    for field in DATE_FIELDS:
        if field in data:
            setattr(project, field, _parse_date(data[field], field.replace('_', ' ')))
    if 'status' in data:
        project.status = validate_choice(data['status'], PROJECT_STATUSES, 'status')
    if 'priority' in data:
        project.priority = validate_choice(data['priority'], PRIORITIES, 'priority')
    if 'tags' in data:
        project.tags = [str(t).strip() for t in (data['tags'] or []) if str(t).strip()]
    if 'customer_id' in data:
        cid = data['customer_id']
        if cid:
            cid = validate_customer_id(cid)
            if not db.session.get(Customer, cid):
                raise ValidationError("Customer not found")
        project.customer_id = cid or None


def _get_project(project_id) -> Project:
    project = db.session.get(Project, validate_uuid(project_id, 'project ID'))
    if project is None:
        raise NotFound("Project not found")
    return project


def list_projects(page=1, page_size=20, sort_by='created_at', sort_order='desc', search=None):
    page, page_size = validate_page(page, page_size)
    column = SORTABLE.get(sort_by)
    if column is None:
        raise ValidationError(f"Cannot sort by {sort_by}")
    validate_choice(sort_order, SORT_ORDERS, 'sort order')

    query = Project.query
    q = validate_search_query(search)
    if q:
        like = f'%{q}%'
        query = query.filter(db.or_(
            Project.name.ilike(like),
            Project.name_en.ilike(like),
            Project.project_code.ilike(like),
            Project.city.ilike(like),
        ))
    total = query.count()
    rows = (
        query.order_by(column.asc() if sort_order == 'asc' else column.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        'projects': [p.to_dict() for p in rows],
        'total': total,
        'page': page,
        'pageSize': page_size,
        'totalPages': (total + page_size - 1) // page_size,
    }


def get_project(project_id) -> dict:
    project = _get_project(project_id)
    detail = project.to_dict()
    detail['customer_email'] = project.customer.email if project.customer else None
    detail['customer_phone'] = project.customer.phone if project.customer else None
    detail['products'] = [pp.to_dict() for pp in project.products]
    detail['contacts'] = [c.to_dict() for c in project.contacts]
    detail['documents'] = [d.to_dict() for d in project.documents]
    detail['phases'] = [ph.to_dict() for ph in project.phases]
    areas = []
    for area in project.areas:
        item = area.to_dict()
        current = area.version(area.current_version)
        item['current_version_data'] = version_summary(current) if current else None
        areas.append(item)
    detail['areas'] = areas
    return detail


def _provision_bucket(services, project: Project):
    """Create the project's OSS bucket and seed it with the template drawing."""
    if services.aps is None:
        logging.warning("APS disabled; project %s has no OSS bucket", project.project_code)
        return None
    bucket = bucket_name_for_project(project.id)
    try:
        services.aps.ensure_bucket(bucket, policy='persistent')
        template = current_app.config.get('APS_PROJECT_TEMPLATE')
        if template and os.path.exists(template):
            with open(template, 'rb') as fh:
                services.aps.upload_object(bucket, os.path.basename(template), fh.read())
    except EXTERNAL_ERRORS as e:
        logging.warning("OSS bucket setup failed for %s: %s", project.project_code, e)
        return None
    return bucket


def _insert_project(data: dict) -> Project:
    explicit = data.get('project_code')
    for _ in range(CODE_ATTEMPTS):
        code = validate_project_code(explicit) if explicit else generate_project_code()
        project = Project(project_code=code)
        _apply_fields(project, data)
        project.country = project.country or 'Greece'
        project.currency = project.currency or 'EUR'
        db.session.add(project)
        try:
            db.session.commit()
            return project
        except IntegrityError:
            db.session.rollback()
            if explicit:
                break
            logging.info("Project code %s taken, generating another", code)
    raise ActionError("A project with this code already exists", 409)


def _delete_project_row(project_id: str) -> None:
    db.session.rollback()
    db.session.execute(db.delete(Project).where(Project.id == project_id))
    db.session.commit()


def create_project(data: dict) -> dict:
    """Insert the project row, then mirror it to Drive and OSS.

    If the Drive step (or the final update) fails, only the database row
    is removed; folders already created on Drive are left in place and
    reused by the next attempt with the same code.
    """
    if not (data.get('name') or '').strip():
        raise ValidationError("Project name is required")

    project = _insert_project(data)
    project_id, code = project.id, project.project_code
    logging.info("Created project %s (%s)", code, project_id)

    services = get_services()
    try:
        if services.drive is not None:
            tree = services.drive.create_project_folder(code)
            project.google_drive_folder_id = tree['project_folder_id']
            project.drive_areas_folder_id = tree['areas_folder_id']
        else:
            logging.warning("Google Drive disabled; project %s has no folder", code)
        project.oss_bucket = _provision_bucket(services, project)
        db.session.commit()
    except (IntegrationError, requests.RequestException, SQLAlchemyError) as e:
        logging.error("Project %s setup failed, removing row: %s", code, e)
        _delete_project_row(project_id)
        raise ActionError(f"Failed to create project: {e}", 502)

    return project.to_dict()


def update_project(project_id, data: dict) -> dict:
    project = _get_project(project_id)
    if 'project_code' in data and data['project_code'] != project.project_code:
        project.project_code = validate_project_code(data['project_code'])
    if 'name' in data and not (data['name'] or '').strip():
        raise ValidationError("Project name is required")
    _apply_fields(project, data)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ActionError("A project with this code already exists", 409)
    return project.to_dict()


def delete_project(project_id) -> dict:
    """Delete the project and everything that hangs off it.

    Dependent rows are removed explicitly, child tables first. The Drive
    folder and the OSS bucket are removed afterwards; failures there are
    logged and reported but do not fail the delete.
    """
    project = _get_project(project_id)
    pid, code = project.id, project.project_code
    folder_id, bucket = project.google_drive_folder_id, project.oss_bucket

    area_ids = db.select(ProjectArea.id).where(ProjectArea.project_id == pid)
    version_ids = db.select(AreaVersion.id).where(AreaVersion.area_id.in_(area_ids))
    try:
        db.session.execute(db.delete(ProjectProduct).where(ProjectProduct.area_version_id.in_(version_ids)))
        db.session.execute(db.delete(AreaVersion).where(AreaVersion.area_id.in_(area_ids)))
        db.session.execute(db.delete(ProjectArea).where(ProjectArea.project_id == pid))
        for model in (ProjectProduct, ProjectContact, ProjectDocument, ProjectPhase):
            db.session.execute(db.delete(model).where(model.project_id == pid))
        db.session.execute(db.delete(Project).where(Project.id == pid))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    logging.info("Deleted project %s", code)

    services = get_services()
    cleanup = {'drive': None, 'oss': None}
    if folder_id and services.drive is not None:
        try:
            services.drive.delete_folder(folder_id)
            cleanup['drive'] = True
        except EXTERNAL_ERRORS as e:
            logging.warning("Could not delete Drive folder %s for %s: %s", folder_id, code, e)
            cleanup['drive'] = False
    if bucket and services.aps is not None:
        try:
            services.aps.delete_bucket(bucket)
            cleanup['oss'] = True
        except EXTERNAL_ERRORS as e:
            logging.warning("Could not delete OSS bucket %s for %s: %s", bucket, code, e)
            cleanup['oss'] = False
    return {'project_code': code, 'external_cleanup': cleanup}


def archive_project(project_id) -> dict:
    project = _get_project(project_id)
    if not project.google_drive_folder_id:
        raise ActionError("Project has no Google Drive folder")
    drive = get_services().drive
    if drive is None:
        raise ActionError("Google Drive is not configured", 503)
    drive.move_to_archive(project.google_drive_folder_id)
    project.is_archived = True
    db.session.commit()
    logging.info("Archived project %s", project.project_code)
    return project.to_dict()


def list_project_files(project_id, subpath: str = '') -> list:
    project = _get_project(project_id)
    drive = get_services().drive
    if drive is None:
        raise ActionError("Google Drive is not configured", 503)
    if not project.google_drive_folder_id:
        raise ActionError("Project has no Google Drive folder")
    folder_id = project.google_drive_folder_id
    for part in [p for p in (subpath or '').split('/') if p]:
        folder_id = drive.find_folder(part, folder_id)
        if folder_id is None:
            raise NotFound(f"Folder not found: {subpath}")
    return drive.list_files(folder_id)


# ---------------------------------------------------------------------------
# project products
# ---------------------------------------------------------------------------

def add_product_to_project(project_id, data: dict) -> dict:
    project = _get_project(project_id)
    version_id = data.get('area_version_id') or None
    if version_id:
        version = db.session.get(AreaVersion, validate_uuid(version_id, 'area version ID'))
        if version is None or version.area.project_id != project.id:
            raise ValidationError("Area version does not belong to this project")
        version_id = version.id

    pp = build_project_product(project.id, version_id, data)
    db.session.add(pp)
    db.session.commit()
    return pp.to_dict()


def _get_project_product(item_id) -> ProjectProduct:
    pp = db.session.get(ProjectProduct, validate_uuid(item_id, 'project product ID'))
    if pp is None:
        raise NotFound("Project product not found")
    return pp


def update_project_product(item_id, data: dict) -> dict:
    pp = _get_project_product(item_id)
    if 'quantity' in data:
        pp.quantity = validate_quantity(data['quantity'])
    if 'unit_price' in data:
        pp.unit_price = validate_price(data['unit_price'])
    if 'discount_percent' in data:
        pp.discount_percent = validate_discount(data['discount_percent'])
    for field in ('room_location', 'notes', 'status', 'mounting_height'):
        if field in data:
            setattr(pp, field, data[field])
    db.session.commit()
    return pp.to_dict()


def remove_project_product(item_id) -> None:
    pp = _get_project_product(item_id)
    db.session.delete(pp)
    db.session.commit()
