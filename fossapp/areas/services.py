"""Areas, area versions, version products and floor plans."""

import hashlib
import logging
from datetime import datetime, timezone

import requests
from sqlalchemy.exc import IntegrityError

from fossapp import db
from fossapp.context import get_services
from fossapp.errors import ActionError, IntegrationError, NotFound
from fossapp.integrations.aps import (
    bucket_name_for_project,
    from_urn,
    object_key,
    parse_manifest,
    to_urn,
)
from fossapp.models import AreaVersion, Product, ProjectArea, ProjectProduct, Project
from fossapp.validation import (
    VERSION_STATUSES,
    ValidationError,
    sanitize_file_name,
    validate_area_code,
    validate_choice,
    validate_discount,
    validate_price,
    validate_quantity,
    validate_uuid,
)

EXTERNAL_ERRORS = (IntegrationError, requests.RequestException)
FLOOR_PLAN_EXTENSIONS = ('.dwg', '.dxf')
AREA_FIELDS = (
    'area_name', 'area_name_en', 'area_type', 'floor_level', 'area_sqm',
    'ceiling_height_m', 'display_order', 'description', 'notes', 'is_active',
)
COPIED_PRODUCT_FIELDS = (
    'project_id', 'product_id', 'quantity', 'unit_price', 'discount_percent',
    'room_location', 'mounting_height', 'status', 'notes',
)
DUPLICATE_AREA = "Area code already exists in this project"


def _get(model, ident, label):
    obj = db.session.get(model, validate_uuid(ident, f'{label} ID'))
    if obj is None:
        raise NotFound(f"{label.capitalize()} not found")
    return obj


def version_summary(version: AreaVersion) -> dict:
    count, total = db.session.execute(
        db.select(
            db.func.count(ProjectProduct.id),
            db.func.coalesce(db.func.sum(ProjectProduct.total_price), 0.0),
        ).where(ProjectProduct.area_version_id == version.id)
    ).one()
    summary = version.to_dict()
    summary['product_count'] = count
    summary['total_cost'] = round(float(total), 2)
    return summary


# ---------------------------------------------------------------------------
# Drive / OSS helpers (best effort)
# ---------------------------------------------------------------------------

def _areas_folder(drive, project: Project):
    if project.drive_areas_folder_id:
        return project.drive_areas_folder_id
    if not project.google_drive_folder_id:
        return None
    folder = drive.find_areas_folder(project.google_drive_folder_id)
    project.drive_areas_folder_id = folder
    return folder


def _create_version_folder(area: ProjectArea, version: AreaVersion) -> None:
    drive = get_services().drive
    if drive is None:
        logging.warning("Google Drive disabled; no folder for %s v%s", area.area_code, version.version_number)
        return
    try:
        parent = _areas_folder(drive, area.project)
        if parent is None:
            logging.warning("Project %s has no Drive folder", area.project.project_code)
            return
        ids = drive.create_area_version_folder(parent, area.area_code, version.version_number)
        area.google_drive_folder_id = ids['area_folder_id']
        version.google_drive_folder_id = ids['version_folder_id']
        db.session.commit()
    except EXTERNAL_ERRORS as e:
        logging.warning("Drive folder for %s v%s failed: %s", area.area_code, version.version_number, e)


def _delete_drive_folder(folder_id, what) -> None:
    drive = get_services().drive
    if not folder_id or drive is None:
        return
    try:
        drive.delete_folder(folder_id)
    except EXTERNAL_ERRORS as e:
        logging.warning("Could not delete Drive folder of %s: %s", what, e)


def _delete_floor_plan_object(urn, exclude_ids=()) -> None:
    """Remove the OSS object behind ``urn`` unless another version still uses it."""
    aps = get_services().aps
    if not urn or aps is None:
        return
    shared = AreaVersion.query.filter(
        AreaVersion.floor_plan_urn == urn, AreaVersion.id.notin_(list(exclude_ids))
    ).count()
    if shared:
        logging.info("Floor plan object still referenced by %s version(s), keeping it", shared)
        return
    try:
        bucket, key = from_urn(urn)
        aps.delete_object(bucket, key)
    except ValueError as e:
        logging.warning("Cannot resolve floor plan URN %s: %s", urn, e)
    except EXTERNAL_ERRORS as e:
        logging.warning("Could not delete floor plan object for %s: %s", urn, e)


# ---------------------------------------------------------------------------
# areas
# ---------------------------------------------------------------------------

def list_areas(project_id) -> list:
    project = _get(Project, project_id, 'project')
    areas = (
        ProjectArea.query.filter_by(project_id=project.id)
        .order_by(ProjectArea.display_order, ProjectArea.area_code)
        .all()
    )
    result = []
    for area in areas:
        item = area.to_dict()
        current = area.version(area.current_version)
        item['current_version_data'] = version_summary(current) if current else None
        result.append(item)
    return result


def _apply_area_fields(area: ProjectArea, data: dict) -> None:
    for field in AREA_FIELDS:
        if field in data:
            setattr(area, field, data[field])
    if 'area_name' in data and not (data['area_name'] or '').strip():
        raise ValidationError("Area name is required")


def create_area(data: dict) -> dict:
    """Create an area together with its first version (v1)."""
    project = _get(Project, data.get('project_id'), 'project')
    code = validate_area_code(data.get('area_code'))
    if not (data.get('area_name') or '').strip():
        raise ValidationError("Area name is required")

    area = ProjectArea(project_id=project.id, area_code=code, current_version=1)
    _apply_area_fields(area, data)
    db.session.add(area)
    try:
        db.session.flush()
        version = AreaVersion(area_id=area.id, version_number=1, version_name='Version 1', status='draft')
        db.session.add(version)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ActionError(DUPLICATE_AREA, 409)
    logging.info("Created area %s in project %s", code, project.project_code)

    _create_version_folder(area, version)
    return area.to_dict()


def update_area(area_id, data: dict) -> dict:
    area = _get(ProjectArea, area_id, 'area')
    old_code = area.area_code
    if 'area_code' in data:
        area.area_code = validate_area_code(data['area_code'])
    _apply_area_fields(area, data)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ActionError(DUPLICATE_AREA, 409)

    drive = get_services().drive
    if area.area_code != old_code and area.google_drive_folder_id and drive is not None:
        try:
            drive.rename(area.google_drive_folder_id, area.area_code)
        except EXTERNAL_ERRORS as e:
            logging.warning("Could not rename Drive folder %s -> %s: %s", old_code, area.area_code, e)
    return area.to_dict()


def delete_area(area_id) -> None:
    area = _get(ProjectArea, area_id, 'area')
    folder_id = area.google_drive_folder_id
    version_ids = [v.id for v in area.versions]
    urns = {v.floor_plan_urn for v in area.versions if v.floor_plan_urn}
    code = area.area_code

    db.session.execute(db.delete(ProjectProduct).where(ProjectProduct.area_version_id.in_(version_ids)))
    db.session.execute(db.delete(AreaVersion).where(AreaVersion.area_id == area.id))
    db.session.execute(db.delete(ProjectArea).where(ProjectArea.id == area.id))
    db.session.commit()
    logging.info("Deleted area %s", code)

    _delete_drive_folder(folder_id, f"area {code}")
    for urn in urns:
        _delete_floor_plan_object(urn)


# ---------------------------------------------------------------------------
# versions
# ---------------------------------------------------------------------------

def list_versions(area_id) -> list:
    area = _get(ProjectArea, area_id, 'area')
    return [version_summary(v) for v in area.versions]


def get_version_summary(version_id) -> dict:
    return version_summary(_get(AreaVersion, version_id, 'area version'))


def _copy_floor_plan(source: AreaVersion, target: AreaVersion, area: ProjectArea) -> None:
    aps = get_services().aps
    if aps is None:
        logging.warning("APS disabled; floor plan of %s v%s not copied", area.area_code, source.version_number)
        return
    try:
        bucket, source_key = from_urn(source.floor_plan_urn)
        dest_key = object_key(area.area_code, target.version_number, source.floor_plan_filename,
                              source.floor_plan_hash)
        aps.copy_object(bucket, source_key, dest_key)
        urn = to_urn(bucket, dest_key)
        aps.start_translation(urn)
    except ValueError as e:
        logging.warning("Cannot resolve floor plan URN of %s v%s: %s", area.area_code, source.version_number, e)
        return
    except EXTERNAL_ERRORS as e:
        logging.warning("Floor plan copy to %s v%s failed: %s", area.area_code, target.version_number, e)
        return
    target.floor_plan_urn = urn
    target.floor_plan_filename = source.floor_plan_filename
    target.floor_plan_hash = source.floor_plan_hash
    target.floor_plan_status = 'inprogress'


def create_version(area_id, copy_from_version=None, version_name=None, notes=None) -> dict:
    """Add version ``current_version + 1`` and make it current.

    With ``copy_from_version`` the product rows of that version are
    duplicated and its floor plan is copied and re-translated.
    """
    area = _get(ProjectArea, area_id, 'area')
    source = None
    if copy_from_version is not None:
        source = area.version(int(copy_from_version))
        if source is None:
            raise NotFound(f"Version {copy_from_version} not found")

    existing = max((v.version_number for v in area.versions), default=0)
    number = max(area.current_version, existing) + 1
    version = AreaVersion(
        area_id=area.id,
        version_number=number,
        version_name=(version_name or '').strip() or f'Version {number}',
        notes=notes,
        status='draft',
    )
    db.session.add(version)
    db.session.flush()

    if source is not None:
        rows = ProjectProduct.query.filter_by(area_version_id=source.id).all()
        for row in rows:
            copy = ProjectProduct(area_version_id=version.id)
            for field in COPIED_PRODUCT_FIELDS:
                setattr(copy, field, getattr(row, field))
            db.session.add(copy)
        logging.info("Copied %s products from %s v%s", len(rows), area.area_code, source.version_number)
        if source.floor_plan_urn and source.floor_plan_filename:
            _copy_floor_plan(source, version, area)

    area.current_version = number
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ActionError(f"Version {number} already exists", 409)

    _create_version_folder(area, version)
    return version_summary(version)


def update_version(version_id, data: dict) -> dict:
    version = _get(AreaVersion, version_id, 'area version')
    if 'version_name' in data:
        version.version_name = data['version_name']
    if 'notes' in data:
        version.notes = data['notes']
    if 'status' in data:
        version.status = validate_choice(data['status'], VERSION_STATUSES, 'version status')
        if version.status == 'approved' and version.approved_at is None:
            version.approved_at = datetime.now(timezone.utc)
    db.session.commit()
    return version_summary(version)


def delete_version(version_id) -> None:
    version = _get(AreaVersion, version_id, 'area version')
    area = version.area
    if version.version_number == area.current_version:
        raise ActionError("Cannot delete the current version")
    folder_id, urn, vid = version.google_drive_folder_id, version.floor_plan_urn, version.id
    label = f"{area.area_code} v{version.version_number}"

    db.session.execute(db.delete(ProjectProduct).where(ProjectProduct.area_version_id == vid))
    db.session.execute(db.delete(AreaVersion).where(AreaVersion.id == vid))
    db.session.commit()
    logging.info("Deleted version %s", label)

    _delete_drive_folder(folder_id, label)
    _delete_floor_plan_object(urn)


# ---------------------------------------------------------------------------
# version products
# ---------------------------------------------------------------------------

def build_project_product(project_id, version_id, data: dict) -> ProjectProduct:
    product = _get(Product, data.get('product_id'), 'product')
    unit_price = validate_price(data.get('unit_price'))
    return ProjectProduct(
        project_id=project_id,
        product_id=product.id,
        area_version_id=version_id,
        quantity=validate_quantity(data.get('quantity', 1)),
        unit_price=product.price if unit_price is None else unit_price,
        discount_percent=validate_discount(data.get('discount_percent', 0)),
        room_location=data.get('room_location'),
        mounting_height=data.get('mounting_height'),
        notes=data.get('notes'),
    )


def list_version_products(version_id) -> list:
    version = _get(AreaVersion, version_id, 'area version')
    rows = (
        ProjectProduct.query.filter_by(area_version_id=version.id)
        .order_by(ProjectProduct.created_at)
        .all()
    )
    items = []
    for row in rows:
        item = row.to_dict()
        item['supplier_name'] = row.product.supplier_name
        item['image_url'] = row.product.image_url
        items.append(item)
    return items


def add_product_to_version(version_id, data: dict) -> dict:
    version = _get(AreaVersion, version_id, 'area version')
    pp = build_project_product(version.area.project_id, version.id, data)
    db.session.add(pp)
    db.session.commit()
    return pp.to_dict()


def _version_product(version_id, item_id) -> ProjectProduct:
    pp = _get(ProjectProduct, item_id, 'product line')
    if pp.area_version_id != validate_uuid(version_id, 'area version ID'):
        raise NotFound("Product line not found in this version")
    return pp


def update_version_product(version_id, item_id, data: dict) -> dict:
    pp = _version_product(version_id, item_id)
    if 'quantity' in data:
        pp.quantity = validate_quantity(data['quantity'])
    if 'unit_price' in data:
        pp.unit_price = validate_price(data['unit_price'])
    if 'discount_percent' in data:
        pp.discount_percent = validate_discount(data['discount_percent'])
    for field in ('room_location', 'mounting_height', 'notes', 'status'):
        if field in data:
            setattr(pp, field, data[field])
    db.session.commit()
    return pp.to_dict()


def remove_version_product(version_id, item_id) -> None:
    pp = _version_product(version_id, item_id)
    db.session.delete(pp)
    db.session.commit()


# ---------------------------------------------------------------------------
# floor plans
# ---------------------------------------------------------------------------

def _require_aps():
    aps = get_services().aps
    if aps is None:
        raise ActionError("Autodesk Platform Services is not configured", 503)
    return aps


def upload_floor_plan(version_id, filename: str, content: bytes) -> dict:
    """Store a DWG/DXF for a version and start its translation.

    A file whose SHA-256 matches a plan already translated for any version
    reuses that URN instead of uploading again.
    """
    version = _get(AreaVersion, version_id, 'area version')
    if not (filename or '').lower().endswith(FLOOR_PLAN_EXTENSIONS):
        raise ValidationError("Only .dwg and .dxf files are supported")
    if not content:
        raise ValidationError("Empty file")
    aps = _require_aps()
    area, project = version.area, version.area.project
    name = sanitize_file_name(filename)
    digest = hashlib.sha256(content).hexdigest()

    cached = AreaVersion.query.filter(
        AreaVersion.floor_plan_hash == digest, AreaVersion.floor_plan_urn.isnot(None)
    ).first()
    if cached is not None:
        logging.info("Floor plan cache hit for %s v%s", area.area_code, version.version_number)
        urn, status, is_new = cached.floor_plan_urn, cached.floor_plan_status or 'inprogress', False
        bucket = from_urn(urn)[0]
    else:
        bucket = project.oss_bucket
        if not bucket:
            bucket = bucket_name_for_project(project.id)
            aps.ensure_bucket(bucket, policy='persistent')
            project.oss_bucket = bucket
        key = object_key(area.area_code, version.version_number, name, digest)
        upload = aps.upload_object(bucket, key, content)
        urn, status, is_new = upload['urn'], 'inprogress', True
        aps.start_translation(urn)

    old_urn = version.floor_plan_urn
    version.floor_plan_urn = urn
    version.floor_plan_filename = name
    version.floor_plan_hash = digest
    version.floor_plan_status = status
    version.floor_plan_warnings = None
    version.floor_plan_manifest = None
    db.session.commit()
    if old_urn and old_urn != urn:
        _delete_floor_plan_object(old_urn)
    return {'urn': urn, 'isNewUpload': is_new, 'bucketName': bucket, 'fileName': name}


def refresh_floor_plan_status(version_id) -> dict:
    version = _get(AreaVersion, version_id, 'area version')
    if not version.floor_plan_urn:
        raise ActionError("Version has no floor plan")
    manifest = _require_aps().get_manifest(version.floor_plan_urn)
    if manifest is None:
        data = parse_manifest({})
    else:
        data = parse_manifest(manifest)
        version.floor_plan_status = data['status']
        version.floor_plan_warnings = data['warningCount']
        version.floor_plan_manifest = data
        db.session.commit()
    data['urn'] = version.floor_plan_urn
    return data


def delete_floor_plan(version_id) -> None:
    version = _get(AreaVersion, version_id, 'area version')
    urn = version.floor_plan_urn
    version.floor_plan_urn = None
    version.floor_plan_filename = None
    version.floor_plan_hash = None
    version.floor_plan_status = None
    version.floor_plan_warnings = None
    version.floor_plan_manifest = None
    db.session.commit()
    _delete_floor_plan_object(urn)
