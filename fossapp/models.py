import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import column_property

from fossapp import db


def new_id():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class Customer(db.Model):
    __tablename__ = 'customer'
    id            = db.Column(db.String(36), primary_key=True, default=new_id)
    customer_code = db.Column(db.String(32), unique=True)
    name          = db.Column(db.String(200), nullable=False)
    name_en       = db.Column(db.String(200))
    email         = db.Column(db.String(200))
    phone         = db.Column(db.String(64))
    city          = db.Column(db.String(100))
    country       = db.Column(db.String(100))
    industry      = db.Column(db.String(100))
    company_type  = db.Column(db.String(100))
    created_at    = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'customer_code': self.customer_code,
            'name': self.name,
            'name_en': self.name_en,
            'email': self.email,
            'phone': self.phone,
            'city': self.city,
            'country': self.country,
            'industry': self.industry,
            'company_type': self.company_type,
        }


class Product(db.Model):
    """Catalog product (read-mostly mirror of the supplier catalogs)."""
    __tablename__ = 'product'
    id                = db.Column(db.String(36), primary_key=True, default=new_id)
    foss_pid          = db.Column(db.String(64), unique=True, nullable=False)
    description_short = db.Column(db.String(300), nullable=False, default='')
    description_long  = db.Column(db.Text)
    supplier_name     = db.Column(db.String(200))
    family            = db.Column(db.String(200))
    class_name        = db.Column(db.String(200))
    price             = db.Column(db.Float)
    image_url         = db.Column(db.String(500))
    drawing_url       = db.Column(db.String(500))

    def to_dict(self):
        return {
            'id': self.id,
            'foss_pid': self.foss_pid,
            'description_short': self.description_short,
            'description_long': self.description_long,
            'supplier_name': self.supplier_name,
            'family': self.family,
            'class_name': self.class_name,
            'price': self.price,
            'image_url': self.image_url,
            'drawing_url': self.drawing_url,
        }


class Project(db.Model):
    __tablename__ = 'project'
    id                       = db.Column(db.String(36), primary_key=True, default=new_id)
    project_code             = db.Column(db.String(16), unique=True, nullable=False)
    name                     = db.Column(db.String(200), nullable=False)
    name_en                  = db.Column(db.String(200))
    description              = db.Column(db.Text)
    customer_id              = db.Column(db.String(36), db.ForeignKey('customer.id'))
    street_address           = db.Column(db.String(200))
    postal_code              = db.Column(db.String(20))
    city                     = db.Column(db.String(100))
    region                   = db.Column(db.String(100))
    prefecture               = db.Column(db.String(100))
    country                  = db.Column(db.String(100), default='Greece')
    project_type             = db.Column(db.String(64))
    project_category         = db.Column(db.String(64))
    building_area_sqm        = db.Column(db.Float)
    estimated_budget         = db.Column(db.Float)
    currency                 = db.Column(db.String(3), default='EUR')
    status                   = db.Column(db.String(32), nullable=False, default='draft')
    priority                 = db.Column(db.String(16), nullable=False, default='medium')
    start_date               = db.Column(db.Date)
    expected_completion_date = db.Column(db.Date)
    actual_completion_date   = db.Column(db.Date)
    project_manager          = db.Column(db.String(200))
    architect_firm           = db.Column(db.String(200))
    electrical_engineer      = db.Column(db.String(200))
    lighting_designer        = db.Column(db.String(200))
    notes                    = db.Column(db.Text)
    tags                     = db.Column(db.JSON)
    google_drive_folder_id   = db.Column(db.String(128))
    drive_areas_folder_id    = db.Column(db.String(128))
    oss_bucket               = db.Column(db.String(128))
    is_archived              = db.Column(db.Boolean, nullable=False, default=False)
    created_at               = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at               = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    customer = db.relationship('Customer', lazy=True)
    areas    = db.relationship('ProjectArea', backref='project', lazy=True,
                               order_by='ProjectArea.display_order')
    products = db.relationship('ProjectProduct', backref='project', lazy=True)
    contacts = db.relationship('ProjectContact', lazy=True)
    documents = db.relationship('ProjectDocument', lazy=True)
    phases   = db.relationship('ProjectPhase', lazy=True,
                               order_by='ProjectPhase.phase_number')

    def to_dict(self):
        return {
            'id': self.id,
            'project_code': self.project_code,
            'name': self.name,
            'name_en': self.name_en,
            'description': self.description,
            'customer_id': self.customer_id,
            'customer_name': self.customer.name if self.customer else None,
            'customer_name_en': self.customer.name_en if self.customer else None,
            'street_address': self.street_address,
            'postal_code': self.postal_code,
            'city': self.city,
            'region': self.region,
            'prefecture': self.prefecture,
            'country': self.country,
            'project_type': self.project_type,
            'project_category': self.project_category,
            'building_area_sqm': self.building_area_sqm,
            'estimated_budget': self.estimated_budget,
            'currency': self.currency,
            'status': self.status,
            'priority': self.priority,
            'start_date': _iso(self.start_date),
            'expected_completion_date': _iso(self.expected_completion_date),
            'actual_completion_date': _iso(self.actual_completion_date),
            'project_manager': self.project_manager,
            'architect_firm': self.architect_firm,
            'electrical_engineer': self.electrical_engineer,
            'lighting_designer': self.lighting_designer,
            'notes': self.notes,
            'tags': self.tags or [],
            'google_drive_folder_id': self.google_drive_folder_id,
            'oss_bucket': self.oss_bucket,
            'is_archived': self.is_archived,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class ProjectArea(db.Model):
    __tablename__ = 'project_area'
    __table_args__ = (db.UniqueConstraint('project_id', 'area_code'),)
    id                     = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id             = db.Column(db.String(36), db.ForeignKey('project.id'), nullable=False)
    area_code              = db.Column(db.String(20), nullable=False)
    area_name              = db.Column(db.String(200), nullable=False)
    area_name_en           = db.Column(db.String(200))
    area_type              = db.Column(db.String(64))
    floor_level            = db.Column(db.Integer)
    area_sqm               = db.Column(db.Float)
    ceiling_height_m       = db.Column(db.Float)
    current_version        = db.Column(db.Integer, nullable=False, default=1)
    display_order          = db.Column(db.Integer, nullable=False, default=0)
    is_active              = db.Column(db.Boolean, nullable=False, default=True)
    description            = db.Column(db.Text)
    notes                  = db.Column(db.Text)
    google_drive_folder_id = db.Column(db.String(128))
    created_at             = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at             = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    versions = db.relationship('AreaVersion', backref='area', lazy=True,
                               order_by='AreaVersion.version_number')

    def version(self, number):
        return AreaVersion.query.filter_by(area_id=self.id, version_number=number).first()

    def to_dict(self):
        return {
            'id': self.id,
            'project_id': self.project_id,
            'area_code': self.area_code,
            'area_name': self.area_name,
            'area_name_en': self.area_name_en,
            'area_type': self.area_type,
            'floor_level': self.floor_level,
            'area_sqm': self.area_sqm,
            'ceiling_height_m': self.ceiling_height_m,
            'current_version': self.current_version,
            'display_order': self.display_order,
            'is_active': self.is_active,
            'description': self.description,
            'notes': self.notes,
            'google_drive_folder_id': self.google_drive_folder_id,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class AreaVersion(db.Model):
    __tablename__ = 'area_version'
    __table_args__ = (db.UniqueConstraint('area_id', 'version_number'),)
    id                     = db.Column(db.String(36), primary_key=True, default=new_id)
    area_id                = db.Column(db.String(36), db.ForeignKey('project_area.id'), nullable=False)
    version_number         = db.Column(db.Integer, nullable=False)
    version_name           = db.Column(db.String(200))
    notes                  = db.Column(db.Text)
    status                 = db.Column(db.String(16), nullable=False, default='draft')
    google_drive_folder_id = db.Column(db.String(128))
    approved_at            = db.Column(db.DateTime(timezone=True))
    created_at             = db.Column(db.DateTime(timezone=True), default=utcnow)
    floor_plan_urn         = db.Column(db.String(512))
    floor_plan_filename    = db.Column(db.String(255))
    floor_plan_hash        = db.Column(db.String(64), index=True)
    floor_plan_status      = db.Column(db.String(32))
    floor_plan_warnings    = db.Column(db.Integer)
    floor_plan_manifest    = db.Column(db.JSON)

    def to_dict(self):
        return {
            'id': self.id,
            'area_id': self.area_id,
            'version_number': self.version_number,
            'version_name': self.version_name,
            'notes': self.notes,
            'status': self.status,
            'google_drive_folder_id': self.google_drive_folder_id,
            'approved_at': _iso(self.approved_at),
            'created_at': _iso(self.created_at),
            'floor_plan_urn': self.floor_plan_urn,
            'floor_plan_filename': self.floor_plan_filename,
            'floor_plan_status': self.floor_plan_status,
            'floor_plan_warnings': self.floor_plan_warnings,
        }


class ProjectProduct(db.Model):
    __tablename__ = 'project_product'
    id               = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id       = db.Column(db.String(36), db.ForeignKey('project.id'), nullable=False)
    product_id       = db.Column(db.String(36), db.ForeignKey('product.id'), nullable=False)
    area_version_id  = db.Column(db.String(36), db.ForeignKey('area_version.id'))
    quantity         = db.Column(db.Integer, nullable=False, default=1)
    unit_price       = db.Column(db.Float)
    discount_percent = db.Column(db.Float, nullable=False, default=0.0)
    room_location    = db.Column(db.String(200))
    mounting_height  = db.Column(db.Float)
    status           = db.Column(db.String(32), nullable=False, default='specified')
    notes            = db.Column(db.Text)
    created_at       = db.Column(db.DateTime(timezone=True), default=utcnow)

    # Computed by the database on every SELECT, never written.
    total_price = column_property(
        db.func.coalesce(unit_price, 0.0) * quantity
        * (1 - db.func.coalesce(discount_percent, 0.0) / 100.0)
    )

    product = db.relationship('Product', lazy='joined')

    def to_dict(self):
        p = self.product
        return {
            'id': self.id,
            'project_id': self.project_id,
            'product_id': self.product_id,
            'area_version_id': self.area_version_id,
            'foss_pid': p.foss_pid if p else None,
            'description_short': p.description_short if p else None,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'discount_percent': self.discount_percent,
            'total_price': round(self.total_price or 0.0, 2),
            'room_location': self.room_location,
            'mounting_height': self.mounting_height,
            'status': self.status,
            'notes': self.notes,
        }


class ProjectContact(db.Model):
    __tablename__ = 'project_contact'
    id           = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id   = db.Column(db.String(36), db.ForeignKey('project.id'), nullable=False)
    contact_type = db.Column(db.String(32), nullable=False, default='other')
    name         = db.Column(db.String(200), nullable=False)
    company      = db.Column(db.String(200))
    email        = db.Column(db.String(200))
    phone        = db.Column(db.String(64))
    mobile       = db.Column(db.String(64))
    role         = db.Column(db.String(100))
    is_primary   = db.Column(db.Boolean, nullable=False, default=False)
    notes        = db.Column(db.Text)

    def to_dict(self):
        return {
            'id': self.id,
            'contact_type': self.contact_type,
            'name': self.name,
            'company': self.company,
            'email': self.email,
            'phone': self.phone,
            'mobile': self.mobile,
            'role': self.role,
            'is_primary': self.is_primary,
            'notes': self.notes,
        }


class ProjectDocument(db.Model):
    __tablename__ = 'project_document'
    id              = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id      = db.Column(db.String(36), db.ForeignKey('project.id'), nullable=False)
    document_type   = db.Column(db.String(32), nullable=False, default='other')
    title           = db.Column(db.String(200), nullable=False)
    description     = db.Column(db.Text)
    file_path       = db.Column(db.String(500))
    file_url        = db.Column(db.String(500))
    mime_type       = db.Column(db.String(100))
    file_size_bytes = db.Column(db.Integer)
    version         = db.Column(db.String(16), nullable=False, default='1.0')
    is_latest       = db.Column(db.Boolean, nullable=False, default=True)
    created_at      = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'document_type': self.document_type,
            'title': self.title,
            'description': self.description,
            'file_path': self.file_path,
            'file_url': self.file_url,
            'mime_type': self.mime_type,
            'file_size_bytes': self.file_size_bytes,
            'version': self.version,
            'is_latest': self.is_latest,
            'created_at': _iso(self.created_at),
        }


class ProjectPhase(db.Model):
    __tablename__ = 'project_phase'
    id           = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id   = db.Column(db.String(36), db.ForeignKey('project.id'), nullable=False)
    phase_number = db.Column(db.Integer, nullable=False)
    phase_name   = db.Column(db.String(200), nullable=False)
    description  = db.Column(db.Text)
    budget       = db.Column(db.Float)
    status       = db.Column(db.String(32), nullable=False, default='pending')
    start_date   = db.Column(db.Date)
    end_date     = db.Column(db.Date)

    def to_dict(self):
        return {
            'id': self.id,
            'phase_number': self.phase_number,
            'phase_name': self.phase_name,
            'description': self.description,
            'budget': self.budget,
            'status': self.status,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
        }
