import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fakes import FakeDrive
from fossapp import create_app, db
from fossapp.models import Project


def setup_app(drive=None):
    os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
    app = create_app('testing')
    with app.app_context():
        db.drop_all()
        db.create_all()
    app.extensions['fossapp'].drive = drive
    return app


def test_create_drive_folders_for_single_project():
    drive = FakeDrive()
    app = setup_app(drive)
    with app.app_context():
        db.session.add_all([Project(project_code='2501-001', name='A'), Project(project_code='2501-002', name='B')])
        db.session.commit()
    result = app.test_cli_runner().invoke(args=['fossapp', 'create-drive-folders', '--project', '2501-002'])
    assert result.exit_code == 0
    assert 'Created or completed 1 project folder(s)' in result.output
    with app.app_context():
        project = Project.query.filter_by(project_code='2501-002').one()
        assert project.google_drive_folder_id == drive.folders_named('2501-002')[0]
        assert drive.folders_named('2501-001') == []


def test_create_drive_folders_requires_drive():
    app = setup_app()
    result = app.test_cli_runner().invoke(args=['fossapp', 'create-drive-folders'])
    assert result.exit_code != 0
    assert 'not configured' in result.output


def test_purge_tile_jobs():
    app = setup_app()
    services = app.extensions['fossapp']
    job_id = services.progress.create_job('T')
    services.progress.complete_job(job_id, True)
    services.progress.ttl = 0
    services.urn_cache.put('g1', 'urn')
    result = app.test_cli_runner().invoke(args=['fossapp', 'purge-tile-jobs'])
    assert result.exit_code == 0
    assert 'Purged 1 job(s) and 0 cached URN(s)' in result.output
