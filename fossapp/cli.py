"""Maintenance commands, registered on ``flask`` as ``flask fossapp ...``."""

import logging
from typing import Optional

import click
from flask.cli import with_appcontext

from fossapp import db
from fossapp.context import get_services
from fossapp.errors import IntegrationError
from fossapp.models import Project


@click.group("fossapp")
def fossapp_cli() -> None:
    """FOSSAPP maintenance commands."""


@fossapp_cli.command("create-drive-folders")
@click.option("--project", "project_code", help="Only this project code")
@with_appcontext
def create_drive_folders_command(project_code: Optional[str]) -> None:
    """Create missing Drive folder trees for existing projects."""
    created = create_drive_folders(project_code)
    click.echo(f"Created or completed {created} project folder(s)")


def create_drive_folders(project_code: Optional[str] = None) -> int:
    drive = get_services().drive
    if drive is None:
        raise click.ClickException("Google Drive is not configured")
    query = Project.query.filter(Project.is_archived.is_(False))
    if project_code:
        query = query.filter(Project.project_code == project_code)
    done = 0
    for project in query.order_by(Project.project_code):
        try:
            tree = drive.create_project_folder(project.project_code)
        except IntegrationError as e:
            logging.error("Drive folder for %s failed: %s", project.project_code, e)
            continue
        project.google_drive_folder_id = tree['project_folder_id']
        project.drive_areas_folder_id = tree['areas_folder_id']
        db.session.commit()
        logging.info("Drive folder ready for %s", project.project_code)
        done += 1
    return done


@fossapp_cli.command("purge-tile-jobs")
@with_appcontext
def purge_tile_jobs_command() -> None:
    """Drop finished tile jobs and expired viewer URNs."""
    services = get_services()
    jobs = services.progress.purge_expired()
    urns = services.urn_cache.purge_expired()
    click.echo(f"Purged {jobs} job(s) and {urns} cached URN(s)")
