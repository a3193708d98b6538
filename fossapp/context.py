"""Process-wide services owned by the Flask application.

The factory builds one :class:`FossServices` per app and stores it in
``app.extensions['fossapp']``; request handlers, background jobs and the
CLI look it up through :func:`get_services`.
"""

import logging
import os

from flask import Flask, current_app

from .integrations.aps import ApsClient
from .integrations.google_drive import DriveService
from .tiles.board import BoardStore
from .tiles.progress import ProgressStore
from .viewer.workflow import UrnCache

EXTENSION_KEY = 'fossapp'


class FossServices:
    def __init__(self, drive=None, aps=None, progress=None, boards=None, urn_cache=None):
        self.drive = drive
        self.aps = aps
        self.progress = progress or ProgressStore()
        self.boards = boards
        self.urn_cache = urn_cache or UrnCache()

    @classmethod
    def from_app(cls, app: Flask) -> 'FossServices':
        cfg = app.config
        drive = None
        key_file = cfg.get('GOOGLE_SERVICE_ACCOUNT_FILE')
        if key_file and os.path.exists(key_file):
            drive = DriveService.from_service_account(
                key_file,
                projects_folder_id=cfg['GOOGLE_DRIVE_PROJECTS_FOLDER_ID'],
                archive_folder_id=cfg['GOOGLE_DRIVE_ARCHIVE_FOLDER_ID'],
                tiles_folder_id=cfg['GOOGLE_DRIVE_TILES_FOLDER_ID'],
                shared_drive_id=cfg['GOOGLE_DRIVE_SHARED_DRIVE_ID'],
            )
        else:
            logging.info("Google Drive integration disabled (no service account)")

        aps = None
        if cfg.get('APS_CLIENT_ID') and cfg.get('APS_CLIENT_SECRET'):
            aps = ApsClient(cfg['APS_CLIENT_ID'], cfg['APS_CLIENT_SECRET'], region=cfg['APS_REGION'])
        else:
            logging.info("APS integration disabled (no client credentials)")

        return cls(
            drive=drive,
            aps=aps,
            progress=ProgressStore(ttl=cfg['TILE_JOB_TTL']),
            boards=BoardStore(os.path.join(app.instance_path, 'tile-boards')),
            urn_cache=UrnCache(ttl=cfg['VIEWER_CACHE_TTL']),
        )


def init_services(app: Flask) -> FossServices:
    services = FossServices.from_app(app)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services() -> FossServices:
    return current_app.extensions[EXTENSION_KEY]
