"""Tile DWG generation: AutoCAD script, Design Automation, Drive upload."""

import logging
import mimetypes
import os
import threading
import time
from typing import Any, Dict, List, Optional

import requests
from flask import Flask

from fossapp.errors import IntegrationError
from fossapp.tiles.progress import ProgressStore
from fossapp.viewer.workflow import UrnCache, upload_for_viewer

# Standard catalog images are 1500x1500 px at 300 dpi
DEFAULT_IMAGE_PX = 1500
DEFAULT_DPI = 300
DEFAULT_TILE_MM = 50
LAYERS = ('LEGEND TILES LINE THIN', 'LEGEND TILES LINE THICK', 'LEGEND TILES IMAGES')


def pixels_to_mm(pixels: float, dpi: float) -> float:
    return pixels / dpi * 25.4


def autocad_scale(dpi: float, target_mm: float = DEFAULT_TILE_MM) -> float:
    return target_mm / pixels_to_mm(DEFAULT_IMAGE_PX, dpi)


def member_scaling(member: Dict[str, Any]) -> Dict[str, Any]:
    width_mm = pixels_to_mm(member['width'], member['dpi'])
    height_mm = pixels_to_mm(member['height'], member['dpi'])
    scale = min(member['tileWidth'] / width_mm, member['tileHeight'] / height_mm)
    scaled_w, scaled_h = width_mm * scale, height_mm * scale
    return {
        'scale': autocad_scale(member['dpi'], member['tileWidth']),
        'offset': ((member['tileWidth'] - scaled_w) / 2, (member['tileHeight'] - scaled_h) / 2),
    }


def normalize_member(member: Dict[str, Any]) -> Dict[str, Any]:
    m = dict(member)
    m.setdefault('width', DEFAULT_IMAGE_PX)
    m.setdefault('height', DEFAULT_IMAGE_PX)
    m.setdefault('dpi', DEFAULT_DPI)
    m.setdefault('tileWidth', DEFAULT_TILE_MM)
    m.setdefault('tileHeight', DEFAULT_TILE_MM)
    m.setdefault('tileText', '')
    return m


def layout_tile(members: List[Dict[str, Any]], text_gap: float = 10) -> Dict[str, Any]:
    """Stack each member's image and drawing frames bottom-up, no spacing."""
    width = members[0]['tileWidth'] if members else DEFAULT_TILE_MM
    y = 0.0
    layouts = []
    for i, m in enumerate(members):
        rects = []
        for kind in ('image', 'drawing'):
            filename = (m.get(f'{kind}Filename') or '').strip()
            if filename:
                rects.append({'type': kind, 'filename': filename, 'y': y,
                              'width': m['tileWidth'], 'height': m['tileHeight']})
                y += m['tileHeight']
        layouts.append({'index': i, 'startY': layouts[-1]['endY'] if layouts else 0.0, 'endY': y, 'rectangles': rects})
    return {'width': width, 'height': y, 'members': layouts, 'textGap': text_gap}


def _num(value: float) -> str:
    return f"{value:g}"


class TileScriptGenerator:
    """Builds the AutoCAD .scr that draws one tile and saves it as DWG."""

    def __init__(self) -> None:
        self.commands: List[str] = []

    def _layer(self, name, color='7', lineweight=None, description=''):
        cmd = f'(command "layer" "make" "{name}" "color" "{color}" ""'
        if lineweight is not None:
            self.commands.append(f'{cmd} "lw" {lineweight} "" "d" "{description}" "{name}" "")')
        else:
            self.commands.append(f'{cmd} "d" "{description}" "{name}" "")')

    def _current_layer(self, name):
        self.commands.append(f'(setvar "CLAYER" "{name}")')

    def _rectangle(self, x1, y1, x2, y2):
        self.commands.append(f'(command "RECTANG" "{_num(x1)},{_num(y1)}" "{_num(x2)},{_num(y2)}")')

    def _mtext(self, x, y, height, width, text):
        text = text.replace('"', "'")
        self.commands.append(
            f'(command "-MTEXT" "{_num(x)},{_num(y)}" "H" "{_num(height)}" "W" "{_num(width)}" "{text}" "")'
        )

    def _image(self, path, x, y, scale, rotation=0):
        path = path.replace('\\', '\\\\')
        self.commands.append(f'(command "-IMAGE" "ATTACH" "{path}" "{_num(x)},{_num(y)}" {scale:.4f} {rotation})')

    def generate(self, tile: Dict[str, Any], settings: Optional[Dict[str, Any]] = None) -> str:
        settings = settings or {}
        self.commands = []
        members = [normalize_member(m) for m in tile['members']]

        self.commands += ['(setvar "cmdecho" 0)', '(setvar "filedia" 0)']
        self.commands.append('(command "-DWGUNITS" 3 2 2 "Y" "Y" "N")')

        layout = layout_tile(members, settings.get('textGap') or 10)
        self._layer(LAYERS[0], '10', 0.3, 'Inner Tiles Style')
        self._layer(LAYERS[1], '10', 0.5, 'Inner Tiles Style')
        self._layer(LAYERS[2], '7', None, 'Tiles Images Style')

        for member, member_layout in zip(members, layout['members']):
            for rect in member_layout['rectangles']:
                self._current_layer(LAYERS[2])
                scaling = member_scaling(member)
                dx, dy = scaling['offset']
                self._image(rect['filename'], dx, rect['y'] + dy, scaling['scale'])
                self._current_layer(LAYERS[0])
                self._rectangle(0, rect['y'], rect['width'], rect['y'] + rect['height'])

        self._current_layer(LAYERS[1])
        self._rectangle(0, 0, layout['width'], layout['height'])

        text_x = layout['width'] + layout['textGap']
        for member, member_layout in zip(members, layout['members']):
            self._mtext(
                text_x,
                member_layout['endY'] - 5,
                settings.get('textHeight') or 3,
                settings.get('textWidth') or 40,
                member['tileText'],
            )

        self.commands += ['(command "ZOOM" "E")', '(command "REGEN")', '(setvar "CLAYER" "0")']
        output = settings.get('outputFilename') or f"{tile['tile']}.dwg"
        self.commands.append(f'(command "SAVEAS" "2018" "{output}")')
        self.commands += ['(setvar "filedia" 1)', '(setvar "cmdecho" 1)', 'QUIT']
        return '\n'.join(self.commands)


def generate_tile_script(tile: Dict[str, Any], settings: Optional[Dict[str, Any]] = None) -> str:
    return TileScriptGenerator().generate(tile, settings)


def preview_tile_script(tile: Dict[str, Any], settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    members = [normalize_member(m) for m in tile['members']]
    layout = layout_tile(members, (settings or {}).get('textGap') or 10)
    return {
        'tileName': tile['tile'],
        'tileId': tile.get('tileId'),
        'memberCount': len(members),
        'container': {'width': layout['width'], 'height': layout['height']},
        'members': [
            {'productId': m.get('productId'), 'rectangleCount': len(ml['rectangles']),
             'startY': ml['startY'], 'endY': ml['endY']}
            for m, ml in zip(members, layout['members'])
        ],
        'layers': list(LAYERS),
    }


def _extension(url: str, content_type: str) -> str:
    ext = os.path.splitext(url.split('?', 1)[0])[1].lower()
    if ext in ('.png', '.jpg', '.jpeg', '.gif', '.bmp', '.tif', '.tiff'):
        return ext
    return mimetypes.guess_extension((content_type or '').split(';')[0].strip()) or '.png'


class TileGenerator:
    """Runs the generation pipeline for one tile in a background thread."""

    def __init__(self, app: Flask, progress: ProgressStore, aps, drive,
                 urn_cache: Optional[UrnCache] = None, timeout: int = 30) -> None:
        self.app = app
        self.progress = progress
        self.aps = aps
        self.drive = drive
        self.urn_cache = urn_cache
        self.timeout = timeout
        self.http = requests.Session()

    def start(self, payload: Dict[str, Any]) -> str:
        job_id = self.progress.create_job(payload['tile'])
        threading.Thread(target=self._runner, args=(job_id, payload), daemon=True).start()
        return job_id

    def _runner(self, job_id: str, payload: Dict[str, Any]) -> None:
        with self.app.app_context():
            try:
                self.run(job_id, payload)
            except Exception as e:
                logging.exception("Tile generation %s failed", job_id)
                self.progress.add_progress(job_id, 'error', 'Unexpected error', str(e))
                self.progress.complete_job(job_id, False, {'errors': [str(e)]})

    # -- steps ----------------------------------------------------------
    def fetch_images(self, job_id: str, payload: Dict[str, Any]):
        files = []
        members = []
        for m in payload['members']:
            member = dict(m)
            base = (m.get('fossPid') or m['productId']).replace('/', '_')
            for kind in ('image', 'drawing'):
                url = m.get(f'{kind}Url')
                if not url:
                    continue
                r = self.http.get(url, timeout=self.timeout)
                r.raise_for_status()
                name = f"{base}_{kind}{_extension(url, r.headers.get('Content-Type', ''))}"
                files.append((name, r.content))
                member[f'{kind}Filename'] = name
            members.append(member)
        return files, dict(payload, members=members)

    def run_design_automation(self, job_id: str, tile_name: str, script: str, images) -> bytes:
        cfg = self.app.config
        bucket = f"fossapp_tile_{int(time.time() * 1000)}"
        step = 'Step 3/4'
        self.aps.ensure_bucket(bucket, policy='transient')
        try:
            self.progress.add_progress(job_id, 'aps', 'Uploading inputs', f"{len(images) + 1} files", step)
            self.aps.upload_object(bucket, 'script.scr', script.encode())
            arguments: Dict[str, Any] = {
                'script': {'url': self.aps.signed_url(bucket, 'script.scr'), 'verb': 'get'},
            }
            for i, (name, content) in enumerate(images, start=1):
                self.aps.upload_object(bucket, name, content)
                arguments[f'image{i}'] = {'url': self.aps.signed_url(bucket, name), 'verb': 'get', 'localName': name}
            output_name = f"{tile_name}.dwg"
            output_url = self.aps.signed_url(bucket, output_name, access='readwrite')
            arguments['tile'] = {'url': output_url, 'verb': 'put', 'localName': output_name}

            activity = f"{cfg['APS_DA_NICKNAME']}.{cfg['APS_DA_ACTIVITY']}+production"
            workitem_id = self.aps.submit_workitem(activity, arguments)
            self.progress.add_progress(job_id, 'aps', 'WorkItem submitted', workitem_id, step)
            self.aps.wait_for_workitem(
                workitem_id, interval=cfg['DA_POLL_INTERVAL'], max_attempts=cfg['DA_MAX_POLL_ATTEMPTS']
            )
            self.progress.add_progress(job_id, 'aps', 'AutoCAD processing complete', None, step)

            self.progress.add_progress(job_id, 'download', 'Downloading DWG...')
            r = self.http.get(output_url, timeout=self.timeout)
            r.raise_for_status()
            return r.content
        finally:
            try:
                self.aps.delete_bucket(bucket)
            except (IntegrationError, requests.RequestException) as e:
                logging.warning("Could not delete temporary bucket %s: %s", bucket, e)

    def store_for_viewer(self, tile_name: str, tile_id: Optional[str], dwg: bytes, images) -> Optional[str]:
        try:
            uploaded = upload_for_viewer(self.aps, self.app.config['VIEWER_BUCKET'], f"{tile_name}.dwg", dwg, images)
        except (IntegrationError, requests.RequestException) as e:
            logging.warning("Viewer upload for %s failed: %s", tile_name, e)
            return None
        if tile_id and self.urn_cache is not None:
            self.urn_cache.put(tile_id, uploaded['urn'])
        return uploaded['urn']

    def run(self, job_id: str, payload: Dict[str, Any]) -> None:
        tile = payload['tile']
        add = self.progress.add_progress
        if self.aps is None:
            raise IntegrationError('aps', 'Autodesk Platform Services is not configured')
        add(job_id, 'init', 'Starting tile generation', f"{tile} ({len(payload['members'])} members)")

        add(job_id, 'images', 'Fetching images...', None, 'Step 1/4')
        images, payload = self.fetch_images(job_id, payload)
        if not images:
            add(job_id, 'error', 'Image processing failed', 'No images were fetched')
            self.progress.complete_job(job_id, False, {'errors': ['No images were fetched']})
            return
        add(job_id, 'images', 'Images fetched', f"{len(images)} files", 'Step 1/4')

        add(job_id, 'script', 'Generating AutoLISP script...', None, 'Step 2/4')
        script = generate_tile_script(payload, payload.get('settings'))
        add(job_id, 'script', 'Script generated', f"{len(script.splitlines())} lines", 'Step 2/4')

        add(job_id, 'aps', 'Starting APS Design Automation...', None, 'Step 3/4')
        dwg = self.run_design_automation(job_id, tile, script, images)
        add(job_id, 'download', 'DWG downloaded', f"{len(dwg) // 1024} KB")

        result: Dict[str, Any] = {}
        if self.drive is not None:
            add(job_id, 'drive', 'Uploading to Google Drive...', f"DWG + {len(images)} images", 'Step 4/4')
            files = [(f"{tile}.dwg", dwg, 'application/acad'), (f"{tile}.scr", script.encode(), 'text/plain')]
            files += [(name, content, mimetypes.guess_type(name)[0] or 'application/octet-stream')
                      for name, content in images]
            uploaded = self.drive.upload_tile(tile, files)
            result['dwgFileId'] = uploaded['files'].get(f"{tile}.dwg")
            result['driveLink'] = uploaded['web_link']
            add(job_id, 'drive', 'Google Drive upload complete', uploaded['web_link'], 'Step 4/4')
        else:
            logging.warning("Google Drive disabled; tile %s not uploaded", tile)

        add(job_id, 'storage', 'Preparing viewer model...')
        result['viewerUrn'] = self.store_for_viewer(tile, payload.get('tileId'), dwg, images)
        self.progress.complete_job(job_id, True, result)
