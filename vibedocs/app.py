"""
VibeDocs web application.
A Flask app serving the project catalog, rendered documents, raw files,
search and uploads as JSON, plus a WebSocket channel for live reload.
"""

import atexit
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask, Response, jsonify, request, send_file
from flask_sock import Sock
from simple_websocket import ConnectionClosed
from werkzeug.exceptions import HTTPException

from vibedocs.config import load_config
from vibedocs.core.catalog import discover_projects
from vibedocs.core.errors import NotFound, StorageError, ValidationError, VibeDocsError
from vibedocs.core.notifier import ChangeNotifier, ClientHub
from vibedocs.core.paths import (
    canonical,
    relative_posix,
    resolve_asset_path,
    resolve_read_path,
    resolve_upload_dir,
)
from vibedocs.core.renderer import render_document
from vibedocs.core.search import SearchIndex
from vibedocs.core.upload import DirectoryLocks, write_uploaded_file
from vibedocs.version_info import __version__ as VERSION

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / 'static'

DEFAULT_CONTENT_TYPE = 'application/octet-stream'
CONTENT_TYPES = {
    '.md': 'text/markdown; charset=utf-8',
    '.markdown': 'text/markdown; charset=utf-8',
    '.txt': 'text/plain; charset=utf-8',
    '.csv': 'text/csv; charset=utf-8',
    '.json': 'application/json',
    '.yaml': 'text/yaml; charset=utf-8',
    '.yml': 'text/yaml; charset=utf-8',
    '.html': 'text/html; charset=utf-8',
    '.css': 'text/css; charset=utf-8',
    '.js': 'text/javascript; charset=utf-8',
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.gif': 'image/gif',
    '.svg': 'image/svg+xml',
    '.webp': 'image/webp',
    '.ico': 'image/x-icon',
    '.bmp': 'image/bmp',
    '.pdf': 'application/pdf',
    '.zip': 'application/zip',
    '.mp4': 'video/mp4',
    '.webm': 'video/webm',
    '.mp3': 'audio/mpeg',
    '.wav': 'audio/wav',
}


def guess_content_type(name: str) -> str:
    return CONTENT_TYPES.get(os.path.splitext(name)[1].lower(), DEFAULT_CONTENT_TYPE)


@dataclass
class Services:
    """Everything the routes share, owned by one app instance."""
    root: str
    index: SearchIndex
    hub: ClientHub
    notifier: ChangeNotifier
    locks: DirectoryLocks
    excluded_dirs: frozenset


def ok(data: Any) -> Response:
    return jsonify({'data': data})


def create_app(config: Optional[Dict[str, Any]] = None, start_watcher: Optional[bool] = None) -> Flask:
    """Build the Flask app, index the projects root and start the change notifier.

    ``start_watcher`` overrides ``config['watch']``. The dispatcher that
    rebuilds the index and broadcasts to clients always runs.
    """
    config = config if config is not None else load_config()
    root = canonical(config['projects_dir'])
    excluded_dirs = frozenset(config['excluded_dirs'])
    watch = config['watch'] if start_watcher is None else start_watcher

    app = Flask(__name__, static_folder=str(STATIC_DIR), static_url_path='/static')
    app.config['SEND_FILE_MAX_AGE_DEFAULT'] = 0
    app.config['MAX_CONTENT_LENGTH'] = config.get('max_upload_bytes')
    app.json.sort_keys = False

    index = SearchIndex(excluded_dirs)
    hub = ClientHub()
    notifier = ChangeNotifier(
        root, index, hub,
        excluded_dirs=excluded_dirs,
        debounce_seconds=config['debounce_seconds'],
        queue_size=config['queue_size'],
    )
    services = Services(root=root, index=index, hub=hub, notifier=notifier,
                        locks=DirectoryLocks(), excluded_dirs=excluded_dirs)
    app.extensions['vibedocs'] = services

    logger.info(f"VibeDocs {VERSION} serving projects from {root}")
    index.rebuild(root)
    notifier.start(watch=watch)
    atexit.register(notifier.stop)

    register_error_handlers(app)
    register_routes(app, services)
    register_live_reload(app, services)
    return app


def register_error_handlers(app: Flask) -> None:

    @app.errorhandler(VibeDocsError)
    def handle_vibedocs_error(error: VibeDocsError):
        if error.status >= 500:
            logger.error(f"{type(error).__name__}: {error.message}")
        return jsonify({'error': error.message}), error.status

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        if request.path.startswith('/api/'):
            return jsonify({'error': error.description or error.name}), error.code
        return error

    @app.errorhandler(Exception)
    def handle_unexpected(error: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return jsonify({'error': 'Internal server error'}), 500


def _project_dir(services: Services, project: str) -> str:
    return canonical(os.path.join(services.root, project))


def register_routes(app: Flask, services: Services) -> None:

    @app.route('/')
    def index_page():
        return app.send_static_file('index.html')

    @app.route('/api/version')
    def get_version():
        return ok({'version': VERSION})

    @app.route('/api/projects')
    def list_projects():
        projects = discover_projects(services.root, services.excluded_dirs)
        logger.debug(f"Projects route: {len(projects)} projects")
        return ok([p.to_dict() for p in projects])

    @app.route('/api/render/<project>/<path:doc_path>')
    def render_doc(project, doc_path):
        resolved = resolve_read_path(services.root, project, doc_path)
        if resolved is None:
            raise ValidationError('Invalid path')
        rel_path = relative_posix(resolved, _project_dir(services, project))
        try:
            html, toc = render_document(resolved, project, rel_path)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise NotFound('File not found')
        except OSError as e:
            logger.error(f"Render error for {project}/{rel_path}: {e}")
            raise StorageError('Failed to render document')
        return ok({'html': html, 'toc': toc})

    @app.route('/api/raw/<project>/<path:doc_path>')
    def raw_doc(project, doc_path):
        resolved = resolve_read_path(services.root, project, doc_path)
        if resolved is None:
            raise ValidationError('Invalid path')
        try:
            with open(resolved, 'r', encoding='utf-8', errors='replace') as f:
                text = f.read()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise NotFound('File not found')
        except OSError as e:
            logger.error(f"Raw read error for {project}/{doc_path}: {e}")
            raise StorageError('Failed to read file')
        return Response(text, mimetype='text/plain')

    @app.route('/api/search')
    def search_docs():
        query = request.args.get('q', '')
        results = services.index.search(query)
        return ok([r.to_dict() for r in results])

    @app.route('/api/file/<project>/<path:file_path>')
    def serve_file(project, file_path):
        resolved = resolve_asset_path(services.root, project, file_path)
        if resolved is None:
            raise ValidationError('Invalid path')
        if not resolved.is_file():
            raise NotFound('File not found')
        try:
            return send_file(resolved, mimetype=guess_content_type(resolved.name))
        except OSError as e:
            logger.error(f"Failed to serve {project}/{file_path}: {e}")
            raise StorageError('Failed to read file')

    @app.route('/api/upload/<project>', methods=['POST'], defaults={'folder': ''})
    @app.route('/api/upload/<project>/<path:folder>', methods=['POST'])
    def upload_files(project, folder):
        target = resolve_upload_dir(services.root, project, folder)
        if target is None:
            raise ValidationError('Invalid path')
        if not target.exists():
            raise NotFound('Target folder not found')
        if not target.is_dir():
            raise ValidationError('Target is not a directory')

        files = [f for f in request.files.getlist('files') if f and f.filename]
        if not files:
            raise ValidationError('No files provided')

        project_dir = _project_dir(services, project)
        results = []
        try:
            for storage in files:
                result = write_uploaded_file(
                    str(target), storage.filename, storage.read(),
                    project_dir=project_dir, locks=services.locks,
                )
                results.append(result)
        finally:
            if results:
                services.notifier.notify_tree_changed()

        logger.info(f"Uploaded {len(results)} file(s) to {project}/{folder}")
        return ok([r.to_dict() for r in results])


def register_live_reload(app: Flask, services: Services) -> None:
    sock = Sock(app)

    @sock.route('/ws')
    def live_reload(ws):
        services.hub.add(ws)
        try:
            # Clients never send anything meaningful; receive() blocks until close
            while True:
                ws.receive()
        except ConnectionClosed:
            logger.debug("Live-reload client disconnected")
        finally:
            services.hub.discard(ws)


def run_dev_server(host='localhost', port=8080):
    """Debug server for development; the reloader would start a second watcher."""
    create_app().run(debug=True, host=host, port=port, use_reloader=False)


if __name__ == '__main__':
    run_dev_server()
