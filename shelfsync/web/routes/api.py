"""
API routes for Shelf Sync.
"""

import json
from datetime import date, datetime
from enum import Enum

from flask import Blueprint, Response, current_app, jsonify, request

from shelfsync.db.database import get_db_session
from shelfsync.db.models import SyncLog, SyncRun
from shelfsync.sync.engine import start_sync
from shelfsync.sync.persistence import PersistenceSync
from shelfsync.sync.stats import compute_stats
from shelfsync.utils.logging import get_logger

logger = get_logger(__name__)

api_bp = Blueprint('api', __name__, url_prefix='/api')

NDJSON = 'application/x-ndjson'


def _json_default(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_ndjson(data: dict) -> str:
    """One event per line."""
    return json.dumps(data, default=_json_default) + "\n"


def _persistence() -> PersistenceSync:
    return PersistenceSync(current_app.config['DATASTORE'])


@api_bp.route('/sync', methods=['POST'])
def trigger_sync():
    """Start a sync and stream its progress as newline-delimited JSON."""
    payload = request.get_json(silent=True) or {}
    user_id = payload.get('user_id')
    profile_id = payload.get('profile_id')

    if not user_id or not profile_id:
        return Response(
            to_ndjson({'error': 'User ID and profile ID are required'}),
            status=400,
            mimetype=NDJSON,
        )

    channel = start_sync(
        current_app.config['SYNC_CONFIG'],
        str(user_id),
        str(profile_id),
        datastore=current_app.config['DATASTORE'],
    )

    def stream():
        finished = False
        try:
            for event in channel:
                yield to_ndjson(event.to_dict())
                finished = event.is_terminal
        finally:
            # The client went away before the terminal event
            if not finished:
                logger.info("Client disconnected, cancelling sync", user_id=user_id)
                channel.cancel()

    return Response(stream(), mimetype=NDJSON, headers={
        'Cache-Control': 'no-cache',
        'X-Accel-Buffering': 'no',
    })


@api_bp.route('/books')
def get_books():
    """Stored books for a user, most recently updated first."""
    user_id = request.args.get('user_id')
    if not user_id:
        return jsonify({'error': 'User ID is required'}), 400

    books = _persistence().load_books(user_id)
    books.sort(key=lambda b: b.get('updated_at') or datetime.min, reverse=True)

    return current_app.response_class(
        json.dumps(books, default=_json_default),
        mimetype='application/json',
    )


@api_bp.route('/stats')
def get_stats():
    """Reading stats over a user's stored books."""
    user_id = request.args.get('user_id')
    if not user_id:
        return jsonify({'error': 'User ID is required'}), 400

    stats = compute_stats(_persistence().load_books(user_id))
    return jsonify(stats.to_dict())


@api_bp.route('/cleanup', methods=['POST'])
def cleanup():
    """Delete every stored book of a user."""
    payload = request.get_json(silent=True) or {}
    user_id = payload.get('user_id')
    if not user_id:
        return jsonify({'error': 'User ID is required'}), 400

    persistence = _persistence()
    deleted = persistence.clear_user_books(user_id)

    return jsonify({
        'message': 'User data cleaned successfully',
        'deleted': deleted,
        'remaining_books': len(persistence.load_books(user_id)),
    })


@api_bp.route('/runs')
def get_runs():
    """Get sync runs."""
    limit = request.args.get('limit', 20, type=int)
    user_id = request.args.get('user_id')

    with get_db_session() as session:
        query = session.query(SyncRun)
        if user_id:
            query = query.filter(SyncRun.user_id == user_id)

        runs = query.order_by(SyncRun.started_at.desc()).limit(limit).all()

        return jsonify([{
            'run_id': r.run_id,
            'user_id': r.user_id,
            'profile_id': r.profile_id,
            'started_at': r.started_at.isoformat() if r.started_at else None,
            'completed_at': r.completed_at.isoformat() if r.completed_at else None,
            'status': r.status,
            'shelves_found': r.shelves_found,
            'books_merged': r.books_merged,
            'books_saved': r.books_saved,
            'books_failed': r.books_failed,
            'failed_shelves': r.failed_shelves or [],
            'error_message': r.error_message,
        } for r in runs])


@api_bp.route('/logs')
def get_logs():
    """Get recent logs."""
    limit = request.args.get('limit', 100, type=int)
    level = request.args.get('level')
    run_id = request.args.get('run_id')

    with get_db_session() as session:
        query = session.query(SyncLog)

        if level:
            query = query.filter(SyncLog.level == level.upper())
        if run_id:
            query = query.filter(SyncLog.sync_run_id == run_id)

        logs = query.order_by(SyncLog.created_at.desc()).limit(limit).all()

        return jsonify([{
            'id': l.id,
            'level': l.level,
            'message': l.message,
            'details': l.details,
            'sync_run_id': l.sync_run_id,
            'created_at': l.created_at.isoformat() if l.created_at else None,
        } for l in logs])
