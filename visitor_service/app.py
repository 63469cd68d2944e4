"""
Flask application for HTTP API.

Provides:
- GET /health: Service health check
- GET /api/visitors[...]: Derived visitor views
- PATCH/POST /api/visitors/<id>[/checkout]: Operator actions
- /api/users[...]: Accounts with presence, account management
- GET /api/stats, /api/report: Dashboard counters and export data
"""

from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from . import actions, reports
from .config import Config
from .dashboard import DashboardState, Policy, SnapshotPoller, user_view, visitor_view
from .engine import status
from .firebase import FirebaseClient, FirebaseError
from .logging_config import get_logger
from .utils.timing import utc_now

logger = get_logger(__name__)


def _error(message: str, code: int):
    return jsonify({'error': message}), code


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def create_app(
    config: Config,
    client: Optional[FirebaseClient] = None,
    state: Optional[DashboardState] = None,
    poller: Optional[SnapshotPoller] = None,
) -> Flask:
    """
    Create and configure Flask application.

    Args:
        config: Service configuration
        client: Firebase client (created from config if omitted)
        state: Shared dashboard state (created if omitted)
        poller: Snapshot poller used by /api/refresh (created if omitted)

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)
    CORS(app)

    client = client or FirebaseClient(config)
    state = state or DashboardState(Policy.from_config(config))
    poller = poller or SnapshotPoller(client, state, config.refresh_interval)
    policy = state.policy

    app.config['DASHBOARD_STATE'] = state
    app.config['SNAPSHOT_POLLER'] = poller

    @app.errorhandler(FirebaseError)
    def handle_firebase_error(e: FirebaseError):
        logger.error(f'❌ Firebase error: {e}')
        return _error(str(e), 502)

    @app.errorhandler(actions.VisitorNotFound)
    def handle_visitor_not_found(e: actions.VisitorNotFound):
        return _error(f'Visitor {e.args[0]} not found', 404)

    @app.errorhandler(actions.UserNotFound)
    def handle_user_not_found(e: actions.UserNotFound):
        return _error(f'User {e.args[0]} not found', 404)

    @app.errorhandler(ValueError)
    def handle_value_error(e: ValueError):
        return _error(str(e), 400)

    @app.route('/health')
    def health():
        """Health check endpoint."""
        return jsonify({
            'status': 'ok',
            'service': config.service_name,
            'polling': poller.is_alive(),
            **state.health(),
        })

    @app.route('/api/refresh', methods=['POST'])
    def refresh():
        """Pull a fresh snapshot right away."""
        if not poller.refresh():
            return _error(state.health()['lastError'] or 'Refresh failed', 502)
        return jsonify(state.health())

    # -- visitors ----------------------------------------------------------

    @app.route('/api/visitors')
    def list_visitors():
        """All visitors with derived status, optionally searched."""
        now = utc_now()
        visitors = status.search_visitors(
            state.visitors(),
            request.args.get('q', ''),
            request.args.get('field', 'all'),
        )
        return jsonify([visitor_view(v, now, policy) for v in visitors])

    @app.route('/api/visitors/grouped')
    def grouped_visitors():
        """Visitors grouped by day, gender, category or gender and category."""
        now = utc_now()
        by = request.args.get('by', 'day')
        visitors = state.visitors()

        if by == 'day':
            groups = status.group_by_calendar_day(visitors, policy.tz)
        else:
            groups = status.group_by_attribute(visitors, by)

        return jsonify([
            {
                'key': key,
                'stats': status.day_stats(members, now, policy.overdue_threshold),
                'visitors': [visitor_view(v, now, policy) for v in members],
            }
            for key, members in groups.items()
        ])

    @app.route('/api/visitors/overdue')
    def overdue():
        """Overdue visitors, longest on site first, with severity counts."""
        now = utc_now()
        visitors = state.visitors()
        overdue_list = status.overdue_visitors(visitors, now, policy.overdue_threshold)
        return jsonify({
            'count': len(overdue_list),
            'severity': status.severity_counts(visitors, now, policy.overdue_threshold),
            'visitors': [visitor_view(v, now, policy) for v in overdue_list],
        })

    @app.route('/api/visitors/<visitor_id>', methods=['PATCH'])
    def edit_visitor(visitor_id: str):
        """Inline edit of one field."""
        body = _json_body()
        field = body.get('field')
        editor = body.get('editor')
        if not field or not editor or 'value' not in body:
            return _error('field, value and editor are required', 400)

        updated = actions.edit_visitor(state, client, visitor_id, field, body['value'], editor)
        record = updated or state.get_visitor(visitor_id)
        return jsonify({
            'changed': updated is not None,
            'visitor': visitor_view(record, utc_now(), policy),
        })

    @app.route('/api/visitors/<visitor_id>/checkout', methods=['POST'])
    def checkout_visitor(visitor_id: str):
        """Check a visitor out."""
        operator = _json_body().get('operator')
        if not operator:
            return _error('operator is required', 400)

        result = actions.checkout_visitor(state, client, visitor_id, operator)
        if not result.ok:
            return _error(str(result.error), 409)
        return jsonify({'visitor': visitor_view(result.record, utc_now(), policy)})

    @app.route('/api/stats')
    def stats():
        """Dashboard counters."""
        now = utc_now()
        return jsonify(status.visitor_stats(
            state.visitors(), now, policy.tz, policy.overdue_threshold
        ))

    @app.route('/api/report')
    def report():
        """Export rows and summary."""
        now = utc_now()
        visitors = state.visitors()
        return jsonify({
            'summary': reports.report_summary(visitors, now, policy.tz, policy.overdue_threshold),
            'rows': reports.report_rows(
                visitors,
                state.raw_users().values(),
                now,
                policy.tz,
                policy.overdue_threshold,
            ),
        })

    # -- users -------------------------------------------------------------

    @app.route('/api/users')
    def list_users():
        """Accounts with presence applied, plus online counters."""
        now = utc_now()
        users = state.users(now)
        return jsonify({
            'users': [user_view(u, now, policy) for u in users],
            'online': sum(1 for u in users if u.is_online),
            'realtime': state.online_stats(),
        })

    @app.route('/api/users', methods=['POST'])
    def create_user():
        """Provision a new operator account."""
        body = _json_body()
        user = actions.create_user(
            state,
            client,
            email=str(body.get('email', '')).strip(),
            password=str(body.get('password', '')),
            display_name=str(body.get('displayName', '')),
            role=str(body.get('role', 'user')),
        )
        return jsonify(user_view(user, utc_now(), policy)), 201

    @app.route('/api/users/<uid>/role', methods=['PATCH'])
    def change_role(uid: str):
        """Change an operator's role."""
        user = actions.change_role(state, client, uid, str(_json_body().get('role', '')))
        return jsonify(user_view(user, utc_now(), policy))

    @app.route('/api/users/<uid>', methods=['PATCH'])
    def change_display_name(uid: str):
        """Rename an operator."""
        user = actions.change_display_name(state, client, uid, _json_body().get('displayName', ''))
        return jsonify(user_view(user, utc_now(), policy))

    @app.route('/api/users/<uid>', methods=['DELETE'])
    def delete_user(uid: str):
        """Delete an operator account."""
        actions.delete_user(state, client, uid)
        return '', 204

    return app
