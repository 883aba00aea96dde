"""
Expense Desk
Blueprint registry and shared request helpers.
"""

from flask import request

from expensedesk.utils.errors import E, api_error


def paginate_query(query, default_limit=50, max_limit=500):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 50, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    limit, offset = page_args(default_limit, max_limit)
    items = query.limit(limit).offset(offset).all()
    return items, total


def page_args(default_limit=50, max_limit=500):
    """Read ``limit`` / ``offset`` from the query string, clamped to sane values."""
    try:
        limit = min(max(int(request.args.get("limit", default_limit)), 1), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def json_body():
    """Parse the JSON request body.

    Returns:
        (data, None) on success; (None, error_response) when the body is
        present but is not a JSON object. An empty body parses as {}.
    """
    if not request.get_data(cache=True):
        return {}, None
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


def register_blueprints(app):
    from expensedesk.blueprints.chat_bp import chat_bp
    from expensedesk.blueprints.delegation_bp import delegation_bp
    from expensedesk.blueprints.expense_bp import expense_bp
    from expensedesk.blueprints.health_bp import health_bp
    from expensedesk.blueprints.notification_bp import notification_bp
    from expensedesk.blueprints.project_bp import project_bp
    from expensedesk.blueprints.user_bp import user_bp

    for bp in (health_bp, user_bp, project_bp, expense_bp, notification_bp, delegation_bp, chat_bp):
        app.register_blueprint(bp)
