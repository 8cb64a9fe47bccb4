"""
Admin decorator for the plugin API.

@admin_required:
   - Purpose: Restricts an HTTP route to callers presenting the admin token
     in the X-Admin-Token header.
   - Validation: The header is compared with current_app.config['ADMIN_TOKEN']
     using a constant-time comparison. When no token is configured the
     check is disabled (development and testing setups).
   - Error Handling: Returns a JSON error with HTTP status 401 if
     authentication fails, or 500 for internal errors during validation.
"""
import hmac
from functools import wraps
from flask import request, current_app, jsonify


def validate_admin_request() -> bool:
    """True when the current request carries the configured admin token."""
    expected = current_app.config.get('ADMIN_TOKEN')
    if not expected:
        return True

    token = request.headers.get('X-Admin-Token')
    if not token:
        current_app.logger.warning("Admin validation failed: No X-Admin-Token header found")
        return False

    is_valid = hmac.compare_digest(token.encode('utf-8'), str(expected).encode('utf-8'))
    if not is_valid:
        current_app.logger.warning("Admin validation failed: Invalid token")
    return is_valid


def admin_required(f):
    """Decorator for admin-only HTTP routes"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            if not validate_admin_request():
                return jsonify({'success': False, 'error': 'Admin authentication required'}), 401
        except Exception as e:
            current_app.logger.error(f'Admin validation error: {str(e)}')
            return jsonify({'success': False, 'error': 'Internal server error'}), 500
        return f(*args, **kwargs)
    return decorated_function
