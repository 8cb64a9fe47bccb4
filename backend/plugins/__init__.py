"""
Bulk plugin management blueprint.

Endpoints for processing plugin batches (real and dry run), rolling back
recorded batches, listing and expiring batches, reading the activity log
and adjusting installer settings.
"""
from flask import Blueprint

bp = Blueprint('plugins', __name__)

from . import routes  # noqa
