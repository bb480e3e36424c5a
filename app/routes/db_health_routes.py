from flask import Blueprint, jsonify, current_app
from ..utils.safe_kuzu_manager import get_kuzu_health_status, safe_query_value

# Lightweight health/introspection blueprint to validate DB without side effects

db_health = Blueprint('db_health', __name__, url_prefix='/api/db')

COUNTED_LABELS = ('Account', 'User', 'Course', 'OutcomeGroup', 'LearningOutcome')


@db_health.get('/health')
def db_health_status():
    """Connection metrics plus core node counts."""
    try:
        counts = {
            label: safe_query_value(f"MATCH (n:{label}) RETURN COUNT(n) AS c", operation='health_count', default=0)
            for label in COUNTED_LABELS
        }
    except Exception as e:
        current_app.logger.error(f"Health count query failed: {e}")
        info = get_kuzu_health_status()
        info['query_error'] = str(e)
        return jsonify(info), 503
    info = get_kuzu_health_status()
    info['counts'] = counts
    return jsonify(info)
