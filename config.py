import os
import secrets
import platform
from dotenv import load_dotenv

# Load environment variables from .env file(s)
# 1) Project root .env
load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


def ensure_data_directory():
    """Ensure data directory exists with proper permissions (cross-platform)"""
    data_dir = os.environ.get('CANVAS_LITE_DATA_DIR') or os.path.join(basedir, 'data')

    os.makedirs(data_dir, exist_ok=True)

    # Only set Unix permissions on non-Windows systems
    if platform.system() != "Windows":
        try:
            os.chmod(data_dir, 0o755)
        except (OSError, PermissionError):
            # Ignore permission errors (common on some systems)
            pass

    return data_dir


data_dir = ensure_data_directory()

# 2) Overlay data/.env so settings saved at runtime persist via the mounted volume
data_env_path = os.path.join(data_dir, '.env')
if os.path.exists(data_env_path):
    load_dotenv(dotenv_path=data_env_path, override=True)


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.environ.get(name, default).lower() in ['true', 'on', '1', 'yes']


class Config:
    # Security
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        # For development, generate a temporary secret key
        if os.environ.get('FLASK_ENV') == 'development' or os.environ.get('FLASK_DEBUG'):
            SECRET_KEY = secrets.token_hex(32)
            print("WARNING: Using temporary SECRET_KEY for development. Set SECRET_KEY in .env for production!")
        else:
            # All gunicorn workers must share one key or sessions break between workers.
            raise ValueError("No SECRET_KEY set for Flask application. Please set it in your .env file.")

    # CSRF Settings
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = 3600  # 1 hour
    WTF_CSRF_SSL_STRICT = False

    # Session settings
    SESSION_COOKIE_SECURE = False  # Set to True only in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_PERMANENT = False
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours (when session.permanent = True)

    # Flask-Session backend; empty keeps Flask's signed cookie sessions
    SESSION_TYPE = os.environ.get('SESSION_TYPE', 'filesystem') or None
    SESSION_USE_SIGNER = True
    SESSION_KEY_PREFIX = 'canvas_lite:'
    SESSION_FILE_DIR = os.path.join(data_dir, 'flask_sessions')
    SESSION_FILE_THRESHOLD = 500

    # Kuzu Database Configuration
    KUZU_DB_PATH = os.environ.get('KUZU_DB_PATH') or os.path.join(data_dir, 'kuzu')

    # Application settings
    SITE_NAME = os.environ.get('SITE_NAME', 'Canvas Lite')

    # Remember cookie duration when "Remember Me" is checked
    REMEMBER_COOKIE_DURATION = 86400 * 7  # 7 days
    REMEMBER_COOKIE_SECURE = os.environ.get('FLASK_DEBUG', 'false').lower() == 'false'
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = 'Lax'

    # Profile features
    COMMON_CARTRIDGE_VIEWER_URL = os.environ.get('COMMON_CARTRIDGE_VIEWER_URL')
    MOBILE_QR_PLUGIN_AVAILABLE = _env_flag('MOBILE_QR_PLUGIN_AVAILABLE', 'true')

    # Outcome management
    OUTCOMES_PAGE_SIZE = int(os.environ.get('OUTCOMES_PAGE_SIZE', 10))

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'ERROR')
