from .health import health_bp
from .auth import create_auth_blueprint, register_error_handlers
