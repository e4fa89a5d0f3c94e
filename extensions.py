from flask_jwt_extended import JWTManager
from flask_bcrypt import Bcrypt
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# ============================================
# Extension instances (bound in app.create_app)
# ============================================

jwt = JWTManager()
bcrypt = Bcrypt()

# Storage, strategy and default limits come from the RATELIMIT_* settings
limiter = Limiter(key_func=get_remote_address)
