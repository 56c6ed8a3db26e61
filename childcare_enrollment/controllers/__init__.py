from .enrollment import enrollment_bp
from .admin import admin_bp

__all__ = ['enrollment_bp', 'admin_bp']
