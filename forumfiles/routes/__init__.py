from .auth import router as auth
from .files import router as files
from .admin import router as admin
from .public import router as public
