from .file import File
from .file_share import FileShare
from .public_link import PublicLink
from .user import User
from .verification_code import VerificationCode

__all__ = ["File", "FileShare", "PublicLink", "User", "VerificationCode"]
