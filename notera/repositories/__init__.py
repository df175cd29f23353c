from notera.repositories.classes import ClassRepository, generate_join_code, normalize_join_code
from notera.repositories.lessons import LessonRepository
from notera.repositories.users import UserRoleRepository

__all__ = [
    "ClassRepository",
    "LessonRepository",
    "UserRoleRepository",
    "generate_join_code",
    "normalize_join_code",
]
