"""Role names carried in identity tokens and the checks the engines apply to them."""

STUDENT = "student"
INSTRUCTOR = "instructor"
ADMIN = "admin"

ROLES = (STUDENT, INSTRUCTOR, ADMIN)
ELEVATED_ROLES = (INSTRUCTOR, ADMIN)


def is_elevated(role: str) -> bool:
    return role in ELEVATED_ROLES
