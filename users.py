"""Identity store: user registration, lookup and password checks."""
import re
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from passlib.context import CryptContext
from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as SchemaError
from pymongo.errors import DuplicateKeyError

from config import BCRYPT_ROUNDS
from database import Database
from errors import DuplicateEmail, NotFound, ValidationError
from logger import get_logger
from schemas import ROLES, MediaHandle, User

log = get_logger("users")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# LoginRequest.email is an EmailStr as well
email_adapter = TypeAdapter(EmailStr)
MIN_PASSWORD_LENGTH = 6
PUBLIC_FIELDS = ("name", "email", "mobile", "address", "city", "role", "avatar", "created_at")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


def to_object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def sanitize(user: Dict[str, Any]) -> Dict[str, Any]:
    """Public view of a user document; never includes the password hash."""
    out = {"id": str(user["_id"])}
    for field in PUBLIC_FIELDS:
        out[field] = user.get(field)
    return out


def is_valid_email(email: str) -> bool:
    if not EMAIL_RE.match(email):
        return False
    try:
        email_adapter.validate_python(email)
    except SchemaError:
        return False
    return True


def validate_registration(name, email, password, phone, address, city, role=None):
    if not all(isinstance(v, str) and v.strip() for v in (name, email, password, phone, address, city)):
        raise ValidationError("All fields are required")
    if not is_valid_email(email.strip()):
        raise ValidationError("Invalid email format")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if role and role not in ROLES:
        raise ValidationError("Invalid role specified")


class UserStore:
    def __init__(self, database: Database):
        self.database = database
        self.users = database["user"]

    def register(self, name: str, email: str, password: str, phone: str, address: str, city: str,
                 role: Optional[str] = None) -> Dict[str, Any]:
        validate_registration(name, email, password, phone, address, city, role)
        email = email.strip().lower()
        if self.find_by_email(email):
            raise DuplicateEmail()

        user = User(
            name=name.strip(),
            email=email,
            password_hash=pwd_context.hash(password),
            mobile=phone.strip(),
            address=address.strip(),
            city=city.strip(),
            role=role or "citizen",
        )
        try:
            user_id = self.database.create_document("user", user)
        except DuplicateKeyError:
            # lost a race with a concurrent registration
            raise DuplicateEmail()

        log.info("New user registered: %s (%s)", email, user.role)
        return self.find_by_id(user_id)

    def find_by_email(self, email: str, with_password: bool = False) -> Optional[Dict[str, Any]]:
        projection = None if with_password else {"password_hash": 0}
        return self.users.find_one({"email": email.strip().lower()}, projection)

    def find_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.users.find_one({"_id": to_object_id(user_id)}, {"password_hash": 0})

    @staticmethod
    def verify_password(user: Dict[str, Any], candidate: str) -> bool:
        password_hash = user.get("password_hash")
        if not password_hash:
            raise ValueError("user record was loaded without its password hash")
        return pwd_context.verify(candidate, password_hash)

    def set_avatar(self, user_id: str, handle: MediaHandle) -> Dict[str, Any]:
        res = self.users.update_one({"_id": to_object_id(user_id)}, {"$set": {"avatar": handle.model_dump()}})
        if res.matched_count == 0:
            raise NotFound("User not found")
        return self.find_by_id(user_id)

    def add_complaint(self, user_id: str, complaint_id: str):
        self.users.update_one({"_id": to_object_id(user_id)}, {"$push": {"complaints": complaint_id}})
