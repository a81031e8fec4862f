"""
Password re-entry gate for destructive and exporting operations.
"""
import logging
from datetime import date
from typing import Optional, Protocol, Union, BinaryIO
from pathlib import Path

from passlib.context import CryptContext

from .errors import AuthorizationError
from .export import export_records
from .records import filter_records
from .repository import AttendanceRepository

logger = logging.getLogger(__name__)

pwd_ctx = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class PasswordVerifier(Protocol):
    def verify(self, password: str) -> bool:
        ...


class HashedPasswordVerifier:
    """Checks against a stored passlib hash."""

    def __init__(self, password_hash: Optional[str]):
        self.password_hash = password_hash or None
        if self.password_hash is None:
            logger.warning("No admin password configured; protected operations will be refused")

    @classmethod
    def from_password(cls, password: str) -> "HashedPasswordVerifier":
        return cls(pwd_ctx.hash(password))

    def verify(self, password: str) -> bool:
        if self.password_hash is None:
            return False
        try:
            return pwd_ctx.verify(password, self.password_hash)
        except ValueError as e:
            logger.error(f"Stored admin password hash is unusable: {e}")
            return False


class SupabasePasswordVerifier:
    """Re-authenticates the operator's Supabase account."""

    def __init__(self, client, email: str):
        self.client = client
        self.email = email

    def verify(self, password: str) -> bool:
        try:
            self.client.auth.sign_in_with_password({'email': self.email, 'password': password})
        except Exception as e:
            logger.warning(f"Password re-authentication failed for {self.email}: {e}")
            return False
        return True


class PasswordGate:
    def __init__(self, verifier: PasswordVerifier):
        self.verifier = verifier

    def require(self, password: Optional[str]):
        """Raise AuthorizationError unless ``password`` is accepted."""
        if not password or not password.strip():
            raise AuthorizationError("Password required")
        if not self.verifier.verify(password):
            logger.warning("Protected operation refused: invalid password")
            raise AuthorizationError("Invalid password")


def build_password_gate(security_config=None, supabase_client=None) -> PasswordGate:
    """Gate from configuration: Supabase sign-in when an admin email and
    client are available, otherwise the configured password hash."""
    if security_config is None:
        from utils.config import config
        security_config = config.security

    if supabase_client is not None and security_config.admin_email:
        return PasswordGate(SupabasePasswordVerifier(supabase_client, security_config.admin_email))
    if security_config.admin_password_hash:
        return PasswordGate(HashedPasswordVerifier(security_config.admin_password_hash))
    if security_config.admin_password:
        return PasswordGate(HashedPasswordVerifier.from_password(security_config.admin_password))
    return PasswordGate(HashedPasswordVerifier(None))


def export_with_password(gate: PasswordGate, repository: AttendanceRepository, password: str,
                         destination: Union[str, Path, BinaryIO, None] = None,
                         limit: Optional[int] = None, search_term: str = "",
                         filter_date: Union[date, str, None] = None):
    """Verify the password, then export the records matching the search and date filters.

    Nothing is written on refusal. ``limit`` caps the most recent records the
    filters are applied to.
    """
    gate.require(password)
    records = filter_records(repository.list_records(limit=limit), search_term, filter_date)
    return export_records(records, destination)


def clear_with_password(gate: PasswordGate, repository: AttendanceRepository, password: str) -> int:
    """Verify the password, then delete every attendance record."""
    gate.require(password)
    return repository.clear_records()
