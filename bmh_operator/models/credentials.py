"""
BMC credential value objects.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class Credentials:
    """
    Username/password pair read from a secret.

    Attributes:
        username: BMC user
        password: BMC password (kept out of repr)
        version: Secret revision the values were read from
    """
    username: str
    password: str = field(repr=False)
    version: str = ""

    def is_valid(self) -> bool:
        """Both halves of the pair are required by every BMC protocol"""
        return bool(self.username) and bool(self.password)


@dataclass(frozen=True)
class BMCAccessRef:
    """
    Identifies the BMC endpoint and secret revision used for a registration attempt.

    Comparing the ref recorded in status with the current one tells the
    controller whether the BMC address or the credentials changed.
    """
    address: str
    secret_name: str
    secret_namespace: str
    secret_version: str = ""

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "credentials": {"name": self.secret_name, "namespace": self.secret_namespace},
            "credentialsVersion": self.secret_version,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['BMCAccessRef']:
        if not data:
            return None
        credentials = data.get("credentials") or {}
        return cls(
            address=data.get("address", ""),
            secret_name=credentials.get("name", ""),
            secret_namespace=credentials.get("namespace", ""),
            secret_version=data.get("credentialsVersion", ""),
        )
