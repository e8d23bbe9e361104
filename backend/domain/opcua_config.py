"""OPC UA connection configuration model."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from domain.clock import utc_now


class SecurityMode(str, Enum):
    NONE = "None"
    SIGN = "Sign"
    SIGN_AND_ENCRYPT = "SignAndEncrypt"


class SecurityPolicy(str, Enum):
    NONE = "None"
    BASIC128RSA15 = "Basic128Rsa15"
    BASIC256 = "Basic256"
    BASIC256SHA256 = "Basic256Sha256"


class AuthenticationMode(str, Enum):
    ANONYMOUS = "Anonymous"
    USERNAME = "Username"


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    UNTESTED = "untested"
    FAILED = "failed"


@dataclass
class OpcuaConfiguration:
    name: str
    endpoint_url: str
    id: str = ""
    security_mode: SecurityMode = SecurityMode.NONE
    security_policy: SecurityPolicy = SecurityPolicy.NONE
    authentication_mode: AuthenticationMode = AuthenticationMode.ANONYMOUS
    username: Optional[str] = None
    password: Optional[str] = None
    session_timeout: int = 60000
    request_timeout: int = 5000
    is_active: bool = False
    status: ConnectionStatus = ConnectionStatus.UNTESTED
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    created_by: str = "system"
    last_tested: Optional[datetime] = None
    last_error: Optional[str] = None


@dataclass
class OpcuaTagInfo:
    node_id: str
    browse_name: str
    display_name: str
    node_class: str
    data_type: Optional[str] = None
