"""Python API and CLI for controlling Hubspace smart devices."""

from hubspace._crypto import generate_code_verifier
from hubspace.client import (
    AuthenticationError,
    Client,
    HubspaceError,
    NotAuthenticatedError,
    NotFoundError,
    ProtocolError,
)
from hubspace.models import (
    Device,
    DeviceFunctionState,
    DeviceFunctionStates,
    Function,
    FunctionState,
)

__all__ = [
    "AuthenticationError",
    "Client",
    "Device",
    "DeviceFunctionState",
    "DeviceFunctionStates",
    "Function",
    "FunctionState",
    "HubspaceError",
    "NotAuthenticatedError",
    "NotFoundError",
    "ProtocolError",
    "generate_code_verifier",
]
