"""Tool process bridge.

- **catalog**: server type -> launch command
- **credentials**: owner credential lookup (env injection only)
- **process**: one JSON-RPC stdio subprocess with id correlation
- **bridge**: pool keyed by (actor, server type) with respawn on exit
"""

from autocrew.agent_runtime.tools.bridge import ToolEndpoint, ToolProcessBridge
from autocrew.agent_runtime.tools.catalog import ToolServerCatalog, ToolServerSpec
from autocrew.agent_runtime.tools.credentials import CredentialStore, InMemoryCredentialStore
from autocrew.agent_runtime.tools.process import ToolCallResult, ToolDescriptor, ToolProcess

__all__ = [
    "CredentialStore",
    "InMemoryCredentialStore",
    "ToolCallResult",
    "ToolDescriptor",
    "ToolEndpoint",
    "ToolProcess",
    "ToolProcessBridge",
    "ToolServerCatalog",
    "ToolServerSpec",
]
