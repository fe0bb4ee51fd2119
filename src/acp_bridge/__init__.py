"""ACP bridge: drive a text-generation agent loop from an editor.

Speaks the Agent Client Protocol (newline-delimited JSON-RPC 2.0 over
stdio) and translates the agent loop's callbacks into session updates.
See: https://agentclientprotocol.com
"""

__version__ = "0.1.0"
