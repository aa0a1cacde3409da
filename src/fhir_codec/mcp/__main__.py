"""Entry point for running the fhir-codec MCP server.

Usage::

    python -m fhir_codec.mcp              # stdio transport (default)
    python -m fhir_codec.mcp --http       # streamable HTTP
    python -m fhir_codec.mcp --sse        # SSE transport
"""

import sys

from fhir_codec.logging_config import configure_logging
from fhir_codec.mcp.server import mcp

if __name__ == "__main__":
    configure_logging()
    transport = "stdio"
    if "--http" in sys.argv:
        transport = "streamable-http"
    elif "--sse" in sys.argv:
        transport = "sse"
    mcp.run(transport=transport)
