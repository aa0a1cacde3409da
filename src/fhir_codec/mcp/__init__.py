"""MCP server for fhir-codec (optional extra: ``pip install fhir-codec[mcp]``)."""
