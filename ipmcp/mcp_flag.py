class McpServerFlags:
    enforce_mcp_initialize_sequence = False
    enforce_mcp_protocol_header = False
    # application/json responses for POST requests, text/event-stream otherwise
    json_response = True
