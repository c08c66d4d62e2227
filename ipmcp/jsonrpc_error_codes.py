from enum import IntEnum


class JsonRpcErrorCodes(IntEnum):
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # implementation defined server errors, -32000 to -32099
    BAD_REQUEST = -32000
    SESSION_NOT_FOUND = -32001
    RESOURCE_NOT_FOUND = -32002
