"""JSON schema definitions for operation and host records.

Operation records are validated on registry ingestion so that a malformed
definition never reaches a player. Step params are validated separately, per
step type, against STEP_PARAM_SCHEMAS.
"""

IPV4_PATTERN = r"^((25[0-5]|2[0-4][0-9]|1[0-9]{2}|[1-9]?[0-9])\.){3}(25[0-5]|2[0-4][0-9]|1[0-9]{2}|[1-9]?[0-9])$"

_FLAG_VALUE = {"type": ["string", "boolean"]}

_FLAG_CONDITION = {
    "oneOf": [
        {"type": "string", "minLength": 1},
        {
            "type": "object",
            "required": ["key"],
            "properties": {"key": {"type": "string", "minLength": 1}, "value": _FLAG_VALUE},
            "additionalProperties": False,
        },
    ]
}

_MAIL_TEMPLATE = {
    "type": "object",
    "required": ["subject", "body"],
    "properties": {
        "subject": {"type": "string", "minLength": 1, "maxLength": 200},
        "body": {"type": "string"},
        "from": {"type": "string"},
        "preheader": {"type": "string"},
    },
    "additionalProperties": False,
}

FILESYSTEM_NODE_SCHEMA = {
    "type": "object",
    "required": ["type"],
    "properties": {
        "type": {"type": "string", "enum": ["dir", "file"]},
        "path": {"type": "string"},
        "name": {"type": "string"},
        "children": {"type": "array", "items": {"type": "string"}},
        "content": {"type": "string"},
    },
}

FILESYSTEM_SCHEMA = {
    "type": "object",
    "propertyNames": {"pattern": "^/"},
    "additionalProperties": FILESYSTEM_NODE_SCHEMA,
}

OPERATION_SCHEMA = {
    "type": "object",
    "required": ["id", "title", "trigger", "steps"],
    "properties": {
        "id": {"type": "string", "minLength": 1, "maxLength": 120},
        "title": {"type": "string", "minLength": 1, "maxLength": 200},
        "description": {"type": "string", "maxLength": 2000},
        "status": {"type": "string", "enum": ["draft", "published"]},
        "trigger": {
            "type": "object",
            "required": ["type"],
            "properties": {
                "type": {
                    "type": "string",
                    "enum": ["ON_FIRST_SESSION_OPEN", "ON_OPERATIONS_COMPLETED", "ON_FLAG_SET"],
                },
                "operation_ids": {"type": "array", "items": {"type": "string", "minLength": 1}, "minItems": 1},
                "flag_key": {"type": "string", "minLength": 1},
                "flag_value": _FLAG_VALUE,
            },
            "allOf": [
                {
                    "if": {"properties": {"type": {"const": "ON_OPERATIONS_COMPLETED"}}},
                    "then": {"required": ["operation_ids"]},
                },
                {
                    "if": {"properties": {"type": {"const": "ON_FLAG_SET"}}},
                    "then": {"required": ["flag_key"]},
                },
            ],
        },
        "steps": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["id", "type"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "type": {
                        "type": "string",
                        "enum": ["SCAN_HOST", "CONNECT_HOST", "DELETE_FILE", "DISCONNECT_HOST", "ACKNOWLEDGE_COMMAND"],
                    },
                    "target_host_id": {"type": "string", "minLength": 1},
                    "params": {"type": "object"},
                    "auto_advance": {"type": "boolean"},
                    "description": {"type": "string"},
                    "hints": {
                        "type": "object",
                        "properties": {
                            "prompt": {"type": "string"},
                            "command_example": {"type": "string"},
                        },
                    },
                },
            },
        },
        "requirements": {
            "type": "object",
            "properties": {
                "required_flags": {"type": "array", "items": _FLAG_CONDITION},
                "required_operations": {"type": "array", "items": {"type": "string", "minLength": 1}},
                "blocked_by_flags": {"type": "array", "items": _FLAG_CONDITION},
            },
            "additionalProperties": False,
        },
        "rewards": {
            "type": "object",
            "properties": {
                "credits": {"type": "integer"},
                "flags": {
                    "type": "array",
                    "items": {
                        "oneOf": [
                            {"type": "string", "minLength": 1},
                            {
                                "type": "object",
                                "required": ["key"],
                                "properties": {"key": {"type": "string", "minLength": 1}, "value": _FLAG_VALUE},
                                "additionalProperties": False,
                            },
                        ]
                    },
                },
                "completion_flag": {"type": "string", "minLength": 1},
                "unlocks_commands": {"type": "array", "items": {"type": "string", "minLength": 1}},
            },
            "additionalProperties": False,
        },
        "completion_flag": {"type": "string", "minLength": 1},
        "default_host_id": {"type": "string", "minLength": 1},
        "filesystem_overlays": {"type": "object", "additionalProperties": FILESYSTEM_SCHEMA},
        "narrative": {
            "type": "object",
            "properties": {
                "handler": {"type": "string"},
                "activation": _MAIL_TEMPLATE,
                "completion": _MAIL_TEMPLATE,
                "failure": _MAIL_TEMPLATE,
            },
            "additionalProperties": False,
        },
        "version": {"type": "integer", "minimum": 1},
    },
}

STEP_PARAM_SCHEMAS = {
    "SCAN_HOST": {
        "type": "object",
        "required": ["target_ip"],
        "properties": {"target_ip": {"type": "string", "pattern": IPV4_PATTERN}},
    },
    "CONNECT_HOST": {
        "type": "object",
        "required": ["target_ip"],
        "properties": {"target_ip": {"type": "string", "pattern": IPV4_PATTERN}},
    },
    "DELETE_FILE": {
        "type": "object",
        "required": ["file_path"],
        "properties": {
            "file_path": {"type": "string", "minLength": 1},
            "target_ip": {"type": "string", "pattern": IPV4_PATTERN},
        },
    },
    "DISCONNECT_HOST": {
        "type": "object",
        "properties": {"target_ip": {"type": "string", "pattern": IPV4_PATTERN}},
    },
    "ACKNOWLEDGE_COMMAND": {
        "type": "object",
        "properties": {"token": {"type": "string", "minLength": 1}},
    },
}

HOST_SCHEMA = {
    "type": "object",
    "required": ["id", "ip"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "ip": {"type": "string", "pattern": IPV4_PATTERN},
        "label": {"type": "string"},
        "filesystem": FILESYSTEM_SCHEMA,
    },
}
