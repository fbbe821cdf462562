"""
OpenAPI schema customizations for drf-spectacular.

The postprocessing hook gives simplejwt's token views readable summaries,
files every auth operation under one tag and publishes tag descriptions
for ReDoc.
"""

# Natural language summaries for simplejwt endpoints
# Maps operation_id to (summary, description)
TOKEN_SUMMARIES = {
    "auth_token_create": (
        "Obtain token pair",
        "Authenticate with email and password to receive JWT access and refresh tokens.",
    ),
    "auth_token_refresh_create": (
        "Refresh access token",
        "Get a new access token using a valid refresh token.",
    ),
}

TAG_DESCRIPTIONS = [
    {
        "name": "Auth",
        "description": "Registration, JWT tokens and the current user's profile.",
    },
    {
        "name": "Requests",
        "description": "Service request lifecycle: create, accept, start, complete, confirm, cancel, dispute.",
    },
    {
        "name": "Payments",
        "description": "Escrow capture, release and refund, earnings and gateway configuration.",
    },
    {
        "name": "Notifications",
        "description": "In-app notifications for request, dispute and payment events.",
    },
]


def group_auth_endpoints(result, generator, request, public):
    """Postprocessing hook: summaries and a single "Auth" tag for auth operations."""
    paths = result.get("paths", {})

    for methods in paths.values():
        for operation in methods.values():
            if not isinstance(operation, dict):
                continue

            operation_id = operation.get("operationId", "")
            if operation_id in TOKEN_SUMMARIES:
                summary, description = TOKEN_SUMMARIES[operation_id]
                operation["summary"] = summary
                operation["description"] = description

            if operation_id.startswith("auth_"):
                operation["tags"] = ["Auth"]

    result["tags"] = TAG_DESCRIPTIONS
    return result
