#!/usr/bin/env python3
"""Issue a bearer token for calling the chat API as a given user."""

import sys

from dotenv import load_dotenv

load_dotenv()

from backend.src.services.auth import AuthError, AuthService  # noqa: E402
from backend.src.services.config import get_config  # noqa: E402


def generate_token(user_id: str = "local-dev") -> str | None:
    """Sign a JWT for ``user_id`` with JWT_SECRET_KEY."""
    try:
        token = AuthService(config=get_config()).create_jwt(user_id)
    except AuthError as e:
        print(f"Error generating token: {e.message}", file=sys.stderr)
        print("Set JWT_SECRET_KEY (16+ characters) in the environment or .env", file=sys.stderr)
        return None

    print(f"Token for user '{user_id}':")
    print(f"Authorization: Bearer {token}")
    print("\nExample:")
    print(
        "curl -N -H 'Content-Type: application/json' "
        f"-H 'Authorization: Bearer {token}' "
        "-d '{\"message\": \"What is on my task board?\", \"model\": \"gpt-4o-mini\"}' "
        "http://localhost:8000/api/chat/agent"
    )
    return token


if __name__ == "__main__":
    generate_token(sys.argv[1] if len(sys.argv) > 1 else "local-dev")
