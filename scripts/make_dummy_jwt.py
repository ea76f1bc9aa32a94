#!/usr/bin/env python3
import argparse
import datetime
import os
import pathlib
import sys

from jose import jwt


def generate_token(user_id: str, secret: str = None, private_key_path: str = None) -> str:
    """Generate a JWT token for testing (HS256 with a secret, RS256 with a private key)."""
    if private_key_path:
        try:
            key = pathlib.Path(private_key_path).read_text()
        except FileNotFoundError:
            print(f"Error: Private key file not found at {private_key_path}")
            sys.exit(1)
        algorithm = "RS256"
    elif secret:
        key = secret
        algorithm = "HS256"
    else:
        print("Error: pass --secret (or set JWT_SECRET) or --private-key")
        sys.exit(1)

    payload = {
        "sub": user_id,
        "exp": datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=1)
    }
    return jwt.encode(payload, key, algorithm=algorithm)


def main():
    parser = argparse.ArgumentParser(description="Generate a JWT token for testing")
    parser.add_argument("--user", type=str, default="tester", help="User id for the sub claim")
    parser.add_argument("--secret", type=str, default=os.getenv("JWT_SECRET"), help="HS256 shared secret")
    parser.add_argument("--private-key", type=str, help="Path to RS256 private key file")
    args = parser.parse_args()

    print(generate_token(args.user, secret=args.secret, private_key_path=args.private_key))


if __name__ == "__main__":
    main()
