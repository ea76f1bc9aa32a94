"""
Example Python client for the diagnostic search API.

Opens a clarifying-question session for a complaint, lets the user pick an
option per question (or skip), then prints the search results.
"""
import os
import sys
from typing import Any, Dict, Optional

import requests

# Configuration
API_URL = os.environ.get("API_URL", "http://localhost:8000")
JWT_TOKEN = os.environ.get("JWT_TOKEN", "")

GROUPS = ("problems", "symptoms", "dtc_codes", "sensors", "actuators")
TITLE_FIELDS = {
    "problems": "problem_name",
    "symptoms": "symptom_description",
    "dtc_codes": "dtc_code",
    "sensors": "sensor_name",
    "actuators": "actuator_name",
}


class SearchClientError(Exception):
    """Custom exception for API errors."""
    pass


def _request(method: str, path: str, jwt_token: str, json_body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    try:
        response = requests.request(
            method,
            f"{API_URL}{path}",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {jwt_token}"
            },
            json=json_body,
        )
        response.raise_for_status()
        return response.json()
    except requests.exceptions.HTTPError as http_err:
        error_data = {}
        try:
            error_data = response.json()
        except ValueError:
            pass
        raise SearchClientError(f"HTTP error calling {path}: {http_err}. Response: {error_data.get('detail', response.text)}") from http_err
    except requests.exceptions.RequestException as req_err:
        raise SearchClientError(f"Request error calling {path}: {req_err}") from req_err


def _print_notifications(payload: Dict[str, Any]) -> None:
    for notification in payload.get("notifications", []):
        print(f"[{notification['level']}] {notification['message']}")


def ask_questions(session: Dict[str, Any], jwt_token: str) -> bool:
    """Prompt for every question; returns False when the user skips."""
    for question in session["questions"]:
        print(question["question"])
        for number, option in enumerate(question["options"], start=1):
            print(f"  {number}. {option['label']}")
        choice = input("Choice (enter to skip): ").strip()
        if not choice:
            return False
        option = question["options"][int(choice) - 1]
        _request(
            "PUT",
            f"/questions/{session['session_id']}/answers",
            jwt_token,
            {"question_id": question["id"], "value": option["value"]},
        )
    return True


def print_results(result: Dict[str, Any]) -> None:
    print(f"\n=== Results for '{result['query']}' ===")
    print(f"Keywords: {', '.join(result['keywords'][:10])}")
    _print_notifications(result)
    for group in GROUPS:
        rows = result["results"][group]
        if rows:
            print(f"{group} ({len(rows)}):")
            for row in rows:
                print(f"  - {row.get(TITLE_FIELDS[group])}")


def main():
    """Main function."""
    if not JWT_TOKEN:
        print("Error: JWT_TOKEN environment variable is required")
        sys.exit(1)

    query = " ".join(sys.argv[1:]) if len(sys.argv) > 1 else input("Keluhan: ")

    try:
        session = _request("POST", "/questions", JWT_TOKEN, {"query": query})
        _print_notifications(session)
        session_id = session["session_id"]
        if session["state"] == "awaiting_answers" and ask_questions(session, JWT_TOKEN):
            result = _request("POST", f"/questions/{session_id}/proceed", JWT_TOKEN)
        else:
            result = _request("POST", f"/questions/{session_id}/skip", JWT_TOKEN)
        print_results(result)
    except SearchClientError as e:
        print(f"API Error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
