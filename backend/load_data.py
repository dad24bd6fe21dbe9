"""
Data Loader Script - Loads sample_catalog.json into the platform via API.

Creates every sample question, then an assessment built from them.
Authoring endpoints require an instructor or admin bearer token, read
from API_TOKEN.

Usage:
    API_TOKEN=<jwt> python load_data.py                      # Uses default URL
    API_TOKEN=<jwt> python load_data.py http://localhost:8000
"""

import json
import sys
import os

import httpx


def post_json(client, url, data):
    resp = client.post(url, json=data)
    if resp.status_code >= 400:
        print(f"HTTP Error {resp.status_code}: {resp.text}")
        sys.exit(1)
    return resp.json()


def main():
    api_url = sys.argv[1] if len(sys.argv) > 1 else os.getenv("API_URL", "http://localhost:8000")
    token = os.getenv("API_TOKEN")
    if not token:
        print("Error: API_TOKEN must hold an instructor or admin JWT")
        sys.exit(1)

    # Locate the data file
    data_file = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "sample_catalog.json")
    if not os.path.exists(data_file):
        data_file = "sample_catalog.json"

    if not os.path.exists(data_file):
        print("Error: Could not find sample_catalog.json")
        sys.exit(1)

    print(f"Loading data from: {data_file}")
    with open(data_file, 'r') as f:
        catalog = json.load(f)

    headers = {"Authorization": f"Bearer {token}"}
    question_ids = {}

    with httpx.Client(base_url=api_url, headers=headers, timeout=30.0) as client:
        for question in catalog.get("questions", []):
            payload = {k: v for k, v in question.items() if k != "key"}
            created = post_json(client, "/api/questions", payload)
            question_ids[question["key"]] = created["id"]
            print(f"  Question {question['key']}: {created['id']} ({created['points']} pts)")

        assessment = dict(catalog["assessment"])
        assessment["questions"] = [
            {"question_id": question_ids[ref["key"]], "points": ref.get("points")}
            for ref in assessment["questions"]
        ]
        created = post_json(client, "/api/assessments", assessment)

    print()
    print("=" * 60)
    print("CATALOG SUMMARY")
    print("=" * 60)
    print(f"  Questions created:   {len(question_ids)}")
    print(f"  Assessment:          {created['id']}")
    print(f"  Status:              {created['status']}")
    print(f"  Total points:        {created['total_points']}")
    print(f"  Passing score:       {created['passing_score']}")
    print("=" * 60)


if __name__ == "__main__":
    main()
