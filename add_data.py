"""
Script to add sample records to the Carry Mark platform via REST API and
compute the resulting carry marks.
Make sure the server is running before executing this script.

Usage:
    python add_data.py
"""

import json
import os
import sys
from datetime import date, timedelta

import requests


def _console_supports_utf8() -> bool:
    enc = getattr(sys.stdout, "encoding", None)
    return enc is not None and "utf" in enc.lower()


_OK_CHAR = "✓" if _console_supports_utf8() else "[OK]"
_FAIL_CHAR = "✗" if _console_supports_utf8() else "[FAIL]"
_INFO_CHAR = "ℹ" if _console_supports_utf8() else "[INFO]"

CLASS_ID = "5A"
SUBJECT = "Mathematics"
TERM = "Term 1"
ACADEMIC_YEAR = "2024-2025"


def _detect_base_url() -> str:
    """Determine a reachable BASE_URL.

    Priority: environment variable `CARRYMARK_BASE_URL`, then common local ports.
    If nothing responds, fall back to http://127.0.0.1:8000.
    """
    env = os.environ.get("CARRYMARK_BASE_URL")
    if env:
        return env

    candidates = [
        "http://127.0.0.1:8000",
        "http://127.0.0.1:8888",
        "http://localhost:8000",
        "http://localhost:8888",
    ]

    for c in candidates:
        try:
            resp = requests.get(f"{c}/health", timeout=0.5)
            if resp.status_code == 200:
                return c
        except requests.exceptions.RequestException:
            continue

    return candidates[0]


def check_server(base_url, client=requests):
    """Check if the server is running."""
    try:
        response = client.get(f"{base_url}/health", timeout=2)
    except requests.exceptions.RequestException:
        response = None
    if response is not None and response.status_code == 200:
        print(f"{_OK_CHAR} Server is running")
        return True
    print(f"{_FAIL_CHAR} Server is not running!")
    print("\nPlease start the server first:")
    print("  python -m carrymark.main --rest-port 8000")
    return False


def record_assessment(base_url, student_id, assessment_type, raw_score, max_score=100.0,
                      client=requests):
    """Record one assessment score."""
    data = {
        "student_id": student_id,
        "class_id": CLASS_ID,
        "subject": SUBJECT,
        "term": TERM,
        "academic_year": ACADEMIC_YEAR,
        "assessment_type": assessment_type,
        "raw_score": raw_score,
        "max_score": max_score,
    }
    response = client.post(f"{base_url}/assessments", json=data)
    if response.status_code == 201:
        print(f"{_OK_CHAR} Recorded {assessment_type} for {student_id}: {raw_score}/{max_score}")
        return response.json()
    print(f"{_FAIL_CHAR} Failed to record assessment: {response.text}")
    return None


def create_assignment(base_url, assignment_id, title, max_score=100.0, client=requests):
    """Create an assignment for the sample class."""
    data = {
        "assignment_id": assignment_id,
        "class_id": CLASS_ID,
        "subject": SUBJECT,
        "title": title,
        "max_score": max_score,
        "term": TERM,
        "academic_year": ACADEMIC_YEAR,
    }
    response = client.post(f"{base_url}/assignments", json=data)
    if response.status_code == 201:
        print(f"{_OK_CHAR} Created assignment: {title}")
        return response.json()
    print(f"{_FAIL_CHAR} Failed to create assignment: {response.text}")
    return None


def submit_assignment(base_url, assignment_id, student_id, raw_score, client=requests):
    """Record a submission; a raw_score of None means nothing was handed in."""
    response = client.post(f"{base_url}/assignments/{assignment_id}/submissions",
                           json={"student_id": student_id, "raw_score": raw_score})
    if response.status_code == 204:
        print(f"{_OK_CHAR} Submission for {student_id} on {assignment_id}: {raw_score}")
        return True
    print(f"{_FAIL_CHAR} Failed to record submission: {response.text}")
    return False


def mark_attendance(base_url, student_id, day, status, client=requests):
    """Mark one day of attendance."""
    data = {
        "student_id": student_id,
        "class_id": CLASS_ID,
        "date": day.isoformat(),
        "status": status,
        "term": TERM,
        "academic_year": ACADEMIC_YEAR,
    }
    response = client.post(f"{base_url}/attendance", json=data)
    if response.status_code != 204:
        print(f"{_FAIL_CHAR} Failed to mark attendance: {response.text}")
        return False
    return True


def recompute(base_url, student_id, client=requests):
    """Recompute a student's carry mark."""
    data = {
        "student_id": student_id,
        "class_id": CLASS_ID,
        "subject": SUBJECT,
        "term": TERM,
        "academic_year": ACADEMIC_YEAR,
        "actor": "add_data",
    }
    response = client.post(f"{base_url}/carry-marks/recompute", json=data)
    if response.status_code == 200:
        result = response.json()
        record = result.get("record")
        if record:
            print(f"{_OK_CHAR} Carry mark for {student_id}: {record['final_score']} ({record['grade']})")
        else:
            print(f"{_INFO_CHAR} No data for {student_id}")
        return result
    print(f"{_FAIL_CHAR} Failed to recompute: {response.text}")
    return None


def list_class_carry_marks(base_url, client=requests):
    """List all carry marks for the sample class."""
    response = client.get(f"{base_url}/classes/{CLASS_ID}/carry-marks",
                          params={"subject": SUBJECT, "term": TERM,
                                  "academic_year": ACADEMIC_YEAR})
    if response.status_code != 200:
        print(f"{_FAIL_CHAR} Failed to list carry marks: {response.text}")
        return []
    records = response.json()
    print(f"\n{'='*60}")
    print(f"Carry marks for {CLASS_ID} {SUBJECT} ({len(records)})")
    print(f"{'='*60}")
    for record in records:
        print(f"  {record['student_id']:8} | {record['assessment_average']!s:8} | "
              f"{record['assignment_average']!s:8} | {record['attendance_percentage']!s:6} | "
              f"{record['final_score']!s:6} | {record['grade']}")
    return records


def get_statistics(base_url, client=requests):
    """Get engine statistics."""
    response = client.get(f"{base_url}/statistics")
    if response.status_code != 200:
        print(f"{_FAIL_CHAR} Failed to get statistics: {response.text}")
        return None
    stats = response.json()
    print(f"\n{'='*60}")
    print("Engine Statistics")
    print(f"{'='*60}")
    print(json.dumps(stats['statistics'], indent=2))
    return stats


def seed(base_url, client=requests):
    """Add sample records for three students and compute their carry marks."""
    print("Recording assessments...")
    scores = {
        "S001": {"US1": 80, "US2": 90},
        "S002": {"US1": 55, "US2": 62, "UASA": 58},
        "S003": {"US1": 95},
    }
    for student_id, by_type in scores.items():
        for assessment_type, raw_score in by_type.items():
            record_assessment(base_url, student_id, assessment_type, raw_score, client=client)

    print("\nCreating assignments...")
    create_assignment(base_url, "essay-1", "Essay", client=client)
    create_assignment(base_url, "project-1", "Project", max_score=50, client=client)
    submit_assignment(base_url, "essay-1", "S002", 70, client=client)
    submit_assignment(base_url, "project-1", "S002", 40, client=client)
    submit_assignment(base_url, "essay-1", "S003", None, client=client)

    print("\nMarking attendance...")
    start = date(2024, 9, 2)
    for student_id, absences in (("S001", 2), ("S002", 5), ("S003", 0)):
        for day in range(20):
            status = "absent" if day < absences else "present"
            mark_attendance(base_url, student_id, start + timedelta(days=day), status,
                            client=client)

    print("\nComputing carry marks...")
    return {student_id: recompute(base_url, student_id, client=client) for student_id in scores}


def main():
    """Main execution."""
    print("="*60)
    print("Carry Mark Platform - Data Addition Script")
    print("="*60)
    print()

    base_url = _detect_base_url()

    # Check if server is running
    if not check_server(base_url):
        sys.exit(1)

    print("\n" + "="*60)
    print("Adding Sample Data...")
    print("="*60 + "\n")

    seed(base_url)

    # Display results
    list_class_carry_marks(base_url)
    get_statistics(base_url)

    print("\n" + "="*60)
    print(f"{_OK_CHAR} Sample data added successfully!")
    print("="*60)
    print("\nYou can now:")
    print(f"  - View API docs: {base_url}/docs")
    print(f"  - List carry marks: curl {base_url}/classes/{CLASS_ID}/carry-marks")
    print(f"  - Get statistics: curl {base_url}/statistics")
    print()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print(f"\n\n{_FAIL_CHAR} Interrupted by user")
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        print(f"\n{_FAIL_CHAR} Request failed: {e}")
        sys.exit(1)
