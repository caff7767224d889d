"""
Script to add sample data to the Registrar platform via REST API.
Make sure the server is running before executing this script.

Usage:
    python add_data.py
"""

import json
import os
import sys
from datetime import datetime, timedelta, timezone

import requests


def _console_supports_utf8() -> bool:
    enc = getattr(sys.stdout, "encoding", None)
    return enc is not None and "utf" in enc.lower()


_OK_CHAR = "✓" if _console_supports_utf8() else "[OK]"
_FAIL_CHAR = "✗" if _console_supports_utf8() else "[FAIL]"
_WARN_CHAR = "⚠" if _console_supports_utf8() else "[WARN]"


def _detect_base_url() -> str:
    """Determine a reachable BASE_URL.

    Priority: environment variable `REGISTRAR_BASE_URL`, then common local ports.
    If nothing responds, fall back to http://127.0.0.1:8000.
    """
    env = os.environ.get("REGISTRAR_BASE_URL")
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


BASE_URL = _detect_base_url()


def _describe_error(response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    return f"{body.get('error_code', response.status_code)}: {body.get('message', body)}"


def check_server():
    """Check if the server is running."""
    try:
        response = requests.get(f"{BASE_URL}/health", timeout=2)
        if response.status_code == 200:
            print(f"{_OK_CHAR} Server is running")
            return True
    except requests.exceptions.RequestException:
        pass
    print(f"{_FAIL_CHAR} Server is not running!")
    print("\nPlease start the server first:")
    print("  python -m registrar.main --port 8000")
    return False


def create_student(first_name, last_name, department, admission_year):
    """Register a new student."""
    data = {
        "first_name": first_name,
        "last_name": last_name,
        "department": department,
        "admission_year": admission_year
    }
    try:
        response = requests.post(f"{BASE_URL}/students", json=data)
        if response.status_code == 201:
            student = response.json()
            print(f"{_OK_CHAR} Registered student: {first_name} {last_name} ({student['student_code']})")
            return student
        print(f"{_FAIL_CHAR} Failed to register student: {_describe_error(response)}")
    except requests.exceptions.RequestException as e:
        print(f"{_FAIL_CHAR} Error registering student: {e}")
    return None


def create_course(course_code, title, department, credits, capacity):
    """Create a new course."""
    data = {
        "course_code": course_code,
        "title": title,
        "department": department,
        "credits": credits,
        "capacity": capacity
    }
    try:
        response = requests.post(f"{BASE_URL}/courses", json=data)
        if response.status_code == 201:
            print(f"{_OK_CHAR} Created course: {course_code} - {title} ({capacity} seats)")
            return response.json()
        print(f"{_FAIL_CHAR} Failed to create course: {_describe_error(response)}")
    except requests.exceptions.RequestException as e:
        print(f"{_FAIL_CHAR} Error creating course: {e}")
    return None


def enroll_student(student, course):
    """Enroll a student in a course."""
    try:
        response = requests.post(f"{BASE_URL}/courses/{course['id']}/enroll",
                                 json={"student_id": student['id']})
        if response.status_code == 200:
            seats = response.json()['available_seats']
            print(f"{_OK_CHAR} Enrolled {student['student_code']} in {course['course_code']} ({seats} seats left)")
            return response.json()
        if response.status_code == 409:
            print(f"{_WARN_CHAR} {student['student_code']} not enrolled in {course['course_code']}: "
                  f"{_describe_error(response)}")
        else:
            print(f"{_FAIL_CHAR} Failed to enroll student: {_describe_error(response)}")
    except requests.exceptions.RequestException as e:
        print(f"{_FAIL_CHAR} Error enrolling student: {e}")
    return None


def create_fee(student, term, fee_type, total_amount, due_in_days):
    """Open a fee obligation."""
    data = {
        "student_id": student['id'],
        "term": term,
        "fee_type": fee_type,
        "total_amount": total_amount,
        "due_date": (datetime.now(timezone.utc) + timedelta(days=due_in_days)).isoformat()
    }
    try:
        response = requests.post(f"{BASE_URL}/fees", json=data)
        if response.status_code == 201:
            print(f"{_OK_CHAR} Created {fee_type} fee of {total_amount} for {student['student_code']}")
            return response.json()
        print(f"{_FAIL_CHAR} Failed to create fee: {_describe_error(response)}")
    except requests.exceptions.RequestException as e:
        print(f"{_FAIL_CHAR} Error creating fee: {e}")
    return None


def pay_fee(fee, amount, mode):
    """Record a payment against a fee obligation."""
    try:
        response = requests.post(f"{BASE_URL}/fees/{fee['id']}/payments",
                                 json={"amount": amount, "mode": mode})
        if response.status_code == 200:
            result = response.json()
            print(f"{_OK_CHAR} Paid {amount} by {mode}: due {result['due_amount']} ({result['status']})")
            return result
        print(f"{_WARN_CHAR} Payment of {amount} rejected: {_describe_error(response)}")
    except requests.exceptions.RequestException as e:
        print(f"{_FAIL_CHAR} Error recording payment: {e}")
    return None


def record_mark(student, course, term, exam_type, marks_obtained, total_marks):
    """Enter marks for a student."""
    data = {
        "student_id": student['id'],
        "course_id": course['id'],
        "term": term,
        "exam_type": exam_type,
        "marks_obtained": marks_obtained,
        "total_marks": total_marks
    }
    try:
        response = requests.post(f"{BASE_URL}/marks", json=data)
        if response.status_code in (200, 201):
            mark = response.json()
            action = "Recorded" if response.status_code == 201 else "Updated"
            print(f"{_OK_CHAR} {action} {exam_type} marks for {student['student_code']} in "
                  f"{course['course_code']}: {mark['percentage']}% ({mark['grade']})")
            return mark
        print(f"{_FAIL_CHAR} Failed to record marks: {_describe_error(response)}")
    except requests.exceptions.RequestException as e:
        print(f"{_FAIL_CHAR} Error recording marks: {e}")
    return None


def publish_mark(mark):
    try:
        response = requests.put(f"{BASE_URL}/marks/{mark['id']}/publish")
        if response.status_code == 200:
            print(f"{_OK_CHAR} Published marks {mark['id']}")
            return response.json()
        print(f"{_FAIL_CHAR} Failed to publish marks: {_describe_error(response)}")
    except requests.exceptions.RequestException as e:
        print(f"{_FAIL_CHAR} Error publishing marks: {e}")
    return None


def get_statistics():
    """Get system statistics."""
    try:
        response = requests.get(f"{BASE_URL}/statistics")
        if response.status_code == 200:
            stats = response.json()
            print(f"\n{'='*60}")
            print("System Statistics")
            print(f"{'='*60}")
            print(json.dumps(stats['statistics'], indent=2))
            return stats
        print(f"{_FAIL_CHAR} Failed to get statistics: {_describe_error(response)}")
    except requests.exceptions.RequestException as e:
        print(f"{_FAIL_CHAR} Error getting statistics: {e}")
    return None


def main():
    """Main execution."""
    print("="*60)
    print("Registrar Platform - Data Addition Script")
    print("="*60)
    print()

    if not check_server():
        sys.exit(1)

    print("\n" + "="*60)
    print("Adding Sample Data...")
    print("="*60 + "\n")

    print("Registering students...")
    students = [
        create_student("Alice", "Johnson", "Computer Science", 2024),
        create_student("Bob", "Smith", "Computer Science", 2024),
        create_student("Carol", "Davis", "Electronics", 2024),
        create_student("David", "Wilson", "Mechanical", 2023),
        create_student("Emma", "Brown", "Information Technology", 2024),
    ]
    students = [s for s in students if s]

    print("\nCreating courses...")
    courses = [
        create_course("CS101", "Introduction to Programming", "Computer Science", 4, 3),
        create_course("CS201", "Data Structures", "Computer Science", 4, 30),
        create_course("EC101", "Basic Electronics", "Electronics", 3, 25),
    ]
    courses = [c for c in courses if c]
    if not students or not courses:
        print(f"{_FAIL_CHAR} Nothing to enroll; is the server already seeded?")
        sys.exit(1)

    print("\nEnrolling students...")
    # CS101 has three seats, so the last two are turned away.
    for student in students:
        enroll_student(student, courses[0])
    if len(courses) > 2:
        enroll_student(students[0], courses[2])

    print("\nOpening fees...")
    fee = create_fee(students[0], "2024-S1", "tuition", "1000.00", due_in_days=30)
    if fee:
        pay_fee(fee, "400.00", "upi")
        pay_fee(fee, "700.00", "cash")
        pay_fee(fee, "600.00", "card")
    for student in students[1:]:
        create_fee(student, "2024-S1", "tuition", "1000.00", due_in_days=30)

    print("\nRecording marks...")
    for student, score in zip(students[:3], (85, 72, 38)):
        mark = record_mark(student, courses[0], "2024-S1", "midterm", score, 100)
        if mark:
            publish_mark(mark)
    record_mark(students[0], courses[0], "2024-S1", "midterm", 88, 100)

    get_statistics()

    print("\n" + "="*60)
    print(f"{_OK_CHAR} Sample data added successfully!")
    print("="*60)
    print("\nYou can now:")
    print(f"  - View API docs: {BASE_URL}/docs")
    print(f"  - Student report: curl {BASE_URL}/students/{students[0]['id']}/report")
    print(f"  - Fee statistics: curl {BASE_URL}/fees/statistics")
    print(f"  - Get statistics: curl {BASE_URL}/statistics")
    print()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print(f"\n\n{_FAIL_CHAR} Interrupted by user")
        sys.exit(1)
