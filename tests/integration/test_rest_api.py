"""Integration tests for the REST API through FastAPI's TestClient."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from registrar.main import RegistrarPlatform


@pytest.fixture(params=["memory", "sqlite"])
def client(request, tmp_path):
    config = {'store_type': request.param}
    if request.param == "sqlite":
        config['store_config'] = {'database_path': str(tmp_path / "api.db")}
    platform = RegistrarPlatform(config)
    return TestClient(platform.app)


def _future(days=30):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


@pytest.fixture
def student(client):
    response = client.post("/students", json={
        "first_name": "Alice", "last_name": "Johnson",
        "department": "Computer Science", "admission_year": 2024,
    })
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def course(client):
    response = client.post("/courses", json={
        "course_code": "cs101", "title": "Introduction to Programming",
        "department": "Computer Science", "credits": 4, "capacity": 1,
    })
    assert response.status_code == 201
    return response.json()


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestStudentsAndCourses:

    def test_student_code_allocated(self, student):
        assert student["student_code"] == "STU24COM0001"

    def test_get_unknown_student(self, client):
        response = client.get("/students/missing")
        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"

    def test_invalid_department(self, client):
        response = client.post("/students", json={
            "first_name": "A", "last_name": "B", "department": "Astrology", "admission_year": 2024,
        })
        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_malformed_body(self, client):
        response = client.post("/students", json={"first_name": "A"})
        assert response.status_code == 422

    def test_duplicate_course(self, client, course):
        response = client.post("/courses", json={
            "course_code": "CS101", "title": "Again", "department": "Computer Science",
            "credits": 4, "capacity": 10,
        })
        assert response.status_code == 409
        assert response.json()["error_code"] == "DUPLICATE_ENTITY"

    def test_zero_capacity(self, client):
        response = client.post("/courses", json={
            "course_code": "CS0", "title": "Empty", "department": "Computer Science",
            "credits": 4, "capacity": 0,
        })
        assert response.status_code == 400


    def test_list_students_by_department(self, client, student):
        client.post("/students", json={
            "first_name": "Carl", "last_name": "Diaz", "department": "Civil", "admission_year": 2024,
        })

        assert len(client.get("/students").json()) == 2
        civil = client.get("/students", params={"department": "Civil"}).json()
        assert [s["first_name"] for s in civil] == ["Carl"]
        assert client.get("/students", params={"department": "Astrology"}).status_code == 400

    def test_list_courses(self, client, course):
        client.post("/courses", json={
            "course_code": "cs102", "title": "Data Structures",
            "department": "Computer Science", "credits": 4, "capacity": 20,
        })
        codes = sorted(c["course_code"] for c in client.get("/courses").json())
        assert codes == ["CS101", "CS102"]

    def test_update_course(self, client, course, student):
        client.post(f"/courses/{course['id']}/enroll", json={"student_id": student["id"]})

        grown = client.put(f"/courses/{course['id']}", json={"capacity": 5, "title": "Programming"})
        assert grown.status_code == 200
        assert grown.json()["capacity"] == 5
        assert grown.json()["title"] == "Programming"
        assert grown.json()["available_seats"] == 4

        invalid = client.put(f"/courses/{course['id']}", json={"credits": 0})
        assert invalid.status_code == 400
        assert invalid.json()["error_code"] == "VALIDATION_ERROR"

        missing = client.put("/courses/missing", json={"capacity": 5})
        assert missing.status_code == 404

    def test_update_course_cannot_shrink_below_enrollment(self, client, course, student):
        client.put(f"/courses/{course['id']}", json={"capacity": 2})
        other = client.post("/students", json={
            "first_name": "Bob", "last_name": "Smith",
            "department": "Computer Science", "admission_year": 2024,
        }).json()
        for s in (student, other):
            client.post(f"/courses/{course['id']}/enroll", json={"student_id": s["id"]})

        response = client.put(f"/courses/{course['id']}", json={"capacity": 1})
        assert response.status_code == 409
        assert response.json()["error_code"] == "CAPACITY_EXCEEDED"
        assert client.get(f"/courses/{course['id']}").json()["capacity"] == 2

class TestEnrollment:

    def test_enroll_and_capacity(self, client, course, student):
        response = client.post(f"/courses/{course['id']}/enroll", json={"student_id": student["id"]})
        assert response.status_code == 200
        assert response.json()["available_seats"] == 0

        other = client.post("/students", json={
            "first_name": "Bob", "last_name": "Smith",
            "department": "Computer Science", "admission_year": 2024,
        }).json()
        full = client.post(f"/courses/{course['id']}/enroll", json={"student_id": other["id"]})
        assert full.status_code == 409
        assert full.json()["error_code"] == "CAPACITY_EXCEEDED"

        again = client.post(f"/courses/{course['id']}/enroll", json={"student_id": student["id"]})
        assert again.json()["error_code"] == "ALREADY_ENROLLED"

        courses = client.get(f"/students/{student['id']}/courses").json()
        assert [c["course_code"] for c in courses] == ["CS101"]

    def test_unenroll_and_retire(self, client, course, student):
        client.post(f"/courses/{course['id']}/enroll", json={"student_id": student["id"]})

        busy = client.delete(f"/courses/{course['id']}")
        assert busy.status_code == 409
        assert busy.json()["error_code"] == "COURSE_NOT_EMPTY"

        response = client.post(f"/courses/{course['id']}/unenroll", json={"student_id": student["id"]})
        assert response.status_code == 200
        assert response.json()["enrollment_count"] == 0

        not_enrolled = client.post(f"/courses/{course['id']}/unenroll", json={"student_id": student["id"]})
        assert not_enrolled.json()["error_code"] == "NOT_ENROLLED"

        assert client.delete(f"/courses/{course['id']}").status_code == 200
        assert client.get(f"/courses/{course['id']}").status_code == 404


class TestFees:

    @pytest.fixture
    def fee(self, client, student):
        response = client.post("/fees", json={
            "student_id": student["id"], "term": "2024-S1", "fee_type": "tuition",
            "total_amount": "1000.00", "due_date": _future(),
        })
        assert response.status_code == 201
        return response.json()

    def test_payments(self, client, fee):
        assert fee["status"] == "pending"

        partial = client.post(f"/fees/{fee['id']}/payments", json={"amount": "400", "mode": "upi"})
        assert partial.status_code == 200
        assert partial.json()["status"] == "partial"
        assert partial.json()["due_amount"] == "600.00"

        over = client.post(f"/fees/{fee['id']}/payments", json={"amount": "700", "mode": "cash"})
        assert over.status_code == 400
        assert over.json()["error_code"] == "OVER_PAYMENT"

        paid = client.post(f"/fees/{fee['id']}/payments", json={"amount": "600", "mode": "card"})
        assert paid.json()["status"] == "paid"
        assert len(paid.json()["payment_history"]) == 2

    def test_invalid_amount(self, client, fee):
        response = client.post(f"/fees/{fee['id']}/payments", json={"amount": "-5", "mode": "cash"})
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_AMOUNT"

    @pytest.mark.parametrize("total", ["1E+400000", "10.005"])
    def test_fee_amount_bounds(self, client, student, total):
        response = client.post("/fees", json={
            "student_id": student["id"], "term": "2024-S1", "fee_type": "tuition",
            "total_amount": total, "due_date": _future(),
        })
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_AMOUNT"

    def test_overdue_derived_from_due_date(self, client, student):
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        response = client.post("/fees", json={
            "student_id": student["id"], "term": "2024-S1", "fee_type": "library",
            "total_amount": "50", "due_date": past,
        })
        assert response.json()["status"] == "overdue"
        assert response.json()["is_past_due"] is True

    def test_update_delete_and_summary(self, client, student, fee):
        updated = client.put(f"/fees/{fee['id']}", json={"discount": "100"})
        assert updated.json()["due_amount"] == "900.00"

        summary = client.get(f"/students/{student['id']}/fees").json()
        assert summary["due_amount"] == "900.00"
        assert len(summary["obligations"]) == 1

        client.post(f"/fees/{fee['id']}/payments", json={"amount": "1", "mode": "cash"})
        blocked = client.delete(f"/fees/{fee['id']}")
        assert blocked.status_code == 409
        assert blocked.json()["error_code"] == "HAS_PAYMENTS"

    def test_statistics_route_not_shadowed(self, client, fee):
        response = client.get("/fees/statistics")
        assert response.status_code == 200
        assert response.json()["statistics"]["overall"]["count"] == 1


class TestMarks:

    def _mark(self, client, student, course, marks_obtained):
        return client.post("/marks", json={
            "student_id": student["id"], "course_id": course["id"], "term": "2024-S1",
            "exam_type": "midterm", "marks_obtained": marks_obtained, "total_marks": 100,
        })

    def test_upsert_status_codes(self, client, student, course):
        created = self._mark(client, student, course, 85)
        assert created.status_code == 201
        assert created.json()["grade"] == "A+"
        assert created.json()["percentage"] == 85.0

        updated = self._mark(client, student, course, 91)
        assert updated.status_code == 200
        assert updated.json()["id"] == created.json()["id"]
        assert updated.json()["grade"] == "O"

        assert len(client.get(f"/courses/{course['id']}/marks").json()) == 1

    def test_out_of_range(self, client, student, course):
        response = self._mark(client, student, course, 120)
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_RANGE"

    def test_publish_revoke_delete(self, client, student, course):
        mark = self._mark(client, student, course, 70).json()

        published = client.put(f"/marks/{mark['id']}/publish").json()
        assert published["published"] is True
        again = client.put(f"/marks/{mark['id']}/publish").json()
        assert again["published_at"] == published["published_at"]

        no_reason = client.post(f"/marks/{mark['id']}/revoke", json={"actor": "registrar", "reason": ""})
        assert no_reason.status_code == 400

        revoked = client.post(f"/marks/{mark['id']}/revoke",
                              json={"actor": "registrar", "reason": "recount"})
        assert revoked.json()["published"] is False
        assert revoked.json()["publication_overrides"][0]["reason"] == "recount"

        assert client.delete(f"/marks/{mark['id']}").status_code == 200
        assert client.delete(f"/marks/{mark['id']}").status_code == 404

    def test_student_marks_and_report(self, client, student, course):
        self._mark(client, student, course, 60)

        grouped = client.get(f"/students/{student['id']}/marks").json()
        assert list(grouped) == ["2024-S1"]

        report = client.get(f"/students/{student['id']}/report").json()
        assert report["overall"]["percentage"] == 60.0
        assert report["terms"]["2024-S1"]["credits"] == 4


class TestStatistics:

    def test_statistics(self, client, student, course):
        client.post(f"/courses/{course['id']}/enroll", json={"student_id": student["id"]})
        stats = client.get("/statistics").json()["statistics"]

        assert stats["registry"] == {"total_students": 1, "total_courses": 1}
        assert stats["enrollment"]["total_enrollments"] == 1
        assert stats["concurrency"]["held_locks"] == 0
