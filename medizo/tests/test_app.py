import io
import shutil
import tempfile
import unittest

import httpx
from fastapi.testclient import TestClient
from PIL import Image as PIL_Image

from medizo.app import create_app
from medizo.auth import GoogleTokenVerifier
from medizo.config import Settings, get_settings
from medizo.db import JsonFileDbClient, SqlDocumentDbClient
from medizo.dependencies import get_db_client, get_google_verifier, get_mailer, get_storage_client
from medizo.mailer import MailerNotConfigured
from medizo.storage import LocalStorageClient


class RecordingMailer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, to, subject, html_body):
        if self.fail:
            raise MailerNotConfigured("Email credentials not configured")
        self.sent.append((to, subject, html_body))


GOOGLE_CLAIMS = {
    "sub": "google-123",
    "email": "gina@example.com",
    "email_verified": "true",
    "given_name": "Gina",
    "family_name": "Lee",
    "aud": "client-1",
    "picture": "https://example.com/p.png",
}


def _google_transport(request: httpx.Request) -> httpx.Response:
    if request.url.params.get("id_token") == "good-token":
        return httpx.Response(200, json=GOOGLE_CLAIMS)
    return httpx.Response(400, json={"error": "invalid_token"})


def _png_bytes(size=(40, 20), color=(200, 10, 10)) -> bytes:
    buf = io.BytesIO()
    PIL_Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.settings = Settings(
            jwt_secret="test-secret",
            use_local_backends=True,
            data_dir=f"{self.tmp}/data",
            uploads_dir=f"{self.tmp}/uploads",
            seed_demo_users=False,
            client_url="https://app.test",
            google_client_id="client-1",
        )
        self.db = JsonFileDbClient(self.settings.data_dir)
        self.storage = LocalStorageClient(self.settings.uploads_dir)
        self.mailer = RecordingMailer()
        verifier = GoogleTokenVerifier(
            "https://oauth2.example/tokeninfo",
            "client-1",
            transport=httpx.MockTransport(_google_transport),
        )

        app = create_app(self.settings)
        app.dependency_overrides[get_settings] = lambda: self.settings
        app.dependency_overrides[get_db_client] = lambda: self.db
        app.dependency_overrides[get_storage_client] = lambda: self.storage
        app.dependency_overrides[get_mailer] = lambda: self.mailer
        app.dependency_overrides[get_google_verifier] = lambda: verifier
        self.client = TestClient(app)

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def register(self, role, email, first="Test", last="User", **extra):
        response = self.client.post(
            "/api/auth/register",
            json={
                "firstName": first,
                "lastName": last,
                "email": email,
                "password": "secret123",
                "role": role,
                **extra,
            },
        )
        self.assertEqual(response.status_code, 201, response.text)
        body = response.json()
        return body["user"], {"x-auth-token": body["token"]}

    def create_prescription(self, headers, **fields):
        response = self.client.post("/api/prescriptions", json=fields, headers=headers)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()


class ServiceEndpointTests(ApiTestCase):
    def test_root_and_health(self):
        response = self.client.get("/")
        self.assertEqual(response.json()["message"], "Healthcare Management System API is running")

        health = self.client.get("/health").json()
        self.assertEqual(health["status"], "ok")
        self.assertEqual(health["storage"], "json")
        self.assertIn("timestamp", health)

    def test_unknown_route_uses_message_body(self):
        response = self.client.get("/api/nothing-here")
        self.assertEqual(response.status_code, 404)
        self.assertIn("message", response.json())

    def test_demo_users_seeded_on_startup(self):
        self.settings.seed_demo_users = True
        app = create_app(self.settings)
        app.dependency_overrides[get_db_client] = lambda: self.db
        with TestClient(app):
            pass
        emails = sorted(u["email"] for u in self.db.list_users())
        self.assertEqual(emails, ["doctor@test.com", "patient@test.com"])

    def test_default_secret_refused_in_production(self):
        with self.assertRaises(RuntimeError):
            create_app(Settings(env="production", seed_demo_users=False))


class AuthApiTests(ApiTestCase):
    def test_register_validation_errors(self):
        response = self.client.post(
            "/api/auth/register",
            json={"email": "not-an-email", "password": "123", "role": "admin"},
        )
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["message"], "Validation failed")
        self.assertIn("First name is required", body["errors"])
        self.assertIn("Invalid email format", body["errors"])
        self.assertIn("Password must be at least 6 characters long", body["errors"])
        self.assertIn("Role must be either doctor or patient", body["errors"])

    def test_register_then_login(self):
        user, _ = self.register("doctor", "Doc@Example.com", specialization="Cardiology")
        self.assertEqual(user["email"], "doc@example.com")
        self.assertEqual(user["specialization"], "Cardiology")
        self.assertNotIn("password", user)

        response = self.client.post(
            "/api/auth/login", json={"email": "DOC@example.com", "password": "secret123"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["message"], "Login successful")
        self.assertEqual(response.json()["user"]["id"], user["id"])

    def test_register_duplicate_email(self):
        self.register("patient", "pat@example.com")
        response = self.client.post(
            "/api/auth/register",
            json={
                "firstName": "A",
                "lastName": "B",
                "email": "PAT@example.com",
                "password": "secret123",
                "role": "patient",
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "User with this email already exists")

    def test_login_failures(self):
        self.register("patient", "pat@example.com")
        missing = self.client.post("/api/auth/login", json={"email": "pat@example.com"})
        self.assertEqual(missing.status_code, 400)
        self.assertEqual(missing.json()["message"], "Email and password are required")

        wrong = self.client.post(
            "/api/auth/login", json={"email": "pat@example.com", "password": "nope-nope"}
        )
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(wrong.json()["message"], "Invalid credentials")

    def test_me_accepts_both_token_headers(self):
        user, headers = self.register("patient", "pat@example.com")
        token = headers["x-auth-token"]

        by_header = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(by_header.json()["user"]["id"], user["id"])

        by_bearer = self.client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(by_bearer.status_code, 200)
        self.assertEqual(by_bearer.json()["user"]["email"], "pat@example.com")

    def test_me_rejects_missing_or_bad_tokens(self):
        missing = self.client.get("/api/auth/me")
        self.assertEqual(missing.status_code, 401)
        self.assertEqual(missing.json()["message"], "No token, authorization denied")

        bad = self.client.get("/api/auth/me", headers={"x-auth-token": "garbage"})
        self.assertEqual(bad.status_code, 401)
        self.assertEqual(bad.json()["message"], "Token is not valid")

    def test_token_for_deleted_user(self):
        user, headers = self.register("patient", "pat@example.com")
        self.db.delete_user(user["id"])
        response = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["message"], "User not found")

    def test_google_login_creates_then_reuses_account(self):
        first = self.client.post(
            "/api/auth/google", json={"credential": "good-token", "role": "doctor"}
        )
        self.assertEqual(first.status_code, 200, first.text)
        user = first.json()["user"]
        self.assertEqual(user["role"], "doctor")
        self.assertEqual(user["authProvider"], "google")
        self.assertEqual(user["googleId"], "google-123")

        second = self.client.post("/api/auth/google", json={"credential": "good-token"})
        self.assertEqual(second.json()["user"]["id"], user["id"])
        self.assertEqual(len(self.db.list_users()), 1)

    def test_google_login_links_existing_email(self):
        existing, _ = self.register("patient", "gina@example.com")
        response = self.client.post("/api/auth/google", json={"credential": "good-token"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["id"], existing["id"])
        self.assertEqual(self.db.get_user(existing["id"])["googleId"], "google-123")

    def test_google_login_rejects_bad_credential(self):
        response = self.client.post("/api/auth/google", json={"credential": "bad-token"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["message"], "Invalid Google credential")

    def test_google_login_unknown_role_only_matters_for_new_accounts(self):
        response = self.client.post(
            "/api/auth/google", json={"credential": "good-token", "role": "admin"}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Role must be either doctor or patient")
        self.assertIsNone(self.db.get_user_by_email("gina@example.com"))

        self.register("doctor", "gina@example.com")
        linked = self.client.post(
            "/api/auth/google", json={"credential": "good-token", "role": "admin"}
        )
        self.assertEqual(linked.status_code, 200)
        self.assertEqual(linked.json()["user"]["role"], "doctor")


class PrescriptionApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.doctor, self.doctor_headers = self.register(
            "doctor",
            "doc@example.com",
            first="Gregory",
            last="House",
            specialization="Diagnostics",
        )
        self.patient, self.patient_headers = self.register(
            "patient", "pat@example.com", first="Jane", last="Doe"
        )

    def test_create_resolves_patient_by_email_and_fills_defaults(self):
        prescription = self.create_prescription(
            self.doctor_headers,
            patientEmail="PAT@EXAMPLE.COM",
            provisionalDiagnosis=["Migraine", "Dehydration"],
            medications=[{"name": "Ibuprofen", "dosage": "400mg", "duration": "5 days"}],
            followUpInfo={"appointmentDate": "2026-11-01", "purpose": "Review"},
        )
        self.assertEqual(prescription["patientId"], self.patient["id"])
        self.assertEqual(prescription["doctorId"], self.doctor["id"])
        self.assertEqual(prescription["status"], "active")
        self.assertEqual(prescription["diagnosis"], "Migraine, Dehydration")
        self.assertEqual(prescription["followUpDate"], "2026-11-01")
        self.assertEqual(prescription["presentingComplaints"], [])
        self.assertEqual(prescription["vitalSigns"], {})
        self.assertTrue(prescription["qrCode"].startswith("data:image/png;base64,"))

        self.assertEqual(len(self.mailer.sent), 1)
        to, subject, body = self.mailer.sent[0]
        self.assertEqual(to, "pat@example.com")
        self.assertEqual(subject, "New Prescription Available")
        self.assertIn(f"https://app.test/prescriptions/{prescription['id']}", body)

    def test_create_with_unknown_patient(self):
        response = self.client.post(
            "/api/prescriptions",
            json={"patientId": "missing", "patientEmail": "nobody@example.com"},
            headers=self.doctor_headers,
        )
        self.assertEqual(response.status_code, 404)
        body = response.json()
        self.assertEqual(body["message"], "Patient not found")
        self.assertEqual(
            body["searched"], {"patientId": "missing", "patientEmail": "nobody@example.com"}
        )

    def test_email_failure_does_not_fail_request(self):
        self.mailer.fail = True
        prescription = self.create_prescription(self.doctor_headers, patientId=self.patient["id"])
        self.assertIsNotNone(self.db.get_prescription(prescription["id"]))

    def test_patient_cannot_create(self):
        response = self.client.post(
            "/api/prescriptions",
            json={"patientId": self.patient["id"]},
            headers=self.patient_headers,
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["message"], "Access denied: Doctors only")

    def test_role_aware_listing(self):
        self.create_prescription(
            self.doctor_headers, patientId=self.patient["id"], diagnosis="Flu"
        )

        as_doctor = self.client.get("/api/prescriptions", headers=self.doctor_headers).json()
        self.assertEqual(as_doctor[0]["patientName"], "Jane Doe")
        self.assertEqual(as_doctor[0]["patientEmail"], "pat@example.com")

        as_patient = self.client.get("/api/prescriptions", headers=self.patient_headers).json()
        self.assertEqual(as_patient[0]["doctorName"], "Dr. Gregory House")
        self.assertEqual(as_patient[0]["doctorSpecialization"], "Diagnostics")

    def test_access_rules_for_single_prescription(self):
        prescription = self.create_prescription(self.doctor_headers, patientId=self.patient["id"])
        _, other_doctor = self.register("doctor", "other-doc@example.com")
        _, other_patient = self.register("patient", "other-pat@example.com")
        url = f"/api/prescriptions/{prescription['id']}"

        self.assertEqual(self.client.get(url, headers=self.doctor_headers).status_code, 200)
        self.assertEqual(self.client.get(url, headers=self.patient_headers).status_code, 200)
        self.assertEqual(self.client.get(url, headers=other_doctor).status_code, 403)
        self.assertEqual(self.client.get(url, headers=other_patient).status_code, 403)
        self.assertEqual(
            self.client.get("/api/prescriptions/nope", headers=self.doctor_headers).status_code,
            404,
        )

    def test_update_and_delete_by_owner_only(self):
        prescription = self.create_prescription(self.doctor_headers, patientId=self.patient["id"])
        url = f"/api/prescriptions/{prescription['id']}"
        _, other_doctor = self.register("doctor", "other-doc@example.com")

        denied = self.client.put(url, json={"status": "completed"}, headers=other_doctor)
        self.assertEqual(denied.status_code, 403)

        invalid = self.client.put(url, json={"status": "lost"}, headers=self.doctor_headers)
        self.assertEqual(invalid.status_code, 400)
        self.assertEqual(invalid.json()["message"], "Validation failed")

        updated = self.client.put(
            url, json={"status": "completed", "notes": "Done"}, headers=self.doctor_headers
        ).json()
        self.assertEqual(updated["status"], "completed")
        self.assertEqual(updated["notes"], "Done")
        self.assertEqual(updated["patientId"], self.patient["id"])

        deleted = self.client.delete(url, headers=self.doctor_headers)
        self.assertEqual(deleted.json()["message"], "Prescription deleted successfully")
        self.assertEqual(self.client.get(url, headers=self.doctor_headers).status_code, 404)

    def test_stats(self):
        first = self.create_prescription(
            self.doctor_headers, patientId=self.patient["id"], diagnosis="A"
        )
        self.create_prescription(self.doctor_headers, patientId=self.patient["id"], diagnosis="B")
        self.client.put(
            f"/api/prescriptions/{first['id']}",
            json={"status": "completed"},
            headers=self.doctor_headers,
        )

        stats = self.client.get("/api/prescriptions/stats", headers=self.doctor_headers).json()
        self.assertEqual(stats["total"], 2)
        self.assertEqual(stats["active"], 1)
        self.assertEqual(stats["completed"], 1)
        self.assertEqual(stats["thisMonth"], 2)
        self.assertEqual(stats["uniquePatients"], 1)
        self.assertEqual(len(stats["recentPrescriptions"]), 2)
        self.assertEqual(stats["recentPrescriptions"][0]["patientName"], "Jane Doe")

    def test_download_pdf(self):
        prescription = self.create_prescription(
            self.doctor_headers,
            patientId=self.patient["id"],
            medications=[{"name": "Amoxicillin", "dosage": "500mg"}],
        )
        response = self.client.get(
            f"/api/prescriptions/{prescription['id']}/download", headers=self.patient_headers
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], "application/pdf")
        self.assertIn(
            f'filename="prescription-{prescription["id"]}.pdf"',
            response.headers["content-disposition"],
        )
        self.assertTrue(response.content.startswith(b"%PDF"))

    def test_download_when_patient_record_missing(self):
        prescription = self.create_prescription(self.doctor_headers, patientId=self.patient["id"])
        self.db.delete_user(self.patient["id"])
        response = self.client.get(
            f"/api/prescriptions/{prescription['id']}/download", headers=self.doctor_headers
        )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["message"], "Failed to retrieve user information")


class UserApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.doctor, self.doctor_headers = self.register("doctor", "doc@example.com")

    def test_doctor_creates_and_links_patient(self):
        response = self.client.post(
            "/api/users/patients/create",
            json={"firstName": "Ann", "lastName": "Lee", "email": "Ann@Example.com"},
            headers=self.doctor_headers,
        )
        self.assertEqual(response.status_code, 201)
        patient = response.json()["patient"]
        self.assertEqual(patient["email"], "ann@example.com")
        self.assertEqual(patient["createdByDoctor"], self.doctor["id"])
        self.assertNotIn("password", patient)
        self.assertIn(patient["id"], self.db.get_user(self.doctor["id"])["linkedPatients"])

        login = self.client.post(
            "/api/auth/login", json={"email": "ann@example.com", "password": "password123"}
        )
        self.assertEqual(login.status_code, 200)

        mine = self.client.get(
            "/api/users/patients/my-patients", headers=self.doctor_headers
        ).json()
        self.assertEqual([p["id"] for p in mine["patients"]], [patient["id"]])

        duplicate = self.client.post(
            "/api/users/patients/create",
            json={"firstName": "Ann", "lastName": "Lee", "email": "ann@example.com"},
            headers=self.doctor_headers,
        )
        self.assertEqual(duplicate.status_code, 400)
        self.assertEqual(duplicate.json()["message"], "A patient with this email already exists")

    def test_create_patient_validation(self):
        response = self.client.post(
            "/api/users/patients/create", json={"firstName": "Ann"}, headers=self.doctor_headers
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()["message"], "First name, last name, and email are required"
        )

    def test_lookup_and_link(self):
        patient, _ = self.register("patient", "pat@example.com", first="Pat", last="Smith")

        lookup = self.client.get("/api/users/patients/lookup", headers=self.doctor_headers)
        rows = lookup.json()["patients"]
        self.assertEqual(rows[0]["name"], "Pat Smith")

        found = self.client.get(
            f"/api/users/patients/lookup/{patient['id']}", headers=self.doctor_headers
        )
        self.assertEqual(found.json()["message"], "Patient found")
        not_patient = self.client.get(
            f"/api/users/patients/lookup/{self.doctor['id']}", headers=self.doctor_headers
        )
        self.assertEqual(not_patient.status_code, 400)
        missing = self.client.get(
            "/api/users/patients/lookup/unknown", headers=self.doctor_headers
        )
        self.assertEqual(missing.status_code, 404)

        link_url = f"/api/users/patients/link/{patient['id']}"
        self.assertEqual(
            self.client.post(link_url, headers=self.doctor_headers).json()["message"],
            "Patient linked successfully",
        )
        self.assertEqual(
            self.client.post(link_url, headers=self.doctor_headers).json()["message"],
            "Patient already linked",
        )
        self.assertEqual(self.db.get_user(self.doctor["id"])["linkedPatients"], [patient["id"]])

    def test_patient_list_sets_no_cache_headers(self):
        self.register("patient", "pat@example.com")
        response = self.client.get("/api/users/patients", headers=self.doctor_headers)
        self.assertEqual(response.headers["cache-control"], "no-cache, no-store, must-revalidate")
        self.assertEqual(len(response.json()["patients"]), 1)

    def test_profile_update_is_role_scoped(self):
        response = self.client.put(
            "/api/users/profile",
            json={"firstName": "New", "specialization": "Neurology", "bloodType": "A+"},
            headers=self.doctor_headers,
        )
        user = response.json()["user"]
        self.assertEqual(user["firstName"], "New")
        self.assertEqual(user["specialization"], "Neurology")
        self.assertNotIn("bloodType", user)
        self.assertEqual(user["lastName"], "User")

    def test_change_password(self):
        wrong = self.client.put(
            "/api/users/password",
            json={"currentPassword": "incorrect", "newPassword": "brandnew1"},
            headers=self.doctor_headers,
        )
        self.assertEqual(wrong.status_code, 400)
        self.assertEqual(wrong.json()["message"], "Current password is incorrect")

        ok = self.client.put(
            "/api/users/password",
            json={"currentPassword": "secret123", "newPassword": "brandnew1"},
            headers=self.doctor_headers,
        )
        self.assertEqual(ok.json()["message"], "Password updated successfully")
        login = self.client.post(
            "/api/auth/login", json={"email": "doc@example.com", "password": "brandnew1"}
        )
        self.assertEqual(login.status_code, 200)

    def test_doctor_edits_patient_but_not_role(self):
        patient, _ = self.register("patient", "pat@example.com")
        url = f"/api/users/patients/{patient['id']}"
        response = self.client.put(
            url, json={"role": "doctor", "address": "1 Main St"}, headers=self.doctor_headers
        )
        self.assertEqual(response.json()["patient"]["role"], "patient")
        self.assertEqual(response.json()["patient"]["address"], "1 Main St")

        self.assertEqual(self.client.delete(url, headers=self.doctor_headers).status_code, 200)
        self.assertEqual(self.client.get(url, headers=self.doctor_headers).status_code, 404)

    def _assert_patient_email_kept_unique(self):
        first, _ = self.register("patient", "pa@example.com")
        second, _ = self.register("patient", "pb@example.com")
        url = f"/api/users/patients/{second['id']}"

        taken = self.client.put(url, json={"email": "PA@Example.com"}, headers=self.doctor_headers)
        self.assertEqual(taken.status_code, 400)
        self.assertEqual(taken.json()["message"], "A patient with this email already exists")
        self.assertEqual(self.db.get_user(second["id"])["email"], "pb@example.com")
        self.assertEqual(self.db.get_user_by_email("pa@example.com")["id"], first["id"])

        renamed = self.client.put(
            url, json={"email": "PB.New@Example.com"}, headers=self.doctor_headers
        )
        self.assertEqual(renamed.status_code, 200)
        self.assertEqual(renamed.json()["patient"]["email"], "pb.new@example.com")

        unchanged = self.client.put(
            url, json={"email": "pb.new@example.com"}, headers=self.doctor_headers
        )
        self.assertEqual(unchanged.status_code, 200)

        invalid = self.client.put(url, json={"email": "not-an-email"}, headers=self.doctor_headers)
        self.assertEqual(invalid.status_code, 400)

    def test_patient_email_change_cannot_collide(self):
        self._assert_patient_email_kept_unique()

    def test_patient_email_change_cannot_collide_on_database(self):
        self.db = SqlDocumentDbClient(f"sqlite+pysqlite:///{self.tmp}/medizo.db")
        self.addCleanup(self.db.engine.dispose)
        self.doctor, self.doctor_headers = self.register("doctor", "doc@example.com")
        self._assert_patient_email_kept_unique()

    def test_profile_picture_upload_and_serve(self):
        _, headers = self.register("patient", "pat@example.com")
        response = self.client.post(
            "/api/users/profile/picture",
            files={"profilePicture": ("me.png", _png_bytes(), "image/png")},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        url = response.json()["profilePicture"]
        self.assertTrue(url.startswith("/uploads/profiles/"))

        served = self.client.get(url)
        self.assertEqual(served.status_code, 200)
        self.assertEqual(served.headers["content-type"], "image/png")

        removed = self.client.delete("/api/users/profile/picture", headers=headers)
        self.assertIsNone(removed.json()["user"]["profilePicture"])
        self.assertEqual(self.client.get(url).status_code, 404)

    def test_profile_picture_rejects_other_types(self):
        response = self.client.post(
            "/api/users/profile/picture",
            files={"profilePicture": ("notes.txt", b"hello", "text/plain")},
            headers=self.doctor_headers,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()["message"],
            "Invalid file type. Only JPEG, PNG and GIF are allowed.",
        )


class PatientApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.doctor, self.doctor_headers = self.register("doctor", "doc@example.com")
        self.patient, self.patient_headers = self.register("patient", "pat@example.com")

    def test_profile_route_is_not_shadowed_by_id(self):
        response = self.client.get("/api/patients/profile", headers=self.patient_headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["id"], self.patient["id"])

        denied = self.client.get("/api/patients/profile", headers=self.doctor_headers)
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(denied.json()["message"], "Access denied: Patients only")

    def test_non_patient_ids_are_not_found_on_every_patient_route(self):
        doctor_id = self.doctor["id"]
        requests = [
            ("get", f"/api/patients/{doctor_id}", None),
            ("get", f"/api/patients/{doctor_id}/medical-details", None),
            ("put", f"/api/patients/{doctor_id}/medical-info", {"bloodType": "O+"}),
            ("get", f"/api/users/patients/{doctor_id}", None),
            ("put", f"/api/users/patients/{doctor_id}", {"address": "x"}),
            ("delete", f"/api/users/patients/{doctor_id}", None),
            ("get", "/api/patients/unknown", None),
        ]
        for method, url, body in requests:
            kwargs = {"headers": self.doctor_headers}
            if body is not None:
                kwargs["json"] = body
            response = getattr(self.client, method)(url, **kwargs)
            self.assertEqual(response.status_code, 404, url)
            self.assertEqual(response.json()["message"], "Patient not found", url)
        self.assertEqual(self.db.get_user(doctor_id)["role"], "doctor")

    def test_update_own_profile(self):
        response = self.client.put(
            "/api/patients/profile",
            json={"contactNumber": "555-1234", "dateOfBirth": "1990-01-01"},
            headers=self.patient_headers,
        )
        self.assertEqual(response.json()["contactNumber"], "555-1234")
        self.assertEqual(response.json()["firstName"], "Test")

    def test_managed_patients_and_medical_details(self):
        self.client.post(
            "/api/prescriptions",
            json={
                "patientId": self.patient["id"],
                "diagnosis": "Flu",
                "medications": [{"name": "Rest"}],
            },
            headers=self.doctor_headers,
        )
        managed = self.client.get(
            "/api/patients/doctor/managed", headers=self.doctor_headers
        ).json()
        self.assertEqual(len(managed), 1)
        self.assertEqual(managed[0]["totalPrescriptions"], 1)
        self.assertNotIn("qrCode", managed[0]["latestPrescription"])

        details = self.client.get(
            f"/api/patients/{self.patient['id']}/medical-details", headers=self.doctor_headers
        ).json()
        self.assertEqual(details["activePrescriptions"], 1)
        self.assertEqual(details["diagnoses"], ["Flu"])
        self.assertEqual(details["allMedications"][0]["name"], "Rest")
        self.assertEqual(details["allergies"], [])

    def test_update_medical_info_keeps_existing_values(self):
        url = f"/api/patients/{self.patient['id']}/medical-info"
        self.client.put(
            url, json={"bloodType": "B+", "allergies": ["Dust"]}, headers=self.doctor_headers
        )
        updated = self.client.put(
            url, json={"insurance": {"provider": "Acme"}}, headers=self.doctor_headers
        )
        body = updated.json()
        self.assertEqual(body["bloodType"], "B+")
        self.assertEqual(body["allergies"], ["Dust"])
        self.assertEqual(body["insurance"], {"provider": "Acme"})

        denied = self.client.put(url, json={"bloodType": "O-"}, headers=self.patient_headers)
        self.assertEqual(denied.status_code, 403)


class DoctorApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.doctor, self.doctor_headers = self.register("doctor", "doc@example.com")

    def test_update_profile(self):
        response = self.client.put(
            "/api/doctors/profile",
            json={"clinicName": "Sunrise Clinic", "website": "https://clinic.test"},
            headers=self.doctor_headers,
        )
        self.assertEqual(response.json()["clinicName"], "Sunrise Clinic")
        profile = self.client.get("/api/doctors/profile", headers=self.doctor_headers)
        self.assertEqual(profile.json()["website"], "https://clinic.test")

    def test_profile_image_upload_replaces_previous(self):
        first = self.client.post(
            "/api/doctors/upload-profile-image",
            files={"profileImage": ("a.png", _png_bytes(), "image/png")},
            headers=self.doctor_headers,
        ).json()["url"]
        self.assertTrue(first.startswith("/api/doctors/images/profileImage-"))

        served = self.client.get(first)
        self.assertEqual(served.status_code, 200)
        self.assertEqual(served.headers["cache-control"], "public, max-age=31536000")

        second = self.client.post(
            "/api/doctors/upload-profile-image",
            files={"profileImage": ("b.jpg", _png_bytes(color=(0, 0, 255)), "image/jpeg")},
            headers=self.doctor_headers,
        ).json()["url"]
        self.assertTrue(second.endswith(".jpg"))
        self.assertEqual(self.client.get(first).status_code, 404)
        self.assertEqual(self.db.get_user(self.doctor["id"])["profileImage"], second)

    def test_signature_and_logo_are_png(self):
        signature = self.client.post(
            "/api/doctors/upload-signature",
            files={"signature": ("sig.png", _png_bytes(size=(1000, 200)), "image/png")},
            headers=self.doctor_headers,
        ).json()["url"]
        logo = self.client.post(
            "/api/doctors/upload-clinic-logo",
            files={"clinicLogo": ("logo.jpg", _png_bytes(), "image/jpeg")},
            headers=self.doctor_headers,
        ).json()["url"]
        self.assertTrue(signature.endswith(".png"))
        self.assertTrue(logo.endswith(".png"))

        with PIL_Image.open(io.BytesIO(self.client.get(signature).content)) as img:
            self.assertEqual(img.width, 400)

    def test_upload_requires_file(self):
        response = self.client.post("/api/doctors/upload-signature", headers=self.doctor_headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "No file uploaded")

    def test_missing_image(self):
        response = self.client.get("/api/doctors/images/none.png")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["message"], "Image not found")


if __name__ == "__main__":
    unittest.main()
