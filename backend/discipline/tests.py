from datetime import date, datetime
from io import StringIO
from types import SimpleNamespace

from django.contrib.auth import get_user_model
from django.core.management import CommandError, call_command
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from academic.levels import ELEMENTARY, HIGH_SCHOOL, MIDDLE_SCHOOL
from academic.models import SchoolYear
from students.models import Student

from .alerts import ALERT_CRITICAL, ALERT_WARNING, Thresholds, alert_for_count, compute_student_alerts
from .cases import UNKNOWN_SECTION, UNKNOWN_STUDENT_NAME, derive_cases, expected_follow_up_dates, load_cases
from .models import AlertSetting, FollowUp, Infraction

User = get_user_model()


def _student(id, grade="Décimo A", section="", first_name="Est", last_name=""):
	return SimpleNamespace(
		id=id,
		grade=grade,
		section=section,
		first_name=first_name,
		last_name=last_name,
		full_name=f"{first_name} {last_name}".strip(),
	)


def _infraction(id, student_id, occurred, infraction_type="Tipo II", level=""):
	return SimpleNamespace(
		id=id,
		hash=f"phidias_{id}",
		student_id=student_id,
		infraction_type=infraction_type,
		occurred_at=occurred,
		number=None,
		description="",
		level=level,
		attended=False,
	)


def _follow_up(infraction_id, number):
	return SimpleNamespace(infraction_id=infraction_id, number=number)


class ExpectedFollowUpDatesTest(SimpleTestCase):
	def test_one_three_six_months(self):
		self.assertEqual(
			expected_follow_up_dates(date(2025, 1, 10)),
			[date(2025, 2, 10), date(2025, 4, 10), date(2025, 7, 10)],
		)

	def test_end_of_month_is_clamped(self):
		self.assertEqual(expected_follow_up_dates(date(2025, 1, 31))[0], date(2025, 2, 28))


class DeriveCasesTest(SimpleTestCase):
	def test_two_follow_ups_leave_number_three_pending(self):
		cases = derive_cases(
			[_infraction(1, 10, date(2025, 1, 10))],
			[_follow_up(1, 1), _follow_up(1, 2)],
			[_student(10)],
			today=date(2025, 5, 1),
		)
		case = cases[0]
		self.assertFalse(case.closed)
		self.assertEqual(case.pending, 1)
		self.assertEqual(case.completed, 2)
		self.assertEqual(case.next_number, 3)
		self.assertEqual(case.next_date, date(2025, 7, 10))
		self.assertFalse(case.overdue)

	def test_third_follow_up_closes_case(self):
		cases = derive_cases(
			[_infraction(1, 10, date(2025, 1, 10))],
			[_follow_up(1, 1), _follow_up(1, 2), _follow_up(1, 3)],
			[_student(10)],
			today=date(2025, 12, 1),
		)
		case = cases[0]
		self.assertTrue(case.closed)
		self.assertEqual(case.status, "closed")
		self.assertEqual(case.pending, 0)
		self.assertIsNone(case.next_number)
		self.assertIsNone(case.next_date)
		self.assertFalse(case.overdue)

	def test_out_of_order_follow_up_points_to_lowest_missing(self):
		cases = derive_cases(
			[_infraction(1, 10, date(2025, 1, 10))],
			[_follow_up(1, 2)],
			[_student(10)],
			today=date(2025, 1, 20),
		)
		self.assertEqual(cases[0].next_number, 1)
		self.assertEqual(cases[0].next_date, date(2025, 2, 10))

	def test_sort_overdue_then_open_then_closed(self):
		infractions = [
			_infraction(3, 10, date(2025, 1, 5)),
			_infraction(2, 10, date(2025, 3, 1)),
			_infraction(1, 10, date(2025, 1, 10)),
		]
		follow_ups = [_follow_up(3, 1), _follow_up(3, 2), _follow_up(3, 3)]

		cases = derive_cases(infractions, follow_ups, [_student(10)], today=date(2025, 3, 15))

		self.assertEqual([case.infraction_id for case in cases], [1, 2, 3])
		self.assertTrue(cases[0].overdue)
		self.assertFalse(cases[1].overdue)
		self.assertTrue(cases[2].closed)

	def test_closed_cases_most_recent_first(self):
		infractions = [_infraction(1, 10, date(2024, 1, 1)), _infraction(2, 10, date(2024, 6, 1))]
		follow_ups = [_follow_up(i, n) for i in (1, 2) for n in (1, 2, 3)]
		cases = derive_cases(infractions, follow_ups, [_student(10)], today=date(2025, 3, 1))
		self.assertEqual([case.infraction_id for case in cases], [2, 1])

	def test_missing_student_uses_placeholder(self):
		with self.assertLogs("discipline.cases", level="WARNING"):
			cases = derive_cases(
				[_infraction(1, 999, date(2025, 1, 10), level=MIDDLE_SCHOOL)],
				[],
				[],
				today=date(2025, 1, 11),
			)
		self.assertEqual(cases[0].student_name, UNKNOWN_STUDENT_NAME)
		self.assertEqual(cases[0].section, UNKNOWN_SECTION)
		self.assertEqual(cases[0].level, MIDDLE_SCHOOL)

	def test_only_type_ii_and_level_filter(self):
		infractions = [
			_infraction(1, 10, date(2025, 1, 10)),
			_infraction(2, 10, date(2025, 1, 10), infraction_type="Tipo I"),
			_infraction(3, 11, date(2025, 1, 10)),
		]
		students = [_student(10, grade="Décimo A"), _student(11, grade="Tercero")]

		cases = derive_cases(infractions, [], students, HIGH_SCHOOL, today=date(2025, 1, 11))

		self.assertEqual([case.infraction_id for case in cases], [1])
		self.assertEqual(cases[0].section, HIGH_SCHOOL)
		self.assertEqual(cases[0].grade, "Décimo A")

	def test_datetime_occurrence_uses_local_date(self):
		moment = timezone.make_aware(datetime(2025, 1, 10, 12, 0))
		cases = derive_cases([_infraction(1, 10, moment)], [], [_student(10)], today=date(2025, 1, 11))
		self.assertEqual(cases[0].infraction_date, date(2025, 1, 10))


class StudentAlertsTest(SimpleTestCase):
	def test_alert_for_count(self):
		thresholds = Thresholds(primary=3, secondary=5)
		self.assertIsNone(alert_for_count(2, thresholds))
		self.assertEqual(alert_for_count(3, thresholds), ALERT_WARNING)
		self.assertEqual(alert_for_count(5, thresholds), ALERT_CRITICAL)

	def test_counts_unattended_type_i(self):
		students = [_student(1, grade="Tercero", first_name="Ana"), _student(2, grade="Cuarto", first_name="Beto")]
		infractions = [_infraction(i, 1, date(2025, 1, 1), infraction_type="Tipo I") for i in range(5)]
		infractions += [_infraction(10 + i, 2, date(2025, 1, 1), infraction_type="Tipo I") for i in range(3)]
		attended = _infraction(20, 2, date(2025, 1, 1), infraction_type="Tipo I")
		attended.attended = True
		infractions.append(attended)
		infractions.append(_infraction(21, 2, date(2025, 1, 1)))

		alerts = compute_student_alerts(students, infractions, {ELEMENTARY: Thresholds(3, 5)})

		self.assertEqual([(a.student_id, a.alert) for a in alerts], [(1, ALERT_CRITICAL), (2, ALERT_WARNING)])
		self.assertEqual(alerts[1].type_i_count, 3)
		self.assertEqual(alerts[1].type_ii_count, 1)

	def test_level_without_settings_has_no_alert(self):
		students = [_student(1, grade="Sexto")]
		infractions = [_infraction(i, 1, date(2025, 1, 1), infraction_type="Tipo I") for i in range(10)]
		with self.assertLogs("discipline.alerts", level="WARNING"):
			alerts = compute_student_alerts(students, infractions, {ELEMENTARY: Thresholds(1, 2)})
		self.assertEqual(alerts, [])


class DisciplineFixtureMixin:
	def create_fixture(self):
		self.year = SchoolYear.objects.create(
			name="2025-2026", start_date=date(2025, 8, 1), end_date=date(2026, 6, 30), is_active=True
		)
		self.high_student = Student.objects.create(
			school_year=self.year, code="5001", first_name="Laura", last_name="Gómez", grade="Décimo A"
		)
		self.elementary_student = Student.objects.create(
			school_year=self.year, code="5002", first_name="Pablo", last_name="Ruiz", grade="Tercero"
		)
		self.type_ii = self.create_infraction("phidias_1", self.high_student, Infraction.Type.TYPE_II, HIGH_SCHOOL)
		self.type_i = self.create_infraction("phidias_2", self.high_student, Infraction.Type.TYPE_I, HIGH_SCHOOL)
		self.elementary_type_ii = self.create_infraction(
			"phidias_3", self.elementary_student, Infraction.Type.TYPE_II, ELEMENTARY
		)

	def create_infraction(self, hash, student, infraction_type, level, occurred=None):
		return Infraction.objects.create(
			hash=hash,
			student=student,
			student_code=student.code,
			school_year=self.year,
			infraction_type=infraction_type,
			occurred_at=occurred or timezone.make_aware(datetime(2025, 9, 1, 10, 0)),
			level=level,
			section=student.grade,
		)


class LoadCasesTest(DisciplineFixtureMixin, TestCase):
	def setUp(self):
		self.create_fixture()

	def test_load_cases_reads_active_year(self):
		FollowUp.objects.create(infraction=self.type_ii, number=1, date=date(2025, 10, 1))
		cases = load_cases(today=date(2025, 10, 15))
		self.assertEqual({case.infraction_hash for case in cases}, {"phidias_1", "phidias_3"})
		high_case = next(case for case in cases if case.infraction_hash == "phidias_1")
		self.assertEqual(high_case.student_name, "Laura Gómez")
		self.assertEqual(high_case.next_number, 2)

	def test_mark_attended_is_idempotent(self):
		self.type_i.mark_attended()
		first_at = self.type_i.attended_at
		self.type_i.mark_attended()
		self.type_i.refresh_from_db()
		self.assertTrue(self.type_i.attended)
		self.assertEqual(self.type_i.attended_at, first_at)

	def test_deadlines_command_lists_overdue_cases(self):
		out = StringIO()
		call_command("report_follow_up_deadlines", "--level", "high", stdout=out)
		output = out.getvalue()
		self.assertIn("vencidos=1", output)
		self.assertIn("[VENCIDO] Laura Gómez (Décimo A) falta phidias_1: seguimiento 1", output)
		self.assertNotIn("phidias_3", output)

	def test_deadlines_command_rejects_unknown_level(self):
		with self.assertRaises(CommandError):
			call_command("report_follow_up_deadlines", "--level", "kinder", stdout=StringIO())


class DisciplineAPITest(DisciplineFixtureMixin, APITestCase):
	def setUp(self):
		self.create_fixture()
		self.admin = User.objects.create_user(username="rector", password="pw", role=User.ROLE_ADMIN)
		self.high_coordinator = User.objects.create_user(
			username="coord_media", password="pw", role=User.ROLE_HIGH_SCHOOL_COORDINATOR
		)
		self.teacher = User.objects.create_user(username="docente", password="pw", role=User.ROLE_TEACHER)

	def test_attend_infraction(self):
		self.client.force_authenticate(user=self.admin)
		res = self.client.post(f"/api/discipline/infractions/{self.type_i.hash}/attend/")
		self.assertEqual(res.status_code, status.HTTP_200_OK, res.data)
		self.assertTrue(res.data["attended"])
		self.type_i.refresh_from_db()
		self.assertEqual(self.type_i.attended_by_id, self.admin.id)

	def test_teacher_cannot_attend(self):
		self.client.force_authenticate(user=self.teacher)
		res = self.client.post(f"/api/discipline/infractions/{self.type_i.hash}/attend/")
		self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

	def test_coordinator_sees_only_own_level(self):
		self.client.force_authenticate(user=self.high_coordinator)
		res = self.client.get("/api/discipline/infractions/")
		self.assertEqual(res.status_code, status.HTTP_200_OK)
		self.assertEqual({row["hash"] for row in res.data}, {"phidias_1", "phidias_2"})

	def test_observations(self):
		self.client.force_authenticate(user=self.admin)
		res = self.client.patch(
			f"/api/discipline/infractions/{self.type_ii.hash}/observations/",
			{"observations": "Se citó al acudiente"},
			format="json",
		)
		self.assertEqual(res.status_code, status.HTTP_200_OK, res.data)
		self.assertEqual(res.data["observations"], "Se citó al acudiente")
		self.assertEqual(res.data["observations_author"], "rector")

	def test_create_follow_up(self):
		self.client.force_authenticate(user=self.admin)
		res = self.client.post(
			"/api/discipline/follow-ups/",
			{"infraction": self.type_ii.hash, "number": 1, "date": "2025-10-01", "details": "Reunión con familia"},
			format="json",
		)
		self.assertEqual(res.status_code, status.HTTP_201_CREATED, res.data)
		follow_up = FollowUp.objects.get(id=res.data["id"])
		self.assertEqual(follow_up.created_by_id, self.admin.id)
		self.assertEqual(follow_up.author, "rector")

	def test_follow_up_rejects_type_i_and_duplicates(self):
		self.client.force_authenticate(user=self.admin)
		res = self.client.post(
			"/api/discipline/follow-ups/",
			{"infraction": self.type_i.hash, "number": 1, "date": "2025-10-01"},
			format="json",
		)
		self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
		self.assertIn("infraction", res.data)

		FollowUp.objects.create(infraction=self.type_ii, number=2, date=date(2025, 10, 1))
		res = self.client.post(
			"/api/discipline/follow-ups/",
			{"infraction": self.type_ii.hash, "number": 2, "date": "2025-11-01"},
			format="json",
		)
		self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

		res = self.client.post(
			"/api/discipline/follow-ups/",
			{"infraction": self.type_ii.hash, "number": 4, "date": "2025-11-01"},
			format="json",
		)
		self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

	def test_cases_by_level_and_status(self):
		for number in (1, 2, 3):
			FollowUp.objects.create(infraction=self.elementary_type_ii, number=number, date=date(2025, 10, number))

		self.client.force_authenticate(user=self.admin)
		res = self.client.get("/api/discipline/cases/?status=open")
		self.assertEqual(res.status_code, status.HTTP_200_OK)
		self.assertEqual([row["infraction_hash"] for row in res.data], ["phidias_1"])

		res = self.client.get("/api/discipline/cases/?level=elementary")
		self.assertEqual([row["status"] for row in res.data], ["closed"])

		res = self.client.get("/api/discipline/cases/?level=kinder")
		self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

	def test_coordinator_cannot_request_other_level(self):
		self.client.force_authenticate(user=self.high_coordinator)
		res = self.client.get("/api/discipline/cases/?level=elementary")
		self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

		res = self.client.get("/api/discipline/cases/")
		self.assertEqual([row["infraction_hash"] for row in res.data], ["phidias_1"])

	def test_alerts_need_settings(self):
		self.client.force_authenticate(user=self.admin)
		res = self.client.get("/api/discipline/alerts/")
		self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

		AlertSetting.objects.create(level=HIGH_SCHOOL, primary_threshold=1, secondary_threshold=2)
		res = self.client.get("/api/discipline/alerts/")
		self.assertEqual(res.status_code, status.HTTP_200_OK)
		self.assertEqual(len(res.data), 1)
		self.assertEqual(res.data[0]["student_id"], self.high_student.id)
		self.assertEqual(res.data[0]["alert"], ALERT_WARNING)

	def test_alert_settings_admin_only(self):
		self.client.force_authenticate(user=self.high_coordinator)
		res = self.client.post(
			"/api/discipline/alert-settings/",
			{"level": HIGH_SCHOOL, "primary_threshold": 2, "secondary_threshold": 4},
			format="json",
		)
		self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

		self.client.force_authenticate(user=self.admin)
		res = self.client.post(
			"/api/discipline/alert-settings/",
			{"level": HIGH_SCHOOL, "primary_threshold": 5, "secondary_threshold": 4},
			format="json",
		)
		self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
