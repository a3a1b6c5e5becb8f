from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APIClient

from common.exceptions import NotFoundError, ValidationError, WorkerNotAvailableError
from common.utils import bounding_box, calculate_distance, is_valid_coordinate
from deliveries.models import Task
from .geo_index import find_candidates
from .models import Worker
from .services import (
	claim_availability,
	get_worker,
	record_rating,
	register_worker,
	release_availability,
	set_availability,
	update_location,
)

PICKUP = (6.5, 3.3)
# One kilometre of latitude in degrees
KM = 1000 / 111194.93


def make_worker(external_id, lat=None, lon=None, role='rider', rating=0.0, available=True):
	return Worker.objects.create(
		external_id=external_id,
		role=role,
		full_name=f'Worker {external_id}',
		phone_number='08012345678',
		latitude=lat,
		longitude=lon,
		rating=rating,
		is_online=available,
		is_available=available,
	)


def assign_task(worker, status='accepted'):
	return Task.objects.create(
		kind='order' if worker.role == 'rider' else 'errand',
		customer_id='cust-1',
		latitude=PICKUP[0],
		longitude=PICKUP[1],
		status=status,
		worker=worker,
	)


class GeoUtilsTests(SimpleTestCase):
	def test_distance_of_one_kilometre_north(self):
		distance = calculate_distance(6.5, 3.3, 6.5 + KM, 3.3)
		self.assertAlmostEqual(distance, 1000, delta=1)

	def test_identical_points_are_zero_apart(self):
		self.assertEqual(calculate_distance(6.5, 3.3, 6.5, 3.3), 0)

	def test_bounding_box_contains_radius(self):
		min_lat, max_lat, min_lon, max_lon = bounding_box(6.5, 3.3, 3000)
		self.assertLess(min_lat, 6.5 - 3 * KM + 1e-9)
		self.assertGreater(max_lat, 6.5 + 3 * KM - 1e-9)
		self.assertLess(min_lon, 3.3)
		self.assertGreater(max_lon, 3.3)

	def test_bounding_box_drops_longitude_across_antimeridian(self):
		_, _, min_lon, max_lon = bounding_box(0.0, 179.99, 5000)
		self.assertIsNone(min_lon)
		self.assertIsNone(max_lon)

	def test_coordinate_ranges(self):
		self.assertTrue(is_valid_coordinate(-90, 180))
		self.assertFalse(is_valid_coordinate(91, 0))
		self.assertFalse(is_valid_coordinate(0, -181))


class GeoIndexTests(TestCase):
	def test_orders_nearest_first(self):
		far = make_worker('far', PICKUP[0] + 2 * KM, PICKUP[1])
		near = make_worker('near', PICKUP[0] + KM, PICKUP[1])

		candidates = find_candidates(PICKUP, 'rider', max_distance=3000, limit=5)

		self.assertEqual([c.worker for c in candidates], [near, far])
		self.assertAlmostEqual(candidates[0].distance, 1000, delta=1)

	def test_ties_break_by_rating_then_external_id(self):
		lat = PICKUP[0] + KM
		make_worker('b-low', lat, PICKUP[1], rating=4.0)
		make_worker('c-high', lat, PICKUP[1], rating=4.8)
		make_worker('a-low', lat, PICKUP[1], rating=4.0)

		first = [c.worker.external_id for c in find_candidates(PICKUP, 'rider', 3000, 5)]
		second = [c.worker.external_id for c in find_candidates(PICKUP, 'rider', 3000, 5)]

		self.assertEqual(first, ['c-high', 'a-low', 'b-low'])
		self.assertEqual(first, second)

	def test_only_available_located_workers_of_the_role(self):
		make_worker('offline', PICKUP[0] + KM, PICKUP[1], available=False)
		make_worker('errander', PICKUP[0] + KM, PICKUP[1], role='errander')
		make_worker('nowhere')
		make_worker('too-far', PICKUP[0] + 4 * KM, PICKUP[1])
		match = make_worker('match', PICKUP[0] + KM, PICKUP[1])

		candidates = find_candidates(PICKUP, 'rider', max_distance=3000, limit=5)

		self.assertEqual([c.worker for c in candidates], [match])

	def test_limit_and_exclusions(self):
		first = make_worker('w1', PICKUP[0] + 0.5 * KM, PICKUP[1])
		second = make_worker('w2', PICKUP[0] + 1.0 * KM, PICKUP[1])
		make_worker('w3', PICKUP[0] + 1.5 * KM, PICKUP[1])

		limited = find_candidates(PICKUP, 'rider', 3000, limit=2)
		excluded = find_candidates(PICKUP, 'rider', 3000, limit=2, exclude_ids=[first.pk])

		self.assertEqual([c.worker for c in limited], [first, second])
		self.assertEqual([c.worker.external_id for c in excluded], ['w2', 'w3'])

	def test_location_update_is_visible_to_next_query(self):
		mover = make_worker('mover', PICKUP[0] + 2 * KM, PICKUP[1])
		make_worker('static', PICKUP[0] + KM, PICKUP[1])

		update_location(mover, PICKUP[0] + 0.2 * KM, PICKUP[1])
		candidates = find_candidates(PICKUP, 'rider', 3000, 5)

		self.assertEqual(candidates[0].worker.external_id, 'mover')


class WorkerServiceTests(TestCase):
	details = {
		'full_name': 'Ada Obi',
		'phone_number': '+2348012345678',
		'bank_name': 'GTBank',
		'account_number': '0123456789',
		'identity_number': '12345678901',
		'photo_file_id': 'file-123',
	}

	def test_registered_worker_starts_unavailable(self):
		worker = register_worker('chat-1', 'errander', self.details)

		self.assertEqual(worker.role, 'errander')
		self.assertFalse(worker.is_available)
		self.assertEqual(get_worker('chat-1'), worker)

	def test_register_twice_is_rejected(self):
		register_worker('chat-1', 'rider', self.details)

		with self.assertRaises(ValidationError):
			register_worker('chat-1', 'rider', self.details)

	def test_unknown_worker(self):
		with self.assertRaises(NotFoundError):
			get_worker('nobody')

	def test_going_online_needs_a_location(self):
		worker = make_worker('w', available=False)

		with self.assertRaises(ValidationError):
			set_availability(worker, True)

		update_location(worker, 6.5, 3.3)
		set_availability(worker, True)
		worker.refresh_from_db()
		self.assertTrue(worker.is_available)

	def test_invalid_location_rejected(self):
		worker = make_worker('w')

		with self.assertRaises(ValidationError):
			update_location(worker, 95, 3.3)

	def test_claim_availability_only_once(self):
		worker = make_worker('w', 6.5, 3.3)

		self.assertTrue(claim_availability(worker.pk))
		self.assertFalse(claim_availability(worker.pk))

	def test_busy_rider_cannot_go_online(self):
		rider = make_worker('rider-busy', 6.5, 3.3)
		claim_availability(rider.pk)
		assign_task(rider, 'in_progress')

		with self.assertRaises(WorkerNotAvailableError):
			set_availability(rider, True)

		rider.refresh_from_db()
		self.assertFalse(rider.is_available)

	def test_errander_with_errands_can_go_online(self):
		errander = make_worker('errander-1', 6.5, 3.3, role='errander', available=False)
		assign_task(errander)

		set_availability(errander, True)

		errander.refresh_from_db()
		self.assertTrue(errander.is_available)

	def test_release_restores_only_online_workers(self):
		online = make_worker('online', 6.5, 3.3)
		offline = make_worker('offline', 6.5, 3.3)
		claim_availability(online.pk)
		claim_availability(offline.pk)
		# Went /offline while holding the task
		set_availability(Worker.objects.get(pk=offline.pk), False)

		self.assertTrue(release_availability(online.pk))
		self.assertFalse(release_availability(offline.pk))

		online.refresh_from_db()
		offline.refresh_from_db()
		self.assertTrue(online.is_available)
		self.assertFalse(offline.is_available)
		self.assertFalse(offline.is_online)

	def test_rating_running_average(self):
		worker = make_worker('w')

		record_rating(worker.pk, 4)
		record_rating(worker.pk, 2)

		worker.refresh_from_db()
		self.assertEqual(worker.rating_count, 2)
		self.assertAlmostEqual(worker.rating, 3.0)


class WorkerViewTests(TestCase):
	def setUp(self):
		self.client = APIClient()
		self.worker = make_worker('chat-9', available=False)

	def test_status_requires_location_first(self):
		response = self.client.put('/api/workers/chat-9/status/', {'status': 'available'}, format='json')
		self.assertEqual(response.status_code, 400)

		response = self.client.post('/api/workers/chat-9/location/', {'latitude': 6.5, 'longitude': 3.3}, format='json')
		self.assertEqual(response.status_code, 200)

		response = self.client.put('/api/workers/chat-9/status/', {'status': 'available'}, format='json')
		self.assertEqual(response.status_code, 200)

		self.worker.refresh_from_db()
		self.assertTrue(self.worker.is_available)
		self.assertEqual(self.worker.latitude, 6.5)

	def test_unknown_worker_is_404(self):
		response = self.client.get('/api/workers/missing/')
		self.assertEqual(response.status_code, 404)

	def test_busy_rider_status_reads_busy_and_cannot_go_online(self):
		rider = make_worker('rider-busy', 6.5, 3.3)
		claim_availability(rider.pk)
		assign_task(rider)

		response = self.client.get('/api/workers/rider-busy/status/')
		self.assertEqual(response.json()['status'], 'busy')

		response = self.client.put('/api/workers/rider-busy/status/', {'status': 'available'}, format='json')
		self.assertEqual(response.status_code, 409)

	@override_settings(BOT_WEBHOOK_SECRET='s3cret')
	def test_secret_required_when_configured(self):
		response = self.client.get('/api/workers/chat-9/')
		self.assertEqual(response.status_code, 403)

		response = self.client.get('/api/workers/chat-9/', HTTP_X_BOT_SECRET='s3cret')
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.json()['external_id'], 'chat-9')
