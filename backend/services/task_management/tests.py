from django.test import TestCase
from django.utils import timezone
from unittest.mock import patch

from common.exceptions import ConflictError, NotFoundError, ValidationError
from deliveries.models import Offer, Task
from deliveries.store import task_store
from services.matching import accept_offer, expire_offer, start_negotiation
from workers.models import Worker
from workers.services import set_availability
from . import cancel_task, complete_task, rate_task, start_task


def make_worker(external_id, lat=6.509, role='rider', available=True, online=True):
	return Worker.objects.create(
		external_id=external_id,
		role=role,
		full_name=f'Worker {external_id}',
		phone_number='08012345678',
		latitude=lat,
		longitude=3.3,
		is_online=online,
		is_available=available,
	)


def make_task(status='pending', worker=None, customer_id='cust-1'):
	return Task.objects.create(
		kind='order',
		customer_id=customer_id,
		latitude=6.5,
		longitude=3.3,
		dropoff_latitude=6.6,
		dropoff_longitude=3.35,
		status=status,
		worker=worker,
		accepted_at=timezone.now() if worker else None,
	)


@patch('services.task_management.task_lifecycle.notify_user')
class WorkerLifecycleTests(TestCase):
	def setUp(self):
		self.rider = make_worker('rider-1', available=False)
		self.task = make_task('accepted', self.rider)

	def test_start_then_complete_frees_rider(self, mock_notify):
		started = start_task(self.task.pk, self.rider)
		self.assertEqual(started.task.status, 'in_progress')
		self.assertIsNotNone(started.task.started_at)

		completed = complete_task(self.task.pk, self.rider)
		self.assertEqual(completed.task.status, 'completed')
		self.assertEqual(completed.task.worker, self.rider)

		self.rider.refresh_from_db()
		self.assertTrue(self.rider.is_available)
		self.assertEqual(mock_notify.call_args.args[0], 'cust-1')

	def test_complete_straight_from_accepted(self, mock_notify):
		result = complete_task(self.task.pk, self.rider)

		self.assertEqual(result.task.status, 'completed')
		self.assertIsNotNone(result.task.started_at)

	def test_other_worker_cannot_progress_task(self, mock_notify):
		other = make_worker('rider-2')

		with self.assertRaises(NotFoundError):
			start_task(self.task.pk, other)
		with self.assertRaises(NotFoundError):
			complete_task(self.task.pk, other)

	def test_cannot_complete_twice(self, mock_notify):
		complete_task(self.task.pk, self.rider)

		with self.assertRaises(ConflictError):
			complete_task(self.task.pk, self.rider)

	def test_rider_who_went_offline_stays_offline_after_completing(self, mock_notify):
		set_availability(self.rider, False)

		complete_task(self.task.pk, self.rider)

		self.rider.refresh_from_db()
		self.assertFalse(self.rider.is_available)
		self.assertFalse(self.rider.is_online)


@patch('services.task_management.task_lifecycle.notify_user')
class CancelTaskTests(TestCase):
	def test_cancel_assigned_task_frees_rider(self, mock_notify):
		rider = make_worker('rider-1', available=False)
		task = make_task('in_progress', rider)

		result = cancel_task(task.pk, 'cust-1', 'changed my mind')

		self.assertEqual(result.task.status, 'canceled')
		self.assertIsNone(result.task.worker)
		self.assertEqual(result.task.cancellation_reason, 'changed my mind')
		rider.refresh_from_db()
		self.assertTrue(rider.is_available)
		mock_notify.assert_called_once()
		self.assertEqual(mock_notify.call_args.args[0], 'rider-1')

	def test_only_owner_can_cancel(self, mock_notify):
		task = make_task()

		with self.assertRaises(NotFoundError):
			cancel_task(task.pk, 'cust-2')

	def test_cancel_leaves_offline_rider_offline(self, mock_notify):
		rider = make_worker('rider-1', available=False, online=False)
		task = make_task('accepted', rider)

		cancel_task(task.pk, 'cust-1')

		rider.refresh_from_db()
		self.assertFalse(rider.is_available)
		self.assertNotIn('available for new tasks', mock_notify.call_args.args[1])

	def test_cannot_cancel_finished_task(self, mock_notify):
		task = make_task('completed', make_worker('rider-1'))

		with self.assertRaises(ConflictError):
			cancel_task(task.pk, 'cust-1')

	@patch('services.matching.negotiator.expire_offer_task')
	@patch('services.matching.negotiator.notify_user')
	def test_cancel_withdraws_outstanding_offers(self, mock_offer_notify, mock_timer, mock_notify):
		rider_a = make_worker('rider-a', lat=6.509)
		make_worker('rider-b', lat=6.518)
		task = task_store.create('cust-1', {
			'kind': 'order',
			'latitude': 6.5,
			'longitude': 3.3,
			'dropoff_latitude': 6.6,
			'dropoff_longitude': 3.35,
		})
		start_negotiation(task)
		offer_a = Offer.objects.get(task=task, worker=rider_a)

		result = cancel_task(task.pk, 'cust-1')

		self.assertEqual(result.extra['withdrawn_offers'], 1)
		self.assertFalse(Offer.objects.filter(task=task, status='pending').exists())
		self.assertEqual(mock_notify.call_args.args[0], 'rider-a')

		# Timers and answers arriving after the cancel change nothing
		self.assertFalse(expire_offer(offer_a.pk))
		late = accept_offer(task.pk, rider_a)
		self.assertFalse(late.success)
		self.assertFalse(late.superseded)
		self.assertEqual(late.extra['reason'], 'canceled')
		self.assertEqual(task_store.get(task.pk).status, 'canceled')


@patch('services.task_management.task_lifecycle.notify_user')
class RateTaskTests(TestCase):
	def setUp(self):
		self.rider = make_worker('rider-1')
		self.task = make_task('completed', self.rider)

	def test_rating_updates_worker_once(self, mock_notify):
		rate_task(self.task.pk, 'cust-1', '4')

		self.rider.refresh_from_db()
		self.assertEqual(self.rider.rating, 4.0)
		self.assertEqual(task_store.get(self.task.pk).customer_rating, 4)

		with self.assertRaises(ConflictError):
			rate_task(self.task.pk, 'cust-1', 5)

	def test_rating_must_be_one_to_five(self, mock_notify):
		for score in (0, 6, 'great'):
			with self.assertRaises(ValidationError):
				rate_task(self.task.pk, 'cust-1', score)

	def test_only_completed_tasks_are_rated(self, mock_notify):
		task = make_task('accepted', make_worker('rider-2'))

		with self.assertRaises(ConflictError):
			rate_task(task.pk, 'cust-1', 5)
