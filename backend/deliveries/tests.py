import threading
import uuid
from datetime import timedelta

from django.core.management import call_command
from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework.test import APIClient
from unittest.mock import patch

from common.exceptions import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from workers.models import Worker
from .models import Offer, Task
from .store import task_store

ORDER = {
	'kind': 'order',
	'latitude': 6.5,
	'longitude': 3.3,
	'address': 'Yaba',
	'dropoff_latitude': 6.6,
	'dropoff_longitude': 3.35,
	'dropoff_address': 'Ikeja',
}


def make_worker(external_id, role='rider', lat=6.5, lon=3.3):
	return Worker.objects.create(
		external_id=external_id,
		role=role,
		full_name=f'Worker {external_id}',
		phone_number='08012345678',
		latitude=lat,
		longitude=lon,
		is_available=True,
	)


class TaskStoreTests(TestCase):
	def setUp(self):
		self.worker = make_worker('rider-1')
		self.task = task_store.create('cust-1', ORDER)

	def test_create_starts_pending(self):
		self.assertEqual(self.task.status, 'pending')
		self.assertEqual(self.task.worker_role, 'rider')
		self.assertIsNone(self.task.worker)

	def test_create_validates_payload(self):
		with self.assertRaises(ValidationError):
			task_store.create('cust-1', {**ORDER, 'dropoff_latitude': None})
		with self.assertRaises(ValidationError):
			task_store.create('cust-1', {'kind': 'errand', 'latitude': 6.5, 'longitude': 3.3})
		with self.assertRaises(ValidationError):
			task_store.create('cust-1', {**ORDER, 'kind': 'parcel'})

	def test_get_missing_or_malformed_id(self):
		with self.assertRaises(NotFoundError):
			task_store.get(uuid.uuid4())
		with self.assertRaises(NotFoundError):
			task_store.get('not-a-uuid')

	def test_set_status_is_compare_and_swap(self):
		task_store.set_status(self.task.pk, 'pending', 'offered')

		with self.assertRaises(ConflictError):
			task_store.set_status(self.task.pk, 'pending', 'offered')

		self.assertEqual(task_store.get(self.task.pk).status, 'offered')

	def test_transitions_outside_state_machine_are_rejected(self):
		with self.assertRaises(InvalidTransitionError):
			task_store.set_status(self.task.pk, 'pending', 'completed')
		with self.assertRaises(InvalidTransitionError):
			task_store.set_status(self.task.pk, 'canceled', 'pending')

	def test_worker_assigned_only_on_accept(self):
		task_store.set_status(self.task.pk, 'pending', 'offered')

		with self.assertRaises(InvalidTransitionError):
			task_store.set_status(self.task.pk, 'offered', 'accepted')

		task = task_store.assign_worker(self.task.pk, self.worker.pk)
		self.assertEqual(task.status, 'accepted')
		self.assertEqual(task.worker, self.worker)
		self.assertIsNotNone(task.accepted_at)

		task = task_store.set_status(task.pk, 'accepted', 'canceled', cancellation_reason='changed plans')
		self.assertIsNone(task.worker)
		self.assertEqual(task.cancellation_reason, 'changed plans')
		self.assertIsNotNone(task.canceled_at)

	def test_advance_round_claims_once(self):
		claimed = task_store.advance_round(self.task, 3000)
		stale = task_store.advance_round(self.task, 3000)

		self.assertEqual(claimed.negotiation_round, 1)
		self.assertEqual(claimed.search_radius, 3000)
		self.assertIsNone(stale)

	def test_stale_offering_finds_tasks_without_live_offer(self):
		now = timezone.now()
		task_store.set_status(self.task.pk, 'pending', 'offered')
		offer = Offer.objects.create(
			task=self.task, worker=self.worker, round=1, order=0,
			sent_at=now - timedelta(seconds=90), deadline=now + timedelta(seconds=30),
		)
		self.assertFalse(task_store.stale_offering(now).exists())

		Offer.objects.filter(pk=offer.pk).update(deadline=now - timedelta(seconds=30))
		self.assertEqual(list(task_store.stale_offering(now)), [self.task])


class TaskStoreRaceTests(TransactionTestCase):
	def test_concurrent_accepts_assign_exactly_one_worker(self):
		workers = [make_worker(f'rider-{i}') for i in range(6)]
		task = task_store.create('cust-1', ORDER)
		task_store.set_status(task.pk, 'pending', 'offered')

		barrier = threading.Barrier(len(workers))
		winners, losers = [], []

		def accept(worker):
			try:
				barrier.wait()
				task_store.assign_worker(task.pk, worker.pk)
				winners.append(worker.pk)
			except ConflictError:
				losers.append(worker.pk)
			finally:
				connection.close()

		threads = [threading.Thread(target=accept, args=(w,)) for w in workers]
		for thread in threads:
			thread.start()
		for thread in threads:
			thread.join()

		self.assertEqual(len(winners), 1)
		self.assertEqual(len(losers), len(workers) - 1)
		self.assertEqual(task_store.get(task.pk).worker_id, winners[0])


@patch('services.matching.negotiator.expire_offer_task')
@patch('services.matching.negotiator.notify_user')
class OfferMaintenanceCommandTests(TestCase):
	def setUp(self):
		self.rider_one = make_worker('rider-1', lat=6.509)
		self.rider_two = make_worker('rider-2', lat=6.518)
		self.task = task_store.create('cust-1', ORDER)
		task_store.set_status(self.task.pk, 'pending', 'offered')
		Task.objects.filter(pk=self.task.pk).update(negotiation_round=1, max_rounds=3, search_radius=3000)

		past = timezone.now() - timedelta(seconds=120)
		self.offer_one = Offer.objects.create(
			task=self.task, worker=self.rider_one, round=1, order=0,
			sent_at=past, deadline=past + timedelta(seconds=60),
		)
		self.offer_two = Offer.objects.create(task=self.task, worker=self.rider_two, round=1, order=1)

	def test_reconcile_offers_expires_and_dispatches(self, mock_notify, mock_timer):
		call_command('reconcile_offers')

		self.offer_one.refresh_from_db()
		self.offer_two.refresh_from_db()
		self.task.refresh_from_db()

		self.assertEqual(self.offer_one.status, 'expired')
		self.assertIsNotNone(self.offer_one.responded_at)
		self.assertIsNotNone(self.offer_two.sent_at)
		self.assertEqual(self.task.status, 'offered')
		mock_timer.apply_async.assert_called_once_with((self.offer_two.pk,), countdown=60.0)

	def test_cleanup_keeps_tasks_and_live_offers(self, mock_notify, mock_timer):
		Task.objects.filter(pk=self.task.pk).update(
			status='canceled',
			created_at=timezone.now() - timedelta(days=40),
		)
		Offer.objects.filter(pk=self.offer_one.pk).update(status='expired')

		call_command('cleanup_old_data', days=30, dry_run=True)
		self.assertEqual(Offer.objects.count(), 2)

		call_command('cleanup_old_data', days=30)
		self.assertEqual(list(Offer.objects.all()), [self.offer_two])
		self.assertTrue(Task.objects.filter(pk=self.task.pk).exists())


class TaskDetailViewTests(TestCase):
	def setUp(self):
		self.client = APIClient()
		self.worker = make_worker('rider-1')
		self.task = task_store.create('cust-1', ORDER)
		Offer.objects.create(task=self.task, worker=self.worker, round=1, order=0)

	def test_task_detail_includes_offers(self):
		response = self.client.get(f'/api/tasks/{self.task.pk}/')

		self.assertEqual(response.status_code, 200)
		data = response.json()
		self.assertEqual(data['status'], 'pending')
		self.assertEqual(data['offers'][0]['worker'], 'rider-1')

	def test_unknown_task_is_404(self):
		response = self.client.get(f'/api/tasks/{uuid.uuid4()}/')
		self.assertEqual(response.status_code, 404)
