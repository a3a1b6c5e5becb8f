import threading
from datetime import timedelta

from django.db import connection
from django.test import TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from unittest.mock import patch

from common.exceptions import (
	ConflictError,
	ExpiredError,
	NotFoundError,
	OfferNotFoundError,
	WorkerNotAvailableError,
)
from customers.models import Customer
from deliveries.models import Offer, Task
from deliveries.store import task_store
from workers.models import Worker
from . import (
	accept_offer,
	decline_offer,
	expire_offer,
	reconcile_stale_offering,
	retry_negotiation,
	start_negotiation,
)

PICKUP = (6.5, 3.3)
# One kilometre of latitude in degrees
KM = 1000 / 111194.93


def make_worker(external_id, km_north, role='rider', available=True, rating=0.0):
	return Worker.objects.create(
		external_id=external_id,
		role=role,
		full_name=f'Worker {external_id}',
		phone_number='08012345678',
		latitude=PICKUP[0] + km_north * KM,
		longitude=PICKUP[1],
		is_online=available,
		is_available=available,
		rating=rating,
	)


def make_order(customer_id='cust-1'):
	return task_store.create(customer_id, {
		'kind': 'order',
		'latitude': PICKUP[0],
		'longitude': PICKUP[1],
		'address': 'Yaba',
		'dropoff_latitude': 6.6,
		'dropoff_longitude': 3.35,
		'dropoff_address': 'Ikeja',
	})


def make_errand(customer_id='cust-1'):
	return task_store.create(customer_id, {
		'kind': 'errand',
		'latitude': PICKUP[0],
		'longitude': PICKUP[1],
		'description': 'Buy groceries from the market',
	})


def notified(mock_notify, event):
	"""Users who received a notification with this event name."""
	return [c.args[0] for c in mock_notify.call_args_list if c.args[2].get('event') == event]


@patch('services.matching.negotiator.expire_offer_task')
@patch('services.matching.negotiator.notify_user')
class NegotiationScenarioTests(TestCase):
	def setUp(self):
		self.rider_a = make_worker('rider-a', 1)
		self.rider_b = make_worker('rider-b', 3)

	def test_nearer_rider_declines_then_farther_rider_accepts(self, mock_notify, mock_timer):
		task = make_order()

		result = start_negotiation(task)

		self.assertEqual(result.outcome, 'offering')
		self.assertEqual(result.task.status, 'offered')
		self.assertEqual(notified(mock_notify, 'task_offer'), ['rider-a'])

		decline_offer(task.pk, self.rider_a)
		self.assertEqual(notified(mock_notify, 'task_offer'), ['rider-a', 'rider-b'])

		accepted = accept_offer(task.pk, self.rider_b)

		self.assertTrue(accepted.success)
		task = task_store.get(task.pk)
		self.assertEqual(task.status, 'accepted')
		self.assertEqual(task.worker, self.rider_b)
		self.assertEqual(Offer.objects.get(task=task, worker=self.rider_a).status, 'declined')
		self.assertEqual(notified(mock_notify, 'task_accepted'), ['cust-1'])

		self.rider_b.refresh_from_db()
		self.assertFalse(self.rider_b.is_available)

	def test_each_sent_offer_schedules_its_timer(self, mock_notify, mock_timer):
		task = make_order()
		start_negotiation(task)

		offer = Offer.objects.get(task=task, worker=self.rider_a)
		mock_timer.apply_async.assert_called_once_with((offer.pk,), countdown=60.0)
		self.assertAlmostEqual((offer.deadline - offer.sent_at).total_seconds(), 60)

	def test_expired_offer_moves_to_next_candidate(self, mock_notify, mock_timer):
		task = make_order()
		start_negotiation(task)
		offer = Offer.objects.get(task=task, worker=self.rider_a)

		self.assertTrue(expire_offer(offer.pk))
		self.assertFalse(expire_offer(offer.pk))

		offer.refresh_from_db()
		self.assertEqual(offer.status, 'expired')
		self.assertEqual(notified(mock_notify, 'task_offer'), ['rider-a', 'rider-b'])
		self.assertEqual(notified(mock_notify, 'offer_expired'), ['rider-a'])

	def test_accept_after_deadline_is_expired(self, mock_notify, mock_timer):
		task = make_order()
		start_negotiation(task)
		Offer.objects.filter(task=task, worker=self.rider_a).update(deadline=timezone.now() - timedelta(seconds=1))

		with self.assertRaises(ExpiredError):
			accept_offer(task.pk, self.rider_a)

		self.assertEqual(task_store.get(task.pk).status, 'offered')
		self.assertEqual(notified(mock_notify, 'task_offer'), ['rider-a', 'rider-b'])

	def test_worker_without_an_offer_cannot_accept(self, mock_notify, mock_timer):
		task = make_order()
		start_negotiation(task)

		with self.assertRaises(OfferNotFoundError):
			accept_offer(task.pk, self.rider_b)
		with self.assertRaises(OfferNotFoundError):
			decline_offer(task.pk, self.rider_b)

	def test_busy_rider_cannot_accept(self, mock_notify, mock_timer):
		task = make_order()
		start_negotiation(task)
		Worker.objects.filter(pk=self.rider_a.pk).update(is_available=False)

		with self.assertRaises(WorkerNotAvailableError):
			accept_offer(task.pk, self.rider_a)
		self.assertEqual(task_store.get(task.pk).status, 'offered')

	def test_accepting_worker_gets_customer_contact(self, mock_notify, mock_timer):
		Customer.objects.create(
			external_id='cust-1',
			full_name='Bola Ade',
			email='bola@example.com',
			phone_number='+2348098765432',
		)
		task = make_order()
		start_negotiation(task)

		result = accept_offer(task.pk, self.rider_a)

		self.assertIn('+2348098765432', result.message)
		self.assertEqual(result.extra['customer']['name'], 'Bola Ade')

	def test_accept_racing_a_cancel_is_told_of_the_cancel(self, mock_notify, mock_timer):
		task = make_order()
		start_negotiation(task)

		def cancel_first(task_id, worker_id):
			Task.objects.filter(pk=task_id).update(status='canceled', worker=None)
			raise ConflictError("Task is no longer offered")

		with patch.object(task_store, 'assign_worker', side_effect=cancel_first):
			result = accept_offer(task.pk, self.rider_a)

		self.assertFalse(result.success)
		self.assertFalse(result.superseded)
		self.assertEqual(result.extra['reason'], 'canceled')
		self.assertIn('canceled', result.message)
		self.assertEqual(Offer.objects.get(task=task, worker=self.rider_a).status, 'expired')
		self.rider_a.refresh_from_db()
		self.assertTrue(self.rider_a.is_available)

	def test_late_responses_after_resolution_are_no_ops(self, mock_notify, mock_timer):
		task = make_order()
		start_negotiation(task)
		offer_a = Offer.objects.get(task=task, worker=self.rider_a)
		expire_offer(offer_a.pk)
		accept_offer(task.pk, self.rider_b)

		late = accept_offer(task.pk, self.rider_a)
		self.assertFalse(late.success)
		self.assertTrue(late.superseded)

		offer_b = Offer.objects.get(task=task, worker=self.rider_b)
		self.assertFalse(expire_offer(offer_b.pk))
		with self.assertRaises(OfferNotFoundError):
			decline_offer(task.pk, self.rider_b)

		task = task_store.get(task.pk)
		self.assertEqual(task.status, 'accepted')
		self.assertEqual(task.worker, self.rider_b)


@patch('services.matching.negotiator.expire_offer_task')
@patch('services.matching.negotiator.notify_user')
class NegotiationRoundTests(TestCase):
	def test_no_candidates_exhausts_after_all_rounds(self, mock_notify, mock_timer):
		task = make_order()

		result = start_negotiation(task)

		self.assertEqual(result.outcome, 'exhausted')
		task = task_store.get(task.pk)
		self.assertEqual(task.status, 'exhausted')
		self.assertEqual(task.negotiation_round, 3)
		self.assertEqual(task.search_radius, 12000)
		self.assertEqual(notified(mock_notify, 'task_exhausted'), ['cust-1'])
		mock_timer.apply_async.assert_not_called()

	def test_radius_expands_between_rounds(self, mock_notify, mock_timer):
		make_worker('rider-far', 5)
		task = make_order()

		start_negotiation(task)

		task = task_store.get(task.pk)
		self.assertEqual(task.status, 'offered')
		self.assertEqual(task.negotiation_round, 2)
		self.assertEqual(task.search_radius, 6000)
		self.assertEqual(notified(mock_notify, 'task_offer'), ['rider-far'])

	def test_errands_go_to_erranders_only(self, mock_notify, mock_timer):
		make_worker('rider-near', 0.5)
		errander = make_worker('errander-1', 1, role='errander')
		task = make_errand()

		start_negotiation(task)
		result = accept_offer(task.pk, errander)

		self.assertTrue(result.success)
		self.assertEqual(notified(mock_notify, 'task_offer'), ['errander-1'])
		errander.refresh_from_db()
		# Erranders may hold several errands at once
		self.assertTrue(errander.is_available)

	def test_never_offers_to_unavailable_workers(self, mock_notify, mock_timer):
		make_worker('rider-offline', 0.5, available=False)
		rider_a = make_worker('rider-a', 1)
		rider_b = make_worker('rider-b', 2)
		task = make_order()

		start_negotiation(task)
		Worker.objects.filter(pk=rider_b.pk).update(is_available=False)
		decline_offer(task.pk, rider_a)

		self.assertEqual(notified(mock_notify, 'task_offer'), ['rider-a'])
		self.assertFalse(Offer.objects.filter(worker__external_id='rider-offline').exists())
		skipped = Offer.objects.get(task=task, worker=rider_b)
		self.assertEqual(skipped.status, 'expired')
		self.assertIsNone(skipped.sent_at)
		self.assertEqual(task_store.get(task.pk).status, 'exhausted')

	def test_start_twice_is_a_conflict(self, mock_notify, mock_timer):
		task = make_order()
		start_negotiation(task)

		with self.assertRaises(ConflictError):
			start_negotiation(task)

	def test_retry_exhausted_task(self, mock_notify, mock_timer):
		task = make_order()
		start_negotiation(task)

		with self.assertRaises(NotFoundError):
			retry_negotiation(task.pk, 'someone-else')

		make_worker('rider-late', 1)
		result = retry_negotiation(task.pk, 'cust-1')

		self.assertEqual(result.outcome, 'offering')
		task = task_store.get(task.pk)
		self.assertEqual(task.status, 'offered')
		self.assertEqual(task.negotiation_round, 4)
		self.assertEqual(task.search_radius, 3000)

		with self.assertRaises(ConflictError):
			retry_negotiation(task.pk, 'cust-1')

	def test_retry_offers_previously_asked_worker_again(self, mock_notify, mock_timer):
		rider = make_worker('rider-only', 1)
		task = make_order()
		start_negotiation(task)
		decline_offer(task.pk, rider)
		self.assertEqual(task_store.get(task.pk).status, 'exhausted')

		result = retry_negotiation(task.pk, 'cust-1')

		self.assertEqual(result.outcome, 'offering')
		self.assertEqual(notified(mock_notify, 'task_offer'), ['rider-only', 'rider-only'])
		self.assertTrue(accept_offer(task.pk, rider).success)
		self.assertEqual(
			list(Offer.objects.filter(task=task).order_by('round').values_list('status', flat=True)),
			['declined', 'accepted'],
		)

	def test_reconcile_recovers_lost_timer(self, mock_notify, mock_timer):
		rider_a = make_worker('rider-a', 1)
		make_worker('rider-b', 2)
		task = make_order()
		start_negotiation(task)
		Offer.objects.filter(worker=rider_a).update(deadline=timezone.now() - timedelta(seconds=5))

		self.assertEqual(reconcile_stale_offering(), 1)

		self.assertEqual(Offer.objects.get(worker=rider_a).status, 'expired')
		self.assertEqual(notified(mock_notify, 'task_offer'), ['rider-a', 'rider-b'])
		self.assertEqual(reconcile_stale_offering(), 0)


@override_settings(MATCHING_OFFER_FANOUT=2)
@patch('services.matching.negotiator.expire_offer_task')
@patch('services.matching.negotiator.notify_user')
class FanOutTests(TestCase):
	def setUp(self):
		self.rider_a = make_worker('rider-a', 1)
		self.rider_b = make_worker('rider-b', 2)

	def test_second_accept_is_superseded(self, mock_notify, mock_timer):
		task = make_order()
		start_negotiation(task)
		self.assertEqual(notified(mock_notify, 'task_offer'), ['rider-a', 'rider-b'])

		first = accept_offer(task.pk, self.rider_b)
		second = accept_offer(task.pk, self.rider_a)

		self.assertTrue(first.success)
		self.assertFalse(second.success)
		self.assertTrue(second.superseded)
		self.assertEqual(notified(mock_notify, 'offer_superseded'), ['rider-a'])
		self.assertEqual(task_store.get(task.pk).worker, self.rider_b)
		self.assertEqual(Offer.objects.get(task=task, worker=self.rider_a).status, 'expired')

	def test_decline_keeps_other_offer_outstanding(self, mock_notify, mock_timer):
		task = make_order()
		start_negotiation(task)

		decline_offer(task.pk, self.rider_a)

		self.assertEqual(task_store.get(task.pk).status, 'offered')
		self.assertEqual(Offer.objects.get(task=task, worker=self.rider_b).status, 'pending')


@override_settings(MATCHING_OFFER_FANOUT=4)
@patch('services.matching.negotiator.expire_offer_task')
@patch('services.matching.negotiator.notify_user')
class ConcurrentAcceptTests(TransactionTestCase):
	def test_simultaneous_accepts_have_one_winner(self, mock_notify, mock_timer):
		riders = [make_worker(f'rider-{i}', 0.5 + i * 0.3) for i in range(4)]
		task = make_order()
		start_negotiation(task)

		barrier = threading.Barrier(len(riders))
		results = {}

		def accept(rider):
			try:
				barrier.wait()
				results[rider.external_id] = accept_offer(task.pk, rider)
			except Exception as exc:
				results[rider.external_id] = exc
			finally:
				connection.close()

		threads = [threading.Thread(target=accept, args=(r,)) for r in riders]
		for thread in threads:
			thread.start()
		for thread in threads:
			thread.join()

		winners = [ext for ext, res in results.items() if getattr(res, 'success', False)]
		self.assertEqual(len(winners), 1)
		for ext, res in results.items():
			if ext not in winners:
				self.assertTrue(getattr(res, 'superseded', False), res)

		task = task_store.get(task.pk)
		self.assertEqual(task.status, 'accepted')
		self.assertEqual(task.worker.external_id, winners[0])
		self.assertEqual(Offer.objects.filter(task=task, status='accepted').count(), 1)

	def test_one_rider_accepting_two_tasks_at_once_gets_one(self, mock_notify, mock_timer):
		rider = make_worker('rider-solo', 0.5)
		tasks = [make_order(f'cust-{i}') for i in range(2)]
		for task in tasks:
			start_negotiation(task)

		barrier = threading.Barrier(len(tasks))
		results = {}

		def accept(task):
			try:
				barrier.wait()
				results[task.pk] = accept_offer(task.pk, rider)
			except Exception as exc:
				results[task.pk] = exc
			finally:
				connection.close()

		threads = [threading.Thread(target=accept, args=(t,)) for t in tasks]
		for thread in threads:
			thread.start()
		for thread in threads:
			thread.join()

		won = [pk for pk, res in results.items() if getattr(res, 'success', False)]
		self.assertEqual(len(won), 1)
		lost = [res for pk, res in results.items() if pk not in won]
		self.assertIsInstance(lost[0], WorkerNotAvailableError)

		rider.refresh_from_db()
		self.assertEqual(len(rider.active_task_ids), 1)
		self.assertFalse(rider.is_available)
		loser = next(t for t in tasks if t.pk not in won)
		self.assertEqual(task_store.get(loser.pk).status, 'offered')
		self.assertEqual(Offer.objects.get(task=loser, worker=rider).status, 'pending')
