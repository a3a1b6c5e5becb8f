import threading
import uuid
from datetime import timedelta

from django.core.exceptions import ImproperlyConfigured
from django.core.management import call_command
from django.db import connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient
from unittest.mock import MagicMock, patch

from common.exceptions import DuplicateSessionError, ExpiredError, NotFoundError, ValidationError
from customers.models import Customer
from deliveries.models import Task
from workers.models import Worker
from . import validators
from .models import ConversationSession
from .orchestrator import InboundEvent, _continue_flow, handle_event
from .store import SessionStore


def expire(session):
	ConversationSession.objects.filter(pk=session.pk).update(expires_at=timezone.now() - timedelta(seconds=1))


class SessionStoreTests(TestCase):
	def setUp(self):
		self.store = SessionStore(policy='replace')

	def test_create_and_get(self):
		session = self.store.create('user-1', {'flow': 'create_order'})

		fetched = self.store.get('user-1')
		self.assertEqual(fetched.pk, session.pk)
		self.assertEqual(fetched.payload, {'flow': 'create_order'})
		self.assertGreater(fetched.expires_at, timezone.now() + timedelta(minutes=9))

	def test_expired_session_reads_as_absent_and_is_purged(self):
		session = self.store.create('user-1', {'flow': 'create_order'})
		expire(session)

		self.assertIsNone(self.store.get('user-1'))
		self.assertFalse(ConversationSession.objects.filter(pk=session.pk).exists())
		self.assertIsNone(self.store.get('never-seen'))

	def test_incremental_updates_merge(self):
		session = self.store.create('user-1', {'flow': 'register_rider'})

		self.store.update(session.pk, {'a': 1, 'b': 1})
		self.store.update(session.pk, {'b': 2, 'c': 2})
		self.store.update(session.pk, {'c': 3, 'd': 3})

		self.assertEqual(
			self.store.get('user-1').payload,
			{'flow': 'register_rider', 'a': 1, 'b': 2, 'c': 3, 'd': 3},
		)

	def test_update_missing_or_expired(self):
		with self.assertRaises(NotFoundError):
			self.store.update(uuid.uuid4(), {'a': 1})

		session = self.store.create('user-1')
		expire(session)
		with self.assertRaises(ExpiredError):
			self.store.update(session.pk, {'a': 1})
		with self.assertRaises(ExpiredError):
			self.store.extend(session.pk)

	def test_extend_pushes_expiry_forward(self):
		session = self.store.create('user-1', ttl=timedelta(minutes=1))

		extended = self.store.extend(session.pk, timedelta(minutes=30))

		self.assertGreater(extended.expires_at, session.expires_at + timedelta(minutes=25))

	def test_destroy_is_idempotent(self):
		session = self.store.create('user-1')

		self.assertTrue(self.store.destroy(session.pk))
		self.assertFalse(self.store.destroy(session.pk))

		self.assertIsNone(self.store.get('user-1'))

	def test_replace_policy_supersedes_old_session(self):
		old = self.store.create('user-1', {'flow': 'register_rider', 'full_name': 'Ada'})
		new = self.store.create('user-1', {'flow': 'create_order'})

		self.assertNotEqual(old.pk, new.pk)
		self.assertEqual(self.store.get('user-1').payload, {'flow': 'create_order'})
		self.assertEqual(ConversationSession.objects.count(), 1)

	def test_reject_policy(self):
		store = SessionStore(policy='reject')
		session = store.create('user-1')

		with self.assertRaises(DuplicateSessionError):
			store.create('user-1')

		expire(session)
		store.create('user-1', {'flow': 'create_errand'})
		self.assertEqual(store.get('user-1').payload, {'flow': 'create_errand'})

	@override_settings(SESSION_COLLISION_POLICY='merge')
	def test_unknown_policy_is_a_configuration_error(self):
		with self.assertRaises(ImproperlyConfigured):
			SessionStore()

	def test_sweep_deletes_in_bounded_batches(self):
		for i in range(3):
			expire(self.store.create(f'stale-{i}'))
		self.store.create('live')

		self.assertEqual(self.store.sweep_expired(batch_size=2), 2)
		self.assertEqual(self.store.sweep_expired(batch_size=2), 1)
		self.assertEqual(self.store.sweep_expired(batch_size=2), 0)
		self.assertEqual(list(ConversationSession.objects.values_list('user_id', flat=True)), ['live'])

	def test_sweep_sessions_command(self):
		for i in range(3):
			expire(self.store.create(f'stale-{i}'))

		call_command('sweep_sessions', batch_size=1, all=True)

		self.assertFalse(ConversationSession.objects.exists())


class ValidatorTests(SimpleTestCase):
	def test_phone_numbers(self):
		self.assertEqual(validators.validate_phone_number('+234 801 234 5678'), '+2348012345678')
		with self.assertRaises(ValidationError):
			validators.validate_phone_number('12345')

	def test_bank_details(self):
		self.assertEqual(
			validators.validate_bank_details('GTBank, 0123456789'),
			{'bank_name': 'GTBank', 'account_number': '0123456789'},
		)
		for text in ('GTBank 0123456789', 'GTBank, 12345', ', 0123456789'):
			with self.assertRaises(ValidationError):
				validators.validate_bank_details(text)

	def test_locations(self):
		self.assertEqual(
			validators.parse_location('6.5, 3.3, 12 Herbert Macaulay Way, Yaba'),
			{'latitude': 6.5, 'longitude': 3.3, 'address': '12 Herbert Macaulay Way, Yaba'},
		)
		for text in ('6.5', 'north,east', '91,3.3'):
			with self.assertRaises(ValidationError):
				validators.parse_location(text)

	def test_emails(self):
		self.assertEqual(validators.validate_email(' Ada@Example.com '), 'ada@example.com')
		for text in ('ada', 'ada@', 'ada example.com'):
			with self.assertRaises(ValidationError):
				validators.validate_email(text)

	def test_identity_and_description(self):
		self.assertEqual(validators.validate_identity_number(' 12345678901 '), '12345678901')
		with self.assertRaises(ValidationError):
			validators.validate_identity_number('1234567890')
		with self.assertRaises(ValidationError):
			validators.validate_description('milk')


class OrchestratorTestCase(TestCase):
	def say(self, text, user_id='user-1'):
		replies = handle_event(InboundEvent(user_id=user_id, text=text), store=self.store)
		self.assertTrue(replies)
		return replies[0]

	def setUp(self):
		self.store = SessionStore(policy='replace')


class RegistrationFlowTests(OrchestratorTestCase):
	def test_rider_registration(self):
		reply = self.say('/register_rider')
		self.assertEqual(reply.data['step'], 'full_name')

		reply = self.say('Jo')
		self.assertEqual(reply.data['step'], 'full_name')
		self.assertEqual(reply.data['error'], 'ValidationError')

		for text in ('Ada Obi', '+2348012345678', 'GTBank, 0123456789', '12345678901'):
			self.say(text)
		reply = self.say('photo-file-1')

		self.assertEqual(reply.data['event'], 'registered')
		worker = Worker.objects.get(external_id='user-1')
		self.assertEqual(worker.role, 'rider')
		self.assertEqual(worker.full_name, 'Ada Obi')
		self.assertEqual(worker.account_number, '0123456789')
		self.assertEqual(worker.photo_file_id, 'photo-file-1')
		self.assertFalse(worker.is_available)
		self.assertIsNone(self.store.get('user-1'))

	def test_invalid_input_does_not_advance(self):
		self.say('/register_errander')
		self.say('Ada Obi')

		reply = self.say('call me')

		self.assertEqual(reply.data['step'], 'phone_number')
		self.assertEqual(self.store.get('user-1').payload['current_step'], 'phone_number')

	def test_cancel_mid_flow(self):
		self.say('/register_rider')
		self.say('Ada Obi')

		reply = self.say('/cancel')

		self.assertEqual(reply.data['event'], 'canceled')
		self.assertIsNone(self.store.get('user-1'))
		self.assertEqual(self.say('Ada Obi').data['event'], 'help')

	def test_already_registered(self):
		Worker.objects.create(external_id='user-1', role='rider', full_name='Ada Obi', phone_number='08012345678')

		reply = self.say('/register_errander')

		self.assertEqual(reply.data['event'], 'error')
		self.assertIsNone(self.store.get('user-1'))

	def test_customer_registration(self):
		reply = self.say('/register_customer')
		self.assertEqual(reply.data['step'], 'full_name')

		self.say('Bola Ade')
		reply = self.say('not-an-email')
		self.assertEqual(reply.data['step'], 'email')
		self.say('bola@example.com')
		reply = self.say('+2348098765432')

		self.assertEqual(reply.data, {'event': 'registered', 'role': 'customer'})
		customer = Customer.objects.get(external_id='user-1')
		self.assertEqual(customer.full_name, 'Bola Ade')
		self.assertEqual(customer.email, 'bola@example.com')
		self.assertEqual(customer.phone_number, '+2348098765432')
		self.assertIsNone(self.store.get('user-1'))

		reply = self.say('/register_customer')
		self.assertEqual(reply.data['error'], 'AlreadyRegistered')

	def test_reject_policy_keeps_running_flow(self):
		self.store = SessionStore(policy='reject')
		self.say('/register_rider')

		reply = self.say('/create_order')

		self.assertEqual(reply.data['error'], 'DuplicateSessionError')
		self.assertEqual(self.store.get('user-1').payload['flow'], 'register_rider')

	def test_expired_session_restarts(self):
		self.say('/register_rider')
		expire(self.store.get('user-1'))

		reply = self.say('Ada Obi')

		self.assertEqual(reply.data['event'], 'help')


@patch('services.matching.negotiator.expire_offer_task')
@patch('services.matching.negotiator.notify_user')
class TaskFlowTests(OrchestratorTestCase):
	def setUp(self):
		super().setUp()
		self.rider = Worker.objects.create(
			external_id='rider-1',
			role='rider',
			full_name='Rider One',
			phone_number='08012345678',
			latitude=6.509,
			longitude=3.3,
			is_online=True,
			is_available=True,
		)

	def test_order_flow_starts_negotiation(self, mock_notify, mock_timer):
		self.say('/create_order')
		self.say('6.5,3.3,Yaba')
		reply = self.say('6.6,3.35,Ikeja')
		self.assertEqual(reply.data['step'], 'confirm')
		self.assertIn('Ikeja', reply.message)

		reply = self.say('yes')

		self.assertEqual(reply.data['event'], 'task_created')
		task = Task.objects.get(pk=reply.data['task_id'])
		self.assertEqual(task.status, 'offered')
		self.assertEqual(task.dropoff_address, 'Ikeja')
		self.assertEqual(mock_notify.call_args.args[0], 'rider-1')
		self.assertIsNone(self.store.get('user-1'))

	def test_declined_confirmation_discards(self, mock_notify, mock_timer):
		self.say('/create_errand')
		self.say('6.5,3.3')
		self.say('Pick up my dry cleaning')

		reply = self.say('no')

		self.assertEqual(reply.data['event'], 'discarded')
		self.assertFalse(Task.objects.exists())
		self.assertIsNone(self.store.get('user-1'))

	def test_worker_accepts_and_completes_through_commands(self, mock_notify, mock_timer):
		Customer.objects.create(
			external_id='user-1',
			full_name='Bola Ade',
			email='bola@example.com',
			phone_number='+2348098765432',
		)
		self.say('/create_order')
		self.say('6.5,3.3')
		self.say('6.6,3.35')
		task_id = self.say('yes').data['task_id']

		reply = self.say(f'/accept {task_id}', user_id='rider-1')
		self.assertEqual(reply.data['event'], 'offer_accepted')
		self.assertEqual(reply.data['customer']['phone_number'], '+2348098765432')
		self.assertIn('Bola Ade', reply.message)

		with patch('services.task_management.task_lifecycle.notify_user'):
			self.say(f'/start {task_id}', user_id='rider-1')
			reply = self.say(f'/complete {task_id}', user_id='rider-1')
		self.assertEqual(reply.data['event'], 'task_completed')

		reply = self.say(f'/status {task_id}')
		self.assertEqual(reply.data['status'], 'completed')

		reply = self.say(f'/rate {task_id} 5')
		self.assertEqual(reply.data['event'], 'task_rated')

	def test_repeated_final_answer_creates_one_task(self, mock_notify, mock_timer):
		self.say('/create_order')
		self.say('6.5,3.3')
		self.say('6.6,3.35')
		session = self.store.get('user-1')

		first = _continue_flow(self.store, session, 'yes')
		second = _continue_flow(self.store, session, 'yes')

		self.assertEqual(first[0].data['event'], 'task_created')
		self.assertEqual(second, [])
		self.assertEqual(Task.objects.count(), 1)

	def test_errors_become_replies(self, mock_notify, mock_timer):
		reply = self.say('/online', user_id='stranger')
		self.assertEqual(reply.data['error'], 'NotFoundError')

		reply = self.say('/status', user_id='stranger')
		self.assertEqual(reply.data['error'], 'ValidationError')

		reply = self.say(f'/accept {uuid.uuid4()}', user_id='rider-1')
		self.assertEqual(reply.data['error'], 'NotFoundError')

	def test_worker_location_and_availability(self, mock_notify, mock_timer):
		self.say('/offline', user_id='rider-1')
		reply = self.say('/location 6.45,3.39', user_id='rider-1')
		self.assertEqual(reply.data['latitude'], 6.45)
		self.say('/online', user_id='rider-1')

		self.rider.refresh_from_db()
		self.assertTrue(self.rider.is_available)
		self.assertEqual(self.rider.longitude, 3.39)


@patch('conversations.orchestrator.start_negotiation')
class RedeliveredAnswerTests(TransactionTestCase):
	def test_concurrent_final_answers_create_one_task(self, mock_start):
		mock_start.side_effect = lambda task: MagicMock(outcome='offering', task=task)
		store = SessionStore(policy='replace')
		for text in ('/create_order', '6.5,3.3', '6.6,3.35'):
			handle_event(InboundEvent(user_id='user-1', text=text), store=store)

		barrier = threading.Barrier(2)
		results = []

		def answer():
			try:
				barrier.wait()
				results.append(handle_event(InboundEvent(user_id='user-1', text='yes'), store=store))
			finally:
				connection.close()

		threads = [threading.Thread(target=answer) for _ in range(2)]
		for thread in threads:
			thread.start()
		for thread in threads:
			thread.join()

		created = [r for r in results if r and r[0].data.get('event') == 'task_created']
		self.assertEqual(len(created), 1)
		self.assertEqual(Task.objects.count(), 1)
		mock_start.assert_called_once()
		self.assertFalse(ConversationSession.objects.exists())


class BotEventViewTests(TestCase):
	def setUp(self):
		self.client = APIClient()

	def test_event_returns_replies(self):
		response = self.client.post('/api/bot/events/', {'user_id': '42', 'text': '/register_rider'}, format='json')

		self.assertEqual(response.status_code, 200)
		replies = response.json()['replies']
		self.assertEqual(replies[0]['data']['step'], 'full_name')

	def test_event_with_timestamp(self):
		payload = {'user_id': '42', 'text': '/help', 'timestamp': '2026-01-05T10:00:00Z'}

		response = self.client.post('/api/bot/events/', payload, format='json')

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.json()['replies'][0]['data']['event'], 'help')

	def test_invalid_event(self):
		response = self.client.post('/api/bot/events/', {'text': 'hi'}, format='json')
		self.assertEqual(response.status_code, 400)

	@override_settings(BOT_WEBHOOK_SECRET='s3cret')
	def test_secret_checked(self):
		payload = {'user_id': '42', 'text': '/help'}

		response = self.client.post('/api/bot/events/', payload, format='json')
		self.assertEqual(response.status_code, 403)

		response = self.client.post('/api/bot/events/', payload, format='json', HTTP_X_BOT_SECRET='s3cret')
		self.assertEqual(response.status_code, 200)
