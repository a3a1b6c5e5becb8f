from channels.layers import get_channel_layer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.test import SimpleTestCase, override_settings
from unittest.mock import MagicMock, patch

from .middleware import BotSecretAuthMiddleware
from .notifications import build_event, notify_user, user_group_name
from .routing import websocket_urlpatterns

application = BotSecretAuthMiddleware(URLRouter(websocket_urlpatterns))


class NotificationTests(SimpleTestCase):
	def test_group_names_are_channel_safe(self):
		self.assertEqual(user_group_name(12345), 'user_12345')
		self.assertEqual(user_group_name('chat:42@bot'), 'user_chat-42-bot')

	def test_notify_user_sends_to_personal_group(self):
		layer = MagicMock()

		async def group_send(group, event):
			layer.sent.append((group, event))

		layer.sent = []
		layer.group_send = group_send
		with patch('realtime.notifications.get_channel_layer', return_value=layer):
			delivered = notify_user('42', 'Hello', {'event': 'task_offer'})

		self.assertTrue(delivered)
		self.assertEqual(layer.sent, [('user_42', build_event('Hello', {'event': 'task_offer'}))])

	def test_notify_user_never_raises(self):
		layer = MagicMock()

		async def group_send(group, event):
			raise ConnectionError('redis down')

		layer.group_send = group_send
		with patch('realtime.notifications.get_channel_layer', return_value=layer):
			self.assertFalse(notify_user('42', 'Hello'))

		with patch('realtime.notifications.get_channel_layer', return_value=None):
			self.assertFalse(notify_user('42', 'Hello'))


class UserEventsConsumerTests(SimpleTestCase):
	async def test_relays_notifications_for_the_user(self):
		communicator = WebsocketCommunicator(application, '/ws/users/42/')
		connected, _ = await communicator.connect()
		self.assertTrue(connected)
		self.assertEqual((await communicator.receive_json_from())['type'], 'connection_established')

		await get_channel_layer().group_send(
			user_group_name('42'),
			build_event('New order request!', {'event': 'task_offer', 'task_id': 'abc'}),
		)

		message = await communicator.receive_json_from()
		self.assertEqual(message['type'], 'notification')
		self.assertEqual(message['message'], 'New order request!')
		self.assertEqual(message['data']['task_id'], 'abc')
		await communicator.disconnect()

	async def test_ping(self):
		communicator = WebsocketCommunicator(application, '/ws/users/42/')
		await communicator.connect()
		await communicator.receive_json_from()

		await communicator.send_json_to({'type': 'ping'})
		self.assertEqual(await communicator.receive_json_from(), {'type': 'pong'})

		await communicator.send_json_to({'type': 'subscribe'})
		self.assertEqual((await communicator.receive_json_from())['type'], 'error')
		await communicator.disconnect()

	@override_settings(BOT_WEBHOOK_SECRET='s3cret')
	async def test_relay_needs_secret(self):
		communicator = WebsocketCommunicator(application, '/ws/users/42/')
		connected, _ = await communicator.connect()
		self.assertFalse(connected)

		communicator = WebsocketCommunicator(application, '/ws/users/42/?secret=s3cret')
		connected, _ = await communicator.connect()
		self.assertTrue(connected)
		await communicator.disconnect()
