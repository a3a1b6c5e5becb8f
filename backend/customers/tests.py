from django.test import TestCase

from common.exceptions import ValidationError
from .services import customer_contact, find_customer, register_customer


class CustomerServiceTests(TestCase):
	details = {
		'full_name': 'Bola Ade',
		'email': 'bola@example.com',
		'phone_number': '+2348098765432',
	}

	def test_register_and_contact(self):
		customer = register_customer('chat-1', self.details)

		self.assertEqual(find_customer('chat-1'), customer)
		self.assertEqual(customer_contact('chat-1'), {
			'name': 'Bola Ade',
			'phone_number': '+2348098765432',
			'email': 'bola@example.com',
		})

	def test_register_twice_is_rejected(self):
		register_customer('chat-1', self.details)

		with self.assertRaises(ValidationError):
			register_customer('chat-1', self.details)

	def test_unregistered_customer_has_no_contact(self):
		self.assertIsNone(find_customer('nobody'))
		self.assertIsNone(customer_contact('nobody'))
