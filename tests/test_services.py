# -*- coding: utf-8 -*-
"""Alan servisleri: doğrulama ve yerel depo üzerinden yazma."""

import unittest

from sync_fixtures import DEVICE_A, TempDatabase

from rc_app.services import ValidationError, build_services, normalize_amount
from rc_app.sync.local_store import LocalRecordStore, RowNotFoundError


class ServicesTestCase(unittest.TestCase):

    def setUp(self):
        self.db = TempDatabase()
        self.store = LocalRecordStore(self.db.path, DEVICE_A)
        self.services = build_services(self.store)

    def tearDown(self):
        self.db.cleanup()


class TestNormalizeAmount(unittest.TestCase):

    def test_formats(self):
        self.assertEqual(normalize_amount("1.234,50"), "1234.50")
        self.assertEqual(normalize_amount("R$ 99,9"), "99.90")
        self.assertEqual(normalize_amount(1234.5), "1234.50")
        self.assertEqual(normalize_amount("10"), "10.00")
        self.assertIsNone(normalize_amount(""))

    def test_invalid(self):
        with self.assertRaises(ValidationError):
            normalize_amount("abc")
        with self.assertRaises(ValidationError):
            normalize_amount("-5")


class TestClientService(ServicesTestCase):

    def test_create_marks_row_pending(self):
        record = self.services['clients'].create({'name': '  Maria ', 'email': 'Maria@Obra.COM'})
        self.assertEqual(record['name'], 'Maria')
        self.assertEqual(record['email'], 'maria@obra.com')
        self.assertTrue(record['isActive'])
        self.assertEqual(record['syncStatus'], 'pending_upsert')
        self.assertEqual(self.store.count_pending('clients'), 1)

    def test_name_is_required(self):
        with self.assertRaises(ValidationError):
            self.services['clients'].create({'email': 'a@b.com'})

    def test_invalid_email(self):
        with self.assertRaises(ValidationError):
            self.services['clients'].create({'name': 'Maria', 'email': 'no-at-sign'})

    def test_update_merges_fields(self):
        service = self.services['clients']
        record = service.create({'name': 'Maria', 'phone': '123'})
        updated = service.update(record['id'], {'phone': '456'})
        self.assertEqual(updated['name'], 'Maria')
        self.assertEqual(updated['phone'], '456')

    def test_update_missing(self):
        with self.assertRaises(RowNotFoundError):
            self.services['clients'].update('nope', {'name': 'X'})

    def test_remove_unsent_row(self):
        service = self.services['clients']
        record = service.create({'name': 'Maria'})
        self.assertTrue(service.remove(record['id']))
        self.assertIsNone(service.get(record['id']))
        self.assertEqual(service.list(), [])


class TestOtherServices(ServicesTestCase):

    def test_budget_defaults(self):
        record = self.services['budgets'].create({'clientId': 'c1', 'title': 'Reforma',
                                                  'amount': '2.500,00'})
        self.assertEqual(record['status'], 'Pendente')
        self.assertEqual(record['amount'], '2500.00')

    def test_budget_status_choices(self):
        with self.assertRaises(ValidationError):
            self.services['budgets'].create({'clientId': 'c1', 'title': 'X', 'status': 'Talvez'})

    def test_contract_dates(self):
        with self.assertRaises(ValidationError):
            self.services['contracts'].create({
                'clientId': 'c1', 'title': 'Obra', 'startDate': '2024-05-01',
                'endDate': '2024-04-01',
            })
        record = self.services['contracts'].create({
            'clientId': 'c1', 'title': 'Obra', 'startDate': '2024-04-01', 'value': 1000,
        })
        self.assertEqual(record['status'], 'Ativo')
        self.assertEqual(record['value'], '1000.00')

    def test_financial_type(self):
        with self.assertRaises(ValidationError):
            self.services['financial'].create({'type': 'Outro', 'description': 'x', 'amount': 1})
        record = self.services['financial'].create({'type': 'Despesa', 'description': 'Cimento',
                                                    'amount': '350,75'})
        self.assertEqual(record['amount'], '350.75')


if __name__ == '__main__':
    unittest.main()
