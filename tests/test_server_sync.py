# -*- coding: utf-8 -*-
"""Sync server endpoint'leri için doğrulamalar."""

import unittest
from unittest import mock

from sync_fixtures import DEVICE_A, DEVICE_B, T0, FakeClock, ServerHarness

from sync_server.auth import create_access_token
from sync_server.config import settings
from sync_server.models import PushReceipt, SyncRecord


class ServerTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock(T0)
        self.server = ServerHarness(self.clock)
        self.http = self.server.http()

    def tearDown(self):
        self.server.close()

    def push(self, items, device_id=DEVICE_A, table='clients', token=None):
        return self.http.post(
            '/sync/push',
            json={'table': table, 'deviceId': device_id, 'data': items},
            headers=self.server.auth_headers(token),
        )

    def pull(self, last_sync=0, device_id=DEVICE_A, table='clients', limit=None, token=None):
        params = {'table': table, 'lastSync': last_sync, 'deviceId': device_id}
        if limit:
            params['limit'] = limit
        return self.http.get('/sync/pull', params=params, headers=self.server.auth_headers(token))

    def create(self, local_id, name, updated_at=T0, device_id=DEVICE_A):
        response = self.push([{
            'localId': local_id, 'updatedAt': updated_at, 'op': 'upsert',
            'payload': {'name': name},
        }], device_id=device_id)
        self.assertEqual(response.status_code, 200)
        return response.json()['results'][0]


class TestPushEndpoint(ServerTestCase):

    def test_create_is_stamped_by_server_clock(self):
        self.clock.now = T0 + 20
        result = self.create('L1', 'Maria', updated_at=T0 + 10)

        self.assertEqual(result['status'], 'accepted')
        self.assertEqual(result['serverId'], 'S1')
        self.assertEqual(result['serverUpdatedAt'], T0 + 20)

    def test_same_millisecond_writes_get_distinct_timestamps(self):
        first = self.create('L1', 'Maria')
        second = self.create('L2', 'João')
        self.assertEqual(first['serverUpdatedAt'], T0)
        self.assertEqual(second['serverUpdatedAt'], T0 + 1)

    def test_clock_going_backwards_keeps_order(self):
        self.clock.now = T0 + 100
        first = self.create('L1', 'Maria')
        self.clock.now = T0
        second = self.create('L2', 'João')
        self.assertGreater(second['serverUpdatedAt'], first['serverUpdatedAt'])

    def test_replayed_push_returns_original_result(self):
        first = self.create('L1', 'Maria')
        self.clock.now = T0 + 500
        again = self.create('L1', 'Maria')

        self.assertEqual(again['serverId'], first['serverId'])
        self.assertEqual(again['serverUpdatedAt'], first['serverUpdatedAt'])
        db = self.server.Session()
        try:
            self.assertEqual(db.query(SyncRecord).count(), 1)
            self.assertEqual(db.query(PushReceipt).count(), 1)
        finally:
            db.close()

    def test_update_with_current_base_version_is_accepted(self):
        created = self.create('L1', 'Maria')
        self.clock.now = T0 + 50
        response = self.push([{
            'localId': 'L1', 'serverId': created['serverId'], 'updatedAt': T0 + 40,
            'op': 'upsert', 'payload': {'name': 'Maria Silva'},
            'baseVersion': created['serverUpdatedAt'],
        }])
        result = response.json()['results'][0]
        self.assertEqual(result['status'], 'accepted')
        self.assertEqual(result['serverUpdatedAt'], T0 + 50)

    def test_stale_update_returns_conflict_with_server_row(self):
        created = self.create('L1', 'Maria')
        self.clock.now = T0 + 35
        self.push([{
            'localId': 'B1', 'serverId': created['serverId'], 'updatedAt': T0 + 25,
            'op': 'upsert', 'payload': {'name': 'Maria Souza'},
            'baseVersion': created['serverUpdatedAt'],
        }], device_id=DEVICE_B)

        response = self.push([{
            'localId': 'L1', 'serverId': created['serverId'], 'updatedAt': T0 + 30,
            'op': 'upsert', 'payload': {'name': 'Maria Silva'},
            'baseVersion': created['serverUpdatedAt'],
        }])
        result = response.json()['results'][0]
        self.assertEqual(result['status'], 'conflict')
        self.assertEqual(result['serverRow']['updatedAt'], T0 + 35)
        self.assertEqual(result['serverRow']['payload'], {'name': 'Maria Souza'})
        self.assertEqual(result['serverRow']['localId'], 'L1')

    def test_delete_creates_tombstone(self):
        created = self.create('L1', 'Maria')
        self.clock.now = T0 + 50
        response = self.push([{
            'localId': 'L1', 'serverId': created['serverId'], 'updatedAt': T0 + 45,
            'op': 'delete', 'baseVersion': created['serverUpdatedAt'],
        }])
        result = response.json()['results'][0]
        self.assertEqual(result['status'], 'accepted')

        row = self.pull().json()['rows'][0]
        self.assertEqual(row['deletedAt'], T0 + 50)
        self.assertEqual(row['updatedAt'], T0 + 50)

    def test_update_of_deleted_record_conflicts(self):
        created = self.create('L1', 'Maria')
        self.push([{
            'localId': 'L1', 'serverId': created['serverId'], 'updatedAt': T0 + 5,
            'op': 'delete', 'baseVersion': created['serverUpdatedAt'],
        }])
        response = self.push([{
            'localId': 'B1', 'serverId': created['serverId'], 'updatedAt': T0 + 9,
            'op': 'upsert', 'payload': {'name': 'Maria'},
            'baseVersion': created['serverUpdatedAt'],
        }], device_id=DEVICE_B)
        result = response.json()['results'][0]
        self.assertEqual(result['status'], 'conflict')
        self.assertIsNotNone(result['serverRow']['deletedAt'])

    def test_delete_of_unknown_record_is_accepted(self):
        response = self.push([{
            'localId': 'L9', 'serverId': 'S404', 'updatedAt': T0, 'op': 'delete',
        }])
        self.assertEqual(response.json()['results'][0]['status'], 'accepted')

    def test_invalid_rows_are_rejected_individually(self):
        response = self.push([
            {'localId': 'L1', 'updatedAt': T0, 'op': 'upsert', 'payload': {'name': 'Maria'}},
            {'localId': 'L2', 'updatedAt': T0, 'op': 'upsert', 'payload': {'phone': '123'}},
            {'localId': 'L3', 'updatedAt': T0, 'payload': {'name': 'Sem op'}},
        ])
        self.assertEqual(response.status_code, 200)
        results = {r['localId']: r for r in response.json()['results']}
        self.assertEqual(results['L1']['status'], 'accepted')
        self.assertEqual(results['L2']['status'], 'rejected')
        self.assertTrue(results['L2']['reason'].startswith('VALIDATION_ERROR'))
        self.assertEqual(results['L3']['status'], 'rejected')

    def test_results_keep_input_order(self):
        response = self.push([
            {'localId': f'L{i}', 'updatedAt': T0, 'op': 'upsert', 'payload': {'name': f'Nome {i}'}}
            for i in range(5)
        ])
        ids = [r['localId'] for r in response.json()['results']]
        self.assertEqual(ids, ['L0', 'L1', 'L2', 'L3', 'L4'])

    def test_rows_beyond_batch_limit_are_left_unprocessed(self):
        items = [
            {'localId': f'L{i}', 'updatedAt': T0, 'op': 'upsert', 'payload': {'name': f'Nome {i}'}}
            for i in range(3)
        ]
        with mock.patch.object(settings, 'MAX_PUSH_BATCH_SIZE', 2):
            response = self.push(items)
        self.assertEqual(response.status_code, 200)
        ids = [r['localId'] for r in response.json()['results']]
        self.assertEqual(ids, ['L0', 'L1'])
        self.assertEqual(len(self.pull().json()['rows']), 2)

    def test_invalid_device_id_is_rejected(self):
        response = self.push([], device_id='not-a-uuid')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['detail']['code'], 'VALIDATION_ERROR')

    def test_unknown_table_is_rejected(self):
        response = self.push([], table='users')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['detail']['code'], 'VALIDATION_ERROR')

    def test_device_of_another_user_is_forbidden(self):
        self.create('L1', 'Maria')
        other = create_access_token('user-2')
        response = self.push([], token=other)
        self.assertEqual(response.status_code, 403)


class TestPullEndpoint(ServerTestCase):

    def test_missing_token_is_unauthorized(self):
        response = self.http.get('/sync/pull', params={
            'table': 'clients', 'lastSync': 0, 'deviceId': DEVICE_A,
        })
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['detail']['code'], 'AUTH_EXPIRED')

    def test_bad_token_is_unauthorized(self):
        response = self.pull(token='garbage')
        self.assertEqual(response.status_code, 401)

    def test_empty_pull_keeps_watermark(self):
        body = self.pull(last_sync=T0).json()
        self.assertEqual(body['rows'], [])
        self.assertEqual(body['newWatermark'], T0)
        self.assertFalse(body['hasMore'])

    def test_pages_follow_server_timestamps(self):
        for i in range(3):
            self.create(f'L{i}', f'Nome {i}')

        first = self.pull(limit=2).json()
        self.assertEqual(len(first['rows']), 2)
        self.assertTrue(first['hasMore'])
        self.assertEqual(first['newWatermark'], T0 + 1)

        second = self.pull(last_sync=first['newWatermark'], limit=2).json()
        self.assertEqual([r['payload']['name'] for r in second['rows']], ['Nome 2'])
        self.assertFalse(second['hasMore'])
        self.assertEqual(second['newWatermark'], T0 + 2)

    def test_same_last_sync_returns_same_page(self):
        self.create('L1', 'Maria')
        self.assertEqual(self.pull().json(), self.pull().json())

    def test_local_id_only_for_origin_device(self):
        self.create('L1', 'Maria')
        own = self.pull(device_id=DEVICE_A).json()['rows'][0]
        other = self.pull(device_id=DEVICE_B).json()['rows'][0]
        self.assertEqual(own['localId'], 'L1')
        self.assertEqual(own['deviceId'], DEVICE_A)
        self.assertIsNone(other['localId'])

    def test_limit_above_maximum_returns_bounded_page(self):
        for i in range(3):
            self.create(f'L{i}', f'Nome {i}')

        with mock.patch.object(settings, 'MAX_PULL_PAGE_SIZE', 2):
            response = self.pull(limit=100000)
            self.assertEqual(response.status_code, 200)
            first = response.json()
            self.assertEqual(len(first['rows']), 2)
            self.assertTrue(first['hasMore'])

            second = self.pull(last_sync=first['newWatermark'], limit=100000).json()
        self.assertEqual([r['payload']['name'] for r in second['rows']], ['Nome 2'])
        self.assertFalse(second['hasMore'])

    def test_invalid_device_id_is_rejected(self):
        response = self.pull(device_id='abc')
        self.assertEqual(response.status_code, 400)


class TestMaintenance(ServerTestCase):

    def _tombstone(self):
        created = self.create('L1', 'Maria')
        self.push([{
            'localId': 'L1', 'serverId': created['serverId'], 'updatedAt': T0 + 1,
            'op': 'delete', 'baseVersion': created['serverUpdatedAt'],
        }])
        return created

    def _compact(self, retention_days=0):
        response = self.http.post(
            '/sync/maintenance/compact',
            params={'retentionDays': retention_days},
            headers=self.server.auth_headers(),
        )
        self.assertEqual(response.status_code, 200)
        return response.json()['purged']

    def test_tombstone_kept_until_all_devices_pulled_past_it(self):
        self._tombstone()
        self.pull(device_id=DEVICE_B)
        self.clock.now = T0 + 10

        # A hiç pull yapmadı: watermark'ı 0 sayılır
        self.assertEqual(self._compact(), 0)

        tombstone_at = self.pull(device_id=DEVICE_A).json()['newWatermark']
        self.pull(last_sync=tombstone_at, device_id=DEVICE_A)
        self.pull(last_sync=tombstone_at, device_id=DEVICE_B)
        self.assertEqual(self._compact(), 1)
        self.assertEqual(self.pull(device_id=DEVICE_B).json()['rows'], [])

    def test_retention_period_is_respected(self):
        self._tombstone()
        tombstone_at = self.pull(device_id=DEVICE_A).json()['newWatermark']
        self.pull(last_sync=tombstone_at, device_id=DEVICE_A)
        self.assertEqual(self._compact(retention_days=1), 0)

    def test_status_reports_latest_timestamp_per_table(self):
        self.create('L1', 'Maria')
        self.clock.now = T0 + 99
        response = self.http.get('/sync/status', headers=self.server.auth_headers())
        body = response.json()
        self.assertEqual(body['serverTime'], T0 + 99)
        self.assertEqual(body['tables']['clients'], T0)
        self.assertEqual(body['tables']['budgets'], 0)

    def test_health(self):
        response = self.http.get('/api/health')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'ok')


if __name__ == '__main__':
    unittest.main()
